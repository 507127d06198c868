"""Prometheus metrics for the chat relay.

- Saturation: open connections, registered parties by role
- Traffic: inbound envelopes by type and outcome
- Liveness: connections evicted for missed heartbeats
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

OPEN_CONNECTIONS = Gauge(
    "chat_relay_open_connections",
    "Number of accepted chat connections not yet closed",
)

REGISTERED_PARTIES = Gauge(
    "chat_relay_registered_parties",
    "Number of registered parties",
    ["role"],
)

ENVELOPES_TOTAL = Counter(
    "chat_relay_envelopes_total",
    "Inbound envelopes processed",
    ["type", "outcome"],
)

EVICTIONS_TOTAL = Counter(
    "chat_relay_evictions_total",
    "Connections closed by the liveness monitor",
)

OUTCOME_OK = "ok"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
