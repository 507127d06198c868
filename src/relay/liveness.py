"""Heartbeat-based liveness monitor.

One periodic task per process. Every sweep visits each open connection:

- did not answer the previous probe -> closed and evicted from the registry
- otherwise -> ``answered`` cleared and a ``ping`` envelope sent

A ``pong`` envelope sets ``answered`` again, so a dead peer is evicted at
most two intervals after it stopped responding.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from src.relay import envelopes, metrics

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from src.relay.registry import ConnectionEntry, ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
HEARTBEAT_TIMEOUT_CLOSE_CODE = 1001


class LivenessMonitor:
    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)
        self._registry = registry
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> list[str]:
        """Run one heartbeat cycle. Returns the evicted connection ids.

        Closes and probes run concurrently, each bounded by the interval, so
        a peer that stopped reading cannot hold up the others.
        """
        evicted: list[str] = []
        pending: list[Awaitable[None]] = []
        for entry in self._registry.open_entries():
            connection_id = entry.connection_id
            if not entry.answered:
                self._registry.unregister(connection_id)
                metrics.EVICTIONS_TOTAL.inc()
                evicted.append(connection_id)
                logger.info("Evicting unresponsive connection id=%s user=%s", connection_id, entry.user_id)
                pending.append(self._evict(entry))
                continue

            entry.answered = False
            pending.append(self._probe(entry))
        await asyncio.gather(*pending)
        return evicted

    async def _evict(self, entry: ConnectionEntry) -> None:
        try:
            await asyncio.wait_for(
                entry.connection.close(code=HEARTBEAT_TIMEOUT_CLOSE_CODE, reason="Heartbeat timeout"),
                timeout=self._interval,
            )
        except Exception:
            logger.debug("Close of evicted connection id=%s failed", entry.connection_id, exc_info=True)

    async def _probe(self, entry: ConnectionEntry) -> None:
        try:
            await asyncio.wait_for(entry.connection.send(envelopes.ping()), timeout=self._interval)
        except Exception:
            # Left for the next sweep to evict.
            logger.debug("Heartbeat probe to id=%s failed", entry.connection_id, exc_info=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="chat-liveness")
        logger.info("Liveness monitor started interval=%.1fs", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Liveness monitor stopped")
