"""Structured error logging handler.

Error records carry an error code, the stack trace and the relay context
(connection, envelope type, user) so that a failed persistence call can be
traced back to the envelope that caused it. Context values under sensitive
keys (tokens, secrets, cookies) are redacted before the record is emitted.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import asdict, dataclass, field
from typing import Any

REDACTED = "[REDACTED]"

# Matched as substrings of the lower-cased key: "access_token", "X-Api-Key"...
_SENSITIVE_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "api_key",
    "api-key",
    "authorization",
    "cookie",
    "jwt",
    "credential",
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def _redact_sensitive(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else _redact_sensitive(v)
            for k, v in data.items()
        }
    if isinstance(data, list | tuple):
        return [_redact_sensitive(item) for item in data]
    return data


@dataclass(frozen=True)
class StructuredError:
    """Structured representation of an error for logging."""

    error_code: str
    message: str
    stack_trace: str
    context: dict[str, Any] = field(default_factory=dict)
    connection_id: str = ""
    envelope_type: str = ""
    user_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["context"] = _redact_sensitive(d["context"])
        return d


def create_structured_error(
    exc: BaseException,
    *,
    error_code: str = "",
    connection_id: str = "",
    envelope_type: str = "",
    user_id: str = "",
    context: dict[str, Any] | None = None,
) -> StructuredError:
    """Build a StructuredError from an exception.

    Without an explicit ``error_code`` the exception's ``code`` attribute
    (BackCoffeeError subclasses) is used, then its class name.
    """
    return StructuredError(
        error_code=error_code or getattr(exc, "code", "") or type(exc).__name__,
        message=str(exc),
        stack_trace="".join(traceback.format_exception(exc)),
        context=dict(context or {}),
        connection_id=connection_id,
        envelope_type=envelope_type,
        user_id=user_id,
    )


def log_structured_error(
    logger: logging.Logger,
    exc: BaseException,
    *,
    level: int = logging.ERROR,
    **fields: Any,
) -> StructuredError:
    """Log ``exc`` as a structured error and return the record.

    ``fields`` are the keyword arguments of create_structured_error.
    """
    record = create_structured_error(exc, **fields)
    logger.log(
        level,
        "structured_error code=%s envelope=%s connection=%s",
        record.error_code,
        record.envelope_type or "-",
        record.connection_id or "-",
        extra={"structured_error": record.to_dict()},
    )
    return record
