"""Unified error hierarchy for the Back Coffee chat backend.

All domain errors inherit from BackCoffeeError. The HTTP gateway maps them
to status codes; the chat relay maps them to ``error`` envelopes using the
same ``code`` values.
"""

from __future__ import annotations


class BackCoffeeError(Exception):
    """Base error for all Back Coffee exceptions."""

    def __init__(self, message: str, code: str = "BACK_COFFEE_ERROR") -> None:
        self.code = code
        super().__init__(message)


# -- Port errors (raised by Port implementations) --


class PortUnavailableError(BackCoffeeError):
    """A Port dependency (store, media host) failed or is unreachable."""

    def __init__(self, port_name: str, message: str = "") -> None:
        self.port_name = port_name
        super().__init__(
            message or f"Port {port_name} is unavailable",
            code="PORT_UNAVAILABLE",
        )


# -- Auth errors --


class AuthenticationError(BackCoffeeError):
    """Authentication failed (invalid token, expired, etc.)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationError(BackCoffeeError):
    """Authorization denied (insufficient permissions)."""

    def __init__(self, required_permission: str = "") -> None:
        msg = (
            f"Permission denied: {required_permission}"
            if required_permission
            else "Permission denied"
        )
        self.required_permission = required_permission
        super().__init__(msg, code="AUTH_DENIED")


# -- Domain errors --


class NotFoundError(BackCoffeeError):
    """Requested resource not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
        )


class ConflictError(BackCoffeeError):
    """Resource state conflict (ticket already resolved, wrong active ticket)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFLICT")


class ValidationError(BackCoffeeError):
    """Input validation failed."""

    def __init__(self, message: str, field: str = "") -> None:
        self.field = field
        super().__init__(message, code="VALIDATION")


class ProtocolError(ValidationError):
    """A relay envelope is malformed, unknown, or out of order."""

    def __init__(self, message: str, envelope_type: str = "") -> None:
        self.envelope_type = envelope_type
        super().__init__(message)


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "BackCoffeeError",
    "ConflictError",
    "NotFoundError",
    "PortUnavailableError",
    "ProtocolError",
    "ValidationError",
]
