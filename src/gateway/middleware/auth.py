"""JWT authentication middleware.

- No token -> 401
- Invalid, expired or non-expiring token -> 401
- Valid token -> extract user_id + role
- healthz / metrics exempt

Uses PyJWT (HS256). Secret must come from environment, never hardcoded.
Tokens carry ``sub`` (user id) and ``role`` (``customer`` | ``admin``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import jwt

from src.shared.errors import AuthenticationError
from src.shared.types import PartyRole

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenPayload:
    """Decoded JWT payload."""

    user_id: str
    role: str = PartyRole.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == PartyRole.ADMIN


def encode_token(
    *,
    user_id: str,
    secret: str,
    role: str = PartyRole.CUSTOMER,
    ttl_seconds: int = 3600,
) -> str:
    """Create a signed JWT containing user_id and role."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def decode_token(token: str, *, secret: str) -> TokenPayload:
    """Decode and validate a JWT. Raises AuthenticationError on failure."""
    try:
        data = jwt.decode(token, secret, algorithms=[_ALGORITHM], options={"require": ["exp"]})
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    user_id = data.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid token: missing subject")
    role = data.get("role", PartyRole.CUSTOMER)
    if role not in PartyRole.ALL:
        raise AuthenticationError(f"Invalid token: unknown role {role!r}")
    return TokenPayload(user_id=user_id, role=role)


class JWTAuthMiddleware:
    """Synchronous JWT auth check for gateway requests.

    Exempt paths (healthz, metrics, docs) skip authentication entirely.
    """

    def __init__(
        self,
        *,
        secret: str,
        exempt_paths: list[str] | None = None,
    ) -> None:
        self._secret = secret
        self._exempt_paths = set(exempt_paths or [])

    def authenticate(self, *, token: str | None, path: str) -> TokenPayload | None:
        """Authenticate request. Returns None for exempt paths.

        Raises AuthenticationError for missing/invalid tokens on
        non-exempt paths.
        """
        if path in self._exempt_paths:
            return None

        if not token:
            raise AuthenticationError("Missing authentication token")

        return decode_token(token, secret=self._secret)
