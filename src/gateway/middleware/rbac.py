"""RBAC permission check middleware.

Every authenticated request needs a permission derived from its path and
method:
- /api/v1/chat/admin/*      -> admin:access
- GET / HEAD elsewhere      -> chat:read
- any other method          -> chat:write

Owner-or-admin checks stay in the route handlers, which know the target
user id.

Roles:
  admin    -> chat:read, chat:write, admin:access
  customer -> chat:read, chat:write
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse, Response

from src.shared.errors import AuthorizationError
from src.shared.types import PartyRole

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import Request

logger = logging.getLogger(__name__)


class Permission:
    """Permission constants."""

    READ = "chat:read"
    WRITE = "chat:write"
    ADMIN_ACCESS = "admin:access"


_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    PartyRole.ADMIN: frozenset({Permission.READ, Permission.WRITE, Permission.ADMIN_ACCESS}),
    PartyRole.CUSTOMER: frozenset({Permission.READ, Permission.WRITE}),
}

_READ_METHODS = frozenset({"GET", "HEAD"})


class RBACMiddleware:
    """Post-auth middleware enforcing role permissions per request."""

    def __init__(self, *, admin_path_prefix: str = "/api/v1/chat/admin/") -> None:
        self._admin_prefix = admin_path_prefix

    def required_permission(self, path: str, method: str = "GET") -> str:
        if path.startswith(self._admin_prefix):
            return Permission.ADMIN_ACCESS
        return Permission.READ if method.upper() in _READ_METHODS else Permission.WRITE

    def check_access(
        self,
        *,
        path: str,
        role: str,
        permissions: frozenset[str],
        method: str = "GET",
    ) -> None:
        """Raise AuthorizationError unless ``permissions`` cover the request."""
        needed = self.required_permission(path, method)
        if needed not in permissions:
            logger.info("RBAC denied role=%s path=%s needs=%s", role, path, needed)
            raise AuthorizationError(needed)

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        role = getattr(request.state, "role", PartyRole.CUSTOMER)
        try:
            self.check_access(
                path=request.url.path,
                role=role,
                permissions=self.get_role_permissions(role),
                method=request.method,
            )
        except AuthorizationError as exc:
            message = (
                f"Admin access required (role={role})"
                if exc.required_permission == Permission.ADMIN_ACCESS
                else str(exc)
            )
            return JSONResponse(status_code=403, content={"error": exc.code, "message": message})
        return await call_next(request)

    @staticmethod
    def get_role_permissions(role: str) -> frozenset[str]:
        return _ROLE_PERMISSIONS.get(role, frozenset())
