"""FastAPI application factory.

- Chat API:   /api/v1/chat/*        (JWT, owner-or-admin checks in handlers)
- Admin API:  /api/v1/chat/admin/*  (RBAC-protected)
- WebSocket:  /ws/chat              (JWT checked during the handshake)
- healthz, metrics, docs: exempt from auth

Domain errors are rendered with the uniform ``{"error", "message"}`` body.
"""

from __future__ import annotations

import functools
import os
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.routing import Match

from src.gateway.middleware.auth import JWTAuthMiddleware, TokenPayload
from src.shared.errors import (
    AuthenticationError,
    AuthorizationError,
    BackCoffeeError,
    ConflictError,
    NotFoundError,
    PortUnavailableError,
    ValidationError,
)

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

_EXEMPT_PATHS = frozenset(
    {
        "/healthz",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
    }
)

_STATUS_BY_ERROR: tuple[tuple[type[BackCoffeeError], int], ...] = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 422),
    (PortUnavailableError, 503),
)

# Type alias for post-auth middleware callables
PostAuthMiddleware = Callable[
    [Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]
]


def current_user(request: Request) -> TokenPayload:
    """FastAPI dependency: the identity the JWT middleware attached."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise AuthenticationError("Missing or malformed Authorization header")
    return TokenPayload(user_id=user_id, role=request.state.role)


def _error_response(exc: BackCoffeeError, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": str(exc)},
    )


def _chain(middlewares: list[PostAuthMiddleware], endpoint: Any) -> Any:
    """Wrap ``endpoint`` so the first middleware runs outermost."""
    handler = endpoint
    for mw in reversed(middlewares):
        handler = functools.partial(_call_middleware, mw, handler)
    return handler


async def _call_middleware(mw: PostAuthMiddleware, call_next: Any, request: Request) -> Response:
    return await mw(request, call_next)


def create_app(
    *,
    jwt_secret: str | None = None,
    cors_origins: list[str] | None = None,
    post_auth_middlewares: list[PostAuthMiddleware] | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        jwt_secret: JWT signing secret. Falls back to JWT_SECRET_KEY env var.
        cors_origins: Allowed CORS origins. Falls back to CORS_ORIGINS env var.
        post_auth_middlewares: Middleware callables that run after JWT auth.
            Each has signature (request, call_next) -> Response.
        lifespan: Async context manager factory for startup/shutdown lifecycle.
    """
    secret = jwt_secret or os.environ.get("JWT_SECRET_KEY", "")
    if not secret:
        msg = "JWT_SECRET_KEY must be provided via argument or environment variable"
        raise ValueError(msg)

    origins = cors_origins or [
        o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
    ]
    _post_auth = post_auth_middlewares or []

    app = FastAPI(
        title="Back Coffee Chat API",
        description="Real-time sales and support chat for the Back Coffee shop",
        version="0.1.0",
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.jwt_secret = secret
    authenticator = JWTAuthMiddleware(secret=secret, exempt_paths=list(_EXEMPT_PATHS))
    app.state.jwt_middleware = authenticator

    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # -- Error handlers --

    @app.exception_handler(BackCoffeeError)
    async def _domain_error(_: Request, exc: BackCoffeeError) -> JSONResponse:
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return _error_response(exc, status_code)
        return _error_response(exc, 500)

    # Uniform {error, message} schema for Starlette's own HTTP errors.
    @app.exception_handler(StarletteHTTPException)
    async def _http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        code_map = {
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
        }
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": code_map.get(exc.status_code, "HTTP_ERROR"),
                "message": exc.detail or f"HTTP {exc.status_code}",
            },
        )

    # -- Auth middleware (HTTP only; the WebSocket route authenticates itself) --

    @app.middleware("http")
    async def jwt_auth_middleware(request: Request, call_next: Any) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)
        # Unknown paths should return 404, not 401.
        if not any(route.matches(request.scope)[0] != Match.NONE for route in app.routes):
            return await call_next(request)

        scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
        token = credentials.strip() if scheme.lower() == "bearer" else None
        try:
            payload = authenticator.authenticate(token=token, path=request.url.path)
        except AuthenticationError as exc:
            return _error_response(exc, 401)
        if payload is None:
            return await call_next(request)

        request.state.user_id = payload.user_id
        request.state.role = payload.role
        return await _chain(_post_auth, call_next)(request)

    # -- Exempt routes --

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", tags=["system"], include_in_schema=False)
    async def metrics() -> Response:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/api/v1/me", tags=["user"])
    async def get_me(request: Request) -> dict[str, Any]:
        """Return current authenticated user info."""
        return {
            "user_id": request.state.user_id,
            "role": request.state.role,
            "is_admin": request.state.role == "admin",
        }

    return app
