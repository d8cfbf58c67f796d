"""
Pure ASGI Tenant Scope Middleware

Opens the tenant scope for every HTTP request from the principal the
authentication layer stored in ``scope["state"]["principal"]`` and closes
it when the downstream app returns or raises. Bypass paths (login,
registration, health) run with no scope at all.

The request id for log correlation is taken from X-Request-ID or
generated, and is cleared together with the scope.
"""

import logging
from typing import Callable, Iterable, Optional

from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.config import settings
from ..core.exceptions import ForbiddenException, UnauthorizedException
from ..core.request_context import reset_request_id, set_request_id
from ..core.tenant_scope import TenantScope, use_scope
from ..core.ulid_helper import generate_ulid
from ..database import SessionLocal
from ..principal import GymPrincipal
from ..services.scope_resolver import ScopeResolver

logger = logging.getLogger(__name__)

GYM_OVERRIDE_HEADER = "x-gym-id"
REQUEST_ID_HEADER = "x-request-id"

ScopeResolverFn = Callable[[GymPrincipal, Optional[str]], TenantScope]


def resolve_with_session(principal: GymPrincipal, gym_override: Optional[str]) -> TenantScope:
    """Default resolver: one short-lived session per request."""
    db = SessionLocal()
    try:
        return ScopeResolver(db).resolve(principal, gym_override)
    finally:
        db.close()


class TenantScopeMiddlewareASGI:
    """
    Pure ASGI middleware establishing the TenantScope per request.
    """

    def __init__(
        self,
        app: ASGIApp,
        resolver: Optional[ScopeResolverFn] = None,
        bypass_paths: Optional[Iterable[str]] = None,
    ) -> None:
        self.app = app
        self.resolver = resolver or resolve_with_session
        paths = settings.tenant_bypass_paths if bypass_paths is None else bypass_paths
        self.bypass_paths = frozenset(p.rstrip("/") or "/" for p in paths)

    def _is_bypass(self, path: str) -> bool:
        return (path.rstrip("/") or "/") in self.bypass_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI application entrypoint."""

        # Only handle HTTP requests
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(REQUEST_ID_HEADER) or generate_ulid()
        token = set_request_id(request_id)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)["X-Request-ID"] = request_id
            await send(message)

        try:
            path = scope.get("path", "")
            if self._is_bypass(path):
                await self.app(scope, receive, send_wrapper)
                return

            principal = (scope.get("state") or {}).get("principal")
            if not isinstance(principal, GymPrincipal):
                logger.warning(f"Rejected unauthenticated request to scoped path {path}")
                response = JSONResponse(
                    status_code=403,
                    content={
                        "detail": {
                            "message": "Authentication required",
                            "code": "NO_PRINCIPAL",
                            "details": {},
                        }
                    },
                )
                await response(scope, receive, send_wrapper)
                return

            try:
                tenant = await run_in_threadpool(
                    self.resolver, principal, headers.get(GYM_OVERRIDE_HEADER)
                )
            except (UnauthorizedException, ForbiddenException) as exc:
                http_exc = exc.to_http_exception()
                response = JSONResponse(
                    status_code=http_exc.status_code, content={"detail": http_exc.detail}
                )
                await response(scope, receive, send_wrapper)
                return

            with use_scope(tenant):
                await self.app(scope, receive, send_wrapper)
        finally:
            reset_request_id(token)
