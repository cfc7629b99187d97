from typing import List, Optional
from fastapi import Request, WebSocket
from starlette.middleware.base import BaseHTTPMiddleware
from app.core.identity import IdentityGate, Principal
from app.exceptions.errors import ApplicationException, Unauthenticated
from app.core.logger import get_logger

logger = get_logger("identity_gate_middleware")

whitelisted_routes = [
    "/docs", "/openapi.json", "/redoc", "/favicon.ico",
    "/health", "/api/v1/health",
    # Authenticated by X-Cleanup-Secret instead of a session
    "/api/v1/chatbot/cleanup",
]


class IdentityGateMiddleware(BaseHTTPMiddleware):
    """Resolves the caller's Principal once per request and stores it on request.state."""

    def __init__(self, app, whitelisted_routes: List[str] = None):
        super().__init__(app)
        self.whitelisted_routes = whitelisted_routes or []

    def _is_whitelisted(self, path: str) -> bool:
        """Check if the route is whitelisted (public)"""
        if path == "/":
            return True
        for route in self.whitelisted_routes:
            if path.startswith(route):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        if self._is_whitelisted(request.url.path):
            logger.debug(f"Whitelisted route: {request.url.path}")
            return await call_next(request)

        # Skip authentication for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        gate: IdentityGate = request.app.state.identity_gate
        try:
            principal = await gate.principal_from_header(request.headers.get("Authorization"))
        except ApplicationException as e:
            logger.warning(f"{e.code} for {request.method} {request.url.path}: {e.message}")
            return e.to_response()

        request.state.principal = principal
        logger.debug(f"Authenticated {principal.id} ({principal.role.value}) for {request.url.path}")
        return await call_next(request)


def get_principal(request: Request) -> Principal:
    """FastAPI dependency returning the Principal resolved by the middleware."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated()
    return principal


async def principal_for_websocket(websocket: WebSocket) -> Principal:
    """
    Websockets bypass HTTP middleware, so the stream authenticates here.
    Browsers cannot set headers on a websocket, hence the `token` query parameter.
    """
    gate: IdentityGate = websocket.app.state.identity_gate
    token: Optional[str] = websocket.query_params.get("token")
    if token:
        return await gate.principal_from_token(token)
    return await gate.principal_from_header(websocket.headers.get("Authorization"))
