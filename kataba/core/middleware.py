import time

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from kataba.services.identity import IdentityTokenService

logger = structlog.get_logger()


class AuthMiddleware(BaseHTTPMiddleware):
    """Resolves the Bearer token (if any) into request.state.user.

    Never rejects a request: guests are allowed to chat, and routes that
    need a signed-in user depend on ``require_user`` instead.
    """

    def __init__(self, app, token_service: IdentityTokenService | None = None):
        super().__init__(app)
        self._token_service = token_service

    @property
    def token_service(self) -> IdentityTokenService:
        if self._token_service is None:
            self._token_service = IdentityTokenService()
        return self._token_service

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.user = None

        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
            user = self.token_service.principal_from_token(token)
            if user is None:
                logger.info("identity_token_rejected", path=request.url.path)
            request.state.user = user

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request as structured JSON."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = round((time.perf_counter() - start) * 1000, 1)

        user = getattr(request.state, "user", None)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=latency_ms,
            principal="user" if user is not None else "guest",
        )
        return response
