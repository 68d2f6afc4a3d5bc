import logging
import math
from dataclasses import dataclass

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from edge_gateway.core.errors import error_response, request_id_from_request
from edge_gateway.metrics import record_rate_limited
from edge_gateway.ratelimit.limiter import SlidingWindowRateLimiter

logger = logging.getLogger("edge.ratelimit")

BYPASS_PATHS = {
    "/healthz",
    "/readyz",
    "/metrics",
    "/openapi.json",
    "/docs",
    "/docs/oauth2-redirect",
}
CHAT_PATHS = {"/api/ollama", "/api/claude"}
API_PREFIXES = ("/api/nphies/", "/api/brainsait/")


@dataclass(frozen=True)
class RateLimitScopes:
    chat: SlidingWindowRateLimiter
    api: SlidingWindowRateLimiter

    def for_path(self, path: str) -> tuple[str, SlidingWindowRateLimiter] | None:
        normalized = path.rstrip("/") or "/"
        if normalized in CHAT_PATHS:
            return "chat", self.chat
        if normalized.startswith(API_PREFIXES):
            return "api", self.api
        return None


def client_identifier(request: Request, trusted_header: str | None = None) -> str:
    # only a header set by a fronting proxy may stand in for the peer address
    if trusted_header:
        value = request.headers.get(trusted_header, "").strip()
        if value:
            return value
    if request.client is not None and request.client.host:
        return request.client.host
    return "anonymous"


def _limit_headers(limiter: SlidingWindowRateLimiter, identifier: str) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.ceiling),
        "X-RateLimit-Remaining": str(limiter.remaining(identifier)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        scopes: RateLimitScopes,
        trusted_identifier_header: str | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(app)
        self._scopes = scopes
        self._trusted_identifier_header = trusted_identifier_header
        self._enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._enabled or request.url.path in BYPASS_PATHS:
            return await call_next(request)

        scoped = self._scopes.for_path(request.url.path)
        if scoped is None:
            return await call_next(request)

        scope, limiter = scoped
        identifier = client_identifier(request, self._trusted_identifier_header)
        if not limiter.admit(identifier):
            request_id = request_id_from_request(request)
            retry_after = limiter.reset_time(identifier) - limiter.now()
            logger.warning(
                "rate_limited",
                extra={
                    "request_id": request_id,
                    "route": request.url.path,
                    "identifier": identifier,
                },
            )
            record_rate_limited(scope)
            response = error_response(
                429, "rate_limited", "Too many requests", request_id
            )
            response.headers["Retry-After"] = str(max(1, math.ceil(retry_after)))
            response.headers.update(_limit_headers(limiter, identifier))
            return response

        response = await call_next(request)
        response.headers.update(_limit_headers(limiter, identifier))
        return response
