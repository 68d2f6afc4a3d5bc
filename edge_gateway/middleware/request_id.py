import logging
from time import perf_counter
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("edge.access")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Echoes or mints ``x-request-id`` and writes one access log line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        started = perf_counter()
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "route": request.url.path,
                "trace_id": response.headers.get("x-trace-id"),
                "status_code": response.status_code,
                "latency_ms": int((perf_counter() - started) * 1000),
            },
        )
        return response
