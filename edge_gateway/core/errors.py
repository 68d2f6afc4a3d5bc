import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class ErrorKind(Enum):
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UPSTREAM_SERVER = "upstream_server"
    UPSTREAM_CLIENT = "upstream_client"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.UPSTREAM_SERVER}
)

_DEFAULT_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.NETWORK: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.UPSTREAM_SERVER: 502,
    ErrorKind.UPSTREAM_CLIENT: 400,
    ErrorKind.CANCELLED: 499,
}


class GatewayError(Exception):
    """Classified gateway failure.

    The kind is fixed at construction and decides both retry eligibility and
    the HTTP status surfaced to the client. ``upstream_body`` keeps the parsed
    upstream error payload (if any) so the envelope can expose it.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        upstream_body: Any = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code if status_code is not None else _DEFAULT_STATUS[kind]
        self.upstream_body = upstream_body

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, status_code={self.status_code})"


def validation_error(message: str, status_code: int = 422) -> GatewayError:
    return GatewayError(ErrorKind.VALIDATION, message, status_code)


def configuration_error(message: str) -> GatewayError:
    return GatewayError(ErrorKind.CONFIGURATION, message, 500)


def classify_exception(exc: BaseException) -> GatewayError | None:
    """Map transport-level exceptions onto the error taxonomy.

    Returns ``None`` for exceptions the gateway does not recognise; callers
    let those propagate.
    """
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return GatewayError(ErrorKind.TIMEOUT, "Upstream request timed out")
    if isinstance(exc, httpx.TransportError):
        return GatewayError(
            ErrorKind.NETWORK, f"Cannot connect to upstream: {type(exc).__name__}"
        )
    return None


@dataclass
class ErrorEnvelope:
    message: str
    kind: str
    request_id: str
    trace_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": self.message,
            "error": self.kind,
            "requestId": self.request_id,
        }
        if self.trace_id:
            payload["traceId"] = self.trace_id
        return payload


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def error_response(
    status_code: int,
    kind: str,
    message: str,
    request_id: str,
    trace_id: str | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(
        message=message, kind=kind, request_id=request_id, trace_id=trace_id
    )
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers.update(SECURITY_HEADERS)
    response.headers["x-request-id"] = request_id
    return response
