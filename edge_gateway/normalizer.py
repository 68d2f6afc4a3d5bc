"""Uniform response envelopes for every route."""

import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from edge_gateway.core.errors import SECURITY_HEADERS, ErrorKind, GatewayError


@dataclass
class ResponseEnvelope:
    body: Any
    trace_id: str | None
    http_status: int
    headers: dict[str, str] = field(default_factory=dict)


class ResponseNormalizer:
    """Maps upstream responses and gateway errors onto ``ResponseEnvelope``.

    ``label`` names the upstream in parse and fallback messages, for example
    ``"Ollama"`` or ``"NPHIES"``.
    """

    def __init__(self, label: str, include_upstream_details: bool = False):
        self._label = label
        self._include_upstream_details = include_upstream_details

    @property
    def label(self) -> str:
        return self._label

    def parse_body(self, text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            return {
                "message": f"Failed to parse {self._label} response",
                "raw": text,
                "error": str(exc),
            }

    def error_message(self, data: Any) -> str:
        """Most specific error text in a provider error body, in fixed priority order."""
        fallback = f"Upstream {self._label} request failed"
        if not isinstance(data, dict):
            return fallback
        error = data.get("error")
        if isinstance(error, dict):
            nested = error.get("message")
            if isinstance(nested, str) and nested:
                return nested
        if isinstance(error, str) and error:
            return error
        for key in ("message", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        return fallback

    def raise_for_status(self, response: httpx.Response) -> Any:
        """Parse ``response`` and raise a classified error for non-2xx statuses."""
        data = self.parse_body(response.text)
        status = response.status_code
        if 200 <= status < 300:
            return data
        kind = (
            ErrorKind.UPSTREAM_SERVER
            if status == 429 or status >= 500
            else ErrorKind.UPSTREAM_CLIENT
        )
        raise GatewayError(kind, self.error_message(data), status_code=status, upstream_body=data)

    def success(self, data: Any, trace_id: str, status: int = 200) -> ResponseEnvelope:
        if isinstance(data, dict):
            body = {**data, "traceId": trace_id}
        else:
            body = {"data": data, "traceId": trace_id}
        return ResponseEnvelope(
            body=body,
            trace_id=trace_id,
            http_status=status,
            headers={**SECURITY_HEADERS, "x-trace-id": trace_id},
        )

    def failure(self, error: GatewayError, trace_id: str | None = None) -> ResponseEnvelope:
        body: dict[str, Any] = {"message": error.message, "error": error.kind.value}
        if trace_id:
            body["traceId"] = trace_id
        if self._include_upstream_details and error.upstream_body is not None:
            body["details"] = error.upstream_body
        headers = dict(SECURITY_HEADERS)
        if trace_id:
            headers["x-trace-id"] = trace_id
        return ResponseEnvelope(
            body=body,
            trace_id=trace_id,
            http_status=error.status_code,
            headers=headers,
        )
