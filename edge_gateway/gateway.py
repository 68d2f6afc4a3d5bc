"""Composition root wiring validation, signing, execution and normalization per route.

Chat:      RequestValidator -> ResilientExecutor(provider) -> ResponseNormalizer
Exchange:  FHIRPayloadBuilder -> PayloadSigner -> ResilientExecutor(NPHIES) -> ResponseNormalizer
Documents: DocumentStoreActions -> ResilientExecutor(store) -> ResponseNormalizer

Every ``handle_*`` coroutine returns a ``ResponseEnvelope``; classified
failures are normalized here and never escape as exceptions.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Protocol
from uuid import uuid4

from edge_gateway.chat.validator import RequestValidator
from edge_gateway.core.errors import GatewayError, configuration_error
from edge_gateway.documents.actions import DocumentStoreActions
from edge_gateway.executor.resilient import ResilientExecutor, RetryState
from edge_gateway.fhir.builder import FHIRPayloadBuilder, service_path
from edge_gateway.metrics import record_request
from edge_gateway.models.chat import ValidatedRequest
from edge_gateway.normalizer import ResponseEnvelope, ResponseNormalizer
from edge_gateway.signing.signer import PayloadSigner
from edge_gateway.upstream.base import UpstreamReply
from edge_gateway.upstream.nphies import NphiesClient

logger = logging.getLogger("edge.gateway")

# metric label for path segments that name no known service or action
UNKNOWN_LABEL = "unknown"


class ChatClient(Protocol):
    async def chat(self, request: ValidatedRequest) -> UpstreamReply:
        """Send one attempt of a validated conversation upstream."""


@dataclass
class ChatRoute:
    name: str
    label: str
    validator: RequestValidator
    client: ChatClient | None
    normalizer: ResponseNormalizer


@dataclass
class ExchangeRoute:
    builder: FHIRPayloadBuilder
    signer: PayloadSigner
    client: NphiesClient | None
    normalizer: ResponseNormalizer


@dataclass
class DocumentRoute:
    actions: DocumentStoreActions | None
    normalizer: ResponseNormalizer


def serialize_document(document: dict[str, Any]) -> bytes:
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class Gateway:
    def __init__(
        self,
        executor: ResilientExecutor,
        chat_routes: dict[str, ChatRoute],
        exchange: ExchangeRoute,
        documents: DocumentRoute,
        metrics_enabled: bool = True,
    ):
        self._executor = executor
        self._chat_routes = chat_routes
        self._exchange = exchange
        self._documents = documents
        self._metrics_enabled = metrics_enabled

    @property
    def executor(self) -> ResilientExecutor:
        return self._executor

    @property
    def exchange(self) -> ExchangeRoute:
        return self._exchange

    def chat_route(self, name: str) -> ChatRoute:
        return self._chat_routes[name]

    def readiness(self) -> dict[str, str]:
        status = {
            name: "ok" if route.client is not None else "unconfigured"
            for name, route in self._chat_routes.items()
        }
        status["nphies"] = "ok" if self._exchange.client is not None else "unconfigured"
        status["documents"] = "ok" if self._documents.actions is not None else "unconfigured"
        return status

    async def handle_chat(
        self,
        route_name: str,
        body: object,
        cancel_event: asyncio.Event | None = None,
    ) -> ResponseEnvelope:
        route = self._chat_routes[route_name]
        started = perf_counter()
        trace_id: str | None = None
        state = RetryState()
        try:
            if route.client is None:
                raise configuration_error(f"Missing {route.label} API key")
            client = route.client
            request = route.validator.validate(body)
            trace_id = request.trace_id
            result = await self._executor.run(
                lambda: client.chat(request),
                cancel_event=cancel_event,
                trace_id=trace_id,
                state=state,
            )
        except GatewayError as exc:
            envelope = route.normalizer.failure(exc, trace_id)
            self._finish(route_name, route.label, envelope, started, state, error=exc)
            return envelope

        reply = result.value
        envelope = route.normalizer.success(reply.data, request.trace_id, reply.status_code)
        logger.info(
            "chat_completed",
            extra={
                "trace_id": request.trace_id,
                "route": route_name,
                "model": request.model,
                "message_count": len(request.messages),
            },
        )
        self._finish(route_name, route.label, envelope, started, state)
        return envelope

    async def handle_exchange(
        self,
        service: str,
        fields: dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> ResponseEnvelope:
        exchange = self._exchange
        started = perf_counter()
        trace_id = str(uuid4())
        state = RetryState()
        label = service if exchange.builder.is_known(service) else UNKNOWN_LABEL
        try:
            if exchange.client is None:
                raise configuration_error("Missing NPHIES API base URL")
            client = exchange.client
            document = exchange.builder.build(service, fields)
            signed = exchange.signer.sign(serialize_document(document))
            path = service_path(service)
            result = await self._executor.run(
                lambda: client.submit(path, signed),
                cancel_event=cancel_event,
                trace_id=trace_id,
                state=state,
            )
        except GatewayError as exc:
            envelope = exchange.normalizer.failure(exc, trace_id)
            self._finish("nphies", label, envelope, started, state, error=exc)
            return envelope

        reply = result.value
        envelope = exchange.normalizer.success(reply.data, trace_id, reply.status_code)
        logger.info(
            "exchange_completed",
            extra={"trace_id": trace_id, "service": service, "route": "nphies"},
        )
        self._finish("nphies", label, envelope, started, state)
        return envelope

    async def handle_documents(
        self,
        action: str,
        body: dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> ResponseEnvelope:
        documents = self._documents
        started = perf_counter()
        trace_id = str(uuid4())
        state = RetryState()
        label = (
            action
            if documents.actions is not None and documents.actions.is_known(action)
            else UNKNOWN_LABEL
        )
        try:
            if documents.actions is None:
                raise configuration_error("MongoDB API key not configured")
            data = await documents.actions.dispatch(action, body, trace_id, cancel_event)
        except GatewayError as exc:
            envelope = documents.normalizer.failure(exc, trace_id)
            self._finish("brainsait", label, envelope, started, state, error=exc)
            return envelope

        envelope = documents.normalizer.success(data, trace_id)
        self._finish("brainsait", label, envelope, started, state)
        return envelope

    def _finish(
        self,
        route: str,
        upstream: str,
        envelope: ResponseEnvelope,
        started: float,
        state: RetryState,
        error: GatewayError | None = None,
    ) -> None:
        latency_ms = int((perf_counter() - started) * 1000)
        if error is not None:
            logger.warning(
                "request_failed",
                extra={
                    "trace_id": envelope.trace_id,
                    "route": route,
                    "error_kind": error.kind.value,
                    "status_code": envelope.http_status,
                    "attempt": state.attempt,
                    "latency_ms": latency_ms,
                },
            )
        if self._metrics_enabled:
            record_request(
                route=route,
                upstream=upstream,
                status_code=envelope.http_status,
                latency_s=latency_ms / 1000.0,
                attempts=state.attempt,
                error_kind=error.kind.value if error is not None else None,
            )
