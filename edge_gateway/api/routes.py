import asyncio
import contextlib
import json
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from edge_gateway.core.errors import SECURITY_HEADERS, error_response, request_id_from_request
from edge_gateway.gateway import Gateway
from edge_gateway.metrics import metrics_router
from edge_gateway.normalizer import ResponseEnvelope

router = APIRouter()
router.include_router(metrics_router)

DISCONNECT_POLL_S = 0.5


class InvalidJSONBody(ValueError):
    pass


def _gateway(request: Request) -> Gateway:
    return request.app.state.gateway


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        raise InvalidJSONBody("empty body")
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidJSONBody(str(exc)) from exc


def _invalid_json(request: Request) -> JSONResponse:
    return error_response(400, "validation", "Invalid JSON body", request_id_from_request(request))


def _to_response(request: Request, envelope: ResponseEnvelope) -> JSONResponse:
    response = JSONResponse(status_code=envelope.http_status, content=envelope.body)
    response.headers.update(SECURITY_HEADERS)
    response.headers.update(envelope.headers)
    response.headers["x-request-id"] = request_id_from_request(request)
    return response


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


async def _run_cancellable(
    request: Request,
    handler: Callable[[asyncio.Event], Awaitable[ResponseEnvelope]],
) -> JSONResponse:
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        envelope = await handler(cancel_event)
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
    return _to_response(request, envelope)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request) -> dict[str, object]:
    dependencies = _gateway(request).readiness()
    status = "ready" if all(value == "ok" for value in dependencies.values()) else "degraded"
    return {"status": status, "dependencies": dependencies}


async def _chat(request: Request, route_name: str) -> JSONResponse:
    try:
        body = await _json_body(request)
    except InvalidJSONBody:
        return _invalid_json(request)
    gateway = _gateway(request)
    return await _run_cancellable(
        request, lambda cancel: gateway.handle_chat(route_name, body, cancel)
    )


@router.post("/api/ollama")
async def ollama_chat(request: Request) -> JSONResponse:
    return await _chat(request, "ollama")


@router.post("/api/claude")
async def claude_chat(request: Request) -> JSONResponse:
    return await _chat(request, "claude")


@router.post("/api/nphies/{service}")
async def nphies_exchange(request: Request, service: str) -> JSONResponse:
    try:
        body = await _json_body(request)
    except InvalidJSONBody:
        return _invalid_json(request)
    if not isinstance(body, dict):
        return error_response(
            400, "validation", "Invalid request body", request_id_from_request(request)
        )
    gateway = _gateway(request)
    return await _run_cancellable(
        request, lambda cancel: gateway.handle_exchange(service, body, cancel)
    )


@router.api_route("/api/brainsait/{action}", methods=["GET", "POST"])
async def brainsait_action(request: Request, action: str) -> JSONResponse:
    body: Any
    if request.method == "POST":
        try:
            body = await _json_body(request)
        except InvalidJSONBody:
            return _invalid_json(request)
        if not isinstance(body, dict):
            return error_response(
                400, "validation", "Invalid request body", request_id_from_request(request)
            )
    else:
        body = dict(request.query_params)
    gateway = _gateway(request)
    return await _run_cancellable(
        request, lambda cancel: gateway.handle_documents(action, body, cancel)
    )
