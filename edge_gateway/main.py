from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from edge_gateway.api.routes import router
from edge_gateway.chat.guardrails import ASSISTANT_PROFILE, COPILOT_PROFILE
from edge_gateway.chat.options import CLAUDE_BOUNDS, OLLAMA_BOUNDS
from edge_gateway.chat.validator import ChatRouteProfile, RequestValidator
from edge_gateway.config.settings import Settings, get_settings
from edge_gateway.core.errors import error_response, request_id_from_request
from edge_gateway.core.logging import configure_logging
from edge_gateway.documents.actions import DocumentStoreActions
from edge_gateway.executor.resilient import ResilientExecutor
from edge_gateway.fhir.builder import FHIRPayloadBuilder
from edge_gateway.gateway import ChatRoute, DocumentRoute, ExchangeRoute, Gateway
from edge_gateway.middleware.rate_limit import RateLimitMiddleware, RateLimitScopes
from edge_gateway.middleware.request_id import RequestIDMiddleware
from edge_gateway.normalizer import ResponseNormalizer
from edge_gateway.ratelimit.limiter import SlidingWindowRateLimiter
from edge_gateway.signing.signer import PayloadSigner
from edge_gateway.upstream.anthropic import AnthropicClient
from edge_gateway.upstream.document_store import DocumentStoreClient
from edge_gateway.upstream.nphies import NphiesClient
from edge_gateway.upstream.ollama import OllamaClient

OLLAMA_MAX_MESSAGES = 16
CLAUDE_MAX_MESSAGES = 20


def _build_executor(settings: Settings) -> ResilientExecutor:
    return ResilientExecutor(
        max_attempts=settings.retry_attempts_normalized,
        base_delay_s=settings.retry_base_delay_s,
        backoff=settings.retry_backoff,
        max_delay_s=settings.retry_max_delay_s,
        timeout_s=settings.upstream_timeout_s,
    )


def _build_chat_routes(settings: Settings) -> dict[str, ChatRoute]:
    ollama_normalizer = ResponseNormalizer("Ollama")
    claude_normalizer = ResponseNormalizer("Claude")

    ollama_client = None
    if settings.ollama_api_key:
        ollama_client = OllamaClient(
            api_key=settings.ollama_api_key,
            base_url=settings.ollama_api_base,
            timeout_s=settings.upstream_timeout_s,
            normalizer=ollama_normalizer,
        )
    claude_client = None
    if settings.anthropic_api_key:
        claude_client = AnthropicClient(
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_api_base,
            anthropic_version=settings.anthropic_version,
            timeout_s=settings.upstream_timeout_s,
            normalizer=claude_normalizer,
        )

    ollama_profile = ChatRouteProfile(
        name="ollama",
        default_model=settings.ollama_model,
        max_messages=OLLAMA_MAX_MESSAGES,
        bounds=OLLAMA_BOUNDS,
        guardrail=COPILOT_PROFILE,
    )
    claude_profile = ChatRouteProfile(
        name="claude",
        default_model=settings.claude_model,
        max_messages=CLAUDE_MAX_MESSAGES,
        bounds=CLAUDE_BOUNDS,
        guardrail=ASSISTANT_PROFILE,
    )
    return {
        "ollama": ChatRoute(
            name="ollama",
            label="Ollama",
            validator=RequestValidator(ollama_profile),
            client=ollama_client,
            normalizer=ollama_normalizer,
        ),
        "claude": ChatRoute(
            name="claude",
            label="Anthropic",
            validator=RequestValidator(claude_profile),
            client=claude_client,
            normalizer=claude_normalizer,
        ),
    }


def _build_exchange(settings: Settings) -> ExchangeRoute:
    normalizer = ResponseNormalizer("NPHIES", include_upstream_details=True)
    client = None
    if settings.nphies_api_base:
        client = NphiesClient(
            base_url=settings.nphies_api_base,
            timeout_s=settings.upstream_timeout_s,
            cert=settings.nphies_mtls_cert,
            normalizer=normalizer,
        )
    return ExchangeRoute(
        builder=FHIRPayloadBuilder(),
        signer=PayloadSigner(lambda: settings.nphies_client_key),
        client=client,
        normalizer=normalizer,
    )


def _build_documents(settings: Settings, executor: ResilientExecutor) -> DocumentRoute:
    normalizer = ResponseNormalizer("document store")
    actions = None
    if settings.mongodb_api_key:
        store = DocumentStoreClient(
            api_key=settings.mongodb_api_key,
            base_url=settings.mongodb_api_url,
            database=settings.mongodb_database,
            data_source=settings.mongodb_data_source,
            timeout_s=settings.upstream_timeout_s,
            normalizer=normalizer,
        )
        actions = DocumentStoreActions(store, executor)
    return DocumentRoute(actions=actions, normalizer=normalizer)


def build_gateway(settings: Settings, executor: ResilientExecutor | None = None) -> Gateway:
    executor = executor or _build_executor(settings)
    return Gateway(
        executor=executor,
        chat_routes=_build_chat_routes(settings),
        exchange=_build_exchange(settings),
        documents=_build_documents(settings, executor),
        metrics_enabled=settings.metrics_enabled,
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="NPHIES Edge Gateway", version="0.1.0")

    scopes = RateLimitScopes(
        chat=SlidingWindowRateLimiter(
            ceiling=settings.chat_rate_limit,
            window_seconds=settings.rate_limit_window_seconds,
        ),
        api=SlidingWindowRateLimiter(
            ceiling=settings.api_rate_limit,
            window_seconds=settings.rate_limit_window_seconds,
        ),
    )
    app.add_middleware(
        RateLimitMiddleware,
        scopes=scopes,
        trusted_identifier_header=settings.rate_limit_trusted_identifier_header,
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(RequestIDMiddleware)

    app.state.gateway = build_gateway(settings)
    app.state.rate_limits = scopes

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return error_response(422, "validation", str(exc), request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, _: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        return error_response(500, "internal", "Internal server error", request_id)

    app.include_router(router)
    return app


app = create_app()
