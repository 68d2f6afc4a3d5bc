from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from edge_gateway.chat.guardrails import GuardrailComposer, GuardrailProfile
from edge_gateway.chat.messages import sanitize_messages
from edge_gateway.chat.options import OptionBounds, clamp_options
from edge_gateway.core.errors import validation_error
from edge_gateway.models.chat import GuardrailContext, ValidatedRequest


@dataclass(frozen=True)
class ChatRouteProfile:
    """Per-provider limits applied to inbound chat requests."""

    name: str
    default_model: str
    max_messages: int
    bounds: OptionBounds
    guardrail: GuardrailProfile


class RequestValidator:
    """Turns an untrusted decoded body into a ``ValidatedRequest``.

    Nothing downstream re-validates the result.
    """

    def __init__(
        self,
        profile: ChatRouteProfile,
        trace_id_factory: Callable[[], str] | None = None,
    ):
        self._profile = profile
        self._composer = GuardrailComposer(profile.guardrail)
        self._trace_id_factory = trace_id_factory or (lambda: str(uuid4()))

    @property
    def profile(self) -> ChatRouteProfile:
        return self._profile

    def validate(self, body: object) -> ValidatedRequest:
        if not isinstance(body, dict):
            raise validation_error("Invalid request body", status_code=400)

        messages = sanitize_messages(body.get("messages"), self._profile.max_messages)
        if not messages:
            raise validation_error("At least one chat message is required", status_code=422)

        metadata = self._sanitize_metadata(body.get("metadata"))
        options = clamp_options(body.get("options"), self._profile.bounds)
        guarded = self._composer.inject(
            messages,
            GuardrailContext.from_metadata(metadata),
            self._profile.max_messages,
        )

        return ValidatedRequest(
            model=self._resolve_model(body.get("model")),
            messages=tuple(guarded),
            metadata=metadata,
            stream=bool(body.get("stream")),
            options=options,
            trace_id=self._trace_id_factory(),
        )

    def _resolve_model(self, requested: object) -> str:
        if isinstance(requested, str) and requested.strip():
            return requested.strip()
        return self._profile.default_model

    @staticmethod
    def _sanitize_metadata(metadata: object) -> dict[str, Any] | None:
        if not isinstance(metadata, dict):
            return None
        return {str(key): value for key, value in metadata.items()}
