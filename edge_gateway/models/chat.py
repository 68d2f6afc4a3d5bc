from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ChatRole = Literal["system", "user", "assistant"]
CHAT_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: ChatRole
    content: str = Field(min_length=1)


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float
    top_p: float
    max_tokens: int | None = None


class GuardrailContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    locale: str | None = None
    intent: str | None = None
    schema_hint: str | None = None
    context: dict[str, Any] | None = None

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any] | None) -> "GuardrailContext":
        if not metadata:
            return cls()
        context = metadata.get("context")
        return cls(
            locale=_optional_text(metadata.get("locale")),
            intent=_optional_text(metadata.get("intent")),
            schema_hint=_optional_text(metadata.get("schemaHint")),
            context=context if isinstance(context, dict) and context else None,
        )


class ValidatedRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    messages: tuple[ChatMessage, ...]
    metadata: dict[str, Any] | None = None
    stream: bool = False
    options: GenerationOptions
    trace_id: str

    def message_dicts(self) -> list[dict[str, str]]:
        return [message.model_dump() for message in self.messages]


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
