import pytest

from edge_gateway.chat.guardrails import COPILOT_PROFILE
from edge_gateway.chat.options import OLLAMA_BOUNDS
from edge_gateway.chat.validator import ChatRouteProfile, RequestValidator
from edge_gateway.core.errors import ErrorKind, GatewayError

PROFILE = ChatRouteProfile(
    name="ollama",
    default_model="llama3.1-8b-instruct",
    max_messages=16,
    bounds=OLLAMA_BOUNDS,
    guardrail=COPILOT_PROFILE,
)


def _validator() -> RequestValidator:
    return RequestValidator(PROFILE, trace_id_factory=lambda: "trace-1")


def test_validate_builds_request() -> None:
    request = _validator().validate(
        {
            "model": "  llama3.1-70b  ",
            "messages": [{"role": "user", "content": "eligibility for P-1"}],
            "metadata": {"locale": "ar", "intent": "eligibility"},
            "stream": 1,
            "options": {"temperature": 9},
        }
    )
    assert request.model == "llama3.1-70b"
    assert request.trace_id == "trace-1"
    assert request.stream is True
    assert request.options.temperature == 1.5
    assert request.messages[0].role == "system"
    assert "Primary intent: eligibility." in request.messages[0].content
    assert request.messages[-1].content == "eligibility for P-1"


def test_validate_uses_default_model() -> None:
    request = _validator().validate({"messages": [{"role": "user", "content": "hi"}]})
    assert request.model == "llama3.1-8b-instruct"
    assert request.metadata is None


def test_empty_conversation_is_rejected() -> None:
    with pytest.raises(GatewayError) as excinfo:
        _validator().validate({"messages": []})
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert excinfo.value.status_code == 422
    assert excinfo.value.message == "At least one chat message is required"


def test_non_object_body_is_rejected() -> None:
    with pytest.raises(GatewayError) as excinfo:
        _validator().validate(["hello"])
    assert excinfo.value.status_code == 400


def test_long_conversation_truncated_with_guardrail_first() -> None:
    messages = [{"role": "user", "content": f"m{i}"} for i in range(40)]
    request = _validator().validate({"messages": messages})
    assert len(request.messages) == 16
    assert request.messages[0].role == "system"
    assert request.messages[-1].content == "m39"
