import asyncio
import ssl

import httpx
import pytest

from edge_gateway.core.errors import ErrorKind, GatewayError
from edge_gateway.models.chat import ChatMessage, GenerationOptions, ValidatedRequest
from edge_gateway.signing.signer import SignedPayload
from edge_gateway.upstream.anthropic import AnthropicClient
from edge_gateway.upstream.base import join_url
from edge_gateway.upstream.nphies import NphiesClient
from edge_gateway.upstream.ollama import OllamaClient


def _request(**overrides: object) -> ValidatedRequest:
    fields: dict[str, object] = {
        "model": "model-x",
        "messages": (
            ChatMessage(role="system", content="guard"),
            ChatMessage(role="user", content="hello"),
        ),
        "metadata": {"locale": "en"},
        "options": GenerationOptions(temperature=0.2, top_p=0.9, max_tokens=None),
        "trace_id": "trace-1",
    }
    fields.update(overrides)
    return ValidatedRequest(**fields)


def test_join_url() -> None:
    assert join_url("https://x.test/api/", "/claim") == "https://x.test/api/claim"


def test_ollama_payload() -> None:
    client = OllamaClient(api_key="secret", base_url="https://ollama.test/")
    assert client.endpoint == "https://ollama.test/v1/chat/completions"
    payload = client.build_payload(_request())
    assert payload["metadata"] == {"locale": "en", "traceId": "trace-1"}
    assert payload["options"] == {"temperature": 0.2, "top_p": 0.9}
    assert payload["messages"][0] == {"role": "system", "content": "guard"}
    assert payload["stream"] is False


def test_anthropic_payload_lifts_system() -> None:
    payload = AnthropicClient.build_payload(
        _request(options=GenerationOptions(temperature=0.3, top_p=0.9, max_tokens=4096))
    )
    assert payload["system"] == "guard"
    assert payload["messages"] == [{"role": "user", "content": "hello"}]
    assert payload["max_tokens"] == 4096
    assert "options" not in payload


def test_anthropic_chat_sends_headers(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    async def fake_post(self: httpx.AsyncClient, url: str, **kwargs: object) -> httpx.Response:
        seen["url"] = url
        seen["headers"] = kwargs["headers"]
        return httpx.Response(200, json={"id": "msg_1"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    client = AnthropicClient(api_key="secret", anthropic_version="2023-06-01")
    reply = asyncio.run(client.chat(_request()))
    assert reply.data == {"id": "msg_1"}
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "secret"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"


def test_transport_failure_becomes_network_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_post(self: httpx.AsyncClient, url: str, **kwargs: object) -> httpx.Response:
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(OllamaClient(api_key="secret").chat(_request()))
    assert excinfo.value.kind is ErrorKind.NETWORK
    assert "Ollama" in excinfo.value.message


def test_nphies_signed_headers() -> None:
    signed = SignedPayload(payload=b"{}", signature=b"\x01\x02", digest=b"\x03")
    headers = NphiesClient.signed_headers(signed)
    assert headers == {
        "Content-Type": "application/fhir+json",
        "X-Signature": "AQI=",
        "X-Digest": "Aw==",
    }
    assert NphiesClient("https://nphies.test/").url_for("claim") == "https://nphies.test/claim"


def test_nphies_without_client_cert_uses_default_verification() -> None:
    assert NphiesClient("https://nphies.test/").tls_verify() is True


def test_nphies_client_cert_is_passed_as_ssl_context(monkeypatch: pytest.MonkeyPatch) -> None:
    loaded: list[tuple[str, str]] = []
    client_kwargs: list[dict[str, object]] = []

    def fake_load_cert_chain(self: ssl.SSLContext, certfile: str, keyfile: str) -> None:
        loaded.append((certfile, keyfile))

    original_init = httpx.AsyncClient.__init__

    def recording_init(self: httpx.AsyncClient, **kwargs: object) -> None:
        client_kwargs.append(kwargs)
        original_init(self, **kwargs)

    async def fake_post(self: httpx.AsyncClient, url: str, **kwargs: object) -> httpx.Response:
        return httpx.Response(200, json={}, request=httpx.Request("POST", url))

    monkeypatch.setattr(ssl.SSLContext, "load_cert_chain", fake_load_cert_chain)
    monkeypatch.setattr(httpx.AsyncClient, "__init__", recording_init)
    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

    client = NphiesClient("https://nphies.test/", cert=("/certs/client.pem", "/certs/client.key"))
    signed = SignedPayload(payload=b"{}", signature=b"\x01", digest=b"\x02")
    asyncio.run(client.submit("claim", signed))
    asyncio.run(client.submit("claim", signed))

    assert loaded == [("/certs/client.pem", "/certs/client.key")]
    assert "cert" not in client_kwargs[0]
    context = client_kwargs[0]["verify"]
    assert isinstance(context, ssl.SSLContext)
    assert client_kwargs[1]["verify"] is context


def test_nphies_unreadable_client_cert_is_configuration_error(tmp_path) -> None:
    missing = (str(tmp_path / "client.pem"), str(tmp_path / "client.key"))
    with pytest.raises(GatewayError) as excinfo:
        NphiesClient("https://nphies.test/", cert=missing).tls_verify()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
