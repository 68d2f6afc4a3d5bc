from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from edge_gateway.config.settings import clear_settings_cache
from edge_gateway.main import create_app
from edge_gateway.metrics import reset_metrics

NPHIES_BASE = "https://nphies.test/api"

_EDGE_ENV = (
    "EDGE_OLLAMA_API_KEY",
    "EDGE_ANTHROPIC_API_KEY",
    "EDGE_NPHIES_API_BASE",
    "EDGE_NPHIES_CLIENT_KEY",
    "EDGE_MONGODB_API_KEY",
    "EDGE_CHAT_RATE_LIMIT",
    "EDGE_API_RATE_LIMIT",
    "EDGE_RATE_LIMIT_ENABLED",
    "EDGE_RATE_LIMIT_TRUSTED_IDENTIFIER_HEADER",
)


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signing_pem(private_key: rsa.RSAPrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@dataclass
class FakeUpstream:
    """Queue of canned upstream replies; records every outbound POST."""

    replies: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    default: Any = None

    def queue(self, *replies: Any) -> None:
        self.replies.extend(replies)

    async def post(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
        self.calls.append({"url": str(url), **kwargs})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(url, kwargs)
        status, body = reply if reply is not None else (200, {})
        request = httpx.Request("POST", url)
        if isinstance(body, str):
            return httpx.Response(status, text=body, request=request)
        return httpx.Response(status, json=body, request=request)


@pytest.fixture
def upstream(monkeypatch: pytest.MonkeyPatch) -> FakeUpstream:
    fake = FakeUpstream()

    async def fake_post(self: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
        return await fake.post(self, url, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    return fake


@pytest.fixture
def make_client(
    monkeypatch: pytest.MonkeyPatch, signing_pem: str
) -> Iterator[Callable[..., TestClient]]:
    def factory(**overrides: str | None) -> TestClient:
        for name in _EDGE_ENV:
            monkeypatch.delenv(name, raising=False)
        env = {
            "EDGE_OLLAMA_API_KEY": "ollama-secret",
            "EDGE_ANTHROPIC_API_KEY": "anthropic-secret",
            "EDGE_NPHIES_API_BASE": NPHIES_BASE,
            "EDGE_NPHIES_CLIENT_KEY": signing_pem,
            "EDGE_MONGODB_API_KEY": "mongo-secret",
            "EDGE_RETRY_BASE_DELAY_S": "0",
            "EDGE_LOG_LEVEL": "WARNING",
        }
        env.update(overrides)
        for name, value in env.items():
            if value is None:
                monkeypatch.delenv(name, raising=False)
            else:
                monkeypatch.setenv(name, value)
        clear_settings_cache()
        reset_metrics()
        return TestClient(create_app())

    yield factory
    clear_settings_cache()


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
