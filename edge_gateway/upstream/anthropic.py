"""Anthropic Messages API adapter."""

from __future__ import annotations

from edge_gateway.models.chat import ValidatedRequest
from edge_gateway.normalizer import ResponseNormalizer
from edge_gateway.upstream.base import UpstreamReply, join_url, post


class AnthropicClient:
    """Calls the Messages API; system messages travel in the ``system`` field."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        anthropic_version: str = "2023-06-01",
        timeout_s: float = 30.0,
        normalizer: ResponseNormalizer | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.strip() or "https://api.anthropic.com"
        self._anthropic_version = anthropic_version
        self._timeout = timeout_s
        self._normalizer = normalizer or ResponseNormalizer("Claude")

    @property
    def endpoint(self) -> str:
        return join_url(self._base_url, "/v1/messages")

    @staticmethod
    def build_payload(request: ValidatedRequest) -> dict[str, object]:
        system_parts: list[str] = []
        conversation: list[dict[str, str]] = []
        for message in request.messages:
            if message.role == "system":
                system_parts.append(message.content)
            else:
                conversation.append({"role": message.role, "content": message.content})

        body: dict[str, object] = {
            "model": request.model,
            "messages": conversation,
            "stream": request.stream,
            **request.options.model_dump(exclude_none=True),
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        return body

    async def chat(self, request: ValidatedRequest) -> UpstreamReply:
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": self._anthropic_version,
            "content-type": "application/json",
        }
        return await post(
            self.endpoint,
            self._normalizer,
            headers=headers,
            timeout_s=self._timeout,
            json=self.build_payload(request),
        )
