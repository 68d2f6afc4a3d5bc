"""Ollama-compatible chat completions adapter."""

from edge_gateway.models.chat import ValidatedRequest
from edge_gateway.normalizer import ResponseNormalizer
from edge_gateway.upstream.base import UpstreamReply, join_url, post


class OllamaClient:
    """Forwards validated conversations to an OpenAI-style chat endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.ollama.com",
        timeout_s: float = 30.0,
        normalizer: ResponseNormalizer | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.strip() or "https://api.ollama.com"
        self._timeout = timeout_s
        self._normalizer = normalizer or ResponseNormalizer("Ollama")

    @property
    def endpoint(self) -> str:
        return join_url(self._base_url, "/v1/chat/completions")

    @staticmethod
    def build_payload(request: ValidatedRequest) -> dict[str, object]:
        return {
            "model": request.model,
            "messages": request.message_dicts(),
            "stream": request.stream,
            "metadata": {**(request.metadata or {}), "traceId": request.trace_id},
            "options": request.options.model_dump(exclude_none=True),
        }

    async def chat(self, request: ValidatedRequest) -> UpstreamReply:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        return await post(
            self.endpoint,
            self._normalizer,
            headers=headers,
            timeout_s=self._timeout,
            json=self.build_payload(request),
        )
