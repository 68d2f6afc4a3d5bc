import ssl
from dataclasses import dataclass
from typing import Any

import httpx

from edge_gateway.core.errors import ErrorKind, GatewayError
from edge_gateway.normalizer import ResponseNormalizer


@dataclass(frozen=True)
class UpstreamReply:
    status_code: int
    data: Any


def join_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


async def post(
    url: str,
    normalizer: ResponseNormalizer,
    headers: dict[str, str],
    timeout_s: float,
    json: Any = None,
    content: bytes | None = None,
    verify: ssl.SSLContext | bool = True,
) -> UpstreamReply:
    """Single POST attempt; transport failures and non-2xx become ``GatewayError``."""
    try:
        async with httpx.AsyncClient(timeout=timeout_s, verify=verify) as client:
            if content is not None:
                resp = await client.post(url, content=content, headers=headers)
            else:
                resp = await client.post(url, json=json, headers=headers)
    except httpx.TimeoutException as exc:
        raise GatewayError(
            ErrorKind.TIMEOUT,
            f"{normalizer.label} request timed out",
        ) from exc
    except httpx.TransportError as exc:
        raise GatewayError(
            ErrorKind.NETWORK,
            f"Cannot connect to {normalizer.label}: {type(exc).__name__}",
        ) from exc

    data = normalizer.raise_for_status(resp)
    return UpstreamReply(status_code=resp.status_code, data=data)
