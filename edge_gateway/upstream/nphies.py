"""NPHIES exchange transport."""

import ssl

from edge_gateway.core.errors import configuration_error
from edge_gateway.normalizer import ResponseNormalizer
from edge_gateway.signing.signer import SignedPayload
from edge_gateway.upstream.base import UpstreamReply, join_url, post


def mtls_context(cert: tuple[str, str]) -> ssl.SSLContext:
    """Default verifying context that also presents the client certificate."""
    certfile, keyfile = cert
    context = ssl.create_default_context()
    try:
        context.load_cert_chain(certfile=certfile, keyfile=keyfile)
    except (OSError, ssl.SSLError) as exc:
        raise configuration_error(
            f"Cannot load NPHIES client certificate: {type(exc).__name__}"
        ) from exc
    return context


class NphiesClient:
    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        cert: tuple[str, str] | None = None,
        normalizer: ResponseNormalizer | None = None,
    ):
        self._base_url = base_url
        self._timeout = timeout_s
        self._cert = cert
        self._tls: ssl.SSLContext | None = None
        self._normalizer = normalizer or ResponseNormalizer("NPHIES")

    def url_for(self, path: str) -> str:
        return join_url(self._base_url, path)

    def tls_verify(self) -> ssl.SSLContext | bool:
        if self._cert is None:
            return True
        # loaded once; the cert files are read on first use, not at startup
        if self._tls is None:
            self._tls = mtls_context(self._cert)
        return self._tls

    @staticmethod
    def signed_headers(signed: SignedPayload) -> dict[str, str]:
        return {
            "Content-Type": "application/fhir+json",
            "X-Signature": signed.signature_b64,
            "X-Digest": signed.digest_b64,
        }

    async def submit(self, path: str, signed: SignedPayload) -> UpstreamReply:
        return await post(
            self.url_for(path),
            self._normalizer,
            headers=self.signed_headers(signed),
            timeout_s=self._timeout,
            content=signed.payload,
            verify=self.tls_verify(),
        )
