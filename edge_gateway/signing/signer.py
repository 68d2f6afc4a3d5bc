"""Message-level signing for the regulated exchange.

Payloads are signed with RSASSA-PKCS1-v1_5 over SHA-256 and accompanied by a
SHA-256 digest. Both are deterministic for a given payload and key.

The private key is derived from the PEM credential on first use and cached
on the signer for the rest of the process. Derivation is guarded by a lock so
concurrent first callers share a single key; later reads take no lock.
"""

import base64
import binascii
import hashlib
import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from edge_gateway.core.errors import configuration_error

logger = logging.getLogger("edge.signing")

_PEM_ARMOR = re.compile(r"-----(BEGIN|END) [^-]+-----")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class SignedPayload:
    payload: bytes
    signature: bytes
    digest: bytes

    @property
    def signature_b64(self) -> str:
        return base64.b64encode(self.signature).decode("ascii")

    @property
    def digest_b64(self) -> str:
        return base64.b64encode(self.digest).decode("ascii")


def pem_to_der(pem: str) -> bytes:
    cleaned = _WHITESPACE.sub("", _PEM_ARMOR.sub("", pem.strip()))
    return base64.b64decode(cleaned, validate=True)


class PayloadSigner:
    def __init__(self, credential: Callable[[], str | None] | str | None):
        if callable(credential):
            self._credential = credential
        else:
            self._credential = lambda: credential
        self._key: rsa.RSAPrivateKey | None = None
        self._lock = threading.Lock()

    @property
    def key_loaded(self) -> bool:
        return self._key is not None

    def sign(self, payload: bytes | str) -> SignedPayload:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        key = self._signing_key()
        signature = key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        digest = hashlib.sha256(data).digest()
        return SignedPayload(payload=data, signature=signature, digest=digest)

    def public_key(self) -> rsa.RSAPublicKey:
        return self._signing_key().public_key()

    def _signing_key(self) -> rsa.RSAPrivateKey:
        key = self._key
        if key is not None:
            return key
        with self._lock:
            if self._key is None:
                self._key = self._derive_key()
                logger.info("signing_key_loaded")
            return self._key

    def _derive_key(self) -> rsa.RSAPrivateKey:
        pem = self._credential()
        if not pem or not pem.strip():
            raise configuration_error("Missing NPHIES signing credential")
        try:
            der = pem_to_der(pem)
            key = serialization.load_der_private_key(der, password=None)
        except (binascii.Error, ValueError, TypeError, UnsupportedAlgorithm) as exc:
            logger.error("signing_key_invalid", extra={"error_kind": type(exc).__name__})
            raise configuration_error("NPHIES signing credential could not be loaded") from None
        if not isinstance(key, rsa.RSAPrivateKey):
            raise configuration_error("NPHIES signing credential must be an RSA private key")
        return key


def verify_signature(digest: bytes, signature: bytes, public_key: rsa.RSAPublicKey) -> bool:
    """Check ``signature`` against a precomputed SHA-256 ``digest``."""
    try:
        public_key.verify(signature, digest, padding.PKCS1v15(), Prehashed(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
