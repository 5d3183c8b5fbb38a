"""JWS signing and key material for simulated ACME accounts.

Envelopes use the flattened JSON serialization with RS256; the account JWK
and the replay nonce travel in the protected header. Signing is delegated to
``cryptography``.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from loadgen.exceptions import SigningError

_PUBLIC_EXPONENT = 65537


def b64url(data: bytes) -> str:
    """Unpadded base64url, as JOSE requires."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _int_bytes(value: int) -> bytes:
    return value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")


def generate_rsa_key(key_size: int) -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=key_size)
    except (ValueError, TypeError) as exc:
        raise SigningError("RSA key generation failed", details={"key_size": key_size, "error": str(exc)}) from exc


class JWSSigner:
    """Signs payloads for one account key."""

    algorithm = "RS256"

    def __init__(self, key: rsa.RSAPrivateKey) -> None:
        self._key = key
        numbers = key.public_key().public_numbers()
        self._jwk = {
            "e": b64url(_int_bytes(numbers.e)),
            "kty": "RSA",
            "n": b64url(_int_bytes(numbers.n)),
        }

    @property
    def jwk(self) -> dict[str, str]:
        return dict(self._jwk)

    def thumbprint(self) -> str:
        """RFC 7638 JWK thumbprint (SHA-256)."""
        canonical = json.dumps(self._jwk, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return b64url(hashlib.sha256(canonical).digest())

    def key_authorization(self, token: str) -> str:
        return f"{token}.{self.thumbprint()}"

    def sign(self, payload: bytes, nonce: str) -> bytes:
        """Return the serialized JWS envelope for ``payload``."""
        protected: dict[str, Any] = {"alg": self.algorithm, "jwk": self._jwk, "nonce": nonce}
        protected_b64 = b64url(json.dumps(protected, separators=(",", ":")).encode("utf-8"))
        payload_b64 = b64url(payload)
        signing_input = f"{protected_b64}.{payload_b64}".encode("ascii")
        try:
            signature = self._key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
        except (ValueError, TypeError) as exc:
            raise SigningError("failed to sign JWS payload", details={"error": str(exc)}) from exc
        envelope = {
            "protected": protected_b64,
            "payload": payload_b64,
            "signature": b64url(signature),
        }
        return json.dumps(envelope).encode("utf-8")


def build_csr(key: rsa.RSAPrivateKey, domain: str) -> bytes:
    """DER-encoded CSR for ``domain`` signed with ``key``."""
    try:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
            .sign(key, hashes.SHA256())
        )
    except ValueError as exc:
        raise SigningError("failed to build CSR", details={"domain": domain, "error": str(exc)}) from exc
    return csr.public_bytes(serialization.Encoding.DER)
