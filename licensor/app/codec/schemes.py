"""
Signing schemes for license verdicts.

Two interchangeable schemes, selected once at startup from whichever
signing material is configured:

- AsymmetricScheme: RSA (PKCS#1 v1.5, SHA-256) or Ed25519 signatures,
  base64-encoded. The verifier derives the public key from the same
  private key material. Signs the full verdict payload.
- KeyedHashScheme: HMAC-SHA256 with a shared secret, hex-encoded.
  Signs the minimal {key} payload only.

Both operate on canonical bytes. Serialization happens in the codec.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from typing import Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa

from licensor.app.core.config import Settings
from licensor.app.core.errors import ConfigurationError, SigningFailure
from licensor.app.schemas.verdict import PayloadMode

logger = logging.getLogger("licensor.codec.schemes")

MIN_RSA_KEY_BITS = 2048

PrivateKey = Union[rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey]


class SigningScheme(ABC):
    """Common contract: sign bytes, verify bytes. verify never raises."""

    name: str
    payload_mode: PayloadMode

    @abstractmethod
    def sign(self, data: bytes) -> str:
        ...

    @abstractmethod
    def verify(self, data: bytes, signature: str) -> bool:
        ...


# ----------------------------------------------------------------------
# Scheme A: asymmetric
# ----------------------------------------------------------------------


def load_private_key(pem: Union[str, bytes]) -> PrivateKey:
    """
    Load PEM private key material.

    Raises ConfigurationError on anything that is not an unencrypted
    RSA (>= 2048 bits) or Ed25519 private key.
    """
    if isinstance(pem, str):
        pem = pem.encode("utf-8")

    try:
        key = serialization.load_pem_private_key(pem.strip(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(
            f"Private key material could not be loaded: {type(exc).__name__}"
        ) from None

    if isinstance(key, rsa.RSAPrivateKey):
        # Guardrails
        if key.key_size < MIN_RSA_KEY_BITS:
            raise ConfigurationError(
                f"RSA key size below {MIN_RSA_KEY_BITS} bits is not allowed"
            )
        return key

    if isinstance(key, ed25519.Ed25519PrivateKey):
        return key

    raise ConfigurationError(
        f"Unsupported private key type: {type(key).__name__}"
    )


class AsymmetricScheme(SigningScheme):
    """Hash-then-sign over the full canonical payload bytes."""

    payload_mode = PayloadMode.FULL

    def __init__(self, private_key: PrivateKey):
        self._private_key = private_key
        self._public_key = private_key.public_key()
        if isinstance(private_key, rsa.RSAPrivateKey):
            self.name = "rsa-sha256"
        else:
            self.name = "ed25519"

    @classmethod
    def from_pem(cls, pem: Union[str, bytes]) -> "AsymmetricScheme":
        return cls(load_private_key(pem))

    def sign(self, data: bytes) -> str:
        try:
            if isinstance(self._private_key, rsa.RSAPrivateKey):
                raw = self._private_key.sign(
                    data, padding.PKCS1v15(), hashes.SHA256()
                )
            else:
                raw = self._private_key.sign(data)
        except Exception as exc:
            raise SigningFailure(
                f"{self.name} signing failed: {type(exc).__name__}"
            ) from exc

        return base64.b64encode(raw).decode("ascii")

    def verify(self, data: bytes, signature: str) -> bool:
        try:
            raw = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False

        try:
            if isinstance(self._public_key, rsa.RSAPublicKey):
                self._public_key.verify(
                    raw, data, padding.PKCS1v15(), hashes.SHA256()
                )
            else:
                self._public_key.verify(raw, data)
        except (InvalidSignature, ValueError):
            return False

        return True


# ----------------------------------------------------------------------
# Scheme B: symmetric keyed hash
# ----------------------------------------------------------------------


class KeyedHashScheme(SigningScheme):
    """
    HMAC-SHA256 over the canonical payload, lowercase hex output.

    Verification compares equal-length byte buffers in constant time.
    A length mismatch is rejected before any value comparison.
    """

    name = "hmac-sha256"
    payload_mode = PayloadMode.MINIMAL

    def __init__(self, secret: Union[str, bytes]):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ConfigurationError("Shared secret must not be empty")
        self._secret = secret

    def sign(self, data: bytes) -> str:
        return hmac.new(self._secret, data, hashlib.sha256).hexdigest()

    def verify(self, data: bytes, signature: str) -> bool:
        expected = self.sign(data).encode("ascii")
        try:
            supplied = signature.encode("ascii")
        except UnicodeEncodeError:
            return False

        if len(supplied) != len(expected):
            return False

        return hmac.compare_digest(expected, supplied)


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------


def build_signing_scheme(settings: Settings) -> SigningScheme:
    """
    Select the signing scheme from configured material.

    Called once at startup. Settings validation already guarantees that
    exactly one of the two materials is present.
    """
    if settings.private_key is not None:
        scheme: SigningScheme = AsymmetricScheme.from_pem(
            settings.private_key.get_secret_value()
        )
    elif settings.shared_secret is not None:
        scheme = KeyedHashScheme(settings.shared_secret.get_secret_value())
    else:
        raise ConfigurationError("No signing material configured")

    logger.info(
        "signing_scheme_selected",
        extra={
            "scheme": scheme.name,
            "payload_mode": scheme.payload_mode.value,
        },
    )
    return scheme
