"""
Verdict payload construction and canonical serialization.

The serialized payload is part of the signing contract: issuer and
verifier must produce identical bytes. Canonical form is compact UTF-8
JSON with fields in declaration order (NOT sorted):

    full     {"key":...,"valid":...,"redeemed_by":...,"redeemed_at":...}
    minimal  {"key":...}
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

from licensor.app.codec.schemes import SigningScheme
from licensor.app.schemas.verdict import (
    KeyStatus,
    PayloadMode,
    SignedVerdict,
)

FULL_PAYLOAD_FIELDS = ("key", "valid", "redeemed_by", "redeemed_at")
MINIMAL_PAYLOAD_FIELDS = ("key",)


def canonical_bytes(payload: Mapping[str, Any]) -> bytes:
    """
    Serialize a verdict payload deterministically.

    Insertion order is preserved; callers build payloads through
    build_payload() so order is always the canonical one.
    """
    return json.dumps(
        dict(payload),
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
    ).encode("utf-8")


def build_payload(
    key: str, status: KeyStatus, mode: PayloadMode
) -> Dict[str, Any]:
    """Build the ordered verdict payload for a key and its status."""
    if mode is PayloadMode.MINIMAL:
        return {"key": key}

    return {
        "key": key,
        "valid": status.is_valid,
        "redeemed_by": status.redeemed_by,
        "redeemed_at": status.redeemed_at,
    }


def reorder_payload(
    payload: Mapping[str, Any], mode: PayloadMode
) -> Dict[str, Any]:
    """
    Rebuild a caller-supplied payload in canonical field order.

    The caller's field order and whitespace are not trusted; only the
    field values participate in reproducing the signed bytes.
    """
    fields = (
        MINIMAL_PAYLOAD_FIELDS
        if mode is PayloadMode.MINIMAL
        else FULL_PAYLOAD_FIELDS
    )
    return {name: payload[name] for name in fields}


class VerdictCodec:
    """Binds a signing scheme to the canonical payload format."""

    def __init__(self, scheme: SigningScheme):
        self.scheme = scheme

    @property
    def payload_mode(self) -> PayloadMode:
        return self.scheme.payload_mode

    def build_payload(self, key: str, status: KeyStatus) -> Dict[str, Any]:
        return build_payload(key, status, self.payload_mode)

    def sign(self, payload: Mapping[str, Any]) -> str:
        return self.scheme.sign(canonical_bytes(payload))

    def verify(self, payload: Mapping[str, Any], signature: str) -> bool:
        """Pure check. Never raises for a bad signature."""
        return self.scheme.verify(canonical_bytes(payload), signature)

    def issue(self, key: str, status: KeyStatus) -> SignedVerdict:
        payload = self.build_payload(key, status)
        return SignedVerdict(payload=payload, signature=self.sign(payload))
