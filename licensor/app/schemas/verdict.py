"""
Verdict and key-status schemas.

Defines the registry lookup outcome (KeyStatus), the signed verdict
returned by issuance, and the strict request shapes accepted by the
issue and verify operations.

Request fields are strict: no type coercion and no unknown fields. A
number where a string is expected is a malformed request, not a value
to be converted.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr


# ---------------------------------------------------------------------------
# Registry lookup outcome
# ---------------------------------------------------------------------------


class KeyState(str, Enum):
    """Finite set of states a key can be in according to the registry."""

    NOT_FOUND = "not_found"
    VALID = "valid"
    REDEEMED = "redeemed"


class KeyStatus(BaseModel):
    """
    Result of a registry lookup.

    role_id is informational only and never influences the verdict.
    """

    model_config = ConfigDict(frozen=True)

    state: KeyState
    role_id: Optional[str] = None
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[str] = None

    @classmethod
    def not_found(cls) -> "KeyStatus":
        return cls(state=KeyState.NOT_FOUND)

    @classmethod
    def valid(cls, role_id: Optional[str] = None) -> "KeyStatus":
        return cls(state=KeyState.VALID, role_id=role_id)

    @classmethod
    def redeemed(
        cls,
        redeemed_by: str,
        redeemed_at: Optional[str],
        role_id: Optional[str] = None,
    ) -> "KeyStatus":
        return cls(
            state=KeyState.REDEEMED,
            role_id=role_id,
            redeemed_by=redeemed_by,
            redeemed_at=redeemed_at,
        )

    @property
    def is_valid(self) -> bool:
        return self.state is KeyState.VALID


# ---------------------------------------------------------------------------
# Verdict payloads
# ---------------------------------------------------------------------------


class PayloadMode(str, Enum):
    """
    Shape of the signed payload.

    FULL    {key, valid, redeemed_by, redeemed_at}
    MINIMAL {key}
    """

    FULL = "full"
    MINIMAL = "minimal"


class VerdictPayload(BaseModel):
    """
    Full-mode verdict payload as echoed back by a caller.

    Field declaration order is the canonical serialization order.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: StrictStr = Field(min_length=1)
    valid: StrictBool
    redeemed_by: Optional[StrictStr]
    redeemed_at: Optional[StrictStr]


class MinimalVerdictPayload(BaseModel):
    """Minimal-mode verdict payload: the key alone."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: StrictStr = Field(min_length=1)


class SignedVerdict(BaseModel):
    """
    Issuance result.

    Immutable once issued; verifiers only accept or reject it.
    """

    model_config = ConfigDict(frozen=True)

    payload: Dict[str, Any]
    signature: str


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class IssueRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: StrictStr = Field(min_length=1)


class PayloadVerifyRequest(BaseModel):
    """Verify input for the asymmetric scheme: the full issued verdict."""

    model_config = ConfigDict(extra="forbid")

    payload: VerdictPayload
    signature: StrictStr = Field(min_length=1)


class KeyVerifyRequest(BaseModel):
    """Verify input for the keyed-hash scheme: key plus signature."""

    model_config = ConfigDict(extra="forbid")

    key: StrictStr = Field(min_length=1)
    signature: StrictStr = Field(min_length=1)


class EchoedKeyVerifyRequest(BaseModel):
    """Keyed-hash verify input echoing an issuance result verbatim."""

    model_config = ConfigDict(extra="forbid")

    payload: MinimalVerdictPayload
    signature: StrictStr = Field(min_length=1)
