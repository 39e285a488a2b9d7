"""
Issue / verify dispatch.

Issue:
    lookup -> build payload -> sign -> SignedVerdict
    Issuance reports status; it does not gate on validity.

Verify:
    validate shape -> check signature -> lookup -> bool
    The signature check gates the registry lookup. A forged or unsigned
    submission never triggers a registry fetch. Caller-supplied status
    fields are never trusted; the verdict is always recomputed from a
    fresh lookup.

Outcomes are kept distinct:
    SignedVerdict / bool   normal results (mismatch is just False)
    MalformedInputError    caller error, raised before any work
    ConfigurationError     server misconfiguration
    SigningFailure         unusable key material at signing time
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ValidationError

from licensor.app.codec.verdict_codec import VerdictCodec, reorder_payload
from licensor.app.core.errors import MalformedInputError
from licensor.app.registry.client import RegistryReader
from licensor.app.schemas.verdict import (
    EchoedKeyVerifyRequest,
    IssueRequest,
    KeyVerifyRequest,
    PayloadMode,
    PayloadVerifyRequest,
    SignedVerdict,
)

logger = logging.getLogger("licensor.dispatcher")


class Operation(str, Enum):
    ISSUE = "issue"
    VERIFY = "verify"


def _validate(model: type[BaseModel], body: Any) -> BaseModel:
    if not isinstance(body, dict):
        raise MalformedInputError("request body must be a JSON object")
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        fields = sorted(
            {
                ".".join(str(part) for part in err["loc"]) or "body"
                for err in exc.errors()
            }
        )
        raise MalformedInputError(
            f"invalid or missing fields: {', '.join(fields)}"
        ) from None


class LicenseDispatcher:
    """
    Stateless per-request orchestrator.

    Holds no mutable state; every call fetches the registry afresh
    through the injected reader.
    """

    def __init__(self, *, registry: RegistryReader, codec: VerdictCodec):
        self.registry = registry
        self.codec = codec

    async def dispatch(
        self, operation: Operation, body: Any
    ) -> Union[SignedVerdict, bool]:
        if operation is Operation.ISSUE:
            request = _validate(IssueRequest, body)
            return await self.issue(request.key)

        if operation is Operation.VERIFY:
            return await self.verify(body)

        raise MalformedInputError(f"unsupported operation: {operation!r}")

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue(self, key: str) -> SignedVerdict:
        if not isinstance(key, str) or not key:
            raise MalformedInputError("key must be a non-empty string")

        status = await self.registry.lookup(key)
        verdict = self.codec.issue(key, status)

        logger.info(
            "verdict_issued",
            extra={
                "scheme": self.codec.scheme.name,
                "key_state": status.state.value,
            },
        )
        return verdict

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify(self, submission: Any) -> bool:
        key, payload, signature = self._parse_submission(submission)

        if not self.codec.verify(payload, signature):
            logger.warning(
                "signature_rejected",
                extra={"scheme": self.codec.scheme.name},
            )
            return False

        status = await self.registry.lookup(key)

        logger.info(
            "verdict_verified",
            extra={
                "scheme": self.codec.scheme.name,
                "key_state": status.state.value,
            },
        )
        return status.is_valid

    def _parse_submission(self, submission: Any) -> tuple[str, dict, str]:
        """
        Validate the verify input and return (key, payload, signature).

        The returned payload is what the signature is checked against.
        For the keyed-hash scheme it is rebuilt from the key alone.
        """
        if self.codec.payload_mode is PayloadMode.FULL:
            request = _validate(PayloadVerifyRequest, submission)
            payload = reorder_payload(
                request.payload.model_dump(), PayloadMode.FULL
            )
            return request.payload.key, payload, request.signature

        if isinstance(submission, dict) and "payload" in submission:
            echoed = _validate(EchoedKeyVerifyRequest, submission)
            key, signature = echoed.payload.key, echoed.signature
        else:
            direct = _validate(KeyVerifyRequest, submission)
            key, signature = direct.key, direct.signature

        return key, {"key": key}, signature
