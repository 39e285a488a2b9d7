"""
Dispatcher tests.

Covers the issue / verify state machine for both schemes, including the
guarantees that the signature check gates the registry lookup and that
caller-echoed status fields are never trusted.

The registry is replaced with an in-memory double that counts lookups.
"""

from __future__ import annotations

import hashlib
import hmac

import pytest

from licensor.app.codec.schemes import AsymmetricScheme, KeyedHashScheme
from licensor.app.codec.verdict_codec import VerdictCodec
from licensor.app.core.errors import MalformedInputError, SigningFailure
from licensor.app.services.dispatcher import LicenseDispatcher, Operation

from licensor.tests.fixtures.key_material import rsa_private_pem
from licensor.tests.fixtures.registry_factory import StaticRegistry

pytestmark = pytest.mark.anyio

SECRET = "shared-secret"


def _keyed_dispatcher(registry: StaticRegistry) -> LicenseDispatcher:
    return LicenseDispatcher(
        registry=registry,
        codec=VerdictCodec(KeyedHashScheme(SECRET)),
    )


def _rsa_dispatcher(registry: StaticRegistry) -> LicenseDispatcher:
    return LicenseDispatcher(
        registry=registry,
        codec=VerdictCodec(AsymmetricScheme.from_pem(rsa_private_pem())),
    )


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


async def test_keyed_hash_issue_signs_minimal_payload():
    dispatcher = _keyed_dispatcher(StaticRegistry())

    verdict = await dispatcher.issue("abc123")

    expected = hmac.new(
        SECRET.encode(), b'{"key":"abc123"}', hashlib.sha256
    ).hexdigest()
    assert verdict.payload == {"key": "abc123"}
    assert verdict.signature == expected


async def test_asymmetric_issue_reports_status_without_gating():
    registry = StaticRegistry()
    dispatcher = _rsa_dispatcher(registry)

    valid = await dispatcher.issue("abc123")
    missing = await dispatcher.issue("zzz")
    redeemed = await dispatcher.issue("def456")

    assert valid.payload == {
        "key": "abc123",
        "valid": True,
        "redeemed_by": None,
        "redeemed_at": None,
    }
    assert missing.payload["valid"] is False
    assert redeemed.payload == {
        "key": "def456",
        "valid": False,
        "redeemed_by": "alice",
        "redeemed_at": "2024-01-01",
    }
    assert registry.lookups == ["abc123", "zzz", "def456"]


@pytest.mark.parametrize("body", [{}, {"key": ""}, {"key": 42}, ["abc123"], "abc123"])
async def test_issue_rejects_malformed_input_without_lookup(body):
    registry = StaticRegistry()
    dispatcher = _keyed_dispatcher(registry)

    with pytest.raises(MalformedInputError):
        await dispatcher.dispatch(Operation.ISSUE, body)

    assert registry.lookups == []


async def test_signing_failure_propagates():
    class _BrokenScheme(KeyedHashScheme):
        def sign(self, data: bytes) -> str:
            raise SigningFailure("hsm offline")

    dispatcher = LicenseDispatcher(
        registry=StaticRegistry(),
        codec=VerdictCodec(_BrokenScheme(SECRET)),
    )

    with pytest.raises(SigningFailure):
        await dispatcher.issue("abc123")


# ---------------------------------------------------------------------------
# Verify: keyed hash
# ---------------------------------------------------------------------------


async def test_keyed_hash_round_trip_with_key_and_signature():
    registry = StaticRegistry()
    dispatcher = _keyed_dispatcher(registry)
    verdict = await dispatcher.issue("abc123")

    ok = await dispatcher.dispatch(
        Operation.VERIFY, {"key": "abc123", "signature": verdict.signature}
    )

    assert ok is True


async def test_keyed_hash_accepts_echoed_issuance_result():
    dispatcher = _keyed_dispatcher(StaticRegistry())
    verdict = await dispatcher.issue("abc123")

    assert await dispatcher.verify(verdict.model_dump()) is True


async def test_keyed_hash_valid_signature_for_redeemed_key_is_invalid():
    dispatcher = _keyed_dispatcher(StaticRegistry())
    verdict = await dispatcher.issue("def456")

    assert (
        await dispatcher.verify({"key": "def456", "signature": verdict.signature})
        is False
    )


async def test_forged_signature_never_reaches_registry():
    registry = StaticRegistry()
    dispatcher = _keyed_dispatcher(registry)

    ok = await dispatcher.verify({"key": "abc123", "signature": "0" * 64})

    assert ok is False
    assert registry.lookups == []


async def test_signature_for_other_key_is_rejected():
    registry = StaticRegistry()
    dispatcher = _keyed_dispatcher(registry)
    other = await dispatcher.issue("zzz")
    registry.lookups.clear()

    assert await dispatcher.verify({"key": "abc123", "signature": other.signature}) is False
    assert registry.lookups == []


@pytest.mark.parametrize(
    "submission",
    [
        {"key": "abc123", "signature": 12345},
        {"key": "abc123"},
        {"signature": "ab"},
        {"key": 1, "signature": "ab"},
        {"key": "abc123", "signature": "ab", "valid": True},
        {"payload": {"key": "abc123", "valid": True}, "signature": "ab"},
        None,
        [],
    ],
)
async def test_keyed_hash_malformed_verify_input(submission):
    registry = StaticRegistry()
    dispatcher = _keyed_dispatcher(registry)

    with pytest.raises(MalformedInputError):
        await dispatcher.dispatch(Operation.VERIFY, submission)

    assert registry.lookups == []


# ---------------------------------------------------------------------------
# Verify: asymmetric
# ---------------------------------------------------------------------------


async def test_asymmetric_round_trip():
    registry = StaticRegistry()
    dispatcher = _rsa_dispatcher(registry)
    verdict = await dispatcher.issue("abc123")
    registry.lookups.clear()

    assert await dispatcher.verify(verdict.model_dump()) is True
    assert registry.lookups == ["abc123"]


async def test_asymmetric_verify_ignores_caller_field_order():
    dispatcher = _rsa_dispatcher(StaticRegistry())
    verdict = await dispatcher.issue("abc123")
    reordered = dict(reversed(list(verdict.payload.items())))

    assert await dispatcher.verify(
        {"payload": reordered, "signature": verdict.signature}
    ) is True


async def test_asymmetric_tampered_status_field_is_rejected():
    registry = StaticRegistry()
    dispatcher = _rsa_dispatcher(registry)
    verdict = await dispatcher.issue("zzz")
    registry.lookups.clear()

    forged = dict(verdict.payload, valid=True)

    assert await dispatcher.verify({"payload": forged, "signature": verdict.signature}) is False
    assert registry.lookups == []


async def test_asymmetric_verdict_is_recomputed_from_registry():
    """A genuinely signed 'valid' verdict is rejected once the key is redeemed."""
    issuing = _rsa_dispatcher(StaticRegistry("abc123,pro,,\n"))
    verdict = await issuing.issue("abc123")
    assert verdict.payload["valid"] is True

    later = LicenseDispatcher(
        registry=StaticRegistry("abc123,pro,bob,2025-05-05\n"),
        codec=issuing.codec,
    )

    assert await later.verify(verdict.model_dump()) is False


@pytest.mark.parametrize(
    "submission",
    [
        {"key": "abc123", "signature": "c2ln"},
        {"payload": {"key": "abc123"}, "signature": "c2ln"},
        {
            "payload": {
                "key": "abc123",
                "valid": "yes",
                "redeemed_by": None,
                "redeemed_at": None,
            },
            "signature": "c2ln",
        },
        {
            "payload": {
                "key": "abc123",
                "valid": True,
                "redeemed_by": None,
                "redeemed_at": None,
            },
            "signature": 7,
        },
    ],
)
async def test_asymmetric_malformed_verify_input(submission):
    registry = StaticRegistry()
    dispatcher = _rsa_dispatcher(registry)

    with pytest.raises(MalformedInputError):
        await dispatcher.verify(submission)

    assert registry.lookups == []
