"""
Error taxonomy for the license validation service.

Only configuration, signing and malformed-input errors ever reach the
caller. Registry failures are absorbed into a NotFound status and
signature mismatches into a plain "invalid" verdict.
"""


class LicensorError(RuntimeError):
    """Base class for all service-level errors."""


class ConfigurationError(LicensorError):
    """
    Required secrets or identifiers are absent or unusable.

    Fatal. Surfaced as a server-side misconfiguration, never as a verdict.
    """


class SigningFailure(LicensorError):
    """Raised when the configured scheme cannot produce a signature."""


class MalformedInputError(LicensorError):
    """
    Caller payload is missing required fields or has the wrong shape.

    Raised before any signing, verification or registry work happens.
    """


class RegistryUnavailable(LicensorError):
    """
    The registry could not be fetched or parsed.

    Internal only: lookups translate this into NotFound (fail-closed).
    """
