"""
Centralized configuration management for the licensor service.

Pydantic v2 settings management to enforce strict validation,
zero secret leakage, and fast-failure on invalid configuration.
"""

from typing import Annotated, Optional

from pydantic import (
    AnyHttpUrl,
    Field,
    SecretStr,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from licensor.app.core.errors import ConfigurationError


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

EnvRequired = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1),
]

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]

OptionalSensitiveEnv = Annotated[
    Optional[SecretStr],
    Field(
        default=None,
        description="Optional sensitive credential, redacted from logs",
    ),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast if the registry credentials are missing or if the signing
    material is ambiguous (both or neither scheme configured).
    """

    # ---------------------------------------------------------------------
    # Registry (GitHub Gist) access
    # ---------------------------------------------------------------------

    registry_token: SensitiveEnv
    registry_id: EnvRequired

    registry_api_url: Annotated[
        AnyHttpUrl,
        Field(
            default="https://api.github.com",
            description="Base URL of the registry store API",
        ),
    ]

    registry_filename: Annotated[
        str,
        Field(
            default="keys.txt",
            min_length=1,
            description="Name of the file inside the gist holding key records",
        ),
    ]

    registry_timeout_seconds: Annotated[
        float,
        Field(default=10.0, gt=0, le=60),
    ]

    # ---------------------------------------------------------------------
    # Signing material (exactly one)
    # ---------------------------------------------------------------------

    private_key: OptionalSensitiveEnv
    shared_secret: OptionalSensitiveEnv

    # ---------------------------------------------------------------------
    # Operational Boundaries
    # ---------------------------------------------------------------------

    max_body_bytes: Annotated[
        int,
        Field(
            default=1_000_000,
            ge=1,
            description="Upper bound on accepted request body size",
        ),
    ]

    log_level: Annotated[
        str,
        Field(default="INFO"),
    ]

    model_config = SettingsConfigDict(
        env_prefix="LICENSOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators
    # ---------------------------------------------------------------------

    @field_validator("private_key", "shared_secret", mode="before")
    @classmethod
    def blank_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("private_key")
    @classmethod
    def unescape_pem_newlines(
        cls, v: Optional[SecretStr]
    ) -> Optional[SecretStr]:
        # Hosting dashboards often store multi-line PEM with literal "\n".
        if v is None:
            return v
        raw = v.get_secret_value()
        if "\\n" in raw:
            return SecretStr(raw.replace("\\n", "\n"))
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.strip().upper()
        if level not in allowed:
            raise ValueError(
                f"Unsupported log level '{v}'. "
                f"Allowed values: {sorted(allowed)}"
            )
        return level

    @model_validator(mode="after")
    def exactly_one_signing_scheme(self) -> "Settings":
        if self.private_key is not None and self.shared_secret is not None:
            raise ValueError(
                "private_key and shared_secret cannot both be configured."
            )
        if self.private_key is None and self.shared_secret is None:
            raise ValueError(
                "One of private_key or shared_secret must be configured."
            )
        return self


# -------------------------------------------------------------------------
# Loading
# -------------------------------------------------------------------------

def load_settings(**overrides) -> Settings:
    """
    Load settings, translating validation failures into ConfigurationError.

    Only field locations are reported. Values are never echoed, since most
    of them are secrets.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = sorted(
            {
                ".".join(str(part) for part in err["loc"]) or err["msg"]
                for err in exc.errors()
            }
        )
        raise ConfigurationError(
            f"Invalid licensor configuration: {', '.join(problems)}"
        ) from None
