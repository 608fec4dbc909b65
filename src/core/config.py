"""
NPHIES Integration Configuration
Settings for the prior authorization message engine.
Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
Verified: 2025-12-18
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NphiesSettings(BaseSettings):
    """
    NPHIES integration settings.

    Values that identify this provider on the clearinghouse and the
    constants used when composing outgoing bundles.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="NPHIES_",  # All NPHIES settings prefixed with NPHIES_
    )

    # =========================================================================
    # Identity
    # =========================================================================
    DEFAULT_PROVIDER_ID: str = Field(
        default="1010613708",
        description="Provider license used when the provider record has none",
    )
    PROVIDER_DOMAIN: str = Field(
        default="PR-FHIR",
        description="Provider domain registered with NPHIES",
    )
    DEFAULT_INSURER_ID: str = Field(
        default="INS-FHIR",
        description="Payer license used when the insurer record has none",
    )
    INSURER_DOMAIN: str = Field(
        default="INS-FHIR",
        description="Insurer domain for eligibility response identifier systems",
    )

    # =========================================================================
    # Bundle Composition
    # =========================================================================
    FULL_URL_BASE: str = Field(
        default="http://provider.com",
        description="Base for entry fullUrl values and the message source endpoint",
    )
    DEFAULT_CURRENCY: str = Field(
        default="SAR",
        description="Currency for Money values without an explicit currency",
    )
    TIMEZONE_OFFSET: str = Field(
        default="+03:00",
        description="Offset appended to encounter period timestamps",
    )

    # =========================================================================
    # Logging
    # =========================================================================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Log level for the service facade",
    )

    @field_validator("FULL_URL_BASE")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Keep fullUrl joins free of double slashes."""
        return v.rstrip("/")

    @field_validator("TIMEZONE_OFFSET")
    @classmethod
    def validate_offset(cls, v: str) -> str:
        """Offset must look like +HH:MM or -HH:MM."""
        if len(v) != 6 or v[0] not in "+-" or v[3] != ":":
            raise ValueError("TIMEZONE_OFFSET must be formatted as +HH:MM")
        return v


# Singleton instance
_nphies_settings: Optional[NphiesSettings] = None


def get_settings() -> NphiesSettings:
    """
    Get cached NPHIES settings instance.

    Returns:
        NphiesSettings instance
    """
    global _nphies_settings
    if _nphies_settings is None:
        _nphies_settings = NphiesSettings()
    return _nphies_settings
