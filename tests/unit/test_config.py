"""
Unit Tests for NPHIES Configuration
Tests settings validation and the global accessor
"""

import pytest
from pydantic import ValidationError

from src.core import config as config_module
from src.core.config import NphiesSettings, get_settings


@pytest.mark.unit
class TestSettingsValidation:
    """Test configuration validation"""

    def test_defaults(self):
        """Test defaults used for bundle composition"""
        settings = NphiesSettings(_env_file=None)
        assert settings.FULL_URL_BASE == "http://provider.com"
        assert settings.DEFAULT_CURRENCY == "SAR"
        assert settings.TIMEZONE_OFFSET == "+03:00"
        assert settings.PROVIDER_DOMAIN == "PR-FHIR"

    def test_full_url_base_trailing_slash_stripped(self):
        """Test fullUrl base never ends with a slash"""
        settings = NphiesSettings(_env_file=None, FULL_URL_BASE="http://clinic.example.sa/fhir/")
        assert settings.FULL_URL_BASE == "http://clinic.example.sa/fhir"

    @pytest.mark.parametrize("offset", ["+0300", "03:00", "UTC+3", "+3:00"])
    def test_invalid_timezone_offset(self, offset):
        """Test offsets must be +HH:MM"""
        with pytest.raises(ValidationError) as exc_info:
            NphiesSettings(_env_file=None, TIMEZONE_OFFSET=offset)

        errors = exc_info.value.errors()
        assert any("TIMEZONE_OFFSET" in str(error) for error in errors)

    def test_environment_prefix(self, monkeypatch):
        """Test settings read NPHIES_ prefixed variables"""
        monkeypatch.setenv("NPHIES_DEFAULT_PROVIDER_ID", "PR-123")
        monkeypatch.setenv("NPHIES_INSURER_DOMAIN", "tawuniya")
        settings = NphiesSettings(_env_file=None)
        assert settings.DEFAULT_PROVIDER_ID == "PR-123"
        assert settings.INSURER_DOMAIN == "tawuniya"


@pytest.mark.unit
class TestGetSettings:
    """Test the global settings accessor"""

    def test_returns_same_instance(self, monkeypatch):
        """Test settings are created once"""
        monkeypatch.setattr(config_module, "_nphies_settings", None)
        assert get_settings() is get_settings()
