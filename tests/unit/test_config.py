"""Settings loading tests."""

import pytest
from pydantic import ValidationError

from tarbiya.config import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        """Defaults without any environment."""
        settings = Settings(_env_file=None)
        assert settings.monthly_award_interval_seconds == 6 * 60 * 60
        assert settings.monthly_award_min_interval_seconds == 30 * 60
        assert settings.certificate_template_base_url == "/certificates/templates"
        assert settings.award_issuer_id is None

    def test_env_prefix(self, monkeypatch):
        """TARBIYA_ variables override defaults."""
        monkeypatch.setenv("TARBIYA_AWARD_ISSUER_ID", "issuer-1")
        monkeypatch.setenv("TARBIYA_MONTHLY_AWARD_WINNERS", "5")
        settings = Settings(_env_file=None)
        assert settings.award_issuer_id == "issuer-1"
        assert settings.monthly_award_winners == 5

    def test_batch_size_bounds(self):
        """Sweep batch below 50 fails validation."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, legacy_sweep_batch_size=10)

    def test_get_settings_is_cached(self):
        """get_settings returns one instance."""
        get_settings.cache_clear()
        assert get_settings() is get_settings()
