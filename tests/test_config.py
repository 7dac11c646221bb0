"""Unit tests for core/config.py.

Covers:
- Production mode refuses to start without CRON_SECRET / SERVICE_TOKEN
- Debug mode generates missing secrets
- Secrets shorter than 32 characters are rejected in every mode
- Numeric bounds on scheduler settings
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_SECRET = "s" * 40


def _settings(**overrides) -> Settings:
    values = dict(debug=False, cron_secret=GOOD_SECRET, service_token=GOOD_SECRET)
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSecretPolicy:
    def test_valid_production_settings(self) -> None:
        settings = _settings()
        assert settings.cron_secret == GOOD_SECRET
        assert settings.scan_max_workers == 4

    @pytest.mark.parametrize("field", ["cron_secret", "service_token"])
    def test_missing_secret_in_production_raises(self, field) -> None:
        with pytest.raises(ValidationError, match=field.upper()):
            _settings(**{field: ""})

    def test_debug_generates_missing_secrets(self) -> None:
        settings = _settings(debug=True, cron_secret="", service_token="")
        assert len(settings.cron_secret) == 64
        assert len(settings.service_token) == 64
        assert settings.cron_secret != settings.service_token

    @pytest.mark.parametrize("debug", [True, False])
    def test_short_secret_rejected(self, debug) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            _settings(debug=debug, cron_secret="too-short")


class TestBounds:
    def test_worker_count_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _settings(scan_max_workers=0)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _settings(scan_timeout_seconds=0)
