"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for DriftWatch happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cron_secret -> CRON_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the DEBUG-conditional shared
      secret policy: dev mode generates secrets with a warning, production
      mode refuses to start without them.

Security notes:
  CRON_SECRET and SERVICE_TOKEN gate every mutating route. A secret shorter
  than 32 chars is rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/,
jobs/ or monitor/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("driftwatch.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_name: str = "DriftWatch"
    # Empty string means MonitorStore picks its default SQLite file.
    database_url: str = ""

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    cron_secret: str = ""
    service_token: str = ""

    # ------------------------------------------------------------------
    # Scan scheduling
    # ------------------------------------------------------------------

    scanner_url: str = "http://localhost:8001/scans"
    scanner_token: str = ""
    scan_max_workers: int = Field(default=4, ge=1, le=64)
    scan_timeout_seconds: float = Field(default=30.0, gt=0)
    # Minimum gap between two dispatches of the same website, whatever its
    # frequency class. This is the per-cycle interval for "continuous" plans.
    scan_claim_window_minutes: int = Field(default=10, ge=0)
    stale_scan_job_minutes: int = Field(default=60, ge=1)

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    monitoring_email_from: str = "DriftWatch <no-reply@driftwatch.local>"
    dashboard_url: str = "http://localhost:3000/dashboard"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    cron_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the shared-secret policy for CRON_SECRET and SERVICE_TOKEN.

        Dev mode (DEBUG=true): auto-generate a random secret with a warning.
            Cron callers will need the generated value, so this only suits
            local development and tests.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing. An unset secret would leave the trigger routes
            unusable or, worse, guessable.

        Both modes: reject secrets shorter than 32 characters.
        """
        for name in ("cron_secret", "service_token"):
            value = getattr(self, name)
            env_name = name.upper()
            if not value:
                if self.debug:
                    value = secrets.token_hex(32)
                    setattr(self, name, value)
                    logger.warning("WARNING: Using auto-generated %s.", env_name)
                else:
                    raise ValueError(
                        f"{env_name} is required in production mode. "
                        f"Set {env_name} in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{env_name} must be at least {_MIN_SECRET_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
