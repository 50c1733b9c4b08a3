"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the ITAM lifecycle service happen here. No
module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. lost_escalation_days -> LOST_ESCALATION_DAYS). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Rejects escalation windows and sweep
      intervals that would make the Lost -> Disposed sweep fire immediately
      or spin.

Layer rule: core/ is the kernel. This module may not import from api/ or cmdb/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("itam.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string means "use the store's default SQLite file".
    database_url: str = ""

    # ------------------------------------------------------------------
    # Lost -> Disposed auto-escalation
    # ------------------------------------------------------------------

    lost_escalation_days: int = 30
    escalation_interval_seconds: int = 3600
    escalation_actor: str = "system:lost-escalation"
    # Dashboard window: Lost assets this close to escalation are "approaching".
    approaching_days: int = 7

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    transition_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_escalation(self) -> "Settings":
        """Reject escalation settings that cannot describe a real schedule.

        lost_escalation_days < 1 would dispose an asset the moment it is
        marked Lost. escalation_interval_seconds < 1 would turn the
        background sweep into a busy loop.
        """
        if self.lost_escalation_days < 1:
            raise ValueError("LOST_ESCALATION_DAYS must be at least 1.")
        if self.escalation_interval_seconds < 1:
            raise ValueError("ESCALATION_INTERVAL_SECONDS must be at least 1.")
        if self.approaching_days < 0:
            raise ValueError("APPROACHING_DAYS must not be negative.")
        if self.debug:
            logger.warning("DEBUG is enabled -- do not run this configuration in production.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
