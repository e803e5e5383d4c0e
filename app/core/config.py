# app/core/config.py - Consolidated

import math
import os
from functools import lru_cache
from typing import Any, Dict, Optional
from pydantic import ConfigDict, model_validator
from pydantic_settings import BaseSettings

from app.core.utils import MAX_INTERVAL_MINUTES

# Environments in which the scheduler webhook may skip the shared secret check.
SCHEDULER_AUTH_BYPASS_ENVIRONMENTS = frozenset({"development"})


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""
    CREATE_TABLES_ON_STARTUP: bool = False

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Basic Auth for the management API
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # External scheduler webhook
    SCHEDULER_SECRET: str = ""
    SKIP_SCHEDULER_AUTH: bool = False

    # Marketplace sync
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_INTERVAL_MINUTES: int = 15
    SYNC_PAGE_SIZE: int = 100
    SYNC_MAX_CONCURRENT: int = 1
    SYNC_CALL_TIMEOUT_SECONDS: float = 120.0
    SYNC_STALE_AFTER_MINUTES: int = 60
    SYNC_ADVANCE_WATERMARK_ON_PARTIAL: bool = True

    # Repricing
    REPRICING_SCHEDULE_ENABLED: bool = False
    REPRICING_INTERVAL_MINUTES: int = 5
    REPRICING_DEFAULT_MONITORING_FREQUENCY: int = 60

    # Credential reference -> credential values, e.g.
    # MARKETPLACE_CREDENTIALS='{"shopify-acme": {"shop_url": "...", "access_token": "..."}}'
    MARKETPLACE_CREDENTIALS: Dict[str, Dict[str, Any]] = {}

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_settings(self):
        if self.SKIP_SCHEDULER_AUTH and self.ENVIRONMENT not in SCHEDULER_AUTH_BYPASS_ENVIRONMENTS:
            raise ValueError(
                f"SKIP_SCHEDULER_AUTH cannot be enabled in the '{self.ENVIRONMENT}' environment"
            )
        for name in (
            "SYNC_INTERVAL_MINUTES",
            "SYNC_PAGE_SIZE",
            "SYNC_CALL_TIMEOUT_SECONDS",
            "SYNC_STALE_AFTER_MINUTES",
            "REPRICING_INTERVAL_MINUTES",
        ):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be positive")
        for name in ("SYNC_INTERVAL_MINUTES", "REPRICING_INTERVAL_MINUTES"):
            if getattr(self, name) > MAX_INTERVAL_MINUTES:
                raise ValueError(f"{name} must be at most {MAX_INTERVAL_MINUTES}")
        if self.SYNC_MAX_CONCURRENT < 1:
            raise ValueError("SYNC_MAX_CONCURRENT must be at least 1")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
