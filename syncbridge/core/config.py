# syncbridge/core/config.py

import os
from functools import lru_cache
from typing import Annotated, Dict, List
from pydantic import BeforeValidator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_csv_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Shopify Admin API
    SHOPIFY_SHOP_URL: str = ""
    SHOPIFY_ADMIN_API_ACCESS_TOKEN: str = ""
    SHOPIFY_API_VERSION: str = "2024-01"

    # NetSuite REST API (token issued out of band)
    NETSUITE_ACCOUNT_ID: str = ""
    NETSUITE_ACCESS_TOKEN: str = ""

    # Rate gate defaults, overridable per platform in sync_configurations
    SHOPIFY_MAX_REQUESTS_PER_MINUTE: int = 40
    SHOPIFY_MAX_REQUESTS_PER_HOUR: int = 2000
    SHOPIFY_BURST_LIMIT: int = 4
    SHOPIFY_BACKOFF_MULTIPLIER: float = 1.5
    SHOPIFY_MAX_BACKOFF_SECONDS: int = 600

    NETSUITE_MAX_REQUESTS_PER_MINUTE: int = 100
    NETSUITE_MAX_REQUESTS_PER_HOUR: int = 5000
    NETSUITE_BURST_LIMIT: int = 10
    NETSUITE_BACKOFF_MULTIPLIER: float = 2.0
    NETSUITE_MAX_BACKOFF_SECONDS: int = 300

    RATE_LIMIT_BASE_BACKOFF_SECONDS: float = 30.0
    RATE_LIMIT_MAX_CONSECUTIVE_ERRORS: int = 5
    RATE_LIMIT_ALERT_THRESHOLD: int = 2
    RATE_LIMIT_CACHE_TTL_SECONDS: float = 1.0

    # Transient-failure retries
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_JITTER_MS: int = 1000

    # Event bus
    EVENT_DISPATCH_INTERVAL_SECONDS: float = 1.0
    EVENT_HANDLER_TIMEOUT_SECONDS: float = 30.0
    EVENT_DEFAULT_MAX_RETRIES: int = 3

    # Reconciler
    SYNC_ERROR_LIST_LIMIT: int = 50
    INVENTORY_SYNC_THRESHOLD: int = 0
    RESTORE_POINT_RETENTION_DAYS: int = 30
    BASE_CURRENCY: str = "USD"
    CURRENCY_RATES: Dict[str, float] = {}

    # Scheduled sync
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_SCHEDULE: str = "0 */4 * * *"
    SYNC_SCHEDULE_DIRECTION: str = "bidirectional"
    SYNC_SCHEDULE_USER_IDS: Annotated[List[str], NoDecode, BeforeValidator(_parse_csv_list)] = []

    model_config = SettingsConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
