import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Mine App Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 5000

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Security settings
    withdraw_rate_limit: str = "5/minute"

    # CORS settings
    allowed_origins: List[str] = ["*"]
    allowed_methods: List[str] = ["GET", "POST", "OPTIONS"]
    allowed_headers: List[str] = ["*"]

    # Exchange rates
    usd_to_ngn: float = 1500.0
    dav_coin_value_usd: float = 0.01

    # Payment provider
    moniepoint_api_key: str = ""
    moniepoint_secret: str = ""
    moniepoint_transfer_url: str = "https://sandbox.moniepoint.com/api/v1/transfer"
    provider_timeout_seconds: float = 10.0

    # Persistence
    data_file: str = "data.json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Environment-specific configurations
class DevelopmentSettings(Settings):
    debug: bool = True
    environment: str = "development"
    log_level: str = "DEBUG"
    log_format: str = "text"


class ProductionSettings(Settings):
    debug: bool = False
    environment: str = "production"
    log_level: str = "INFO"


class TestingSettings(Settings):
    debug: bool = True
    environment: str = "testing"
    log_level: str = "WARNING"  # Reduce noise in tests
    moniepoint_api_key: str = "test-api-key"
    moniepoint_secret: str = "test-secret"


def get_settings_for_environment(env: str = "production") -> Settings:
    """Get settings for specific environment."""
    settings_map = {
        "development": DevelopmentSettings,
        "production": ProductionSettings,
        "testing": TestingSettings,
    }

    settings_class = settings_map.get(env.lower(), Settings)
    return settings_class()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance for the ENVIRONMENT variable."""
    return get_settings_for_environment(os.getenv("ENVIRONMENT", "production"))
