"""
config.py
=========
Application settings, read from the environment or a local .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Furniture Storefront Pricing API"
    environment: str = "development"
    log_level: str = "INFO"

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./storefront.db"

    # Pricing
    gst_rate: float = 18.0  # Percent, already included in product prices

    # Fallback shipping policy when no zone is active
    default_free_shipping_threshold: float = 10000
    default_distance_free_radius: float = 5
    default_per_km_rate: float = 50
    default_base_rate: float = 500
    default_max_shipping_distance: Optional[float] = None

    # Checkout client
    checkout_base_url: str = "http://localhost:8000"
    checkout_timeout_seconds: float = 10.0
    order_create_max_attempts: int = 2

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
