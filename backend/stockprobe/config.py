from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./stockprobe.db"

    # Application
    environment: str = "development"
    api_prefix: str = "/api"

    # Admin API Key (for manual probe triggers)
    admin_api_key: str | None = None

    # Remote platform
    country_code: str = "AR"
    default_currency: str = "ARS"
    probe_client_mode: str = "direct"  # Options: direct, orderform
    proxy_url: str | None = None
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
    )
    accept_language: str = "es-AR,es;q=0.9,en;q=0.8"
    request_timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.0

    # Probing
    probe_mode: str = "batch"  # Options: batch, single
    probe_max_quantity: int = 512
    parallelism: int = 8
    min_batch_size: int = 20
    max_batch_size: int = 50
    resolve_missing_eans: bool = False
    own_brand: str = "Adeco"  # owner counted as own brand in run reports
    max_stores: int | None = None  # None = every eligible store
    max_skus: int | None = None  # None = every resolved SKU/seller pair

    # Pacing (seconds)
    product_delay_seconds: float = 0.1
    batch_delay_seconds: float = 0.25
    store_delay_seconds: float = 0.5
    retailer_delay_seconds: float = 2.0

    # Persistence
    raw_payload_max_length: int = 4000
    error_message_max_length: int = 500

    # Scheduler
    scheduler_enabled: bool = True
    probe_cron_hour: int = 4
    probe_cron_minute: int = 0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
