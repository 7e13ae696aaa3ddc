from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"

    redis_url: str = "redis://localhost:6379"
    redis_max_connections: int = 50
    redis_socket_timeout: int = 5

    latest_cache_ttl_seconds: int = 0
    latest_route_cache_ttl_seconds: int = 10
    summary_cache_ttl_seconds: int = 60

    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_ingest_per_second: int = 10000
    device_id_header: str = "device-id"

    site_id_pattern: str = r"^site-[A-Z]$"
    device_id_pattern: str = r"^dev-\d+$"
    summary_require_window: bool = True

    alert_webhook_url: Optional[str] = None
    alert_webhook_timeout_seconds: float = 5.0
    temperature_alert_threshold: float = 50.0
    humidity_alert_threshold: float = 90.0

    telemetry_batch_max_size: int = 1000
    dedupe_event_ids: bool = True
    event_id_retention_seconds: int = 7 * 86400

    worker_count: int = 4
    worker_queue_max_size: int = 10000

    backpressure_queue_threshold: int = 8000
    backpressure_reject_threshold: int = 9500

    ingest_token: Optional[str] = None

    class Config:
        env_file = ".env"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
