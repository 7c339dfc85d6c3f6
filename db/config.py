from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from utils.const import INTERVAL_PATTERN


class Settings(BaseSettings):
    # Core Application Settings
    app_name: str = "IPTV Catalog Engine"
    version: str = "1.0.0"
    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    data_dir: str = "./data"

    # Database and Cache Settings
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "iptv"
    redis_url: str = "redis://localhost:6379"
    redis_max_connections: int = 50

    # External Service API Keys
    tmdb_token: str | None = None

    # Default administrator, created on first start
    default_admin_username: str = "admin"
    default_admin_password: str | None = None

    # Engine API
    engine_host: str = "0.0.0.0"
    engine_port: int = 3001
    web_api_url: str = "http://localhost:3000"
    notify_timeout: float = 5.0

    # Scheduler Settings
    disable_scheduler: bool = False
    sync_titles_interval: str = "6h"
    titles_monitor_interval: str = "1h"
    config_monitor_interval: str = "5m"

    # Upstream HTTP Settings
    http_timeout: float = 30.0
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_backoff: float = 1.0
    retry_max_backoff: float = 30.0
    tmdb_concurrent_requests: int = 20

    # Title Matcher Settings
    match_threshold: int = 80
    match_margin: int = 15

    @field_validator("sync_titles_interval", "titles_monitor_interval", "config_monitor_interval")
    @classmethod
    def validate_interval(cls, value: str) -> str:
        if not INTERVAL_PATTERN.match(value):
            raise ValueError(
                f"Invalid interval '{value}', expected a number followed by s, m, h or d"
            )
        return value

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
