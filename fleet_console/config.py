from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    registry_url: str = Field(default="http://localhost:4000")
    database_url: str = Field(default="sqlite:///./fleet_console.db")

    refresh_interval_sec: float = Field(default=5.0, gt=0)
    poll_interval_sec: float = Field(default=5.0, gt=0)
    manual_refresh_min_visible_sec: float = Field(default=2.0, ge=0)
    install_display_delay_sec: float = Field(default=3.0, ge=0)
    copied_indicator_sec: float = Field(default=2.0, ge=0)

    setup_ttl_sec: int = Field(default=12 * 60 * 60, ge=60)
    setup_storage_key: str = Field(default="pending_vm_setup_v2")
    metrics_limit: int = Field(default=50, ge=1, le=50)
    detail_view_idle_sec: float = Field(default=60.0, gt=0)
    max_detail_views: int = Field(default=32, ge=1)

    http_timeout_sec: float = Field(default=10.0, gt=0)
    retry_attempts: int = Field(default=1, ge=1)
    retry_sleep_sec: float = Field(default=0.0, ge=0)

    clipboard_command: str = Field(default="xclip -selection clipboard")
    clipboard_fallback_command: str = Field(default="xsel --primary --input")

    bind_host: str = Field(default="127.0.0.1")
    bind_port: int = Field(default=8080, ge=1, le=65535)

    disable_background_loops: bool = Field(default=False)
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
