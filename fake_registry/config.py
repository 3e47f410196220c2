from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FakeRegistrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FAKE_REGISTRY_", extra="ignore")

    public_url: str = Field(default="http://localhost:4000")
    token_ttl_sec: int = Field(default=3600, ge=1)
    max_samples: int = Field(default=500, ge=1)
    default_ram_total_mb: int = Field(default=4096, ge=1)
    default_disk_total_mb: int = Field(default=40960, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> FakeRegistrySettings:
    return FakeRegistrySettings()
