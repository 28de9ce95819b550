from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DEVDECK_", case_sensitive=False)

    log_level: str = "info"
    log_format: str = "json"
    log_dir: Path | None = None
    config_dir: Path | None = None
    default_poll_interval_ms: int = 10_000
    min_poll_interval_ms: int = 100
    max_poll_interval_ms: int = 300_000

    def clamp_poll_interval(self, value: int | None) -> int:
        if value is None or value <= 0:
            value = self.default_poll_interval_ms
        return max(self.min_poll_interval_ms, min(self.max_poll_interval_ms, value))


@lru_cache
def get_runtime_config() -> RuntimeConfig:
    return RuntimeConfig()
