"""Runtime configuration for the fleettop dashboard and host agent."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings, read from FLEETTOP_* environment variables or .env."""

    TARGETS_FILE: str = "targets.json"

    # Poller
    POLL_INTERVAL: float = Field(default=5.0, gt=0)
    PROBE_TIMEOUT: float = Field(default=3.0, gt=0)
    CONCURRENCY_LIMIT: int = Field(default=100, ge=1)
    METRICS_PATH: str = "/usage"

    # Logging; LOG_FILE="" disables the dashboard log file
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "fleettop.log"

    # Host agent
    AGENT_HOST: str = "0.0.0.0"
    AGENT_PORT: int = Field(default=8081, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="FLEETTOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _timeout_within_interval(self) -> "Settings":
        # A probe must not be able to outlast a whole poll interval
        if self.PROBE_TIMEOUT >= self.POLL_INTERVAL:
            raise ValueError("PROBE_TIMEOUT must be shorter than POLL_INTERVAL")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
