from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVEL_NAMES = ("debug", "info", "warn", "warning", "error")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    port: int = Field(default=3000, alias="PORT")
    host: str = Field(default="0.0.0.0", alias="HOST")
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("NODE_ENV", "APP_ENV"),
    )
    service_name: str = Field(default="containership", alias="SERVICE_NAME")
    service_version: str = Field(default="1.0.0", alias="SERVICE_VERSION")
    log_level: str = Field(default="info", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")
    log_dir: str = Field(default="/var/log/app", alias="LOG_DIR")
    hostname: str = Field(default="unknown", alias="HOSTNAME")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in LOG_LEVEL_NAMES:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVEL_NAMES)}")
        return level


@dataclass(frozen=True)
class LoggingConfig:
    """Everything the service logger needs, resolved once at startup."""

    service_name: str = "containership"
    service_version: str = "1.0.0"
    environment: str = "development"
    hostname: str = "unknown"
    level: str = "info"
    log_to_file: bool = False
    log_dir: Path = Path("/var/log/app")
    max_bytes: int = 100 * 1024 * 1024
    error_max_files: int = 5
    combined_max_files: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> LoggingConfig:
        return cls(
            service_name=settings.service_name,
            service_version=settings.service_version,
            environment=settings.environment,
            hostname=settings.hostname,
            level=settings.log_level,
            log_to_file=settings.log_to_file,
            log_dir=Path(settings.log_dir),
        )

    @property
    def pretty(self) -> bool:
        # Only development gets the human readable renderer; every other
        # environment ships JSON.
        return self.environment == "development"

    @property
    def file_sinks_enabled(self) -> bool:
        return self.log_to_file and self.environment == "production"

    @property
    def error_log_path(self) -> Path:
        return self.log_dir / "error.log"

    @property
    def combined_log_path(self) -> Path:
        return self.log_dir / "combined.log"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
