# app/core/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Literal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    APP_VERSION: str = "1.0.0"

    # storage
    DOWNLOAD_DIR: Path = Path("downloads")
    UPLOAD_DIR: Path = Path("uploads")
    RETENTION_HOURS: float = 24
    CLEANUP_INTERVAL_SECONDS: float = 3600

    # bulk execution
    MAX_CONCURRENT: int = 20
    SCHEDULER_MODE: Literal["chunked", "sliding"] = "chunked"
    DOWNLOAD_TIMEOUT: float = 30.0
    MAX_BULK_FILES: int = 10
    MAX_FILE_SIZE: int = 50 * 1024 * 1024

    # progress transport
    BROADCAST_TO_ALL: bool = True
    SERVER_STATUS_INTERVAL: float = 30.0

    # http
    # comma separated
    CORS_ORIGINS: str = "http://localhost:5173,https://okiedokie-utility.web.app"

    # logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("MAX_CONCURRENT", "MAX_BULK_FILES", "MAX_FILE_SIZE")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ConfigurationError("Value must be a positive integer")
        return v

    @field_validator("RETENTION_HOURS", "DOWNLOAD_TIMEOUT")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ConfigurationError("Value must be greater than zero")
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def retention_seconds(self) -> float:
        return self.RETENTION_HOURS * 3600

    def ensure_directories(self) -> None:
        """Create the download and upload directories if they are missing."""
        try:
            self.DOWNLOAD_DIR.mkdir(parents=True, exist_ok=True)
            self.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create storage directories: {e}",
                {"download_dir": str(self.DOWNLOAD_DIR), "upload_dir": str(self.UPLOAD_DIR)},
            ) from e


@lru_cache()
def get_settings() -> Settings:
    """
    Cached factory. FastAPI resolves get_settings() through Depends and
    lru_cache guarantees a single Settings instance per process.
    """
    return Settings()
