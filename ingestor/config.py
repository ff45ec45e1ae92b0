"""
Configuration settings for the data ingestor.

Uses Pydantic Settings to load environment variables for database connections,
logging, and ingestion run defaults (worker count, streaming batch threshold,
run deadline, file disposition).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("ingestor", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(0, ge=0, alias="DB_STATEMENT_TIMEOUT_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Ingestion defaults
    worker_count: int = Field(2, gt=0, alias="WORKER_COUNT")
    stream_batch_size: Optional[int] = Field(None, gt=0, alias="STREAM_BATCH_SIZE")
    record_buffer_size: int = Field(1000, gt=0, alias="RECORD_BUFFER_SIZE")
    run_timeout_seconds: Optional[float] = Field(None, gt=0, alias="RUN_TIMEOUT_SECONDS")
    file_destination: Optional[str] = Field(None, alias="FILE_DESTINATION")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
