"""
Pytest configuration for the data ingestor.

Provides fixtures for:
- Settings isolation (cached settings cleared around every test)
- In-memory schemas and stores for unit tests
- Database connection management for integration tests
"""

from __future__ import annotations

import os
from typing import Generator

import psycopg
import pytest

from ingestor.config import Settings, get_settings
from ingestor.domain.models import Schema
from tests.fakes import FakeStore

INTEGRATION_TABLE = "ingest_it_records"


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Generator[None, None, None]:
    """Keep env overrides from leaking between tests through the settings cache."""
    monkeypatch.setenv("RESULTS_DIR", str(tmp_path / "results"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def scan_schema() -> Schema:
    """Schema for records carrying a nested `fnumbers` collection."""
    return Schema.model_validate(
        {
            "table": "sflw_recs",
            "columns": [
                "user",
                {"field": "dateCreated", "column": "dt_created"},
                "status",
                {"field": "fNumber", "column": "fnumber"},
                {"field": "scanTime", "column": "scan_time"},
            ],
        }
    )


@pytest.fixture
def flat_schema() -> Schema:
    return Schema.model_validate({"table": "people", "columns": ["id", "name", "email"]})


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "ingestor"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def clean_target_table(db_connection: psycopg.Connection) -> Generator[str, None, None]:
    """
    Create the integration target table and empty it around each test.
    """
    with db_connection.cursor() as cur:
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {INTEGRATION_TABLE} (
                id        BIGSERIAL PRIMARY KEY,
                "user"    TEXT NOT NULL,
                status    TEXT,
                fnumber   TEXT,
                scan_time TEXT
            )
            """
        )
        cur.execute(f"TRUNCATE TABLE {INTEGRATION_TABLE} RESTART IDENTITY")
    yield INTEGRATION_TABLE
    with db_connection.cursor() as cur:
        cur.execute(f"TRUNCATE TABLE {INTEGRATION_TABLE} RESTART IDENTITY")
