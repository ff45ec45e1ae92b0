from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ingestor import main
from tests.fakes import FakeStore

runner = CliRunner()

SCHEMA = {
    "table": "sflw_recs",
    "columns": ["user", "status", {"field": "fNumber", "column": "fnumber"}],
}
RECORDS = {
    "Records": [
        {"user": "a", "status": "ok", "fnumbers": [{"fNumber": "F1"}, {"fNumber": "F2"}]},
        {"user": "b", "status": "ok"},
        {"user": "c", "status": "ok"},
    ]
}


@pytest.fixture
def files(tmp_path: Path) -> tuple[Path, Path]:
    schema_path = tmp_path / "schema.json"
    schema_path.write_text(json.dumps(SCHEMA), encoding="utf-8")
    data_path = tmp_path / "records.json"
    data_path.write_text(json.dumps(RECORDS), encoding="utf-8")
    return data_path, schema_path


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> FakeStore:
    fake = FakeStore()
    monkeypatch.setattr(main, "_build_store", lambda workers: fake)
    monkeypatch.setattr(main, "configure_logging", lambda **kwargs: None)
    return fake


def _ingest(data_path: Path, schema_path: Path, *extra: str):
    return runner.invoke(
        main.app,
        ["ingest", "--file", str(data_path), "--schema", str(schema_path), "--no-persist", *extra],
    )


def test_ingest_success_moves_file(files, store: FakeStore, tmp_path: Path) -> None:
    data_path, schema_path = files
    done = tmp_path / "done"

    result = _ingest(data_path, schema_path, "--workers", "2", "--move-to", str(done))

    assert result.exit_code == 0, result.output
    assert len(store.committed_rows) == 4
    assert (done / "records.json").exists()
    assert not data_path.exists()


def test_ingest_stream_mode(files, store: FakeStore) -> None:
    data_path, schema_path = files

    result = _ingest(data_path, schema_path, "--mode", "stream", "--batch-size", "1")

    assert result.exit_code == 0, result.output
    assert len(store.committed_rows) == 4


def test_ingest_row_failure_exits_with_mapping_code(files, store: FakeStore) -> None:
    data_path, schema_path = files
    store.required = {"fnumber"}

    result = _ingest(data_path, schema_path, "--move-to", str(data_path.parent / "done"))

    assert result.exit_code == main.EXIT_FAILED_MAPPING
    assert store.committed_rows == []
    assert data_path.exists()


def test_ingest_commit_failure_exits_with_finalization_code(files, store: FakeStore) -> None:
    data_path, schema_path = files
    store.fail_commit = {0}

    result = _ingest(data_path, schema_path, "--workers", "2")

    assert result.exit_code == main.EXIT_FAILED_FINALIZATION


def test_ingest_rejects_bad_schema_and_mode(files, store: FakeStore, tmp_path: Path) -> None:
    data_path, _ = files
    bad_schema = tmp_path / "bad.json"
    bad_schema.write_text(json.dumps({"table": "t", "columns": []}), encoding="utf-8")

    assert _ingest(data_path, bad_schema).exit_code == main.EXIT_USAGE
    assert _ingest(data_path, files[1], "--mode", "turbo").exit_code == main.EXIT_USAGE
    assert store.transactions == []


@pytest.mark.parametrize("timeout", ["0", "-1"])
def test_ingest_rejects_non_positive_timeout(files, store: FakeStore, timeout: str) -> None:
    data_path, schema_path = files

    result = _ingest(data_path, schema_path, f"--timeout={timeout}")

    assert result.exit_code == main.EXIT_USAGE
    assert store.transactions == []


def test_preview_prints_flattened_rows(files) -> None:
    data_path, schema_path = files

    result = runner.invoke(
        main.app, ["preview", "--file", str(data_path), "--schema", str(schema_path), "--limit", "1"]
    )

    assert result.exit_code == 0, result.output
    preview = json.loads(result.stdout)
    assert preview == [
        {
            "record": 0,
            "rows": [
                {"user": "a", "status": "ok", "fnumber": "F1"},
                {"user": "a", "status": "ok", "fnumber": "F2"},
            ],
        }
    ]


def test_info_shows_worker_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_COUNT", "5")

    result = runner.invoke(main.app, ["info"])

    assert result.exit_code == 0
    assert "workers=5" in result.stdout
