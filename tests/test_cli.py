"""Tests for the workroute CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from workroute.cli import app
from workroute.errors import StoreError
from workroute.storage.db import get_connection
from workroute.storage.store import TableStore
from workroute.tables import BUGS, PROJECT_PATHS, PROJECTS, TODOS

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch) -> Path:
    for key in ["WORKROUTE_PATTERNS_FILE", "WORKROUTE_LOG_PATH", "WORKROUTE_CACHE_TTL",
                "WORKROUTE_PIPELINE_INTERVAL"]:
        monkeypatch.delenv(key, raising=False)
    path = tmp_path / "cli.db"
    result = runner.invoke(app, ["--db", str(path), "init-db"])
    assert result.exit_code == 0
    return path


def _insert(db: Path, table: str, record: dict) -> None:
    conn = get_connection(db)
    try:
        TableStore(conn).insert(table, record)
    finally:
        conn.close()


def _get(db: Path, table: str, item_id: str) -> dict:
    conn = get_connection(db)
    try:
        return TableStore(conn).get(table, item_id)
    finally:
        conn.close()


class TestInitDb:
    def test_creates_database(self, cli_db: Path):
        assert cli_db.exists()

    def test_malformed_interval_rejected(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("WORKROUTE_PIPELINE_INTERVAL", "every minute")
        result = runner.invoke(app, ["--db", str(tmp_path / "cli.db"), "init-db"])
        assert result.exit_code == 1
        assert "WORKROUTE_PIPELINE_INTERVAL" in result.output

    def test_missing_database_is_an_error(self, tmp_path: Path):
        result = runner.invoke(app, ["--db", str(tmp_path / "nope.db"), "pipeline"])
        assert result.exit_code == 1
        assert "init-db" in result.output


class TestPipelineCommand:
    def test_promotes_intake_items(self, cli_db: Path):
        _insert(cli_db, TODOS, {"id": "t-1", "title": "New task"})
        result = runner.invoke(app, ["--db", str(cli_db), "pipeline"])
        assert result.exit_code == 0
        assert "Processed" in result.output
        todo = _get(cli_db, TODOS, "t-1")
        assert todo["status"] == "open"
        assert todo["priority"] == "medium"

    def test_run_is_recorded(self, cli_db: Path):
        runner.invoke(app, ["--db", str(cli_db), "pipeline"])
        log_path = cli_db.parent / "workroute-runs.jsonl"
        entry = json.loads(log_path.read_text().splitlines()[-1])
        assert entry["operation"] == "pipeline"
        assert entry["error"] is None

        result = runner.invoke(app, ["--db", str(cli_db), "history"])
        assert "pipeline" in result.output


class TestRouteCommands:
    def test_route_single_table(self, cli_db: Path):
        _insert(cli_db, PROJECTS, {"id": "p-engine", "name": "NextBid Engine", "client_id": "c-nb"})
        _insert(cli_db, TODOS, {"id": "t-1", "title": "auction engine timeout"})
        result = runner.invoke(app, ["--db", str(cli_db), "route", "--table", TODOS])
        assert result.exit_code == 0
        assert _get(cli_db, TODOS, "t-1")["project_id"] == "p-engine"

    def test_route_dry_run_writes_nothing(self, cli_db: Path):
        _insert(cli_db, PROJECTS, {"id": "p-engine", "name": "NextBid Engine"})
        _insert(cli_db, BUGS, {"id": "b-1", "title": "auction engine crash"})
        result = runner.invoke(app, ["--db", str(cli_db), "route", "--dry-run"])
        assert result.exit_code == 0
        assert "Would reroute" in result.output
        assert _get(cli_db, BUGS, "b-1")["project_id"] is None

    def test_unknown_table(self, cli_db: Path):
        result = runner.invoke(app, ["--db", str(cli_db), "route", "--table", "dev_ai_recipes"])
        assert result.exit_code == 2
        assert "Unknown table" in result.output

    def test_detect(self, cli_db: Path):
        _insert(cli_db, PROJECTS, {"id": "p-engine", "name": "NextBid Engine"})
        result = runner.invoke(app, ["--db", str(cli_db), "detect", "auction engine timeout"])
        assert result.exit_code == 0
        assert "NextBid Engine" in result.output

        result = runner.invoke(app, ["--db", str(cli_db), "detect", "weekly notes"])
        assert "No project detected" in result.output


class TestMergeCommand:
    def test_merges_todos(self, cli_db: Path):
        _insert(cli_db, TODOS, {"id": "t-1", "title": "Fix login bug", "status": "open",
                                "created_at": "2024-06-01T09:00:00"})
        _insert(cli_db, TODOS, {"id": "t-2", "title": "Fix login bug", "status": "open",
                                "created_at": "2024-06-01T09:01:00"})
        result = runner.invoke(app, ["--db", str(cli_db), "merge", "--table", "todos"])
        assert result.exit_code == 0
        assert _get(cli_db, TODOS, "t-2")["status"] == "completed"

    def test_unknown_target(self, cli_db: Path):
        result = runner.invoke(app, ["--db", str(cli_db), "merge", "--table", "docs"])
        assert result.exit_code == 2


class TestOtherCommands:
    def test_patterns(self, cli_db: Path):
        result = runner.invoke(app, ["--db", str(cli_db), "patterns"])
        assert result.exit_code == 0
        assert "NextBid Engine" in result.output

    def test_todos_listing(self, cli_db: Path):
        _insert(cli_db, TODOS, {"id": "t-1", "title": "Ship it", "project_path": "/srv/app",
                                "category": "Release"})
        result = runner.invoke(app, ["--db", str(cli_db), "todos", "/srv/app"])
        assert result.exit_code == 0
        assert "Release" in result.output
        assert "Ship it" in result.output

    def test_organize_requires_api_key(self, cli_db: Path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "")
        result = runner.invoke(app, ["--db", str(cli_db), "organize", "/srv/app"])
        assert result.exit_code == 1
        assert "ANTHROPIC_API_KEY" in result.output

    def test_organize_needs_path_or_all(self, cli_db: Path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        result = runner.invoke(app, ["--db", str(cli_db), "organize"])
        assert result.exit_code == 2
        assert "--all" in result.output

    def test_organize_all(self, cli_db: Path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        _insert(cli_db, TODOS, {"id": "t-1", "title": "Ship it", "project_path": "/srv/app", "status": "open"})
        _insert(cli_db, TODOS, {"id": "t-2", "title": "Fix footer", "project_path": "/srv/web", "status": "open"})

        response = MagicMock()
        response.content = [MagicMock(text=json.dumps({"mark_complete": ["t-1", "t-2"]}))]
        client = MagicMock()
        client.messages.create.return_value = response
        with patch("workroute.cli.anthropic.Anthropic", return_value=client):
            result = runner.invoke(app, ["--db", str(cli_db), "organize", "--all"])

        assert result.exit_code == 0
        assert "Organized 2 path(s), 0 failed" in result.output
        assert _get(cli_db, TODOS, "t-1")["status"] == "completed"
        assert _get(cli_db, TODOS, "t-2")["status"] == "completed"

    def test_link_path(self, cli_db: Path):
        _insert(cli_db, PROJECTS, {"id": "p-engine", "name": "NextBid Engine"})
        result = runner.invoke(app, ["--db", str(cli_db), "link-path", "p-engine", "/srv/engine"])
        assert result.exit_code == 0
        conn = get_connection(cli_db)
        try:
            rows = TableStore(conn).select(PROJECT_PATHS, eq={"path": "/srv/engine"})
        finally:
            conn.close()
        assert [r["project_id"] for r in rows] == ["p-engine"]

    def test_link_path_unknown_project(self, cli_db: Path):
        result = runner.invoke(app, ["--db", str(cli_db), "link-path", "p-nope", "/srv/engine"])
        assert result.exit_code == 1
        assert "Unknown project" in result.output


class TestStoreFailures:
    @pytest.fixture
    def locked_store(self, cli_db: Path, monkeypatch) -> Path:
        def select(self, table, *args, **kwargs):
            raise StoreError(f"select from {table} failed: database is locked")

        monkeypatch.setattr(TableStore, "select", select)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        return cli_db

    @pytest.mark.parametrize(
        "command",
        [
            ["phases"],
            ["merge", "--table", "todos"],
            ["todos", "/srv/app"],
            ["organize", "/srv/app"],
            ["organize", "--all"],
            ["route", "--table", "dev_ai_todos"],
        ],
    )
    def test_exits_cleanly(self, locked_store: Path, command: list[str]):
        result = runner.invoke(app, ["--db", str(locked_store), *command])
        assert result.exit_code == 1
        assert "Store error" in result.output
        assert "database is locked" in result.output
