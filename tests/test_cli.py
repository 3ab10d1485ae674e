from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List

import pytest
from typer.testing import CliRunner

from cli.app import app
from datastore.sqlite_store import TABLE_NAME, StoreError
from settings import Settings, get_settings


class StubServer:
    def __init__(self, settings: Settings, stalled: int = 0) -> None:
        self.settings = settings
        self.address = ("127.0.0.1", settings.port)
        self.stalled = stalled
        self.served = False

    def serve(self) -> int:
        self.served = True
        return self.stalled


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path) -> Iterator[None]:
    monkeypatch.setenv("TELEMETRY_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setattr("cli.app.configure_logging", lambda level=None: None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _install_stub(monkeypatch, stalled: int = 0) -> List[StubServer]:
    created: List[StubServer] = []

    def factory(settings: Settings) -> StubServer:
        server = StubServer(settings, stalled=stalled)
        created.append(server)
        return server

    monkeypatch.setattr("cli.app.create_server", factory)
    return created


def test_serve_applies_cli_overrides(monkeypatch, runner: CliRunner, tmp_path) -> None:
    created = _install_stub(monkeypatch)
    db_path = tmp_path / "cli.db"

    result = runner.invoke(
        app,
        [
            "serve",
            "--port",
            "9555",
            "--db-path",
            str(db_path),
            "--wire-format",
            "structured",
            "--drain-timeout",
            "2.5",
        ],
    )

    assert result.exit_code == 0, result.output
    assert len(created) == 1
    settings = created[0].settings
    assert settings.port == 9555
    assert settings.db_path == str(db_path)
    assert settings.wire_format == "structured"
    assert settings.drain_timeout == 2.5
    assert created[0].served is True
    assert "listening: 127.0.0.1:9555" in result.output
    assert "Shutdown complete." in result.output


def test_serve_uses_environment_defaults(monkeypatch, runner: CliRunner, tmp_path) -> None:
    created = _install_stub(monkeypatch)

    result = runner.invoke(app, ["serve"])

    assert result.exit_code == 0, result.output
    assert created[0].settings.db_path == str(tmp_path / "env.db")
    assert created[0].settings.wire_format == "delimited"


def test_serve_reports_stalled_connections(monkeypatch, runner: CliRunner) -> None:
    _install_stub(monkeypatch, stalled=2)

    result = runner.invoke(app, ["serve"])

    assert result.exit_code == 0
    assert "2 connection(s) did not close in time" in result.output


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (OSError(98, "Address already in use"), "Cannot listen on"),
        (StoreError("unable to open database file"), "Cannot open store"),
    ],
)
def test_serve_startup_failure_exits_with_error(
    monkeypatch, runner: CliRunner, error: Exception, expected: str
) -> None:
    def failing_factory(settings: Settings) -> Any:
        raise error

    monkeypatch.setattr("cli.app.create_server", failing_factory)

    result = runner.invoke(app, ["serve"])

    assert result.exit_code == 1
    assert expected in result.output


def test_serve_rejects_unknown_wire_format(monkeypatch, runner: CliRunner) -> None:
    created = _install_stub(monkeypatch)

    result = runner.invoke(app, ["serve", "--wire-format", "xml"])

    assert result.exit_code != 0
    assert not created


def test_init_db_creates_table(runner: CliRunner, tmp_path: Path) -> None:
    db_path = tmp_path / "fresh" / "data.db"

    result = runner.invoke(app, ["init-db", "--db-path", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Store initialized" in result.output
    with sqlite3.connect(db_path) as connection:
        tables: Dict[str, Any] = dict(
            connection.execute("SELECT name, type FROM sqlite_master").fetchall()
        )
    assert TABLE_NAME in tables


def test_serve_rejects_unknown_log_level(monkeypatch, runner: CliRunner) -> None:
    created = _install_stub(monkeypatch)

    result = runner.invoke(app, ["serve", "--log-level", "loud"])

    assert result.exit_code == 1
    assert "Unknown log level: LOUD" in result.output
    assert not created


def test_serve_accepts_lowercase_log_level(monkeypatch, runner: CliRunner) -> None:
    created = _install_stub(monkeypatch)

    result = runner.invoke(app, ["serve", "--log-level", "debug"])

    assert result.exit_code == 0, result.output
    assert created[0].settings.log_level == "DEBUG"
