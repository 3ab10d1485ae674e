from __future__ import annotations

import logging
from typing import NoReturn, Optional

import typer

from app.main import create_server
from cli.config import load_config
from cli.render import echo_heading, echo_key_values, render_shutdown, render_startup
from datastore.sqlite_store import TABLE_NAME, StoreError, initialize_store
from logging_config import configure_logging
from services.decoder import WireFormat

app = typer.Typer(
    help="Telemetry ingestion server for streaming sensor nodes.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _known_log_level(name: str) -> bool:
    return isinstance(logging.getLevelName(name), int)


@app.command("serve")
def serve_command(
    host: Optional[str] = typer.Option(
        None, "--host", help="Interface to bind (defaults to TELEMETRY_HOST or 0.0.0.0)."
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        min=0,
        max=65535,
        help="TCP port to listen on (defaults to TELEMETRY_PORT or 9000).",
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="SQLite file receiving records (defaults to TELEMETRY_DB_PATH)."
    ),
    wire_format: Optional[WireFormat] = typer.Option(
        None, "--wire-format", help="Line encoding clients use."
    ),
    idle_timeout: Optional[float] = typer.Option(
        None, "--idle-timeout", min=0.001, help="Seconds a read may block before polling again."
    ),
    drain_timeout: Optional[float] = typer.Option(
        None,
        "--drain-timeout",
        min=0.0,
        help="Seconds to wait for open connections on shutdown before force-closing them.",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level name."),
) -> None:
    """Accept sensor clients until SIGINT or SIGTERM, then drain and exit."""
    settings = load_config(
        host=host,
        port=port,
        db_path=db_path,
        wire_format=wire_format.value if wire_format is not None else None,
        idle_timeout=idle_timeout,
        drain_timeout=drain_timeout,
        log_level=log_level.strip().upper() if log_level is not None else None,
    )
    if not _known_log_level(settings.log_level):
        _fail(f"Unknown log level: {settings.log_level}")
    configure_logging(settings.log_level)

    try:
        server = create_server(settings)
    except StoreError as exc:
        _fail(f"Cannot open store: {exc}")
    except OSError as exc:
        _fail(f"Cannot listen on {settings.host}:{settings.port}: {exc}")

    render_startup(settings, server.address)
    stalled = server.serve()
    render_shutdown(stalled)


@app.command("init-db")
def init_db_command(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="SQLite file to create (defaults to TELEMETRY_DB_PATH)."
    ),
) -> None:
    """Create the store and its table without starting the server."""
    settings = load_config(db_path=db_path)
    try:
        path = initialize_store(settings.db_path)
    except StoreError as exc:
        _fail(f"Cannot open store: {exc}")
    echo_heading("Store initialized")
    echo_key_values([("db_path", path), ("table", TABLE_NAME)])
