from __future__ import annotations

from typing import Any, Iterable

import typer

from settings import Settings


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_startup(settings: Settings, address: tuple[str, int]) -> None:
    echo_heading("Telemetry Ingestion Server")
    echo_key_values(
        [
            ("listening", f"{address[0]}:{address[1]}"),
            ("db_path", settings.db_path),
            ("wire_format", settings.wire_format),
            ("idle_timeout", f"{settings.idle_timeout}s"),
            (
                "drain_timeout",
                "unbounded" if settings.drain_timeout is None else f"{settings.drain_timeout}s",
            ),
        ]
    )
    typer.echo()


def render_shutdown(stalled: int) -> None:
    if stalled:
        typer.secho(
            f"Shutdown complete; {stalled} connection(s) did not close in time.",
            fg=typer.colors.YELLOW,
            err=True,
        )
    else:
        typer.secho("Shutdown complete.", fg=typer.colors.GREEN)
