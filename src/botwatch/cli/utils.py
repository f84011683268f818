"""
CLI utility helpers -- settings, pipeline construction and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from dataclasses import asdict, is_dataclass
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from botwatch.alerting.channels import ConsoleChannel
from botwatch.alerting.pipeline import AlertPipeline, build_pipeline
from botwatch.core.settings import BotwatchSettings

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Pipeline helpers ─────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> BotwatchSettings:
    """Settings from the environment, with an optional database override."""
    if database:
        return BotwatchSettings(database_url=database)
    return BotwatchSettings()


def make_pipeline(database: str | None = None, *, console_delivery: bool = False) -> AlertPipeline:
    """Build a database-backed pipeline for one CLI invocation."""
    settings = load_settings(database)
    channel = ConsoleChannel() if console_delivery else None
    return build_pipeline(settings, channel=channel, create_schema=True)


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine to completion from a synchronous command."""

    async def _runner() -> T:
        return await coro

    return asyncio.run(_runner())


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _plain(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if is_dataclass(obj):
        return asdict(obj)
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Print one record or a list of records, as JSON or for a human."""
    rows = [_plain(d) for d in data] if isinstance(data, list | tuple) else None

    if as_json:
        console.print_json(json.dumps(rows if rows is not None else _plain(data), default=str))
    elif rows is None:
        if title:
            console.print(f"[bold]{title}[/bold]")
        for key, value in _plain(data).items():
            console.print(f"  [cyan]{key}[/cyan]: {value}")
    elif not rows:
        console.print("[dim]No items.[/dim]")
    else:
        table = Table(title=title or None, pad_edge=False)
        for column in rows[0]:
            table.add_column(column, overflow="fold")
        for row in rows:
            table.add_row(*(str(row.get(column, "")) for column in rows[0]))
        console.print(table)
