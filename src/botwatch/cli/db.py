"""
CLI: ``botwatch db`` -- database management commands.
"""

from __future__ import annotations

import typer

from botwatch.alerting.store import SqlAlertStore
from botwatch.cli.utils import console, load_settings
from botwatch.core.orm.base import BotwatchBase
from botwatch.core.orm.session import create_botwatch_engine

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLAlchemy database URL"),
) -> None:
    """Initialise database schema (create tables)."""
    settings = load_settings(database)
    engine = create_botwatch_engine(settings.database_url)
    try:
        SqlAlertStore(engine).create_schema()
    finally:
        engine.dispose()

    console.print(f"[green]✓[/green] Created {len(BotwatchBase.metadata.tables)} tables")
    for name in sorted(BotwatchBase.metadata.tables):
        console.print(f"  [cyan]{name}[/cyan]")
