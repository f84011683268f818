"""
Root Typer application for the botwatch CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from botwatch.core.logging import configure_logging
from botwatch.core.settings import BotwatchSettings

app = Typer(
    name="botwatch",
    help="botwatch -- alerting pipeline for WeChat-group chatbots.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("botwatch")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"botwatch {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override BOTWATCH_LOG_LEVEL."),
) -> None:
    """botwatch CLI -- evaluate rules, manage alerts, inspect limits."""
    settings = BotwatchSettings()
    configure_logging(level=log_level or settings.log_level, json_format=settings.log_json)


# ── Sub-command registration ─────────────────────────────────────────────

from botwatch.cli import alerts  # noqa: E402
from botwatch.cli.db import app as db_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")

app.command("run")(alerts.run)
app.command("evaluate")(alerts.evaluate)
app.command("show")(alerts.show)
app.command("ack")(alerts.ack)
app.command("close")(alerts.close)
app.command("stats")(alerts.stats)
app.command("limits")(alerts.limits)
