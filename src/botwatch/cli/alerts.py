"""
CLI: alert pipeline commands -- ``run``, ``evaluate``, ``show``, ``ack``,
``close``, ``stats`` and ``limits``.
"""

from __future__ import annotations

import asyncio
import signal

import typer

from botwatch.alerting.pipeline import AlertPipeline
from botwatch.cli.utils import console, fail, make_pipeline, output, run_async
from botwatch.core.errors import AlertLifecycleError, InvalidConfigError
from botwatch.core.logging import get_logger

logger = get_logger(__name__)


async def _serve(pipeline: AlertPipeline) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with pipeline:
        logger.info("botwatch_running", interval_seconds=pipeline.settings.evaluation_interval_seconds)
        await stop.wait()
    logger.info("botwatch_stopped")


def run(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLAlchemy database URL"),
    console_delivery: bool = typer.Option(False, "--console", help="Print notifications instead of queueing robot commands"),
) -> None:
    """Run the rule engine and dedup maintenance until interrupted."""
    pipeline = make_pipeline(database, console_delivery=console_delivery)
    run_async(_serve(pipeline))


def evaluate(
    database: str | None = typer.Option(None, "--database", "-d"),
    console_delivery: bool = typer.Option(False, "--console"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one evaluation pass now."""
    pipeline = make_pipeline(database, console_delivery=console_delivery)
    try:
        summary = run_async(pipeline.evaluate_now())
    finally:
        run_async(pipeline.stop())

    if summary is None:
        fail("An evaluation pass is already running")
    output(summary, as_json=json_out, title="Evaluation")


def show(
    alert_id: str = typer.Argument(..., help="Alert ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show an alert and its notification trail."""
    pipeline = make_pipeline(database)
    try:
        event = pipeline.get_alert(alert_id)
        notifications = pipeline.list_notifications(alert_id)
    finally:
        run_async(pipeline.stop())

    if event is None:
        fail(f"Alert not found: {alert_id}")
    output(event, as_json=json_out, title="Alert")
    if not json_out:
        output(
            [
                {
                    "recipient": n.recipient_id,
                    "status": n.status.value,
                    "reason": n.reason or n.error_message or "",
                    "delivery_id": n.delivery_command_id or "",
                    "created_at": n.created_at.isoformat(),
                }
                for n in notifications
            ],
            title="Notifications",
        )


def ack(
    alert_id: str = typer.Argument(..., help="Alert ID"),
    user: str = typer.Option(..., "--user", "-u", help="Acknowledging user"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Acknowledge an alert."""
    pipeline = make_pipeline(database)
    try:
        event = run_async(pipeline.acknowledge_alert(alert_id, user))
    except AlertLifecycleError as e:
        fail(e.message)
    finally:
        run_async(pipeline.stop())
    console.print(f"[green]✓[/green] Alert {event.id} acknowledged by {user}")


def close(
    alert_id: str = typer.Argument(..., help="Alert ID"),
    user: str = typer.Option(..., "--user", "-u", help="Closing user"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Close an alert."""
    pipeline = make_pipeline(database)
    try:
        event = run_async(pipeline.close_alert(alert_id, user))
    except AlertLifecycleError as e:
        fail(e.message)
    finally:
        run_async(pipeline.stop())
    console.print(
        f"[green]✓[/green] Alert {event.id} closed by {event.closed_by} "
        f"after {event.resolved_duration}s"
    )


def stats(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show dedup and rate-limiter statistics."""
    pipeline = make_pipeline(database)
    try:
        data = {
            "dedup": pipeline.get_dedup_stats(),
            "rate_limiter": pipeline.get_rate_limiter_stats(),
        }
    finally:
        run_async(pipeline.stop())

    if json_out:
        output(data, as_json=True)
        return
    output(data["dedup"], title="Dedup")
    output({k: v for k, v in data["rate_limiter"].items() if k != "limits"}, title="Rate limiter")


def limits(
    per_user_minute: int | None = typer.Option(None, "--per-user-minute"),
    per_user_hour: int | None = typer.Option(None, "--per-user-hour"),
    per_rule_minute: int | None = typer.Option(None, "--per-rule-minute"),
    max_notify: int | None = typer.Option(None, "--max-notify", help="Default lifetime cap per recipient and rule"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show rate limits, or validate and preview new ones.

    Changes apply to the pipeline in this process only; persist them with
    the ``BOTWATCH_RATE_*`` settings.
    """
    changes = {
        key: value
        for key, value in {
            "per_user_per_minute": per_user_minute,
            "per_user_per_hour": per_user_hour,
            "per_rule_per_minute": per_rule_minute,
            "default_max_notify_count": max_notify,
        }.items()
        if value is not None
    }

    pipeline = make_pipeline(database)
    try:
        current = pipeline.update_limits(**changes) if changes else pipeline.get_limits()
    except InvalidConfigError as e:
        fail(e.message)
    finally:
        run_async(pipeline.stop())

    output(current, as_json=json_out, title="Rate limits")
