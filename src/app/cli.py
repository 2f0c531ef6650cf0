"""Click CLI for the ward alert monitor.

Entry point: ``ward`` (installed via pyproject.toml) or ``python -m app.cli``.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from alerts.engine import AlertEngine, RoomMonitor
from alerts.models import Alert, CurrentAlerts, DedupPolicy
from alerts.poller import AlertPoller
from alerts.selection import notification_body
from api.client import WardApiClient
from app.config import get_config
from app.logging import get_logger, setup_logging
from notify import build_transport

logger = get_logger(__name__)
console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(message: str) -> None:
    """Print a styled error message and exit."""
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise SystemExit(1)


def _make_client() -> WardApiClient:
    return WardApiClient.from_config(get_config("api"))


def _make_engine(client: WardApiClient) -> AlertEngine:
    monitor_cfg = get_config("monitor")
    notifications_cfg = get_config("notifications")
    try:
        policy = DedupPolicy.from_name(str(monitor_cfg.get("dedup_policy", "replace")))
    except ValueError as exc:
        _error(str(exc))
    return AlertEngine(
        client,
        build_transport(notifications_cfg),
        policy=policy,
        title=str(notifications_cfg.get("title", "Emergency alert")),
    )


def _interval_or_config(interval: Optional[float], key: str, default: float) -> float:
    """Resolve a polling interval from the option or the ``monitor`` config."""
    if interval is None:
        interval = float(get_config("monitor").get(key, default))
    if interval <= 0:
        _error("--interval must be positive.")
    return interval


def _format_time(alert: Alert) -> str:
    if not alert.is_dated:
        return "-"
    return alert.observed_utc.strftime("%Y-%m-%d %H:%M UTC")


def _alerts_table(alerts: list[Alert] | tuple[Alert, ...], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Category", style="bold")
    table.add_column("Room")
    table.add_column("Message")
    table.add_column("Observed")

    for alert in alerts:
        style = "red" if alert.category.value == "fall" else "yellow"
        table.add_row(
            str(alert.id),
            f"[{style}]{alert.category.value}[/{style}]",
            alert.location_id or "-",
            notification_body(alert) or "-",
            _format_time(alert),
        )
    return table


def _render(view: CurrentAlerts) -> None:
    if not view.items:
        console.print("[green]No active emergency alerts.[/green]")
    else:
        console.print(_alerts_table(view.items, title="Current Alerts"))
    if view.last_refreshed is not None:
        console.print(f"[dim]Last refreshed {view.last_refreshed:%Y-%m-%d %H:%M:%S %Z}[/dim]")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(package_name="ward-alert-monitor")
def cli() -> None:
    """Ward Alert Monitor -- poll ward alerts and notify on new ones."""
    setup_logging(str(get_config().get("log_level", "INFO")))


# ---------------------------------------------------------------------------
# poll
# ---------------------------------------------------------------------------

@cli.command()
def poll() -> None:
    """Run a single polling cycle and show the current alerts."""

    async def _run() -> CurrentAlerts | None:
        async with _make_client() as client:
            return await _make_engine(client).poll()

    view = asyncio.run(_run())
    if view is not None:
        _render(view)


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------

@cli.command()
@click.option(
    "--interval",
    default=None,
    type=float,
    help="Seconds between polls (default: from config, 30).",
)
def watch(interval: Optional[float]) -> None:
    """Poll continuously and notify about new alerts until interrupted."""
    seconds = _interval_or_config(interval, "poll_interval_seconds", 30.0)

    console.print(f"[bold cyan]Watching[/bold cyan] ward alerts every {seconds:g}s (Ctrl-C to stop)")
    logger.info("watch: interval=%ss", seconds)

    async def _run() -> None:
        async with _make_client() as client:
            poller = AlertPoller(_make_engine(client), interval=seconds, on_update=_render)
            await poller.run_forever()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")


# ---------------------------------------------------------------------------
# room
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("room_id")
@click.option("--watch", "keep_watching", is_flag=True, default=False, help="Re-poll until interrupted.")
@click.option(
    "--interval",
    default=None,
    type=float,
    help="Seconds between polls with --watch (default: from config, 300).",
)
def room(room_id: str, keep_watching: bool, interval: Optional[float]) -> None:
    """Show the most recent alert for a single room."""

    def _render_room(alerts: list[Alert]) -> None:
        if not alerts:
            console.print(f"[green]No active alerts for room {room_id}.[/green]")
            return
        console.print(_alerts_table(alerts, title=f"Room {room_id}"))

    if not keep_watching:

        async def _once() -> list[Alert] | None:
            async with _make_client() as client:
                return await RoomMonitor(client, room_id).poll()

        _render_room(asyncio.run(_once()) or [])
        return

    seconds = _interval_or_config(interval, "room_poll_interval_seconds", 300.0)
    console.print(f"[bold cyan]Watching[/bold cyan] room {room_id} every {seconds:g}s (Ctrl-C to stop)")
    logger.info("room watch: %s interval=%ss", room_id, seconds)

    async def _run() -> None:
        async with _make_client() as client:
            poller = AlertPoller(RoomMonitor(client, room_id), interval=seconds, on_update=_render_room)
            await poller.run_forever()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")


# ---------------------------------------------------------------------------
# confirm
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("alert_id", type=int)
def confirm(alert_id: int) -> None:
    """Confirm (acknowledge) an alert by id."""

    async def _run():
        async with _make_client() as client:
            engine = _make_engine(client)
            await engine.poll()
            return await engine.confirm(alert_id)

    ack = asyncio.run(_run())
    if not ack.acknowledged:
        _error(f"Alert {alert_id} was not confirmed: {ack.message or 'unknown error'}")

    if ack.persisted:
        console.print(f"[green]Alert {alert_id} confirmed.[/green]")
    else:
        console.print(
            f"[green]Environmental alert {alert_id} dismissed.[/green] "
            "[dim](not stored on the server)[/dim]"
        )


# ---------------------------------------------------------------------------
# register-device
# ---------------------------------------------------------------------------

@cli.command("register-device")
@click.argument("push_token")
@click.option("--token-type", default="expo", show_default=True, help="Push token type.")
@click.option("--patient-id", default=None, help="Patient to associate with the device.")
def register_device(push_token: str, token_type: str, patient_id: Optional[str]) -> None:
    """Register a push token with the backend."""

    async def _run():
        async with _make_client() as client:
            return await client.register_device(push_token, token_type, patient_id)

    try:
        result = asyncio.run(_run())
    except Exception as exc:
        logger.exception("register-device failed")
        _error(str(exc))

    console.print(f"[green]Device registered.[/green] {result}")


# ---------------------------------------------------------------------------
# Entry point for direct execution
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
