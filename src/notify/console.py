"""Terminal notifier used by the CLI."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from notify.base import NotificationTransport

_CATEGORY_STYLE: dict[str, str] = {
    "fall": "bold red",
    "environmental": "bold yellow",
}


class ConsoleNotifier(NotificationTransport):
    """Print each notification as a rich panel."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    async def dispatch(self, title: str, body: str, payload: dict[str, Any]) -> None:
        style = _CATEGORY_STYLE.get(str(payload.get("category")), "bold")
        location = payload.get("location_id") or "?"
        self._console.print(
            Panel(
                Text(body or "(no details)"),
                title=f"[{style}]{title}[/{style}]",
                subtitle=f"room {location} | alert {payload.get('id')}",
                expand=False,
            )
        )
