"""Abstract interface for anything that can report ward alerts."""

from __future__ import annotations

import abc
from typing import Any

from alerts.models import Alert


class AlertSource(abc.ABC):
    """Base interface every alert source must implement.

    Implementations return alerts already tagged with their
    :class:`~alerts.models.AlertCategory`.  The fetch methods may raise;
    the engine treats a failing category as empty for that cycle.
    """

    @abc.abstractmethod
    async def get_fall_alerts(self) -> list[Alert]:
        """Return the currently active fall-incident alerts."""
        ...

    @abc.abstractmethod
    async def get_environmental_alerts(self) -> list[Alert]:
        """Return the rooms whose temperature or humidity is out of range."""
        ...

    @abc.abstractmethod
    async def confirm_fall(self, alert_id: int) -> dict[str, Any]:
        """Acknowledge a fall incident on the server.

        Returns:
            The server's response body.  ``{"code": 0}`` means success.
        """
        ...
