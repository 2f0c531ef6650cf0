"""Abstract notification transport."""

from __future__ import annotations

import abc
from typing import Any


class NotificationTransport(abc.ABC):
    """Surface one alert to the user.

    Dispatch is fire-and-forget: the engine does not track delivery.
    Implementations should log their own failures; anything they raise is
    logged by the engine and otherwise ignored.
    """

    @abc.abstractmethod
    async def dispatch(self, title: str, body: str, payload: dict[str, Any]) -> None:
        """Show a notification with *title* and *body*.

        Args:
            title: Fixed notification title.
            body: Alert text.
            payload: ``{"location_id", "id", "category"}`` for tap routing.
        """
        ...
