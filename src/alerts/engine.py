"""Alert deduplication and dispatch engine.

Each call to :meth:`AlertEngine.poll` fetches the fall and environmental
alert streams, keeps the latest alert of each category, and notifies the
user about any of those that were not already notified in the previous
cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from alerts.models import (
    Ack,
    Alert,
    AlertCategory,
    CurrentAlerts,
    DedupPolicy,
    DispatchState,
    category_for_id,
)
from alerts.selection import latest_for_location, latest_per_category, notification_body

if TYPE_CHECKING:
    from alerts.poller import CancellationToken
    from api.base import AlertSource
    from notify.base import NotificationTransport

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Emergency alert"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


async def fetch_all(source: AlertSource) -> list[Alert]:
    """Fetch both categories concurrently; a failing one counts as empty."""
    results = await asyncio.gather(
        source.get_fall_alerts(),
        source.get_environmental_alerts(),
        return_exceptions=True,
    )

    alerts: list[Alert] = []
    for name, result in zip(("fall", "environmental"), results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("Fetching %s alerts failed: %s", name, result)
            continue
        alerts.extend(result)
    return alerts


class AlertEngine:
    """Turn polled alert lists into a bounded view plus new notifications.

    The engine owns its :class:`DispatchState`; nothing about it is global.
    Polls on one engine are serialized, so a slow cycle can never
    interleave with a later one.

    Args:
        source: Where alerts come from.
        transport: Where notifications go.
        policy: How the dispatched-id set is updated after each cycle.
        title: Title used for every notification.
        clock: Returns the "last refreshed" timestamp; UTC now by default.
        state: Existing dispatch state to continue from.
    """

    def __init__(
        self,
        source: AlertSource,
        transport: NotificationTransport,
        *,
        policy: DedupPolicy = DedupPolicy.REPLACE,
        title: str = DEFAULT_TITLE,
        clock: Callable[[], datetime] | None = None,
        state: DispatchState | None = None,
    ) -> None:
        self._source = source
        self._transport = transport
        self._policy = policy
        self._title = title
        self._clock = clock or _utcnow
        self.state = state if state is not None else DispatchState()
        self.current = CurrentAlerts()
        self._lock = asyncio.Lock()

    @property
    def policy(self) -> DedupPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def poll(self, token: CancellationToken | None = None) -> CurrentAlerts | None:
        """Run one polling cycle.

        Args:
            token: When cancelled by the time the fetch returns, the cycle
                   is discarded.

        Returns:
            The refreshed view, or ``None`` if the cycle was discarded.
        """
        async with self._lock:
            alerts = await fetch_all(self._source)

            if _is_cancelled(token):
                logger.debug("Poll finished after cancellation; discarding %d alerts.", len(alerts))
                return None

            selected = latest_per_category(alerts)
            current_ids = {alert.id for alert in selected}
            new_ids = current_ids - self.state.dispatched_ids

            for alert in selected:
                if alert.id not in new_ids:
                    continue
                if _is_cancelled(token):
                    logger.debug("Cancelled while notifying; state left unchanged.")
                    return None
                await self._dispatch(alert)

            if _is_cancelled(token):
                logger.debug("Cancelled while notifying; state left unchanged.")
                return None

            if self._policy is DedupPolicy.UNION:
                self.state.dispatched_ids |= current_ids
            else:
                self.state.dispatched_ids = current_ids

            self.current = CurrentAlerts(items=tuple(selected), last_refreshed=self._clock())
            logger.info(
                "Poll: %d active alert(s), showing %d, notified %d.",
                len(alerts),
                len(selected),
                len(new_ids),
            )
            return self.current

    async def confirm(self, alert_id: int) -> Ack:
        """Acknowledge an alert and drop it from the current view.

        Fall incidents are confirmed on the server.  Environmental alerts
        are only dismissed locally and come back on the next poll if the
        room is still out of range.
        """
        alert = self.current.find(alert_id)
        category = alert.category if alert is not None else category_for_id(alert_id)

        if category is AlertCategory.ENVIRONMENTAL:
            self.current = self.current.without(alert_id)
            logger.info("Dismissed environmental alert %d locally.", alert_id)
            return Ack(alert_id=alert_id, category=category, acknowledged=True)

        try:
            response = await self._source.confirm_fall(alert_id)
        except Exception as exc:
            logger.warning("Confirming fall alert %d failed: %s", alert_id, exc)
            return Ack(
                alert_id=alert_id,
                category=category,
                acknowledged=False,
                message=str(exc),
            )

        message = str(response.get("message", "")) if isinstance(response, dict) else ""
        if not isinstance(response, dict) or response.get("code") != 0:
            logger.warning("Server rejected confirmation of alert %d: %s", alert_id, response)
            return Ack(
                alert_id=alert_id,
                category=category,
                acknowledged=False,
                message=message or "confirmation rejected",
            )

        self.current = self.current.without(alert_id)
        logger.info("Confirmed fall alert %d.", alert_id)
        return Ack(
            alert_id=alert_id,
            category=category,
            acknowledged=True,
            persisted=True,
            message=message,
        )

    def reset(self) -> None:
        """Forget every dispatched id and the current view."""
        self.state.clear()
        self.current = CurrentAlerts()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _dispatch(self, alert: Alert) -> None:
        try:
            await self._transport.dispatch(self._title, notification_body(alert), alert.payload())
        except Exception:
            logger.exception("Notification for alert %d failed", alert.id)


class RoomMonitor:
    """Latest alert for a single room, without notifications.

    Has the same ``poll``/``reset`` surface as :class:`AlertEngine` so an
    :class:`~alerts.poller.AlertPoller` can drive it.
    """

    def __init__(self, source: AlertSource, location_id: str) -> None:
        self._source = source
        self.location_id = location_id
        self.current: list[Alert] = []

    async def poll(self, token: CancellationToken | None = None) -> list[Alert] | None:
        alerts = await fetch_all(self._source)
        if _is_cancelled(token):
            return None
        self.current = latest_for_location(alerts, self.location_id)
        return self.current

    def reset(self) -> None:
        self.current = []
