"""Value types shared by the alert engine, the poller and the API client."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import pandas as pd

# Environmental alerts have no server id; the client numbers them from here
# so they never collide with fall-incident ids.
ENVIRONMENTAL_ID_OFFSET: int = 1000


class AlertCategory(Enum):
    """Kind of incident an alert reports."""

    FALL = "fall"
    ENVIRONMENTAL = "environmental"


class DedupPolicy(Enum):
    """How the dispatched-id set is updated after each polling cycle.

    ``REPLACE`` swaps in the ids surfaced by the latest cycle, so an alert
    that drops out of the feed and comes back is notified again.  ``UNION``
    only ever grows until :meth:`DispatchState.clear` is called.
    """

    REPLACE = "replace"
    UNION = "union"

    @classmethod
    def from_name(cls, name: str) -> DedupPolicy:
        """Parse a policy from its config value (case-insensitive)."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Unknown dedup policy '{name}'. Valid policies: {valid}"
            ) from None


@dataclass(frozen=True)
class Alert:
    """One reportable incident or condition.

    Attributes:
        id: Identifier, unique within one polling cycle.
        category: Fall incident or environmental warning.
        message: Human-readable text, pre-formatted by the source.
        location_id: Room name the alert concerns.
        observed_at: When the incident happened; ``NaT`` when unknown
                     (synthesized environmental alerts carry no timestamp).
        temperature: Room temperature reading (environmental only).
        humidity: Room humidity reading (environmental only).
    """

    id: int
    category: AlertCategory
    message: str = ""
    location_id: str = ""
    observed_at: pd.Timestamp = pd.Timestamp("NaT")
    temperature: float | None = None
    humidity: float | None = None

    @property
    def observed_utc(self) -> pd.Timestamp:
        """``observed_at`` as a UTC timestamp; ``NaT`` if missing or unparseable."""
        return to_utc_timestamp(self.observed_at)

    @property
    def is_dated(self) -> bool:
        return not pd.isna(self.observed_utc)

    def payload(self) -> dict[str, Any]:
        """Routing data attached to the notification for this alert."""
        return {
            "location_id": self.location_id,
            "id": self.id,
            "category": self.category.value,
        }


@dataclass(frozen=True)
class CurrentAlerts:
    """The bounded view handed to the UI after each poll."""

    items: tuple[Alert, ...] = ()
    last_refreshed: datetime | None = None

    def ids(self) -> set[int]:
        return {alert.id for alert in self.items}

    def find(self, alert_id: int) -> Alert | None:
        for alert in self.items:
            if alert.id == alert_id:
                return alert
        return None

    def without(self, alert_id: int) -> CurrentAlerts:
        """Return a copy of this view with *alert_id* removed."""
        return CurrentAlerts(
            items=tuple(a for a in self.items if a.id != alert_id),
            last_refreshed=self.last_refreshed,
        )


@dataclass
class DispatchState:
    """Ids of alerts already surfaced as notifications in this session."""

    dispatched_ids: set[int] = field(default_factory=set)

    def clear(self) -> None:
        self.dispatched_ids.clear()


@dataclass(frozen=True)
class Ack:
    """Outcome of confirming an alert.

    Attributes:
        alert_id: The alert that was confirmed.
        category: Its category.
        acknowledged: ``True`` when the alert was removed from the view.
        persisted: ``True`` when the server recorded the confirmation.
                   Always ``False`` for environmental alerts.
        message: Server message or error text, if any.
    """

    alert_id: int
    category: AlertCategory
    acknowledged: bool
    persisted: bool = False
    message: str = ""


def to_utc_timestamp(value: Any) -> pd.Timestamp:
    """Coerce *value* to a tz-aware UTC timestamp.

    Naive values are taken to be UTC.  Anything that cannot be parsed
    becomes ``NaT``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return pd.Timestamp("NaT")
    try:
        ts = pd.to_datetime(value, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return pd.Timestamp("NaT")
    # NaT and non-scalar results (e.g. an index from a list) are not Timestamps.
    if not isinstance(ts, pd.Timestamp):
        return pd.Timestamp("NaT")
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def category_for_id(alert_id: int) -> AlertCategory:
    """Infer a category from the id-range convention."""
    if alert_id >= ENVIRONMENTAL_ID_OFFSET:
        return AlertCategory.ENVIRONMENTAL
    return AlertCategory.FALL
