"""Pick the representative alerts shown to the user."""

from __future__ import annotations

from typing import Iterable

from alerts.models import Alert, AlertCategory

# Display order of the per-category picks.
_CATEGORY_ORDER: tuple[AlertCategory, ...] = (
    AlertCategory.FALL,
    AlertCategory.ENVIRONMENTAL,
)


def _newer(candidate: Alert, best: Alert) -> bool:
    """Return ``True`` if *candidate* strictly outranks *best*.

    Undated alerts rank below every dated one; equal timestamps keep the
    alert seen first.
    """
    if not candidate.is_dated:
        return False
    if not best.is_dated:
        return True
    return candidate.observed_utc > best.observed_utc


def _latest(alerts: Iterable[Alert]) -> Alert | None:
    best: Alert | None = None
    for alert in alerts:
        if best is None or _newer(alert, best):
            best = alert
    return best


def latest_per_category(alerts: Iterable[Alert]) -> list[Alert]:
    """Return at most one alert per category, Fall first.

    Within each category the alert with the latest ``observed_at`` wins.
    Categories with no alerts contribute nothing, so the result holds
    between zero and two alerts.
    """
    buckets: dict[AlertCategory, list[Alert]] = {c: [] for c in _CATEGORY_ORDER}
    for alert in alerts:
        buckets.setdefault(alert.category, []).append(alert)

    selected: list[Alert] = []
    for category in _CATEGORY_ORDER:
        pick = _latest(buckets[category])
        if pick is not None:
            selected.append(pick)
    return selected


def latest_for_location(alerts: Iterable[Alert], location_id: str) -> list[Alert]:
    """Return the single latest alert for one room, or an empty list."""
    pick = _latest(a for a in alerts if a.location_id == location_id)
    return [pick] if pick is not None else []


def _fmt_reading(value: float | None) -> str:
    if value is None:
        return "--"
    return f"{value:g}"


def describe_environment(
    location_id: str,
    temperature: float | None,
    humidity: float | None,
) -> str:
    """Describe an out-of-range room reading."""
    return (
        f"Room {location_id} environment out of range "
        f"(temperature: {_fmt_reading(temperature)}°C, "
        f"humidity: {_fmt_reading(humidity)}%)"
    )


def notification_body(alert: Alert) -> str:
    """Text shown in the notification for *alert*.

    Environmental alerts are described from their readings; everything
    else uses the source's message verbatim (possibly empty).
    """
    if alert.category is AlertCategory.ENVIRONMENTAL:
        if alert.temperature is None and alert.humidity is None:
            return alert.message
        return describe_environment(alert.location_id, alert.temperature, alert.humidity)
    return alert.message
