"""Shared test fixtures for the ward alert monitor.

Provides a scriptable in-memory alert source and a notification transport
that records every dispatch instead of showing it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pandas as pd
import pytest

from alerts.models import Alert, AlertCategory
from api.base import AlertSource
from notify.base import NotificationTransport

FIXED_NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def fall(alert_id: int, observed_at: str | None = None, room: str = "101", message: str = "") -> Alert:
    """Build a fall alert; *observed_at* is an ISO string or None."""
    return Alert(
        id=alert_id,
        category=AlertCategory.FALL,
        message=message or f"Fall detected in room {room}",
        location_id=room,
        observed_at=pd.Timestamp(observed_at) if observed_at else pd.Timestamp("NaT"),
    )


def env(alert_id: int, room: str = "203", temperature: float | None = 29.5, humidity: float | None = 70.0) -> Alert:
    """Build an environmental alert (always undated)."""
    return Alert(
        id=alert_id,
        category=AlertCategory.ENVIRONMENTAL,
        message=f"Room {room} environment out of range",
        location_id=room,
        temperature=temperature,
        humidity=humidity,
    )


class FakeSource(AlertSource):
    """Alert source returning whatever the test last assigned.

    Set ``fall_error`` / ``env_error`` to an exception instance to make
    the corresponding fetch raise it.
    """

    def __init__(self, fall_alerts: list[Alert] | None = None, env_alerts: list[Alert] | None = None) -> None:
        self.fall_alerts = list(fall_alerts or [])
        self.env_alerts = list(env_alerts or [])
        self.fall_error: Exception | None = None
        self.env_error: Exception | None = None
        self.confirm_response: dict[str, Any] = {"code": 0, "message": "ok"}
        self.confirm_error: Exception | None = None
        self.confirmed: list[int] = []

    async def get_fall_alerts(self) -> list[Alert]:
        if self.fall_error is not None:
            raise self.fall_error
        return list(self.fall_alerts)

    async def get_environmental_alerts(self) -> list[Alert]:
        if self.env_error is not None:
            raise self.env_error
        return list(self.env_alerts)

    async def confirm_fall(self, alert_id: int) -> dict[str, Any]:
        self.confirmed.append(alert_id)
        if self.confirm_error is not None:
            raise self.confirm_error
        return self.confirm_response


class RecordingTransport(NotificationTransport):
    """Collects ``(title, body, payload)`` tuples."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def dispatch(self, title: str, body: str, payload: dict[str, Any]) -> None:
        self.sent.append((title, body, payload))

    @property
    def ids(self) -> list[int]:
        return [payload["id"] for _, _, payload in self.sent]


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()
