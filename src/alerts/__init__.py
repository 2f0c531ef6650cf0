"""Alerts module -- deduplicate polled ward alerts and dispatch notifications."""

from alerts.engine import AlertEngine, RoomMonitor
from alerts.models import Ack, Alert, AlertCategory, CurrentAlerts, DedupPolicy, DispatchState
from alerts.poller import AlertPoller, CancellationToken

__all__ = [
    "Ack",
    "Alert",
    "AlertCategory",
    "AlertEngine",
    "AlertPoller",
    "CancellationToken",
    "CurrentAlerts",
    "DedupPolicy",
    "DispatchState",
    "RoomMonitor",
]
