"""Notification transports.

Use :func:`build_transport` to pick one from the ``notifications`` config
section::

    from notify import build_transport

    transport = build_transport(get_config("notifications"))
"""

from __future__ import annotations

from typing import Any

from notify.base import NotificationTransport
from notify.console import ConsoleNotifier
from notify.expo import ExpoPushNotifier


def build_transport(notifications_cfg: dict[str, Any]) -> NotificationTransport:
    """Return the Expo notifier when enabled with tokens, else the console one."""
    expo_cfg: dict[str, Any] = notifications_cfg.get("expo", {}) or {}
    tokens = [str(t) for t in expo_cfg.get("push_tokens", []) or [] if t]
    if expo_cfg.get("enabled") and tokens:
        return ExpoPushNotifier(tokens)
    return ConsoleNotifier()


__all__ = [
    "ConsoleNotifier",
    "ExpoPushNotifier",
    "NotificationTransport",
    "build_transport",
]
