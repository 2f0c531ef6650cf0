"""Expo push service notifier."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from notify.base import NotificationTransport

logger = logging.getLogger(__name__)

_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class ExpoPushNotifier(NotificationTransport):
    """Send alerts to registered devices through the Expo push service.

    One message is sent per push token, all in a single request.  If no
    tokens are configured, :meth:`dispatch` does nothing.  Failures never
    raise; they are logged and dropped.
    """

    def __init__(
        self,
        push_tokens: list[str],
        *,
        url: str = _EXPO_PUSH_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._push_tokens = [t for t in push_tokens if t]
        self._url = url
        self._timeout = timeout
        self._transport = transport
        if not self._push_tokens:
            logger.info(
                "ExpoPushNotifier initialised without push tokens. "
                "Notifications will be silently skipped."
            )

    async def dispatch(self, title: str, body: str, payload: dict[str, Any]) -> None:
        if not self._push_tokens:
            logger.debug("No Expo push tokens configured; skipping notification.")
            return

        messages = self._build_messages(title, body, payload)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=messages)
        except httpx.HTTPError:
            logger.exception("Failed to send Expo push for alert %s", payload.get("id"))
            return

        if response.status_code == 200:
            logger.info(
                "Expo push sent to %d device(s): %s",
                len(self._push_tokens),
                body,
            )
            return

        logger.warning(
            "Expo push service returned %d: %s",
            response.status_code,
            response.text[:200],
        )

    def _build_messages(
        self, title: str, body: str, payload: dict[str, Any]
    ) -> list[dict[str, Any]]:
        return [
            {
                "to": token,
                "title": title,
                "body": body,
                "data": payload,
                "sound": "default",
                "priority": "high",
                "channelId": "default",
            }
            for token in self._push_tokens
        ]
