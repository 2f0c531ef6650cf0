"""Async REST client for the ward monitoring backend."""

from __future__ import annotations

import platform
import sys
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from alerts.models import ENVIRONMENTAL_ID_OFFSET, Alert, AlertCategory, to_utc_timestamp
from alerts.selection import describe_environment
from api.base import AlertSource
from app.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_BASE_URL = "http://localhost:3000"
_DEFAULT_TIMEOUT_SECONDS = 10.0

_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

# Only the most recent incidents are considered on each poll.
_MAX_FALL_INCIDENTS = 10

# The backend labels out-of-range rooms with this status ("warning").
_WARNING_STATUS = "경고"


class _TokenRefreshed(Exception):
    """Internal signal: the access token was renewed, resend the request."""


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _rows(body: Any) -> list[dict[str, Any]]:
    """Extract the ``data`` list from a response body, or raise ValueError."""
    rows = body.get("data") if isinstance(body, dict) else None
    if not isinstance(rows, list):
        raise ValueError(f"Response has no 'data' list: {str(body)[:200]}")
    return [row for row in rows if isinstance(row, dict)]


class WardApiClient(AlertSource):
    """Talk to the ward backend over HTTP.

    Requests carry ``Authorization: Bearer <token>`` once a token is known.
    A 401 response triggers one token refresh; if that yields a new token
    the request is sent again exactly once.

    The two alert fetches never raise: transport errors, HTTP errors and
    malformed bodies are logged and reported as "no alerts".

    Args:
        base_url: Backend root, e.g. ``"http://localhost:3000"``.
        token: Access token, if already logged in.
        refresh_token: Token used to renew *token* after a 401.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        base_url: str = _DEFAULT_BASE_URL,
        *,
        token: str | None = None,
        refresh_token: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token or None
        self._refresh_token = refresh_token or None
        self._push_token: str | None = None
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers=_HEADERS,
            transport=transport,
        )
        logger.debug("WardApiClient using base URL %s", self._base_url)

    @classmethod
    def from_config(cls, api_cfg: dict[str, Any]) -> WardApiClient:
        """Build a client from the ``api`` config section."""
        return cls(
            base_url=str(api_cfg.get("base_url", _DEFAULT_BASE_URL)),
            token=api_cfg.get("token"),
            refresh_token=api_cfg.get("refresh_token"),
            timeout=float(api_cfg.get("timeout_seconds", _DEFAULT_TIMEOUT_SECONDS)),
        )

    @property
    def token(self) -> str | None:
        return self._token

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> WardApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # AlertSource interface
    # ------------------------------------------------------------------

    async def get_fall_alerts(self) -> list[Alert]:
        try:
            resp = await self._request("GET", "/api/fall-incidents")
            rows = _rows(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Fetching fall incidents from %s failed: %s", self._base_url, exc)
            return []

        alerts: list[Alert] = []
        for row in rows[:_MAX_FALL_INCIDENTS]:
            if row.get("accident_YN") != "Y":
                continue
            try:
                alert_id = int(row["accident_id"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping fall incident without a usable id: %s", row)
                continue
            room = str(row.get("room_name") or "")
            patient = row.get("patient_name") or ""
            alerts.append(
                Alert(
                    id=alert_id,
                    category=AlertCategory.FALL,
                    message=f"Fall detected in room {room}: patient {patient}",
                    location_id=room,
                    observed_at=to_utc_timestamp(row.get("accident_date")),
                )
            )
        return alerts

    async def get_environmental_alerts(self) -> list[Alert]:
        try:
            resp = await self._request("GET", "/api/environmental")
            rows = _rows(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Fetching environmental status from %s failed: %s", self._base_url, exc)
            return []

        warnings = [row for row in rows if row.get("status") == _WARNING_STATUS]
        alerts: list[Alert] = []
        for index, row in enumerate(warnings):
            room = str(row.get("room_name") or "")
            temperature = _to_float(row.get("room_temp"))
            humidity = _to_float(row.get("humidity"))
            alerts.append(
                Alert(
                    id=ENVIRONMENTAL_ID_OFFSET + index,
                    category=AlertCategory.ENVIRONMENTAL,
                    message=describe_environment(room, temperature, humidity),
                    location_id=room,
                    temperature=temperature,
                    humidity=humidity,
                )
            )
        return alerts

    async def confirm_fall(self, alert_id: int) -> dict[str, Any]:
        resp = await self._request("POST", f"/api/fall-incidents/{alert_id}/confirm")
        return resp.json()

    # ------------------------------------------------------------------
    # Other endpoints
    # ------------------------------------------------------------------

    async def mark_as_read(self, alert_id: int) -> dict[str, Any]:
        """Mark an alert as read; failures are logged, not raised."""
        try:
            resp = await self._request("POST", f"/api/alerts/{alert_id}/read")
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Marking alert %d as read failed: %s", alert_id, exc)
            return {"success": False, "error": str(exc)}

    async def login(self, username: str, password: str) -> dict[str, Any]:
        """Log in and keep the returned tokens for later requests."""
        resp = await self._request(
            "POST", "/api/auth/login", json={"username": username, "password": password}
        )
        body = resp.json()
        if isinstance(body, dict) and body.get("token"):
            self._token = body["token"]
            if body.get("refreshToken"):
                self._refresh_token = body["refreshToken"]
            logger.info("Logged in as %s", username)
        return body

    async def logout(self) -> dict[str, Any]:
        """Log out on the server; local tokens are dropped either way."""
        try:
            await self._request("POST", "/api/auth/logout")
            return {"success": True}
        except httpx.HTTPError as exc:
            logger.error("Server logout failed: %s", exc)
            return {"success": True, "error": str(exc)}
        finally:
            self._token = None
            self._refresh_token = None

    async def register_device(
        self,
        token: str,
        token_type: str = "expo",
        patient_id: str | None = None,
    ) -> dict[str, Any]:
        """Register a push token with the backend."""
        device = {
            "token": token,
            "tokenType": token_type,
            "patientId": patient_id,
            "deviceInfo": {
                "platform": sys.platform,
                "version": platform.release(),
                "model": platform.machine() or "unknown",
            },
        }
        logger.debug("Registering device: %s", device)
        resp = await self._request("POST", "/api/notifications/register-device", json=device)
        self._push_token = token
        return resp.json()

    async def unregister_device(self, token: str | None = None) -> dict[str, Any]:
        """Unregister *token* (or the last registered one)."""
        token = token or self._push_token
        if not token:
            return {"success": True}
        resp = await self._request(
            "POST", "/api/notifications/unregister-device", json={"token": token}
        )
        self._push_token = None
        return resp.json()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, renewing the access token once on HTTP 401."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_TokenRefreshed),
            stop=stop_after_attempt(2),
            reraise=True,
        ):
            with attempt:
                resp = await self._client.request(
                    method, path, headers=self._auth_headers(), **kwargs
                )
                if (
                    resp.status_code == 401
                    and attempt.retry_state.attempt_number == 1
                    and await self._refresh()
                ):
                    raise _TokenRefreshed(path)
                resp.raise_for_status()
                return resp
        raise AssertionError("unreachable")

    def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _refresh(self) -> bool:
        """Exchange the refresh token for a new access token."""
        if not self._refresh_token:
            return False
        try:
            resp = await self._client.post(
                "/api/auth/refresh", json={"refreshToken": self._refresh_token}
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Token refresh failed: %s", exc)
            return False

        new_token = body.get("token") if isinstance(body, dict) else None
        if not new_token:
            logger.warning("Token refresh returned no token")
            return False
        self._token = new_token
        logger.info("Access token refreshed")
        return True
