"""Alert sources backed by the ward REST API."""

from api.base import AlertSource
from api.client import WardApiClient

__all__ = ["AlertSource", "WardApiClient"]
