"""Core application utilities: configuration and logging."""

from app.config import get_config
from app.logging import get_logger

__all__ = ["get_config", "get_logger"]
