"""Core module: settings, logging and structured event output."""

from .settings import (
    ConfigValidation,
    WebhookSettings,
    get_settings,
    validate_config,
)
from .observability import EventLogger

__all__ = [
    "ConfigValidation",
    "WebhookSettings",
    "get_settings",
    "validate_config",
    "EventLogger",
]
