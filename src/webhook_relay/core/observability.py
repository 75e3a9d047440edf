"""Structured event logging for webhook delivery.

Emits one JSON object per log line on the ``webhook_relay.events``
logger so delivery outcomes can be filtered and aggregated.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional


class EventLogger:
    """Structured event logging.

    Example:
        >>> EventLogger.info("webhook.delivery.succeeded", event_id="evt_1", attempts=1)
        >>> EventLogger.error("webhook.delivery.failed", event_id="evt_2", error="HTTP 500: ")
    """

    _logger = logging.getLogger("webhook_relay.events")

    @classmethod
    def _log(cls, level: str, event: str, **kwargs) -> None:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            **kwargs,
        }
        json_str = json.dumps(log_data, default=str)

        log_method = getattr(cls._logger, level.lower(), cls._logger.info)
        log_method(json_str)

    @classmethod
    def debug(cls, event: str, **kwargs) -> None:
        cls._log("DEBUG", event, **kwargs)

    @classmethod
    def info(cls, event: str, **kwargs) -> None:
        cls._log("INFO", event, **kwargs)

    @classmethod
    def warning(cls, event: str, **kwargs) -> None:
        cls._log("WARNING", event, **kwargs)

    @classmethod
    def error(cls, event: str, **kwargs) -> None:
        cls._log("ERROR", event, **kwargs)

    @classmethod
    def delivery(
        cls,
        event_id: str,
        event_type: str,
        success: bool,
        attempts: int,
        error: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Log the final outcome of a delivery."""
        if success:
            cls.info(
                "webhook.delivery.succeeded",
                event_id=event_id,
                event_type=event_type,
                attempts=attempts,
                **kwargs,
            )
        else:
            cls.error(
                "webhook.delivery.failed",
                event_id=event_id,
                event_type=event_type,
                attempts=attempts,
                error=error,
                **kwargs,
            )
