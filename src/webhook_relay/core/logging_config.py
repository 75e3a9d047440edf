"""Logging Configuration - Centralized logging setup.

Defaults to INFO so request bodies and secrets logged at DEBUG
level stay out of production logs.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logging(
    log_level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for the application.

    Args:
        log_level: Logging level (default: INFO)
        log_file: Optional log file name, written under logs/
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path("logs")
        log_path.mkdir(exist_ok=True)
        handlers.append(logging.FileHandler(log_path / log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )

    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.info("Logging initialized (level %s)", logging.getLevelName(log_level))
