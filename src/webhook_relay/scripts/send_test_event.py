"""Check the webhook configuration and send a test event.

Usage:
    python -m webhook_relay.scripts.send_test_event [--validate-only] [--url URL]
"""

import argparse
import asyncio
import logging
import sys

from webhook_relay.core.logging_config import setup_logging
from webhook_relay.core.settings import WebhookSettings, validate_config
from webhook_relay.webhooks.dispatcher import WebhookDispatcher


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate webhook config and send a test event.")
    parser.add_argument("--url", help="Override MAKE_WEBHOOK_URL")
    parser.add_argument("--validate-only", action="store_true", help="Only validate configuration")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger = logging.getLogger("SendTestEvent")

    try:
        settings = WebhookSettings.from_env(load_env_file=True)
    except ValueError as e:
        logger.error(f"Invalid webhook environment: {e}")
        return 1
    if args.url:
        settings = settings.model_copy(update={"webhook_url": args.url})

    validation = validate_config(settings)
    print("--- Webhook Configuration ---")
    print(f"URL: {settings.webhook_url or '(not set)'}")
    print(f"Valid: {validation.is_valid}")
    for error in validation.errors:
        print(f"  ERROR: {error}")
    for warning in validation.warnings:
        print(f"  WARNING: {warning}")

    if args.validate_only:
        return 0 if validation.is_valid else 1
    if not validation.is_valid:
        logger.error("Configuration invalid, not sending test event")
        return 1

    dispatcher = WebhookDispatcher(settings)
    result = asyncio.run(dispatcher.send_test_event())

    print("\n--- Test Delivery ---")
    if result.success:
        print(f"Delivered (HTTP {result.status_code}) in {result.response_time_ms:.0f}ms")
        return 0

    print(f"Failed: {result.error}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
