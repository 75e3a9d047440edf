"""Webhook request headers.

Builds the outbound header set, including the shared secret and an
HMAC-SHA256 signature the receiver can use to check the body.
"""

import hmac
import hashlib
import time
from typing import Dict, Optional, Tuple


def generate_signature(
    payload: str,
    secret: str,
    timestamp: Optional[int] = None
) -> Tuple[str, int]:
    """Generate HMAC-SHA256 signature for webhook payload.

    Args:
        payload: The JSON payload string to sign.
        secret: The shared secret key.
        timestamp: Optional Unix timestamp (defaults to current time).

    Returns:
        Tuple of (signature, timestamp) for inclusion in headers.
    """
    if timestamp is None:
        timestamp = int(time.time())

    # Signed message: timestamp.payload
    message = f"{timestamp}.{payload}"

    signature = hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()

    return signature, timestamp


def build_webhook_headers(
    payload: str,
    user_agent: str,
    event_type: str,
    delivery_id: str,
    secret: Optional[str] = None,
) -> Dict[str, str]:
    """Generate headers for an outbound webhook request.

    Args:
        payload: The JSON payload string.
        user_agent: Application identifier.
        event_type: Event type of the envelope.
        delivery_id: Event id of the envelope.
        secret: Optional shared secret.

    Returns:
        Dict of headers to include in the webhook request.
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-Event": event_type,
        "X-Webhook-Delivery-Id": delivery_id,
    }
    if secret:
        signature, timestamp = generate_signature(payload, secret)
        headers["X-Webhook-Secret"] = secret
        headers["X-Webhook-Signature"] = f"sha256={signature}"
        headers["X-Webhook-Timestamp"] = str(timestamp)
    return headers
