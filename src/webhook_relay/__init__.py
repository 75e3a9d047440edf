"""webhook-relay: reliable outbound webhook delivery.

Forwards booking and contract events to an external automation
platform with retry, circuit breaking and delivery statistics.
"""

__version__ = "0.1.0"
