"""
Module: errors.py
Description: Exception hierarchy for the relay service.

Validation and ownership failures are raised synchronously to callers.
Transient delivery failures are never raised to domain callers; they are
returned as attempt results, retried, and dead-lettered.
"""


class RelayError(Exception):
    """Base class for relay errors."""

    status_code = 500
    error_type = "relay_error"


class WebhookValidationError(RelayError, ValueError):
    """Registration or update input was rejected. Never retried."""

    status_code = 400
    error_type = "validation_error"


class SubscriptionNotFoundError(RelayError):
    """Subscription does not exist or is not owned by the caller."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, webhook_id: str):
        super().__init__("Webhook not found")
        self.webhook_id = webhook_id


class QueueUnavailableError(RelayError):
    """The work queue rejected an enqueue; the caller decides how to surface it."""

    status_code = 503
    error_type = "queue_unavailable"


class ConnectionGoneError(RelayError):
    """The addressed live connection no longer exists."""

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} is gone")
        self.connection_id = connection_id


class LivePushError(RelayError):
    """A transient failure pushing over a live connection."""
