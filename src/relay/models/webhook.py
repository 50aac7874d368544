"""
Module: webhook.py
Description: Webhook subscription and delivery data models.

Defines the persisted subscription model with its retry policy and
cumulative statistics, the dead-letter record written when a delivery
exhausts its retry budget, and the per-attempt and per-dispatch result
types returned by the dispatcher.

Key Components:
- WebhookSubscription: Subscription with event patterns, secret, policy, stats
- RetryPolicy: Per-subscription attempt budget and timeout (clamped)
- WebhookStats: Cumulative delivery statistics
- DeadLetterRecord: Exhausted delivery awaiting manual retry
- AttemptResult / DeliveryOutcome / DispatchSummary: Delivery results

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from relay.models.events import SUBSCRIBABLE_PATTERNS, WILDCARD_EVENT
from relay.utils.clock import utc_now

MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 30.0


def normalize_event_patterns(value: Any) -> List[str]:
    """
    Normalize a pattern or list of patterns into an ordered, de-duplicated list.

    Raises:
        ValueError: If empty, or if a pattern is not a known event or the wildcard
    """
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError("events must be a string or a list of strings")

    patterns: List[str] = []
    for pattern in value:
        if not isinstance(pattern, str) or not pattern.strip():
            raise ValueError("event patterns must be non-empty strings")
        pattern = pattern.strip()
        if pattern not in SUBSCRIBABLE_PATTERNS:
            raise ValueError(f"Unknown event type: {pattern}")
        if pattern not in patterns:
            patterns.append(pattern)

    if not patterns:
        raise ValueError("At least one event must be specified")

    return patterns


class RetryPolicy(BaseModel):
    """Attempt budget and per-attempt timeout for one subscription."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=10.0)

    @field_validator('timeout_seconds')
    @classmethod
    def clamp_timeout(cls, v: float) -> float:
        """Clamp the per-attempt timeout to [1s, 30s]."""
        return min(max(float(v), MIN_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS)


class WebhookStats(BaseModel):
    """
    Cumulative delivery statistics.

    The store increments counters atomically; average latency is derived
    from the running latency total so no read-modify-write is needed.
    """

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_latency_ms: float = 0.0
    last_called_at: Optional[datetime] = None
    last_call_success: Optional[bool] = None

    @property
    def average_latency_ms(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return round(self.total_latency_ms / self.total_calls, 2)

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return round(self.successful_calls / self.total_calls * 100, 2)


class WebhookSubscription(BaseModel):
    """
    Webhook subscription owned by a marketplace user.

    The secret is a SecretStr so it never appears in serialized output;
    stores read it explicitly with get_secret_value().

    Attributes:
        webhook_id: Stable, externally referenced identifier
        owner_id: Owning user
        url: Target URL (validated at registration and update)
        secret: Shared HMAC secret
        events: Ordered event patterns (at least one; '*' matches everything)
        enabled: Disabled subscriptions are never attempted
        retry_policy: Attempt budget and timeout
        stats: Cumulative delivery statistics
    """

    model_config = ConfigDict(validate_assignment=True)

    webhook_id: str = Field(..., pattern=r"^wh_[a-f0-9]{32}$")
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=1, max_length=500)
    secret: SecretStr
    events: List[str] = Field(..., min_length=1)
    enabled: bool = True
    description: Optional[str] = Field(default=None, max_length=500)
    tags: List[str] = Field(default_factory=list)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    stats: WebhookStats = Field(default_factory=WebhookStats)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    secret_rotated_at: Optional[datetime] = None

    @field_validator('events', mode='before')
    @classmethod
    def validate_events(cls, v: Any) -> List[str]:
        return normalize_event_patterns(v)

    def matches(self, event_type: str) -> bool:
        """True if this subscription's patterns cover the event type."""
        return event_type in self.events or WILDCARD_EVENT in self.events


class DeliveryError(BaseModel):
    """Terminal error captured for a dead-lettered delivery."""

    message: str
    code: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None


class DeadLetterRecord(BaseModel):
    """A delivery that exhausted its retry budget."""

    dead_letter_id: str = Field(..., pattern=r"^dlq_[a-f0-9]{32}$")
    webhook_id: str
    owner_id: str
    url: str
    event_type: str
    payload: Dict[str, Any] = Field(..., description="Envelope snapshot as sent")
    error: DeliveryError
    attempts: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: int = Field(..., description="Epoch seconds retention horizon")


class AttemptResult(BaseModel):
    """Result of one HTTP attempt."""

    ok: bool
    status_code: Optional[int] = None
    latency_ms: float = 0.0
    error: Optional[str] = None
    error_code: Optional[str] = None
    response_body: Optional[str] = None

    def to_error(self) -> DeliveryError:
        return DeliveryError(
            message=self.error or "Delivery failed",
            code=self.error_code,
            status_code=self.status_code,
            response_body=self.response_body
        )


class DeliveryOutcome(BaseModel):
    """Outcome of delivering one event to one subscription."""

    webhook_id: str
    url: Optional[str] = None
    success: bool
    skipped: bool = False
    status_code: Optional[int] = None
    attempts: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None
    dead_lettered: bool = False


class DispatchSummary(BaseModel):
    """Summary returned by a fan-out dispatch."""

    event: str
    triggered: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[DeliveryOutcome] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed == 0 and self.error is None


class WebhookStatsSummary(BaseModel):
    """Aggregate statistics across one or more subscriptions."""

    total_webhooks: int = 0
    enabled_webhooks: int = 0
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    success_rate: float = 0.0
    avg_response_time_ms: float = 0.0
    last_call: Optional[datetime] = None


class HealthReport(BaseModel):
    """Webhook subsystem health."""

    status: str
    timestamp: datetime = Field(default_factory=utc_now)
    store_reachable: bool
    dead_letter_count: Optional[int] = None
    stats: Optional[WebhookStatsSummary] = None
    error: Optional[str] = None


class RegisteredWebhook(BaseModel):
    """A new subscription together with its one-time secret."""

    subscription: WebhookSubscription
    secret: str


class UpdatedWebhook(BaseModel):
    """An updated subscription; new_secret is set only after rotation."""

    subscription: WebhookSubscription
    new_secret: Optional[str] = None
