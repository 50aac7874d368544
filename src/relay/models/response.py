"""
Module: response.py
Description: API response models for webhook administration.

Read responses never carry the subscription secret. Only the
registration response and a rotation response include it, once.

Key Components:
- WebhookResponse: Redacted subscription view
- RegisterWebhookResponse / UpdateWebhookResponse: Write responses
- WebhookListResponse, WebhookStatsResponse, OverviewResponse
- DeadLetterListResponse, RetryDeadLettersResponse

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from relay.models.webhook import (
    DeadLetterRecord,
    DeliveryOutcome,
    RetryPolicy,
    WebhookStatsSummary,
    WebhookSubscription,
)


class WebhookStatsView(BaseModel):
    total_calls: int
    successful_calls: int
    failed_calls: int
    success_rate: float
    avg_response_time_ms: float
    last_called_at: Optional[datetime] = None
    last_call_success: Optional[bool] = None


class WebhookResponse(BaseModel):
    """Subscription as returned by read endpoints (no secret)."""

    webhook_id: str
    name: str
    url: str
    events: List[str]
    enabled: bool
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    retry_policy: RetryPolicy
    stats: WebhookStatsView
    created_at: datetime
    updated_at: datetime
    secret_rotated_at: Optional[datetime] = None

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> "WebhookResponse":
        stats = subscription.stats
        return cls(
            webhook_id=subscription.webhook_id,
            name=subscription.name,
            url=subscription.url,
            events=list(subscription.events),
            enabled=subscription.enabled,
            description=subscription.description,
            tags=list(subscription.tags),
            retry_policy=subscription.retry_policy,
            stats=WebhookStatsView(
                total_calls=stats.total_calls,
                successful_calls=stats.successful_calls,
                failed_calls=stats.failed_calls,
                success_rate=stats.success_rate,
                avg_response_time_ms=stats.average_latency_ms,
                last_called_at=stats.last_called_at,
                last_call_success=stats.last_call_success
            ),
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
            secret_rotated_at=subscription.secret_rotated_at
        )


class RegisterWebhookResponse(BaseModel):
    message: str = "Webhook registered successfully"
    data: WebhookResponse
    secret: str = Field(..., description="Returned only once")


class UpdateWebhookResponse(BaseModel):
    message: str = "Webhook updated successfully"
    data: WebhookResponse
    new_secret: Optional[str] = Field(default=None, description="Present only after rotation")


class WebhookListResponse(BaseModel):
    count: int
    data: List[WebhookResponse]


class WebhookStatsResponse(BaseModel):
    webhook: WebhookResponse
    stats: WebhookStatsSummary


class DeadLetterListResponse(BaseModel):
    count: int
    items: List[DeadLetterRecord]


class OverviewResponse(BaseModel):
    stats: WebhookStatsSummary
    dead_letters: DeadLetterListResponse


class RetryDeadLettersResponse(BaseModel):
    message: str = "Dead letter retry completed"
    retried: int
    succeeded: int
    results: List[DeliveryOutcome]


class WebhookTestResponse(BaseModel):
    success: bool
    message: str
    result: DeliveryOutcome
