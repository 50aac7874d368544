"""
Module: registry.py
Description: Webhook subscription registry.

Owns subscription lifecycle (register, update, remove), ownership
checks, per-owner listing with a short-lived cache, event resolution
for the dispatcher, and delivery statistics.

Key Components:
- WebhookRegistry.register / update / remove / get
- WebhookRegistry.list_for_owner: Cached per-owner listing
- WebhookRegistry.resolve_for_event: Subscriptions matching an event type
- WebhookRegistry.record_delivery / aggregate_stats: Statistics

Dependencies: storage.webhooks, webhooks.validation, delivery.signing
"""

import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import SecretStr

from relay.delivery.signing import generate_secret
from relay.errors import SubscriptionNotFoundError, WebhookValidationError
from relay.models.request import RegisterWebhookRequest, UpdateWebhookRequest
from relay.models.webhook import (
    RegisteredWebhook,
    RetryPolicy,
    UpdatedWebhook,
    WebhookStatsSummary,
    WebhookSubscription,
)
from relay.storage.webhooks import WebhookStore
from relay.utils.clock import isoformat_utc, utc_now
from relay.utils.logger import get_logger
from relay.webhooks.validation import WebhookUrlValidator

logger = get_logger(__name__)


def new_webhook_id() -> str:
    return f"wh_{uuid.uuid4().hex}"


def summarize(subscriptions: List[WebhookSubscription]) -> WebhookStatsSummary:
    """Aggregate statistics over a set of subscriptions."""
    total_calls = sum(s.stats.total_calls for s in subscriptions)
    successful = sum(s.stats.successful_calls for s in subscriptions)
    failed = sum(s.stats.failed_calls for s in subscriptions)
    total_latency = sum(s.stats.total_latency_ms for s in subscriptions)
    last_calls = [s.stats.last_called_at for s in subscriptions if s.stats.last_called_at]

    return WebhookStatsSummary(
        total_webhooks=len(subscriptions),
        enabled_webhooks=sum(1 for s in subscriptions if s.enabled),
        total_calls=total_calls,
        successful_calls=successful,
        failed_calls=failed,
        success_rate=round(successful / total_calls * 100, 2) if total_calls else 0.0,
        avg_response_time_ms=round(total_latency / total_calls, 2) if total_calls else 0.0,
        last_call=max(last_calls) if last_calls else None
    )


class WebhookRegistry:
    """
    Registry of webhook subscriptions.

    Attributes:
        store: WebhookStore persistence
        validator: URL validator
        default_policy: Retry policy applied when a request gives none
        cache_ttl: Seconds a per-owner listing stays cached (0 disables)
    """

    def __init__(
        self,
        store: WebhookStore,
        validator: WebhookUrlValidator,
        default_policy: Optional[RetryPolicy] = None,
        cache_ttl: float = 300,
        monotonic: Callable[[], float] = time.monotonic
    ):
        self.store = store
        self.validator = validator
        self.default_policy = default_policy or RetryPolicy()
        self.cache_ttl = cache_ttl
        self._monotonic = monotonic
        self._owner_cache: Dict[str, Tuple[float, List[WebhookSubscription]]] = {}

    async def register(self, owner_id: str, request: RegisterWebhookRequest) -> RegisteredWebhook:
        """
        Create a subscription.

        Args:
            owner_id: Owning user
            request: Validated registration request

        Returns:
            The subscription and its secret (the only time it is returned)

        Raises:
            WebhookValidationError: If the URL is not allowed
        """
        url = self.validator.validate(request.url)
        secret = request.secret or generate_secret()
        now = utc_now()

        subscription = WebhookSubscription(
            webhook_id=new_webhook_id(),
            owner_id=owner_id,
            name=request.name or f"Webhook {isoformat_utc(now)}",
            url=url,
            secret=SecretStr(secret),
            events=request.events,
            enabled=request.enabled,
            description=request.description,
            tags=request.tags,
            retry_policy=RetryPolicy(
                max_attempts=request.max_attempts or self.default_policy.max_attempts,
                timeout_seconds=request.timeout_seconds or self.default_policy.timeout_seconds
            ),
            created_at=now,
            updated_at=now
        )

        await self.store.put_subscription(subscription)
        self._invalidate(owner_id)

        logger.info(
            "Webhook registered",
            webhook_id=subscription.webhook_id,
            owner_id=owner_id,
            url=url,
            events=subscription.events
        )
        return RegisteredWebhook(subscription=subscription, secret=secret)

    async def update(
        self,
        webhook_id: str,
        owner_id: str,
        request: UpdateWebhookRequest
    ) -> UpdatedWebhook:
        """
        Apply a partial update; rotate the secret when requested.

        Raises:
            SubscriptionNotFoundError: If missing or not owned by owner_id
            WebhookValidationError: If a new URL is not allowed
        """
        now = utc_now()
        changes: Dict[str, Any] = {'updated_at': now}

        if request.url is not None:
            changes['url'] = self.validator.validate(request.url)
        for field in ('events', 'name', 'description', 'tags', 'enabled', 'max_attempts'):
            value = getattr(request, field)
            if value is not None:
                changes[field] = value
        if request.timeout_seconds is not None:
            changes['timeout_seconds'] = RetryPolicy(timeout_seconds=request.timeout_seconds).timeout_seconds

        new_secret: Optional[str] = None
        if request.rotate_secret:
            new_secret = generate_secret()
            changes['secret'] = new_secret
            changes['secret_rotated_at'] = now

        subscription = await self.store.update_subscription(webhook_id, owner_id, changes)
        if subscription is None:
            raise SubscriptionNotFoundError(webhook_id)

        self._invalidate(owner_id)
        logger.info(
            "Webhook updated",
            webhook_id=webhook_id,
            owner_id=owner_id,
            fields=sorted(changes),
            secret_rotated=new_secret is not None
        )
        return UpdatedWebhook(subscription=subscription, new_secret=new_secret)

    async def remove(self, webhook_id: str, owner_id: str) -> None:
        """
        Delete a subscription.

        Raises:
            SubscriptionNotFoundError: If missing or not owned by owner_id
        """
        if not await self.store.delete_subscription(webhook_id, owner_id):
            raise SubscriptionNotFoundError(webhook_id)

        self._invalidate(owner_id)
        logger.info("Webhook removed", webhook_id=webhook_id, owner_id=owner_id)

    async def get(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        """
        Read a subscription owned by owner_id.

        Raises:
            SubscriptionNotFoundError: If missing or not owned by owner_id
        """
        subscription = await self.lookup(webhook_id)
        if subscription is None or subscription.owner_id != owner_id:
            raise SubscriptionNotFoundError(webhook_id)
        return subscription

    async def lookup(self, webhook_id: str) -> Optional[WebhookSubscription]:
        """Read a subscription regardless of owner (internal callers only)."""
        if not webhook_id.startswith("wh_"):
            return None
        return await self.store.get_subscription(webhook_id)

    async def list_for_owner(self, owner_id: str) -> List[WebhookSubscription]:
        """List an owner's subscriptions, newest first."""
        cached = self._owner_cache.get(owner_id)
        if cached and cached[0] > self._monotonic():
            return list(cached[1])

        subscriptions = await self.store.list_by_owner(owner_id)
        if self.cache_ttl > 0:
            self._owner_cache[owner_id] = (self._monotonic() + self.cache_ttl, subscriptions)
        return list(subscriptions)

    async def resolve_for_event(
        self,
        event_type: str,
        owner_id: Optional[str] = None,
        include_disabled: bool = False
    ) -> List[WebhookSubscription]:
        """
        Subscriptions whose patterns cover event_type.

        Args:
            event_type: Concrete event type being dispatched
            owner_id: Restrict to one owner's subscriptions
            include_disabled: Also return disabled matches (the dispatcher
                reports them as skipped)
        """
        if owner_id:
            candidates = await self.store.list_by_owner(owner_id)
        else:
            candidates = await self.store.list_all()

        return [
            subscription for subscription in candidates
            if subscription.matches(event_type) and (include_disabled or subscription.enabled)
        ]

    async def record_delivery(
        self,
        webhook_id: str,
        success: bool,
        latency_ms: float,
        called_at: Optional[datetime] = None
    ) -> None:
        """Atomically add one delivery to the subscription's statistics."""
        await self.store.record_delivery(
            webhook_id,
            success=success,
            latency_ms=latency_ms,
            called_at=called_at or utc_now()
        )

    async def aggregate_stats(
        self,
        owner_id: Optional[str] = None,
        webhook_id: Optional[str] = None
    ) -> WebhookStatsSummary:
        """
        Aggregate statistics for one webhook, one owner, or everything.

        Raises:
            SubscriptionNotFoundError: If webhook_id is given but missing or
                not owned by owner_id
        """
        if webhook_id:
            if owner_id:
                subscriptions = [await self.get(webhook_id, owner_id)]
            else:
                subscription = await self.lookup(webhook_id)
                if subscription is None:
                    raise SubscriptionNotFoundError(webhook_id)
                subscriptions = [subscription]
        elif owner_id:
            subscriptions = await self.store.list_by_owner(owner_id)
        else:
            subscriptions = await self.store.list_all()

        return summarize(subscriptions)

    def _invalidate(self, owner_id: str) -> None:
        self._owner_cache.pop(owner_id, None)


def ensure_enabled(subscription: WebhookSubscription) -> None:
    """Raise if a subscription cannot be used for a manual delivery."""
    if not subscription.enabled:
        raise WebhookValidationError("Webhook is disabled")
