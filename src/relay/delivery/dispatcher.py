"""
Module: dispatcher.py
Description: Webhook fan-out, retry and dead-letter handling.

For each event the dispatcher resolves matching subscriptions and
delivers to all of them concurrently. Each delivery serializes its
envelope once, signs those exact bytes, and retries on the configured
schedule. Exhausted deliveries are written to the dead-letter store
for manual retry. Failures are reported in the returned summary and
never raised to the caller.

Key Components:
- WebhookDispatcher.dispatch: Concurrent fan-out of one event
- WebhookDispatcher.deliver: Delivery to one subscription with retry
- WebhookDispatcher.send_test: Single signed test delivery
- WebhookDispatcher.retry_dead_letters: Manual retry of exhausted deliveries
- WebhookDispatcher.health_check: Store reachability and backlog

Dependencies: asyncio, tenacity (via delivery.retry), httpx (via delivery.push)
"""

import asyncio
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from relay.config.settings import Settings
from relay.delivery.push import WebhookPushClient
from relay.delivery.retry import Sleep, webhook_retrying
from relay.delivery.signing import canonical_json, sign_payload
from relay.models.events import EventPayload, WebhookPing
from relay.models.webhook import (
    AttemptResult,
    DeadLetterRecord,
    DeliveryOutcome,
    DispatchSummary,
    HealthReport,
    WebhookSubscription,
)
from relay.storage.dead_letters import DeadLetterStore
from relay.utils.clock import epoch_seconds, isoformat_utc, utc_now
from relay.utils.logger import get_logger
from relay.utils.metrics import MetricsClient
from relay.webhooks.registry import WebhookRegistry, ensure_enabled

logger = get_logger(__name__)


def build_envelope(
    event_type: str,
    data: Dict[str, Any],
    webhook_id: str,
    timestamp: datetime
) -> Dict[str, Any]:
    """Outbound webhook body."""
    return {
        'event': event_type,
        'data': data,
        'timestamp': isoformat_utc(timestamp),
        'webhookId': webhook_id,
    }


class WebhookDispatcher:
    """
    Delivers events to webhook subscriptions.

    Attributes:
        registry: Subscription registry (resolution and statistics)
        dead_letters: Store for exhausted deliveries
        push_client: HTTP client making single attempts
        settings: Delivery settings (schedule, user agent, retention)
        metrics: Optional CloudWatch metrics client
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        dead_letters: DeadLetterStore,
        push_client: WebhookPushClient,
        settings: Settings,
        metrics: Optional[MetricsClient] = None,
        sleep: Sleep = asyncio.sleep
    ):
        self.registry = registry
        self.dead_letters = dead_letters
        self.push_client = push_client
        self.settings = settings
        self.metrics = metrics
        self._sleep = sleep

    async def dispatch(self, event: EventPayload, owner_id: Optional[str] = None) -> DispatchSummary:
        """
        Deliver an event to every matching subscription.

        Args:
            event: Typed domain event
            owner_id: Restrict delivery to one owner's subscriptions

        Returns:
            DispatchSummary; store and delivery failures are reported here
        """
        event_type = event.event_type
        try:
            subscriptions = await self.registry.resolve_for_event(
                event_type,
                owner_id=owner_id,
                include_disabled=True
            )
        except Exception as e:
            logger.error(
                "Failed to resolve webhooks for event",
                event_type=event_type,
                owner_id=owner_id,
                error=str(e),
                error_type=type(e).__name__
            )
            return DispatchSummary(event=event_type, error=str(e))

        if not subscriptions:
            logger.debug("No webhooks subscribed to event", event_type=event_type, owner_id=owner_id)
            return DispatchSummary(event=event_type)

        outcomes = await asyncio.gather(
            *(self.deliver(subscription, event) for subscription in subscriptions),
            return_exceptions=True
        )

        results: List[DeliveryOutcome] = []
        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Webhook delivery raised",
                    webhook_id=subscription.webhook_id,
                    event_type=event_type,
                    error=str(outcome),
                    error_type=type(outcome).__name__
                )
                outcome = DeliveryOutcome(
                    webhook_id=subscription.webhook_id,
                    url=subscription.url,
                    success=False,
                    error=str(outcome)
                )
            results.append(outcome)

        summary = DispatchSummary(
            event=event_type,
            triggered=sum(1 for result in results if not result.skipped),
            failed=sum(1 for result in results if not result.skipped and not result.success),
            skipped=sum(1 for result in results if result.skipped),
            results=results
        )

        logger.info(
            "Event dispatched to webhooks",
            event_type=event_type,
            triggered=summary.triggered,
            failed=summary.failed,
            skipped=summary.skipped
        )
        return summary

    async def deliver(self, subscription: WebhookSubscription, event: EventPayload) -> DeliveryOutcome:
        """
        Deliver one event to one subscription, retrying per its policy.

        Disabled subscriptions are skipped without an attempt.
        """
        if not subscription.enabled:
            logger.info(
                "Skipping disabled webhook",
                webhook_id=subscription.webhook_id,
                event_type=event.event_type
            )
            return DeliveryOutcome(
                webhook_id=subscription.webhook_id,
                url=subscription.url,
                success=False,
                skipped=True,
                error="Webhook is disabled"
            )

        return await self._deliver(
            subscription,
            event.event_type,
            event.data(),
            max_attempts=subscription.retry_policy.max_attempts
        )

    async def send_test(self, webhook_id: str, owner_id: str) -> DeliveryOutcome:
        """
        Send one signed test event to an owned, enabled subscription.

        No retries, no dead letter and no statistics.

        Raises:
            SubscriptionNotFoundError: If missing or not owned
            WebhookValidationError: If the subscription is disabled
        """
        subscription = await self.registry.get(webhook_id, owner_id)
        ensure_enabled(subscription)

        event = WebhookPing(webhook_id=webhook_id)
        return await self._deliver(
            subscription,
            event.event_type,
            event.data(),
            max_attempts=1,
            dead_letter=False,
            record_stats=False
        )

    async def retry_dead_letters(self, webhook_ids: Optional[Iterable[str]] = None) -> List[DeliveryOutcome]:
        """
        Retry dead-lettered deliveries once each.

        The live subscription is re-resolved; records whose subscription
        was deleted or disabled are skipped and kept. A record is removed
        only when its retry succeeds.

        Args:
            webhook_ids: Restrict to these subscriptions (all when None)
        """
        records = await self.dead_letters.list_records(webhook_ids=webhook_ids)
        outcomes: List[DeliveryOutcome] = []

        for record in records:
            subscription = await self.registry.lookup(record.webhook_id)
            if subscription is None or not subscription.enabled:
                reason = "Webhook not found" if subscription is None else "Webhook is disabled"
                logger.info(
                    "Skipping dead letter retry",
                    dead_letter_id=record.dead_letter_id,
                    webhook_id=record.webhook_id,
                    reason=reason
                )
                outcomes.append(DeliveryOutcome(
                    webhook_id=record.webhook_id,
                    url=record.url,
                    success=False,
                    skipped=True,
                    error=reason
                ))
                continue

            outcome = await self._deliver(
                subscription,
                record.event_type,
                record.payload.get('data', {}),
                max_attempts=1,
                dead_letter=False
            )
            if outcome.success:
                await self.dead_letters.delete_record(record.dead_letter_id)
            outcomes.append(outcome)

        logger.info(
            "Dead letter retry completed",
            retried=len(outcomes),
            succeeded=sum(1 for outcome in outcomes if outcome.success)
        )
        return outcomes

    async def list_dead_letters(
        self,
        limit: Optional[int] = 100,
        webhook_ids: Optional[Iterable[str]] = None
    ) -> List[DeadLetterRecord]:
        return await self.dead_letters.list_records(limit=limit, webhook_ids=webhook_ids)

    async def health_check(self, include_stats: bool = True) -> HealthReport:
        """
        Store reachability, dead-letter backlog and aggregate statistics.

        Args:
            include_stats: Add statistics summed over every owner
        """
        try:
            reachable = await self.registry.store.ping()
            if not reachable:
                return HealthReport(status="unhealthy", store_reachable=False)

            return HealthReport(
                status="healthy",
                store_reachable=True,
                dead_letter_count=await self.dead_letters.count(),
                stats=await self.registry.aggregate_stats() if include_stats else None
            )
        except Exception as e:
            logger.error("Webhook health check failed", error=str(e), error_type=type(e).__name__)
            return HealthReport(status="unhealthy", store_reachable=False, error=str(e))

    async def _deliver(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        data: Dict[str, Any],
        max_attempts: int,
        dead_letter: bool = True,
        record_stats: bool = True
    ) -> DeliveryOutcome:
        timestamp = utc_now()
        envelope = build_envelope(event_type, data, subscription.webhook_id, timestamp)
        body = canonical_json(envelope)
        signature = sign_payload(body, subscription.secret.get_secret_value())
        base_headers = {
            'Content-Type': 'application/json',
            'User-Agent': self.settings.webhook_user_agent,
            'X-Webhook-Id': subscription.webhook_id,
            'X-Webhook-Event': event_type,
            'X-Webhook-Timestamp': envelope['timestamp'],
            'X-Webhook-Signature': signature,
        }

        attempts = 0

        async def attempt() -> AttemptResult:
            nonlocal attempts
            attempts += 1
            headers = dict(base_headers, **{'X-Webhook-Attempt': str(attempts)})
            logger.debug(
                "Attempting webhook delivery",
                webhook_id=subscription.webhook_id,
                event_type=event_type,
                attempt=attempts
            )
            return await self.push_client.post(
                subscription.url,
                body,
                headers,
                subscription.retry_policy.timeout_seconds
            )

        started = time.perf_counter()
        retrying = webhook_retrying(max_attempts, self.settings.webhook_retry_delays, sleep=self._sleep)
        result: AttemptResult = await retrying(attempt)
        duration_ms = round((time.perf_counter() - started) * 1000, 3)

        if record_stats:
            await self._record_stats(subscription.webhook_id, result)

        dead_lettered = False
        if result.ok:
            logger.info(
                "Webhook delivered",
                webhook_id=subscription.webhook_id,
                event_type=event_type,
                status_code=result.status_code,
                attempts=attempts,
                duration_ms=duration_ms
            )
            await self._metric('WebhookDelivered', event_type)
        else:
            logger.warning(
                "Webhook delivery exhausted",
                webhook_id=subscription.webhook_id,
                event_type=event_type,
                attempts=attempts,
                error=result.error,
                status_code=result.status_code
            )
            await self._metric('WebhookFailed', event_type)
            if dead_letter:
                dead_lettered = await self._dead_letter(subscription, event_type, envelope, result, attempts)

        return DeliveryOutcome(
            webhook_id=subscription.webhook_id,
            url=subscription.url,
            success=result.ok,
            status_code=result.status_code,
            attempts=attempts,
            duration_ms=duration_ms,
            error=result.error,
            dead_lettered=dead_lettered
        )

    async def _record_stats(self, webhook_id: str, result: AttemptResult) -> None:
        try:
            await self.registry.record_delivery(webhook_id, success=result.ok, latency_ms=result.latency_ms)
        except Exception as e:
            logger.error(
                "Failed to record webhook statistics",
                webhook_id=webhook_id,
                error=str(e),
                error_type=type(e).__name__
            )

    async def _dead_letter(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        envelope: Dict[str, Any],
        result: AttemptResult,
        attempts: int
    ) -> bool:
        now = utc_now()
        record = DeadLetterRecord(
            dead_letter_id=f"dlq_{uuid.uuid4().hex}",
            webhook_id=subscription.webhook_id,
            owner_id=subscription.owner_id,
            url=subscription.url,
            event_type=event_type,
            payload=envelope,
            error=result.to_error(),
            attempts=attempts,
            created_at=now,
            expires_at=epoch_seconds(now + timedelta(days=self.settings.dead_letter_retention_days))
        )
        try:
            await self.dead_letters.put_record(record)
        except Exception as e:
            logger.error(
                "Failed to write dead letter record",
                webhook_id=subscription.webhook_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__
            )
            return False

        await self._metric('WebhookDeadLettered', event_type)
        return True

    async def _metric(self, name: str, event_type: str) -> None:
        if self.metrics is None:
            return
        await self.metrics.put_metric(name, 1, dimensions={'EventType': event_type})
