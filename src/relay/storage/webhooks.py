"""
Module: webhooks.py
Description: DynamoDB store for webhook subscriptions.

Subscriptions are keyed by webhook_id with an OwnerIndex GSI for
per-owner listings. Ownership is enforced with ConditionExpressions so
a foreign or missing subscription is indistinguishable to the caller.
Delivery statistics are updated with atomic ADD expressions so
concurrent dispatches never lose increments.

Key Components:
- WebhookStore.put_subscription / get_subscription / delete_subscription
- WebhookStore.list_by_owner / list_all
- WebhookStore.update_subscription: Ownership-checked partial update
- WebhookStore.record_delivery: Atomic statistics increment

Dependencies: boto3, botocore, decimal, datetime
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from relay.models.webhook import RetryPolicy, WebhookStats, WebhookSubscription
from relay.storage.dynamodb import DynamoDBTable, is_conditional_failure, to_dynamo
from relay.storage.schema import OWNER_INDEX
from relay.utils.clock import isoformat_utc, parse_isoformat
from relay.utils.logger import get_logger

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({
    'url',
    'events',
    'name',
    'description',
    'tags',
    'enabled',
    'secret',
    'max_attempts',
    'timeout_seconds',
    'updated_at',
    'secret_rotated_at',
})


def _subscription_to_item(subscription: WebhookSubscription) -> Dict[str, Any]:
    stats = subscription.stats
    item = {
        'webhook_id': subscription.webhook_id,
        'owner_id': subscription.owner_id,
        'name': subscription.name,
        'url': subscription.url,
        'secret': subscription.secret.get_secret_value(),
        'events': list(subscription.events),
        'enabled': subscription.enabled,
        'description': subscription.description,
        'tags': list(subscription.tags),
        'max_attempts': subscription.retry_policy.max_attempts,
        'timeout_seconds': subscription.retry_policy.timeout_seconds,
        'stats_total_calls': stats.total_calls,
        'stats_successful_calls': stats.successful_calls,
        'stats_failed_calls': stats.failed_calls,
        'stats_total_latency_ms': stats.total_latency_ms,
        'stats_last_called_at': isoformat_utc(stats.last_called_at) if stats.last_called_at else None,
        'stats_last_call_success': stats.last_call_success,
        'created_at': isoformat_utc(subscription.created_at),
        'updated_at': isoformat_utc(subscription.updated_at),
        'secret_rotated_at': (
            isoformat_utc(subscription.secret_rotated_at)
            if subscription.secret_rotated_at else None
        ),
    }

    # DynamoDB doesn't allow None values
    return to_dynamo({k: v for k, v in item.items() if v is not None})


def _item_to_subscription(item: Dict[str, Any]) -> WebhookSubscription:
    last_called_at = item.get('stats_last_called_at')
    rotated_at = item.get('secret_rotated_at')

    return WebhookSubscription(
        webhook_id=item['webhook_id'],
        owner_id=item['owner_id'],
        name=item['name'],
        url=item['url'],
        secret=item['secret'],
        events=list(item.get('events', [])),
        enabled=bool(item.get('enabled', True)),
        description=item.get('description'),
        tags=list(item.get('tags', [])),
        retry_policy=RetryPolicy(
            max_attempts=int(item.get('max_attempts', 3)),
            timeout_seconds=float(item.get('timeout_seconds', 10))
        ),
        stats=WebhookStats(
            total_calls=int(item.get('stats_total_calls', 0)),
            successful_calls=int(item.get('stats_successful_calls', 0)),
            failed_calls=int(item.get('stats_failed_calls', 0)),
            total_latency_ms=float(item.get('stats_total_latency_ms', 0)),
            last_called_at=parse_isoformat(last_called_at) if last_called_at else None,
            last_call_success=item.get('stats_last_call_success')
        ),
        created_at=parse_isoformat(item['created_at']),
        updated_at=parse_isoformat(item['updated_at']),
        secret_rotated_at=parse_isoformat(rotated_at) if rotated_at else None
    )


class WebhookStore(DynamoDBTable):
    """DynamoDB persistence for webhook subscriptions."""

    async def put_subscription(self, subscription: WebhookSubscription) -> None:
        """
        Store a new subscription.

        Raises:
            ClientError: If DynamoDB operation fails or the id already exists
        """
        if not isinstance(subscription, WebhookSubscription):
            raise ValueError("subscription must be a WebhookSubscription instance")

        await self._execute(
            'put_item',
            Item=_subscription_to_item(subscription),
            ConditionExpression='attribute_not_exists(webhook_id)'
        )

        logger.info(
            "Webhook subscription stored",
            webhook_id=subscription.webhook_id,
            owner_id=subscription.owner_id,
            events=subscription.events,
            table_name=self.table_name
        )

    async def get_subscription(self, webhook_id: str) -> Optional[WebhookSubscription]:
        """
        Retrieve a subscription by id, regardless of owner.

        Returns:
            WebhookSubscription if found, None otherwise
        """
        if not webhook_id or not isinstance(webhook_id, str):
            raise ValueError("webhook_id must be a non-empty string")

        response = await self._execute('get_item', Key={'webhook_id': webhook_id})
        item = response.get('Item')
        if not item:
            return None
        return _item_to_subscription(item)

    async def list_by_owner(self, owner_id: str) -> List[WebhookSubscription]:
        """List an owner's subscriptions, newest first."""
        if not owner_id or not isinstance(owner_id, str):
            raise ValueError("owner_id must be a non-empty string")

        items = await self._query_all(
            IndexName=OWNER_INDEX,
            KeyConditionExpression='#owner_id = :owner_id',
            ExpressionAttributeNames={'#owner_id': 'owner_id'},
            ExpressionAttributeValues={':owner_id': owner_id},
            ScanIndexForward=False
        )
        return [_item_to_subscription(item) for item in items]

    async def list_all(self) -> List[WebhookSubscription]:
        """List every subscription."""
        items = await self._scan_all()
        return [_item_to_subscription(item) for item in items]

    async def update_subscription(
        self,
        webhook_id: str,
        owner_id: str,
        changes: Dict[str, Any]
    ) -> Optional[WebhookSubscription]:
        """
        Apply a partial update to a subscription owned by owner_id.

        Statistics attributes are never written here, so concurrent
        record_delivery increments are preserved.

        Args:
            webhook_id: Subscription to update
            owner_id: Caller; must own the subscription
            changes: Field name to new value (see UPDATABLE_FIELDS)

        Returns:
            The updated subscription, or None if missing or not owned
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {':owner_id': owner_id}
        assignments: List[str] = []
        for index, (field, value) in enumerate(sorted(changes.items())):
            if value is None:
                continue
            if isinstance(value, datetime):
                value = isoformat_utc(value)
            names[f'#f{index}'] = field
            values[f':v{index}'] = to_dynamo(value)
            assignments.append(f'#f{index} = :v{index}')

        if not assignments:
            return await self._get_owned(webhook_id, owner_id)

        try:
            response = await self._execute(
                'update_item',
                Key={'webhook_id': webhook_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(webhook_id) AND owner_id = :owner_id',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return None
            raise

        logger.info(
            "Webhook subscription updated",
            webhook_id=webhook_id,
            fields=sorted(field for field, value in changes.items() if value is not None),
            table_name=self.table_name
        )
        return _item_to_subscription(response['Attributes'])

    async def delete_subscription(self, webhook_id: str, owner_id: str) -> bool:
        """
        Delete a subscription owned by owner_id.

        Returns:
            True if deleted, False if missing or not owned
        """
        try:
            await self._execute(
                'delete_item',
                Key={'webhook_id': webhook_id},
                ConditionExpression='attribute_exists(webhook_id) AND owner_id = :owner_id',
                ExpressionAttributeValues={':owner_id': owner_id}
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise

        logger.info(
            "Webhook subscription deleted",
            webhook_id=webhook_id,
            owner_id=owner_id,
            table_name=self.table_name
        )
        return True

    async def record_delivery(
        self,
        webhook_id: str,
        success: bool,
        latency_ms: float,
        called_at: datetime
    ) -> None:
        """
        Atomically increment delivery statistics.

        A subscription deleted while a delivery was in flight is left deleted.
        """
        try:
            await self._execute(
                'update_item',
                Key={'webhook_id': webhook_id},
                UpdateExpression=(
                    'ADD stats_total_calls :one, '
                    'stats_successful_calls :succeeded, '
                    'stats_failed_calls :failed, '
                    'stats_total_latency_ms :latency '
                    'SET stats_last_called_at = :called_at, '
                    'stats_last_call_success = :success'
                ),
                ConditionExpression='attribute_exists(webhook_id)',
                ExpressionAttributeValues={
                    ':one': 1,
                    ':succeeded': 1 if success else 0,
                    ':failed': 0 if success else 1,
                    ':latency': Decimal(str(round(latency_ms, 3))),
                    ':called_at': isoformat_utc(called_at),
                    ':success': success
                }
            )
        except ClientError as e:
            if is_conditional_failure(e):
                logger.info(
                    "Skipped statistics for deleted webhook",
                    webhook_id=webhook_id
                )
                return
            raise

    async def _get_owned(self, webhook_id: str, owner_id: str) -> Optional[WebhookSubscription]:
        subscription = await self.get_subscription(webhook_id)
        if subscription is None or subscription.owner_id != owner_id:
            return None
        return subscription
