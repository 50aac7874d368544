"""
Module: dead_letters.py
Description: DynamoDB store for exhausted webhook deliveries.

Records carry an expires_at TTL attribute (the retention horizon).
DynamoDB purges expired items lazily, so reads also filter them out.

Dependencies: boto3, json, datetime
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from boto3.dynamodb.conditions import Attr

from relay.models.webhook import DeadLetterRecord, DeliveryError
from relay.storage.dynamodb import DynamoDBTable, to_dynamo
from relay.utils.clock import epoch_seconds, isoformat_utc, parse_isoformat, utc_now
from relay.utils.logger import get_logger

logger = get_logger(__name__)


def _record_to_item(record: DeadLetterRecord) -> Dict[str, Any]:
    error = record.error.model_dump(exclude_none=True)
    item = {
        'dead_letter_id': record.dead_letter_id,
        'webhook_id': record.webhook_id,
        'owner_id': record.owner_id,
        'url': record.url,
        'event_type': record.event_type,
        # Payload is kept as the JSON text that was sent, preserving types
        'payload': json.dumps(record.payload),
        'error': error,
        'attempts': record.attempts,
        'created_at': isoformat_utc(record.created_at),
        'expires_at': record.expires_at,
    }
    return to_dynamo(item)


def _item_to_record(item: Dict[str, Any]) -> DeadLetterRecord:
    error = dict(item.get('error') or {})
    if 'status_code' in error:
        error['status_code'] = int(error['status_code'])

    payload = item['payload']
    if isinstance(payload, str):
        payload = json.loads(payload)

    return DeadLetterRecord(
        dead_letter_id=item['dead_letter_id'],
        webhook_id=item['webhook_id'],
        owner_id=item['owner_id'],
        url=item['url'],
        event_type=item['event_type'],
        payload=payload,
        error=DeliveryError(**error),
        attempts=int(item['attempts']),
        created_at=parse_isoformat(item['created_at']),
        expires_at=int(item['expires_at'])
    )


class DeadLetterStore(DynamoDBTable):
    """DynamoDB persistence for dead-lettered webhook deliveries."""

    async def put_record(self, record: DeadLetterRecord) -> None:
        await self._execute('put_item', Item=_record_to_item(record))

        logger.info(
            "Delivery added to dead letter store",
            dead_letter_id=record.dead_letter_id,
            webhook_id=record.webhook_id,
            event_type=record.event_type,
            attempts=record.attempts,
            table_name=self.table_name
        )

    async def get_record(self, dead_letter_id: str) -> Optional[DeadLetterRecord]:
        response = await self._execute('get_item', Key={'dead_letter_id': dead_letter_id})
        item = response.get('Item')
        if not item or int(item['expires_at']) <= epoch_seconds(utc_now()):
            return None
        return _item_to_record(item)

    async def list_records(
        self,
        limit: Optional[int] = None,
        webhook_ids: Optional[Iterable[str]] = None
    ) -> List[DeadLetterRecord]:
        """
        List unexpired records, oldest first.

        Args:
            limit: Maximum number of records to return (all when None)
            webhook_ids: Optional filter by subscription id
        """
        webhook_ids = list(webhook_ids or [])
        filter_expression = Attr('expires_at').gt(epoch_seconds(utc_now()))
        if webhook_ids:
            filter_expression = filter_expression & Attr('webhook_id').is_in(webhook_ids)

        items = await self._scan_all(FilterExpression=filter_expression)
        records = sorted(
            (_item_to_record(item) for item in items),
            key=lambda record: record.created_at
        )
        if limit is not None:
            records = records[:limit]
        return records

    async def delete_record(self, dead_letter_id: str) -> None:
        await self._execute('delete_item', Key={'dead_letter_id': dead_letter_id})

        logger.info(
            "Dead letter record removed",
            dead_letter_id=dead_letter_id,
            table_name=self.table_name
        )

    async def count(self) -> int:
        """Number of unexpired records (the dead-letter backlog)."""
        return await self._count(
            FilterExpression=Attr('expires_at').gt(epoch_seconds(utc_now()))
        )
