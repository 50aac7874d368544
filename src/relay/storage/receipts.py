"""
Module: receipts.py
Description: DynamoDB store for short-lived live delivery receipts.

A receipt is written after a message is pushed over a live connection.
When the work queue redelivers the same job, the receipt suppresses a
second push until it expires.
"""

from botocore.exceptions import ClientError

from relay.storage.dynamodb import DynamoDBTable, is_conditional_failure
from relay.utils.clock import epoch_seconds, isoformat_utc, utc_now


class DeliveryReceiptStore(DynamoDBTable):
    """DynamoDB persistence for delivery receipts."""

    async def has_receipt(self, receipt_id: str) -> bool:
        response = await self._execute('get_item', Key={'receipt_id': receipt_id})
        item = response.get('Item')
        return bool(item) and int(item['expires_at']) > epoch_seconds(utc_now())

    async def record(self, receipt_id: str, ttl_seconds: int) -> bool:
        """
        Record a receipt unless a live one already exists.

        Returns:
            True if this call wrote the receipt
        """
        now = utc_now()
        try:
            await self._execute(
                'put_item',
                Item={
                    'receipt_id': receipt_id,
                    'delivered_at': isoformat_utc(now),
                    'expires_at': epoch_seconds(now) + ttl_seconds
                },
                ConditionExpression='attribute_not_exists(receipt_id) OR expires_at <= :now',
                ExpressionAttributeValues={':now': epoch_seconds(now)}
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True
