"""
Module: offline.py
Description: DynamoDB store for per-recipient offline message entries.

One item per recipient holding an ordered list of pending messages
(JSON strings, appended atomically with list_append) and an expires_at
horizon that every append refreshes. An entry past its horizon is
treated as empty and is replaced, not extended, by the next append.

Clearing after a replay removes exactly the replayed prefix: messages
appended while the replay was running stay queued.

Dependencies: boto3, botocore, json
"""

import json
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from relay.models.message import OfflineMessage, OfflineMessageEntry
from relay.storage.dynamodb import DynamoDBTable, is_conditional_failure
from relay.utils.clock import epoch_seconds, utc_now
from relay.utils.logger import get_logger

logger = get_logger(__name__)

APPEND_ATTEMPTS = 3
CLEAR_ATTEMPTS = 3


class OfflineMessageStore(DynamoDBTable):
    """DynamoDB persistence for offline message entries."""

    async def append(self, user_id: str, message: OfflineMessage, expires_at: int) -> None:
        """
        Append a message to the recipient's entry and refresh its horizon.

        Args:
            user_id: Recipient
            message: Message to queue
            expires_at: New expiry horizon (epoch seconds)
        """
        encoded = message.model_dump_json()

        for attempt in range(1, APPEND_ATTEMPTS + 1):
            now = epoch_seconds(utc_now())
            try:
                await self._execute(
                    'update_item',
                    Key={'user_id': user_id},
                    UpdateExpression=(
                        'SET messages = list_append(if_not_exists(messages, :empty), :new), '
                        'expires_at = :expires_at'
                    ),
                    ConditionExpression='attribute_not_exists(user_id) OR expires_at > :now',
                    ExpressionAttributeValues={
                        ':empty': [],
                        ':new': [encoded],
                        ':expires_at': expires_at,
                        ':now': now
                    }
                )
                break
            except ClientError as e:
                if not is_conditional_failure(e):
                    raise

            # Entry expired but not yet purged; start a fresh one unless
            # another writer already did
            logger.info("Replacing expired offline entry", user_id=user_id)
            try:
                await self._execute(
                    'put_item',
                    Item={
                        'user_id': user_id,
                        'messages': [encoded],
                        'expires_at': expires_at
                    },
                    ConditionExpression='attribute_not_exists(user_id) OR expires_at <= :now',
                    ExpressionAttributeValues={':now': now}
                )
                break
            except ClientError as e:
                if not is_conditional_failure(e) or attempt == APPEND_ATTEMPTS:
                    raise
                logger.info("Offline entry replaced concurrently, appending", user_id=user_id)

        logger.info(
            "Message queued offline",
            user_id=user_id,
            chat_id=message.chat_id,
            message_id=message.message_id,
            table_name=self.table_name
        )

    async def get_entry(self, user_id: str) -> Optional[OfflineMessageEntry]:
        """
        Read the pending entry.

        Returns:
            The entry, or None when missing or past its horizon
        """
        item = await self._get_item(user_id)
        if item is None:
            return None

        return OfflineMessageEntry(
            user_id=user_id,
            messages=[
                OfflineMessage.model_validate_json(raw)
                for raw in item.get('messages', [])
            ],
            expires_at=int(item['expires_at'])
        )

    async def clear(self, user_id: str, replayed: List[OfflineMessage]) -> bool:
        """
        Remove the replayed messages from the head of the entry.

        The write is conditional on the list being unchanged since it was
        read; when an append races the clear, the entry is re-read and the
        clear retried so appended messages stay queued.

        Args:
            user_id: Recipient
            replayed: Messages that were delivered, in entry order

        Returns:
            False if the replayed messages are no longer at the head of
            the entry (another replay won), in which case nothing is removed
        """
        if not replayed:
            return True

        replayed_ids = [message.message_id for message in replayed]
        count = len(replayed)

        for _ in range(CLEAR_ATTEMPTS):
            item = await self._get_item(user_id)
            if item is None:
                return False

            stored: List[str] = list(item.get('messages', []))
            head_ids = [
                OfflineMessage.model_validate_json(raw).message_id
                for raw in stored[:count]
            ]
            if head_ids != replayed_ids:
                logger.warning("Offline entry changed during replay", user_id=user_id)
                return False

            remaining = stored[count:]
            try:
                if remaining:
                    await self._execute(
                        'update_item',
                        Key={'user_id': user_id},
                        UpdateExpression='SET messages = :remaining',
                        ConditionExpression='messages = :stored',
                        ExpressionAttributeValues={':remaining': remaining, ':stored': stored}
                    )
                else:
                    await self._execute(
                        'delete_item',
                        Key={'user_id': user_id},
                        ConditionExpression='messages = :stored',
                        ExpressionAttributeValues={':stored': stored}
                    )
            except ClientError as e:
                if not is_conditional_failure(e):
                    raise
                logger.info("Offline entry appended during clear, retrying", user_id=user_id)
                continue

            logger.info(
                "Offline messages cleared",
                user_id=user_id,
                cleared=count,
                remaining=len(remaining),
                table_name=self.table_name
            )
            return True

        logger.warning("Offline entry kept changing, not cleared", user_id=user_id)
        return False

    async def _get_item(self, user_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            'get_item',
            Key={'user_id': user_id},
            ConsistentRead=True
        )
        item = response.get('Item')
        if not item or int(item.get('expires_at', 0)) <= epoch_seconds(utc_now()):
            return None
        return item
