"""
Module: presence.py
Description: DynamoDB store for live connection sessions.

One item per user, so a new connection overwrites the previous one.
Items carry an expires_at TTL attribute; the directory also applies a
soft expiry on read because TTL purges are lazy.

Dependencies: boto3, botocore, json
"""

import json
from typing import Any, Dict, Optional

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from relay.models.message import PresenceProfile, PresenceSession
from relay.storage.dynamodb import DynamoDBTable, is_conditional_failure
from relay.utils.clock import epoch_seconds, isoformat_utc, parse_isoformat
from relay.utils.logger import get_logger

logger = get_logger(__name__)


def _session_to_item(session: PresenceSession, expires_at: int) -> Dict[str, Any]:
    return {
        'user_id': session.user_id,
        'connection_id': session.connection_id,
        'last_seen': isoformat_utc(session.last_seen),
        'last_seen_epoch': epoch_seconds(session.last_seen),
        'profile': session.profile.model_dump_json(exclude_none=True),
        'expires_at': expires_at,
    }


def _item_to_session(item: Dict[str, Any]) -> PresenceSession:
    profile = item.get('profile')
    return PresenceSession(
        user_id=item['user_id'],
        connection_id=item['connection_id'],
        last_seen=parse_isoformat(item['last_seen']),
        profile=PresenceProfile(**json.loads(profile)) if profile else PresenceProfile()
    )


class PresenceStore(DynamoDBTable):
    """DynamoDB persistence for presence sessions."""

    async def put_session(self, session: PresenceSession, expires_at: int) -> None:
        await self._execute('put_item', Item=_session_to_item(session, expires_at))

    async def get_session(self, user_id: str) -> Optional[PresenceSession]:
        response = await self._execute('get_item', Key={'user_id': user_id})
        item = response.get('Item')
        if not item:
            return None
        return _item_to_session(item)

    async def delete_session(self, user_id: str, connection_id: Optional[str] = None) -> bool:
        """
        Remove a user's session.

        Args:
            user_id: User to remove
            connection_id: When given, only remove if the stored session
                still belongs to this connection

        Returns:
            True if a session was removed
        """
        kwargs: Dict[str, Any] = {
            'Key': {'user_id': user_id},
            'ReturnValues': 'ALL_OLD'
        }
        if connection_id is not None:
            kwargs['ConditionExpression'] = 'connection_id = :connection_id'
            kwargs['ExpressionAttributeValues'] = {':connection_id': connection_id}

        try:
            response = await self._execute('delete_item', **kwargs)
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise

        return bool(response.get('Attributes'))

    async def touch(self, user_id: str, last_seen_iso: str, last_seen_epoch: int, expires_at: int) -> bool:
        """
        Refresh last_seen on an existing session.

        Returns:
            False if the user has no session
        """
        try:
            await self._execute(
                'update_item',
                Key={'user_id': user_id},
                UpdateExpression=(
                    'SET last_seen = :last_seen, '
                    'last_seen_epoch = :last_seen_epoch, '
                    'expires_at = :expires_at'
                ),
                ConditionExpression='attribute_exists(user_id)',
                ExpressionAttributeValues={
                    ':last_seen': last_seen_iso,
                    ':last_seen_epoch': last_seen_epoch,
                    ':expires_at': expires_at
                }
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True

    async def count_active(self, since_epoch: int) -> int:
        """Count sessions seen at or after since_epoch."""
        return await self._count(
            FilterExpression=Attr('last_seen_epoch').gte(since_epoch)
        )
