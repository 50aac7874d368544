"""
Module: directory.py
Description: Presence directory for live connections.

Tracks which users hold a live connection and which connection id to
address. A user has at most one session; a new connection supersedes
the previous one (last writer wins, the superseded connection is not
notified). Sessions not seen within the expiry window read as offline
even before the store purges them.

Key Components:
- PresenceDirectory.mark_online / mark_offline / touch
- PresenceDirectory.is_online / get_session / count_online

Dependencies: datetime, storage.presence
"""

from datetime import timedelta
from typing import Optional

from relay.models.message import PresenceProfile, PresenceSession
from relay.storage.presence import PresenceStore
from relay.utils.clock import epoch_seconds, isoformat_utc, utc_now
from relay.utils.logger import get_logger

logger = get_logger(__name__)


class PresenceDirectory:
    """
    Presence lookups backed by the presence store.

    Attributes:
        store: PresenceStore holding sessions
        expiry: Inactivity window after which a session counts as offline
    """

    def __init__(self, store: PresenceStore, expiry: timedelta = timedelta(hours=24)):
        self.store = store
        self.expiry = expiry

    async def mark_online(
        self,
        user_id: str,
        connection_id: str,
        profile: Optional[PresenceProfile] = None
    ) -> PresenceSession:
        """
        Record or replace the user's session.

        Args:
            user_id: Connecting user
            connection_id: Live connection identifier to address
            profile: Denormalized profile fields for presence responses

        Returns:
            The stored session
        """
        session = PresenceSession(
            user_id=user_id,
            connection_id=connection_id,
            last_seen=utc_now(),
            profile=profile or PresenceProfile()
        )
        previous = await self.store.get_session(user_id)
        await self.store.put_session(session, self._expires_at(session))

        if previous and previous.connection_id != connection_id:
            logger.info(
                "Presence session superseded",
                user_id=user_id,
                previous_connection_id=previous.connection_id,
                connection_id=connection_id
            )
        else:
            logger.info("User online", user_id=user_id, connection_id=connection_id)

        return session

    async def mark_offline(self, user_id: str, connection_id: Optional[str] = None) -> bool:
        """
        Remove the user's session. Safe to call when absent.

        Args:
            user_id: Disconnecting user
            connection_id: When given, only the session for this connection
                is removed, so a late disconnect of a superseded connection
                does not take down the newer one

        Returns:
            True if a session was removed
        """
        removed = await self.store.delete_session(user_id, connection_id=connection_id)
        if removed:
            logger.info("User offline", user_id=user_id, connection_id=connection_id)
        else:
            logger.debug("No session to remove", user_id=user_id, connection_id=connection_id)
        return removed

    async def touch(self, user_id: str) -> bool:
        """Refresh last_seen on activity. Returns False if the user has no session."""
        now = utc_now()
        return await self.store.touch(
            user_id,
            last_seen_iso=isoformat_utc(now),
            last_seen_epoch=epoch_seconds(now),
            expires_at=epoch_seconds(now + self.expiry)
        )

    async def get_session(self, user_id: str) -> Optional[PresenceSession]:
        """
        Current live session, or None when absent or soft-expired.
        """
        session = await self.store.get_session(user_id)
        if session is None:
            return None
        if session.last_seen < utc_now() - self.expiry:
            logger.debug("Presence session expired", user_id=user_id)
            return None
        return session

    async def is_online(self, user_id: str) -> bool:
        return await self.get_session(user_id) is not None

    async def count_online(self) -> int:
        cutoff = utc_now() - self.expiry
        return await self.store.count_active(epoch_seconds(cutoff))

    def _expires_at(self, session: PresenceSession) -> int:
        return epoch_seconds(session.last_seen + self.expiry)
