"""
Module: test_directory.py
Description: Unit tests for the presence directory.

Covers last-writer-wins sessions, idempotent disconnects, stale
disconnects of superseded connections, and soft expiry.
"""

from datetime import datetime, timedelta, timezone

import pytest

from relay.models.message import PresenceSession
from relay.utils.clock import epoch_seconds


class TestPresenceDirectory:

    @pytest.mark.asyncio
    async def test_mark_online_then_lookup(self, presence, profile):
        await presence.mark_online("user_buyer", "conn_1", profile)

        session = await presence.get_session("user_buyer")

        assert session.connection_id == "conn_1"
        assert session.profile.name == "Bea Buyer"
        assert await presence.is_online("user_buyer") is True

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_session(self, presence):
        assert await presence.get_session("nobody") is None
        assert await presence.is_online("nobody") is False

    @pytest.mark.asyncio
    async def test_new_connection_supersedes_old(self, presence):
        await presence.mark_online("user_buyer", "conn_1")
        await presence.mark_online("user_buyer", "conn_2")

        session = await presence.get_session("user_buyer")

        assert session.connection_id == "conn_2"
        assert await presence.count_online() == 1

    @pytest.mark.asyncio
    async def test_mark_offline_twice_is_noop(self, presence):
        await presence.mark_online("user_buyer", "conn_1")

        assert await presence.mark_offline("user_buyer") is True
        assert await presence.mark_offline("user_buyer") is False
        assert await presence.is_online("user_buyer") is False

    @pytest.mark.asyncio
    async def test_stale_disconnect_keeps_newer_session(self, presence):
        await presence.mark_online("user_buyer", "conn_1")
        await presence.mark_online("user_buyer", "conn_2")

        assert await presence.mark_offline("user_buyer", connection_id="conn_1") is False
        assert (await presence.get_session("user_buyer")).connection_id == "conn_2"

    @pytest.mark.asyncio
    async def test_session_past_expiry_reads_offline(self, presence, presence_store):
        last_seen = datetime.now(timezone.utc) - timedelta(hours=25)
        session = PresenceSession(user_id="user_idle", connection_id="conn_9", last_seen=last_seen)
        await presence_store.put_session(session, expires_at=epoch_seconds(last_seen + timedelta(hours=24)))

        assert await presence.get_session("user_idle") is None
        assert await presence.is_online("user_idle") is False
        assert await presence.count_online() == 0

    @pytest.mark.asyncio
    async def test_touch_refreshes_last_seen(self, presence, presence_store):
        last_seen = datetime.now(timezone.utc) - timedelta(hours=23)
        session = PresenceSession(user_id="user_buyer", connection_id="conn_1", last_seen=last_seen)
        await presence_store.put_session(session, expires_at=epoch_seconds(last_seen + timedelta(hours=24)))

        assert await presence.touch("user_buyer") is True

        refreshed = await presence.get_session("user_buyer")
        assert refreshed.last_seen > last_seen

    @pytest.mark.asyncio
    async def test_touch_without_session(self, presence):
        assert await presence.touch("nobody") is False


class TestCountOnline:

    @pytest.mark.asyncio
    async def test_counts_each_connected_user(self, presence):
        for index, user_id in enumerate(("user_a", "user_b", "user_c")):
            await presence.mark_online(user_id, f"conn_{index}")

        assert await presence.count_online() == 3

    @pytest.mark.asyncio
    async def test_excludes_expired_and_disconnected(self, presence, presence_store):
        for index, user_id in enumerate(("user_a", "user_b", "user_c")):
            await presence.mark_online(user_id, f"conn_{index}")
        last_seen = datetime.now(timezone.utc) - timedelta(hours=25)
        idle = PresenceSession(user_id="user_idle", connection_id="conn_9", last_seen=last_seen)
        await presence_store.put_session(idle, expires_at=epoch_seconds(last_seen + timedelta(hours=24)))

        await presence.mark_offline("user_b")

        assert await presence.count_online() == 2
        assert await presence.is_online("user_idle") is False

    @pytest.mark.asyncio
    async def test_empty_directory(self, presence):
        assert await presence.count_online() == 0
