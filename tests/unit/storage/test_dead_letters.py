"""
Module: test_dead_letters.py
Description: Unit tests for DeadLetterStore.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from relay.models.webhook import DeadLetterRecord, DeliveryError
from relay.utils.clock import epoch_seconds


def make_record(webhook_id="wh_" + "a" * 32, created_at=None, expires_in=timedelta(days=30)):
    created_at = created_at or datetime.now(timezone.utc)
    return DeadLetterRecord(
        dead_letter_id=f"dlq_{uuid.uuid4().hex}",
        webhook_id=webhook_id,
        owner_id="owner_1",
        url="https://hooks.example.com/relay",
        event_type="offer.made",
        payload={
            "event": "offer.made",
            "data": {"offer_id": "o_1", "amount": 125.5},
            "timestamp": "2026-01-01T00:00:00Z",
            "webhookId": webhook_id
        },
        error=DeliveryError(message="HTTP 503", code="HTTP_503", status_code=503),
        attempts=3,
        created_at=created_at,
        expires_at=epoch_seconds(created_at + expires_in)
    )


class TestDeadLetterStore:

    @pytest.mark.asyncio
    async def test_put_and_get_preserves_payload(self, dead_letter_store):
        record = make_record()

        await dead_letter_store.put_record(record)
        stored = await dead_letter_store.get_record(record.dead_letter_id)

        assert stored.payload == record.payload
        assert stored.payload["data"]["amount"] == 125.5
        assert stored.error.status_code == 503
        assert stored.attempts == 3

    @pytest.mark.asyncio
    async def test_list_oldest_first_with_limit(self, dead_letter_store):
        now = datetime.now(timezone.utc)
        first = make_record(created_at=now - timedelta(minutes=2))
        second = make_record(created_at=now - timedelta(minutes=1))
        third = make_record(created_at=now)
        for record in (third, first, second):
            await dead_letter_store.put_record(record)

        records = await dead_letter_store.list_records(limit=2)

        assert [r.dead_letter_id for r in records] == [first.dead_letter_id, second.dead_letter_id]

    @pytest.mark.asyncio
    async def test_list_filters_by_webhook(self, dead_letter_store):
        mine = make_record(webhook_id="wh_" + "1" * 32)
        other = make_record(webhook_id="wh_" + "2" * 32)
        await dead_letter_store.put_record(mine)
        await dead_letter_store.put_record(other)

        records = await dead_letter_store.list_records(webhook_ids=["wh_" + "1" * 32])

        assert [r.dead_letter_id for r in records] == [mine.dead_letter_id]

    @pytest.mark.asyncio
    async def test_expired_records_are_hidden(self, dead_letter_store):
        expired = make_record(
            created_at=datetime.now(timezone.utc) - timedelta(days=31),
            expires_in=timedelta(days=30)
        )
        await dead_letter_store.put_record(expired)

        assert await dead_letter_store.get_record(expired.dead_letter_id) is None
        assert await dead_letter_store.list_records() == []
        assert await dead_letter_store.count() == 0

    @pytest.mark.asyncio
    async def test_delete_and_count(self, dead_letter_store):
        record = make_record()
        await dead_letter_store.put_record(record)
        assert await dead_letter_store.count() == 1

        await dead_letter_store.delete_record(record.dead_letter_id)

        assert await dead_letter_store.count() == 0
