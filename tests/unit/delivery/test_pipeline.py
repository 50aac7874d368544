"""
Module: test_pipeline.py
Description: Unit tests for presence-aware message delivery.

Presence, offline entries and receipts are moto-backed; the work queues
and the live connection gateway are AsyncMocks.
"""

import pytest
from botocore.exceptions import ClientError

from relay.delivery.pipeline import CHAT_MESSAGE_FRAME, chat_frame
from relay.errors import ConnectionGoneError, LivePushError, QueueUnavailableError
from relay.models.message import DeliveryPriority, JobOutcome, QueuedDeliveryJob


def queue_error():
    return ClientError(
        {'Error': {'Code': 'AWS.SimpleQueueService.NonExistentQueue', 'Message': 'gone'}},
        'SendMessage'
    )


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_text_message_uses_standard_queue(self, pipeline, chat_job, standard_queue, priority_queue):
        result = await pipeline.enqueue_message(chat_job)

        assert result.accepted is True
        assert result.priority == DeliveryPriority.NORMAL
        standard_queue.send_message.assert_awaited_once()
        priority_queue.send_message.assert_not_awaited()

        job_id, body = standard_queue.send_message.await_args.args
        assert job_id == chat_job.job_id
        assert body["recipient_id"] == "user_buyer"

    @pytest.mark.asyncio
    async def test_offer_uses_priority_queue(self, pipeline, sender, standard_queue, priority_queue):
        job = QueuedDeliveryJob.for_message(
            chat_id="chat_1",
            message_id="m_2",
            message={"_id": "m_2", "type": "offer", "amount": 40},
            sender=sender,
            recipient_id="user_buyer",
            message_type="offer"
        )

        result = await pipeline.enqueue_message(job)

        assert result.priority == DeliveryPriority.HIGH
        priority_queue.send_message.assert_awaited_once()
        standard_queue.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queue_failure_raises(self, pipeline, chat_job, standard_queue):
        standard_queue.send_message.side_effect = queue_error()

        with pytest.raises(QueueUnavailableError):
            await pipeline.enqueue_message(chat_job)


class TestProcessJob:

    @pytest.mark.asyncio
    async def test_online_recipient_gets_live_push(self, pipeline, presence, chat_job, gateway, receipt_store,
                                                   offline_store):
        await presence.mark_online("user_buyer", "conn_1")

        outcome = await pipeline.process_job(chat_job)

        assert outcome == JobOutcome.DELIVERED_LIVE
        gateway.send.assert_awaited_once()
        connection_id, frame = gateway.send.await_args.args
        assert connection_id == "conn_1"
        assert frame["type"] == CHAT_MESSAGE_FRAME
        assert frame["chatId"] == "chat_1"
        assert frame["jobId"] == chat_job.job_id
        assert frame["sender"]["id"] == "user_seller"
        assert await receipt_store.has_receipt("chat_1:m_1") is True
        assert await offline_store.get_entry("user_buyer") is None

    @pytest.mark.asyncio
    async def test_offline_recipient_gets_offline_entry(self, pipeline, chat_job, gateway, offline_store):
        outcome = await pipeline.process_job(chat_job)

        assert outcome == JobOutcome.DELIVERED_OFFLINE
        gateway.send.assert_not_awaited()
        entry = await offline_store.get_entry("user_buyer")
        assert [m.message_id for m in entry.messages] == ["m_1"]

    @pytest.mark.asyncio
    async def test_redelivered_job_is_not_pushed_twice(self, pipeline, presence, chat_job, gateway):
        await presence.mark_online("user_buyer", "conn_1")

        assert await pipeline.process_job(chat_job) == JobOutcome.DELIVERED_LIVE
        assert await pipeline.process_job(chat_job) == JobOutcome.DELIVERED_LIVE

        assert gateway.send.await_count == 1

    @pytest.mark.asyncio
    async def test_gone_connection_marks_offline(self, pipeline, presence, chat_job, gateway, offline_store,
                                                 fake_sleep):
        await presence.mark_online("user_buyer", "conn_1")
        gateway.send.side_effect = ConnectionGoneError("conn_1")

        outcome = await pipeline.process_job(chat_job)

        assert outcome == JobOutcome.DELIVERED_OFFLINE
        assert gateway.send.await_count == 1
        assert fake_sleep.calls == []
        assert await presence.is_online("user_buyer") is False
        assert len((await offline_store.get_entry("user_buyer")).messages) == 1

    @pytest.mark.asyncio
    async def test_exhausted_live_push_falls_back_offline(self, pipeline, presence, chat_job, gateway,
                                                          offline_store, fake_sleep, receipt_store):
        await presence.mark_online("user_buyer", "conn_1")
        gateway.send.side_effect = LivePushError("throttled")

        outcome = await pipeline.process_job(chat_job)

        assert outcome == JobOutcome.DELIVERED_OFFLINE
        assert gateway.send.await_count == 3
        assert fake_sleep.calls == [1, 2]
        assert await presence.is_online("user_buyer") is True
        assert await receipt_store.has_receipt("chat_1:m_1") is False
        assert len((await offline_store.get_entry("user_buyer")).messages) == 1

    @pytest.mark.asyncio
    async def test_transient_push_failure_recovers(self, pipeline, presence, chat_job, gateway, fake_sleep):
        await presence.mark_online("user_buyer", "conn_1")
        gateway.send.side_effect = [LivePushError("throttled"), None]

        outcome = await pipeline.process_job(chat_job)

        assert outcome == JobOutcome.DELIVERED_LIVE
        assert fake_sleep.calls == [1]


class TestOfflineReplay:

    @pytest.mark.asyncio
    async def test_nothing_to_replay(self, pipeline, gateway):
        result = await pipeline.deliver_offline_messages("user_buyer")

        assert result.delivered == 0
        assert result.pending == 0
        assert result.job_id is None
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replay_then_clear(self, pipeline, presence, chat_job, gateway, offline_store):
        await pipeline.process_job(chat_job)
        await presence.mark_online("user_buyer", "conn_2")

        result = await pipeline.deliver_offline_messages("user_buyer")

        assert result.delivered == 1
        assert result.pending == 0
        assert result.job_id.startswith("offline:user_buyer:")
        connection_id, frame = gateway.send.await_args.args
        assert connection_id == "conn_2"
        assert frame["wasOffline"] is True
        assert frame["message"]["_id"] == "m_1"
        assert await offline_store.get_entry("user_buyer") is None

    @pytest.mark.asyncio
    async def test_replay_deferred_while_offline(self, pipeline, chat_job, gateway, offline_store):
        await pipeline.process_job(chat_job)

        result = await pipeline.deliver_offline_messages("user_buyer")

        assert result.delivered == 0
        assert result.pending == 1
        gateway.send.assert_not_awaited()
        assert await offline_store.get_entry("user_buyer") is not None

    @pytest.mark.asyncio
    async def test_failed_replay_keeps_entry(self, pipeline, presence, chat_job, gateway, offline_store):
        await pipeline.process_job(chat_job)
        await presence.mark_online("user_buyer", "conn_2")
        gateway.send.side_effect = ConnectionGoneError("conn_2")

        result = await pipeline.deliver_offline_messages("user_buyer")

        assert result.delivered == 0
        assert result.pending == 1
        assert len((await offline_store.get_entry("user_buyer")).messages) == 1
        assert await presence.is_online("user_buyer") is False

    @pytest.mark.asyncio
    async def test_replay_preserves_order(self, pipeline, sender, gateway, presence):
        for index in range(3):
            job = QueuedDeliveryJob.for_message(
                chat_id="chat_1",
                message_id=f"m_{index}",
                message={"_id": f"m_{index}"},
                sender=sender,
                recipient_id="user_buyer"
            )
            await pipeline.process_job(job)
        await presence.mark_online("user_buyer", "conn_2")

        await pipeline.deliver_offline_messages("user_buyer")

        pushed = [call.args[1]["message"]["_id"] for call in gateway.send.await_args_list]
        assert pushed == ["m_0", "m_1", "m_2"]


class TestQueueStats:

    @pytest.mark.asyncio
    async def test_reports_both_queues(self, pipeline, standard_queue, priority_queue):
        priority_queue.approximate_depth.return_value = {'waiting': 2, 'in_flight': 1, 'delayed': 0}
        standard_queue.approximate_depth.return_value = {'waiting': 7, 'in_flight': 0, 'delayed': 0}

        stats = await pipeline.queue_stats()

        assert stats == {
            'priority': {'waiting': 2, 'in_flight': 1, 'delayed': 0},
            'standard': {'waiting': 7, 'in_flight': 0, 'delayed': 0},
        }


def test_chat_frame_omits_empty_sender_fields(sender):
    frame = chat_frame("chat_1", {"_id": "m_1"}, sender.model_copy(update={'avatar': None}), wasOffline=True)

    assert frame == {
        'type': 'chat:message',
        'chatId': 'chat_1',
        'message': {'_id': 'm_1'},
        'sender': {'id': 'user_seller', 'name': 'Sam Seller'},
        'wasOffline': True,
    }
