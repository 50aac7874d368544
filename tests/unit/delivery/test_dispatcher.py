"""
Module: test_dispatcher.py
Description: Unit tests for webhook fan-out, retry and dead-lettering.

HTTP targets are mocked with pytest-httpx; DynamoDB with moto. The
dispatcher's sleep is replaced so the backoff schedule can be asserted
without waiting.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from relay.delivery.dispatcher import build_envelope
from relay.delivery.signing import verify_signature
from relay.errors import SubscriptionNotFoundError, WebhookValidationError
from relay.models.events import MessageCreated, OfferMade
from relay.models.request import RegisterWebhookRequest, UpdateWebhookRequest

WEBHOOK_URL = "https://hooks.example.com/relay"


def message_created():
    return MessageCreated(
        chat_id="chat_1",
        message_id="m_1",
        sender_id="user_seller",
        recipient_id="user_buyer",
        content="Is this still available?"
    )


class TestEnvelope:

    def test_build_envelope_shape(self):
        envelope = build_envelope(
            "offer.made",
            {"offer_id": "o_1"},
            "wh_" + "a" * 32,
            datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        )

        assert envelope["event"] == "offer.made"
        assert envelope["data"] == {"offer_id": "o_1"}
        assert envelope["webhookId"] == "wh_" + "a" * 32
        assert envelope["timestamp"].startswith("2024-05-01T12:00:00")


class TestDispatch:

    @pytest.mark.asyncio
    async def test_successful_delivery_is_signed(self, dispatcher, registry, register_request, httpx_mock):
        registered = await registry.register("owner_1", register_request)
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=200)

        summary = await dispatcher.dispatch(message_created())

        assert summary.triggered == 1
        assert summary.failed == 0
        assert summary.success is True

        request = httpx_mock.get_requests()[0]
        body = request.content
        assert verify_signature(body, request.headers["X-Webhook-Signature"], registered.secret)
        assert request.headers["X-Webhook-Event"] == "message.created"
        assert request.headers["X-Webhook-Id"] == registered.subscription.webhook_id
        assert request.headers["X-Webhook-Attempt"] == "1"
        assert request.headers["Content-Type"] == "application/json"

        envelope = json.loads(body)
        assert envelope["event"] == "message.created"
        assert envelope["data"]["chat_id"] == "chat_1"
        assert envelope["webhookId"] == registered.subscription.webhook_id
        assert envelope["timestamp"] == request.headers["X-Webhook-Timestamp"]

    @pytest.mark.asyncio
    async def test_no_matching_subscription(self, dispatcher, registry, register_request):
        await registry.register("owner_1", register_request)

        summary = await dispatcher.dispatch(
            OfferMade(chat_id="c", offer_id="o", buyer_id="a", seller_id="b", amount=10),
            owner_id="owner_2"
        )

        assert summary.triggered == 0
        assert summary.results == []

    @pytest.mark.asyncio
    async def test_retry_then_success(self, dispatcher, registry, register_request, httpx_mock, fake_sleep,
                                      dead_letter_store):
        registered = await registry.register("owner_1", register_request)
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=503)
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=200)

        summary = await dispatcher.dispatch(message_created())

        outcome = summary.results[0]
        assert outcome.success is True
        assert outcome.attempts == 2
        assert fake_sleep.calls == [1.0]
        assert [r.headers["X-Webhook-Attempt"] for r in httpx_mock.get_requests()] == ["1", "2"]

        # Every attempt carries the same signed bytes
        first, second = httpx_mock.get_requests()
        assert first.content == second.content

        subscription = await registry.get(registered.subscription.webhook_id, "owner_1")
        assert subscription.stats.total_calls == 1
        assert subscription.stats.successful_calls == 1
        assert await dead_letter_store.count() == 0

    @pytest.mark.asyncio
    async def test_exhausted_delivery_is_dead_lettered(self, dispatcher, registry, register_request, httpx_mock,
                                                       fake_sleep, dead_letter_store):
        registered = await registry.register("owner_1", register_request)
        for _ in range(3):
            httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500, text="boom")

        summary = await dispatcher.dispatch(message_created())

        outcome = summary.results[0]
        assert outcome.success is False
        assert outcome.attempts == 3
        assert outcome.dead_lettered is True
        assert summary.failed == 1
        assert fake_sleep.calls == [1.0, 5.0]

        records = await dead_letter_store.list_records()
        assert len(records) == 1
        record = records[0]
        assert record.webhook_id == registered.subscription.webhook_id
        assert record.attempts == 3
        assert record.error.status_code == 500
        assert record.error.response_body == "boom"
        assert record.payload["data"]["message_id"] == "m_1"

        subscription = await registry.get(registered.subscription.webhook_id, "owner_1")
        assert subscription.stats.total_calls == 1
        assert subscription.stats.failed_calls == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, dispatcher, registry, httpx_mock, fake_sleep):
        await registry.register(
            "owner_1",
            RegisterWebhookRequest(url=WEBHOOK_URL, events=["message.created"], max_attempts=2)
        )
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=204)

        summary = await dispatcher.dispatch(message_created())

        assert summary.results[0].success is True
        assert summary.results[0].attempts == 2
        assert fake_sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_disabled_subscription_is_skipped(self, dispatcher, registry, register_request):
        registered = await registry.register("owner_1", register_request)
        await registry.update(
            registered.subscription.webhook_id,
            "owner_1",
            UpdateWebhookRequest(enabled=False)
        )

        summary = await dispatcher.dispatch(message_created())

        assert summary.triggered == 0
        assert summary.skipped == 1
        assert summary.results[0].skipped is True

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, dispatcher, registry, httpx_mock, dead_letter_store):
        await registry.register(
            "owner_1",
            RegisterWebhookRequest(url="https://good.example.com/h", events=["message.created"])
        )
        await registry.register(
            "owner_1",
            RegisterWebhookRequest(url="https://bad.example.com/h", events=["*"], max_attempts=1)
        )
        httpx_mock.add_response(url="https://good.example.com/h", method="POST", status_code=200)
        httpx_mock.add_response(url="https://bad.example.com/h", method="POST", status_code=410)

        summary = await dispatcher.dispatch(message_created())

        assert summary.triggered == 2
        assert summary.failed == 1
        assert await dead_letter_store.count() == 1

    @pytest.mark.asyncio
    async def test_resolution_failure_is_reported(self, dispatcher, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("table unavailable")

        monkeypatch.setattr(dispatcher.registry, "resolve_for_event", broken)

        summary = await dispatcher.dispatch(message_created())

        assert summary.error == "table unavailable"
        assert summary.success is False


class TestSendTest:

    @pytest.mark.asyncio
    async def test_single_attempt_without_side_effects(self, dispatcher, registry, register_request, httpx_mock,
                                                       fake_sleep, dead_letter_store):
        registered = await registry.register("owner_1", register_request)
        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500)

        outcome = await dispatcher.send_test(registered.subscription.webhook_id, "owner_1")

        assert outcome.success is False
        assert outcome.attempts == 1
        assert fake_sleep.calls == []
        assert await dead_letter_store.count() == 0

        body = json.loads(httpx_mock.get_requests()[0].content)
        assert body["event"] == "test"
        assert body["data"]["test"] is True

        subscription = await registry.get(registered.subscription.webhook_id, "owner_1")
        assert subscription.stats.total_calls == 0

    @pytest.mark.asyncio
    async def test_foreign_owner(self, dispatcher, registry, register_request):
        registered = await registry.register("owner_1", register_request)

        with pytest.raises(SubscriptionNotFoundError):
            await dispatcher.send_test(registered.subscription.webhook_id, "owner_2")

    @pytest.mark.asyncio
    async def test_disabled_rejected(self, dispatcher, registry):
        registered = await registry.register(
            "owner_1",
            RegisterWebhookRequest(url=WEBHOOK_URL, events="*", enabled=False)
        )

        with pytest.raises(WebhookValidationError):
            await dispatcher.send_test(registered.subscription.webhook_id, "owner_1")


class TestDeadLetterRetry:

    @pytest.mark.asyncio
    async def test_successful_retry_removes_record(self, dispatcher, registry, register_request, httpx_mock,
                                                   dead_letter_store):
        registered = await registry.register("owner_1", register_request)
        for _ in range(3):
            httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500)
        await dispatcher.dispatch(message_created())
        assert await dead_letter_store.count() == 1

        httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=200)
        outcomes = await dispatcher.retry_dead_letters()

        assert [o.success for o in outcomes] == [True]
        assert await dead_letter_store.count() == 0

        retried = json.loads(httpx_mock.get_requests()[-1].content)
        assert retried["data"]["message_id"] == "m_1"
        assert retried["webhookId"] == registered.subscription.webhook_id

    @pytest.mark.asyncio
    async def test_failed_retry_keeps_record(self, dispatcher, registry, register_request, httpx_mock,
                                             dead_letter_store):
        await registry.register("owner_1", register_request)
        for _ in range(4):
            httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500)
        await dispatcher.dispatch(message_created())

        outcomes = await dispatcher.retry_dead_letters()

        assert outcomes[0].success is False
        assert outcomes[0].attempts == 1
        assert await dead_letter_store.count() == 1

    @pytest.mark.asyncio
    async def test_deleted_subscription_skipped(self, dispatcher, registry, register_request, httpx_mock,
                                                dead_letter_store):
        registered = await registry.register("owner_1", register_request)
        for _ in range(3):
            httpx_mock.add_response(url=WEBHOOK_URL, method="POST", status_code=500)
        await dispatcher.dispatch(message_created())
        await registry.remove(registered.subscription.webhook_id, "owner_1")

        outcomes = await dispatcher.retry_dead_letters()

        assert outcomes[0].skipped is True
        assert await dead_letter_store.count() == 1


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy(self, dispatcher, registry, register_request):
        await registry.register("owner_1", register_request)

        report = await dispatcher.health_check()

        assert report.status == "healthy"
        assert report.store_reachable is True
        assert report.dead_letter_count == 0
        assert report.stats.total_webhooks == 1

    @pytest.mark.asyncio
    async def test_unhealthy_when_store_fails(self, dispatcher, monkeypatch):
        async def broken():
            raise RuntimeError("no route to table")

        monkeypatch.setattr(dispatcher.registry.store, "ping", broken)

        report = await dispatcher.health_check()

        assert report.status == "unhealthy"
        assert report.error == "no route to table"
