"""
Module: conftest.py
Description: Shared pytest fixtures for relay tests.

Provides settings, moto-backed DynamoDB stores, the webhook registry
and dispatcher, the presence directory, and a delivery pipeline whose
queues and live connection gateway are AsyncMocks. Uses moto for AWS
service mocking to enable fast, isolated unit tests.
"""

from datetime import timedelta
from typing import List
from unittest.mock import AsyncMock

import boto3
import pytest
from moto import mock_aws

from relay.config.settings import Settings
from relay.delivery.connections import ConnectionGateway
from relay.delivery.dispatcher import WebhookDispatcher
from relay.delivery.pipeline import MessageDeliveryPipeline
from relay.delivery.push import WebhookPushClient
from relay.dependencies import RelayServices
from relay.models.message import PresenceProfile, QueuedDeliveryJob, SenderSummary
from relay.models.request import RegisterWebhookRequest
from relay.presence.directory import PresenceDirectory
from relay.sqs_queue.sqs import SQSClient
from relay.storage.dead_letters import DeadLetterStore
from relay.storage.offline import OfflineMessageStore
from relay.storage.presence import PresenceStore
from relay.storage.receipts import DeliveryReceiptStore
from relay.storage.schema import create_tables
from relay.storage.webhooks import WebhookStore
from relay.webhooks.registry import WebhookRegistry
from relay.webhooks.validation import WebhookUrlValidator

REGION = 'us-east-1'
WEBHOOK_URL = 'https://hooks.example.com/relay'


class FakeSleep:
    """Async sleep replacement recording requested delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so no test can reach real AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', REGION)


@pytest.fixture
def test_settings():
    """
    Provide test configuration settings.

    Disables .env loading and metrics for predictable tests.
    """
    return Settings(
        _env_file=None,
        app_name="Marketplace Relay Test",
        app_version="0.1.0-test",
        log_level="DEBUG",
        aws_region=REGION,
        stage="test",
        webhooks_table_name="test-webhooks",
        dead_letters_table_name="test-webhook-dead-letters",
        presence_table_name="test-presence",
        offline_messages_table_name="test-offline-messages",
        receipts_table_name="test-delivery-receipts",
        message_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/test-messages",
        priority_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/test-messages-priority",
        websocket_endpoint_url="https://abc123.execute-api.us-east-1.amazonaws.com/test",
        metrics_enabled=False
    )


@pytest.fixture
def dynamodb(test_settings):
    """
    Mock DynamoDB with every relay table created.

    Uses the production key schema from relay.storage.schema.
    """
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name=REGION)
        create_tables(resource, test_settings)
        yield resource


@pytest.fixture
def webhook_store(test_settings, dynamodb):
    return WebhookStore(test_settings.webhooks_table_name, region_name=REGION)


@pytest.fixture
def dead_letter_store(test_settings, dynamodb):
    return DeadLetterStore(test_settings.dead_letters_table_name, region_name=REGION)


@pytest.fixture
def presence_store(test_settings, dynamodb):
    return PresenceStore(test_settings.presence_table_name, region_name=REGION)


@pytest.fixture
def offline_store(test_settings, dynamodb):
    return OfflineMessageStore(test_settings.offline_messages_table_name, region_name=REGION)


@pytest.fixture
def receipt_store(test_settings, dynamodb):
    return DeliveryReceiptStore(test_settings.receipts_table_name, region_name=REGION)


@pytest.fixture
def registry(webhook_store):
    return WebhookRegistry(webhook_store, WebhookUrlValidator(development_mode=False))


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def dispatcher(registry, dead_letter_store, test_settings, fake_sleep):
    return WebhookDispatcher(
        registry=registry,
        dead_letters=dead_letter_store,
        push_client=WebhookPushClient(),
        settings=test_settings,
        sleep=fake_sleep
    )


@pytest.fixture
def presence(presence_store):
    return PresenceDirectory(presence_store, expiry=timedelta(hours=24))


@pytest.fixture
def gateway():
    return AsyncMock(spec=ConnectionGateway)


@pytest.fixture
def standard_queue(test_settings):
    queue = AsyncMock(spec=SQSClient)
    queue.queue_url = test_settings.message_queue_url
    queue.send_message.return_value = "msg-standard"
    return queue


@pytest.fixture
def priority_queue(test_settings):
    queue = AsyncMock(spec=SQSClient)
    queue.queue_url = test_settings.priority_queue_url
    queue.send_message.return_value = "msg-priority"
    return queue


@pytest.fixture
def pipeline(presence, offline_store, receipt_store, gateway, standard_queue, priority_queue,
             test_settings, fake_sleep):
    return MessageDeliveryPipeline(
        presence=presence,
        offline=offline_store,
        receipts=receipt_store,
        gateway=gateway,
        standard_queue=standard_queue,
        priority_queue=priority_queue,
        settings=test_settings,
        sleep=fake_sleep
    )


@pytest.fixture
def register_request():
    """Registration request for message and offer events."""
    return RegisterWebhookRequest(
        url=WEBHOOK_URL,
        events=["message.created", "offer.made"]
    )


@pytest.fixture
def sender():
    return SenderSummary(id="user_seller", name="Sam Seller", avatar="https://cdn.example.com/sam.png")


@pytest.fixture
def profile():
    return PresenceProfile(name="Bea Buyer", role="buyer")


@pytest.fixture
def chat_job(sender):
    """Ordinary text message job for user_buyer."""
    return QueuedDeliveryJob.for_message(
        chat_id="chat_1",
        message_id="m_1",
        message={"_id": "m_1", "content": "Is this still available?", "type": "text"},
        sender=sender,
        recipient_id="user_buyer",
        message_type="text"
    )


@pytest.fixture
def services(test_settings, registry, dispatcher, presence, pipeline):
    """Service container wired from the fixtures above."""
    return RelayServices(
        settings=test_settings,
        registry=registry,
        dispatcher=dispatcher,
        presence=presence,
        pipeline=pipeline
    )
