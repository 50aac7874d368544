"""
Module: dependencies.py
Description: Service construction and FastAPI dependency providers.

Services are built once from Settings by build_services() and attached
to the application state; route handlers receive them through Depends
so tests can override any of them.

Key Components:
- RelayServices: Container for the constructed services
- build_services(): Wire stores, registry, dispatcher, presence and pipeline
- get_services / get_registry / get_dispatcher / get_owner_id: Depends providers
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from aioboto3 import Session
from fastapi import HTTPException, Request
from fastapi import status as status_codes

from relay.config.settings import Settings
from relay.delivery.connections import ConnectionGateway
from relay.delivery.dispatcher import WebhookDispatcher
from relay.delivery.pipeline import MessageDeliveryPipeline
from relay.delivery.push import WebhookPushClient
from relay.models.webhook import RetryPolicy
from relay.presence.directory import PresenceDirectory
from relay.sqs_queue.sqs import SQSClient
from relay.storage.dead_letters import DeadLetterStore
from relay.storage.offline import OfflineMessageStore
from relay.storage.presence import PresenceStore
from relay.storage.receipts import DeliveryReceiptStore
from relay.storage.webhooks import WebhookStore
from relay.utils.logger import get_logger
from relay.utils.metrics import MetricsClient
from relay.webhooks.registry import WebhookRegistry
from relay.webhooks.validation import WebhookUrlValidator

logger = get_logger(__name__)


@dataclass
class RelayServices:
    settings: Settings
    registry: WebhookRegistry
    dispatcher: WebhookDispatcher
    presence: PresenceDirectory
    pipeline: Optional[MessageDeliveryPipeline] = None
    metrics: Optional[MetricsClient] = None

    def require_pipeline(self) -> MessageDeliveryPipeline:
        if self.pipeline is None:
            raise RuntimeError(
                "Message delivery is not configured: set MESSAGE_QUEUE_URL, "
                "PRIORITY_QUEUE_URL and WEBSOCKET_ENDPOINT_URL"
            )
        return self.pipeline


def build_services(settings: Settings) -> RelayServices:
    """
    Construct every service from settings.

    The message pipeline is only built when its queues and WebSocket
    endpoint are configured; the webhook API runs without it.
    """
    region = settings.aws_region
    endpoint = settings.aws_endpoint_url

    metrics = MetricsClient(
        namespace=settings.metrics_namespace,
        region_name=region,
        endpoint_url=endpoint,
        enabled=settings.metrics_enabled
    )

    registry = WebhookRegistry(
        store=WebhookStore(settings.webhooks_table_name, region, endpoint),
        validator=WebhookUrlValidator(development_mode=settings.development_mode),
        default_policy=RetryPolicy(
            max_attempts=settings.webhook_max_attempts,
            timeout_seconds=settings.webhook_timeout
        ),
        cache_ttl=settings.webhook_list_cache_seconds
    )
    dispatcher = WebhookDispatcher(
        registry=registry,
        dead_letters=DeadLetterStore(settings.dead_letters_table_name, region, endpoint),
        push_client=WebhookPushClient(),
        settings=settings,
        metrics=metrics
    )
    presence = PresenceDirectory(
        PresenceStore(settings.presence_table_name, region, endpoint),
        expiry=timedelta(hours=settings.presence_expiry_hours)
    )

    pipeline = None
    if settings.message_queue_url and settings.priority_queue_url and settings.websocket_endpoint_url:
        session = Session()
        pipeline = MessageDeliveryPipeline(
            presence=presence,
            offline=OfflineMessageStore(settings.offline_messages_table_name, region, endpoint),
            receipts=DeliveryReceiptStore(settings.receipts_table_name, region, endpoint),
            gateway=ConnectionGateway(settings.websocket_endpoint_url, region, session=session),
            standard_queue=SQSClient(settings.message_queue_url, region, endpoint, session=session),
            priority_queue=SQSClient(settings.priority_queue_url, region, endpoint, session=session),
            settings=settings,
            metrics=metrics
        )
    else:
        logger.info("Message delivery pipeline not configured")

    logger.info("Relay services built", stage=settings.stage, region=region)
    return RelayServices(
        settings=settings,
        registry=registry,
        dispatcher=dispatcher,
        presence=presence,
        pipeline=pipeline,
        metrics=metrics
    )


def get_services(request: Request) -> RelayServices:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.services.settings


def get_registry(request: Request) -> WebhookRegistry:
    return request.app.state.services.registry


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.services.dispatcher


def _authorizer_user_id(request: Request) -> Optional[str]:
    """userId set by the API Gateway authorizer (REST or HTTP API payloads)."""
    event = request.scope.get('aws.event') or {}
    authorizer = event.get('requestContext', {}).get('authorizer') or {}
    for source in (authorizer, authorizer.get('lambda') or {}, authorizer.get('context') or {}):
        user_id = source.get('userId') if isinstance(source, dict) else None
        if user_id:
            return user_id
    return None


def get_owner_id(request: Request) -> str:
    """
    Identify the calling user.

    Raises:
        HTTPException: 401 when no authenticated user is present
    """
    user_id = _authorizer_user_id(request)
    if user_id:
        return user_id

    settings = get_settings(request)
    if settings.development_mode:
        header_user = request.headers.get('X-Owner-Id')
        if header_user:
            return header_user

    raise HTTPException(
        status_code=status_codes.HTTP_401_UNAUTHORIZED,
        detail="Authentication required"
    )
