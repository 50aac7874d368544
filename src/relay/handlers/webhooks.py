"""
Module: webhooks.py
Description: Webhook administration handlers.

Implements the webhook endpoints of the relay API:
- POST /webhooks: Register a subscription (secret returned once)
- GET /webhooks: List the caller's subscriptions
- GET/PUT/DELETE /webhooks/{webhook_id}: Read, update, remove
- POST /webhooks/{webhook_id}/test: Send a signed test event
- GET /webhooks/{webhook_id}/stats: Per-webhook statistics
- GET /webhooks/stats/overview: Caller-wide statistics and dead letters
- GET /webhooks/dead-letter, POST /webhooks/dead-letter/retry
- GET /webhooks/health: Webhook subsystem health

Every route except health is scoped to the authenticated owner. Domain errors
(RelayError) are rendered by the application's exception handlers.

Dependencies: FastAPI, typing
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi import status as status_codes
from fastapi.responses import JSONResponse

from relay.delivery.dispatcher import WebhookDispatcher
from relay.dependencies import get_dispatcher, get_owner_id, get_registry
from relay.models.request import RegisterWebhookRequest, RetryDeadLettersRequest, UpdateWebhookRequest
from relay.models.response import (
    DeadLetterListResponse,
    OverviewResponse,
    RegisterWebhookResponse,
    RetryDeadLettersResponse,
    UpdateWebhookResponse,
    WebhookListResponse,
    WebhookResponse,
    WebhookStatsResponse,
    WebhookTestResponse,
)
from relay.utils.logger import get_logger
from relay.webhooks.registry import WebhookRegistry

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


async def _owned_webhook_ids(
    registry: WebhookRegistry,
    owner_id: str,
    requested: Optional[List[str]] = None
) -> List[str]:
    owned = [subscription.webhook_id for subscription in await registry.list_for_owner(owner_id)]
    if requested:
        return [webhook_id for webhook_id in requested if webhook_id in owned]
    return owned


@router.post("", status_code=status_codes.HTTP_201_CREATED, response_model=RegisterWebhookResponse)
async def register_webhook(
    request: RegisterWebhookRequest,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> RegisterWebhookResponse:
    """
    Register a webhook subscription.

    The secret is included in this response only; it cannot be read back.

    Example:
        POST /webhooks
        {"url": "https://example.com/hooks", "events": ["message.created", "offer.made"]}
    """
    registered = await registry.register(owner_id, request)
    return RegisterWebhookResponse(
        data=WebhookResponse.from_subscription(registered.subscription),
        secret=registered.secret
    )


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> WebhookListResponse:
    subscriptions = await registry.list_for_owner(owner_id)
    return WebhookListResponse(
        count=len(subscriptions),
        data=[WebhookResponse.from_subscription(subscription) for subscription in subscriptions]
    )


@router.get("/stats/overview", response_model=OverviewResponse)
async def stats_overview(
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> OverviewResponse:
    """Aggregate statistics and recent dead letters for the caller."""
    stats = await registry.aggregate_stats(owner_id=owner_id)
    webhook_ids = await _owned_webhook_ids(registry, owner_id)
    records = await dispatcher.list_dead_letters(limit=10, webhook_ids=webhook_ids) if webhook_ids else []
    return OverviewResponse(
        stats=stats,
        dead_letters=DeadLetterListResponse(count=len(records), items=records)
    )


@router.get("/dead-letter", response_model=DeadLetterListResponse)
async def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    webhook_id: Optional[List[str]] = Query(default=None),
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> DeadLetterListResponse:
    webhook_ids = await _owned_webhook_ids(registry, owner_id, webhook_id)
    if not webhook_ids:
        return DeadLetterListResponse(count=0, items=[])

    records = await dispatcher.list_dead_letters(limit=limit, webhook_ids=webhook_ids)
    return DeadLetterListResponse(count=len(records), items=records)


@router.post("/dead-letter/retry", response_model=RetryDeadLettersResponse)
async def retry_dead_letters(
    request: Optional[RetryDeadLettersRequest] = None,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> RetryDeadLettersResponse:
    """Retry the caller's dead-lettered deliveries once each."""
    requested = request.webhook_ids if request else None
    webhook_ids = await _owned_webhook_ids(registry, owner_id, requested)
    results = await dispatcher.retry_dead_letters(webhook_ids) if webhook_ids else []

    logger.info(
        "Dead letter retry requested",
        owner_id=owner_id,
        retried=len(results),
        succeeded=sum(1 for result in results if result.success)
    )
    return RetryDeadLettersResponse(
        retried=len(results),
        succeeded=sum(1 for result in results if result.success),
        results=results
    )


@router.get("/health")
async def webhook_health(dispatcher: WebhookDispatcher = Depends(get_dispatcher)) -> JSONResponse:
    # Unauthenticated: reachability and backlog only
    report = await dispatcher.health_check(include_stats=False)
    status_code = (
        status_codes.HTTP_200_OK
        if report.status == "healthy"
        else status_codes.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(content=report.model_dump(mode='json'), status_code=status_code)


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> WebhookResponse:
    subscription = await registry.get(webhook_id, owner_id)
    return WebhookResponse.from_subscription(subscription)


@router.put("/{webhook_id}", response_model=UpdateWebhookResponse)
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> UpdateWebhookResponse:
    """
    Partially update a subscription.

    With rotate_secret the new secret is included in this response only.
    """
    updated = await registry.update(webhook_id, owner_id, request)
    return UpdateWebhookResponse(
        data=WebhookResponse.from_subscription(updated.subscription),
        new_secret=updated.new_secret
    )


@router.delete("/{webhook_id}", status_code=status_codes.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> Response:
    await registry.remove(webhook_id, owner_id)
    return Response(status_code=status_codes.HTTP_204_NO_CONTENT)


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> WebhookTestResponse:
    """Send one signed test event to the subscription."""
    result = await dispatcher.send_test(webhook_id, owner_id)
    return WebhookTestResponse(
        success=result.success,
        message="Test webhook delivered" if result.success else "Test webhook failed",
        result=result
    )


@router.get("/{webhook_id}/stats", response_model=WebhookStatsResponse)
async def webhook_stats(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    registry: WebhookRegistry = Depends(get_registry)
) -> WebhookStatsResponse:
    subscription = await registry.get(webhook_id, owner_id)
    stats = await registry.aggregate_stats(owner_id=owner_id, webhook_id=webhook_id)
    return WebhookStatsResponse(
        webhook=WebhookResponse.from_subscription(subscription),
        stats=stats
    )
