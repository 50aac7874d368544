"""
Module: connections.py
Description: WebSocket connection lifecycle handlers.

Lambda handler for the API Gateway WebSocket routes:
- $connect: Mark the user online and dispatch user.online
- $disconnect: Mark the user offline and dispatch user.offline
- $default: Refresh presence and replay queued offline messages

The connecting user is identified by the API Gateway authorizer
context. Webhook dispatch and offline replay failures are logged and
never fail the connection.
"""

import asyncio
from typing import Any, Dict, Optional

from relay.config.settings import Settings
from relay.dependencies import RelayServices, build_services
from relay.models.events import UserOffline, UserOnline
from relay.models.message import OfflineReplayResult, PresenceProfile
from relay.utils.logger import get_logger

logger = get_logger(__name__)


def _response(status_code: int, body: str = "") -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': body}


def _authorizer(event: Dict[str, Any]) -> Dict[str, Any]:
    return event.get('requestContext', {}).get('authorizer') or {}


async def on_connect(
    services: RelayServices,
    user_id: str,
    connection_id: str,
    profile: Optional[PresenceProfile] = None
) -> None:
    await services.presence.mark_online(user_id, connection_id, profile)

    summary = await services.dispatcher.dispatch(UserOnline(user_id=user_id))
    if summary.error:
        logger.warning("user.online dispatch failed", user_id=user_id, error=summary.error)


async def on_disconnect(services: RelayServices, user_id: str, connection_id: str) -> None:
    removed = await services.presence.mark_offline(user_id, connection_id=connection_id)
    if not removed:
        # Superseded by a newer connection; the user is still online
        return

    summary = await services.dispatcher.dispatch(UserOffline(user_id=user_id))
    if summary.error:
        logger.warning("user.offline dispatch failed", user_id=user_id, error=summary.error)


async def on_message(services: RelayServices, user_id: str) -> OfflineReplayResult:
    """Refresh presence and replay anything queued while the user was away."""
    await services.presence.touch(user_id)
    try:
        return await services.require_pipeline().deliver_offline_messages(user_id)
    except Exception as e:
        logger.error(
            "Offline replay failed",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__
        )
        return OfflineReplayResult()


async def route(services: RelayServices, event: Dict[str, Any]) -> Dict[str, Any]:
    """Dispatch one WebSocket event to its route handler."""
    request_context = event.get('requestContext', {})
    route_key = request_context.get('routeKey')
    connection_id = request_context.get('connectionId')
    authorizer = _authorizer(event)
    user_id = authorizer.get('userId')

    if not connection_id:
        return _response(400, "Missing connection id")
    if not user_id:
        logger.warning("Unauthenticated connection event", route_key=route_key, connection_id=connection_id)
        return _response(401, "Unauthorized")

    logger.info("Connection event", route_key=route_key, user_id=user_id, connection_id=connection_id)

    if route_key == '$connect':
        profile = PresenceProfile(
            name=authorizer.get('name'),
            avatar=authorizer.get('avatar'),
            role=authorizer.get('role')
        )
        await on_connect(services, user_id, connection_id, profile)
    elif route_key == '$disconnect':
        await on_disconnect(services, user_id, connection_id)
    else:
        await on_message(services, user_id)

    return _response(200)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for API Gateway WebSocket routes.

    Args:
        event: API Gateway WebSocket event
        context: Lambda context

    Returns:
        API Gateway proxy response
    """
    services = build_services(Settings())
    return asyncio.run(route(services, event))
