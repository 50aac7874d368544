"""
Module: test_connections_gateway.py
Description: Unit tests for the WebSocket management API gateway.

The aioboto3 session is replaced with a MagicMock whose client is an
async context manager.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from relay.delivery.connections import ConnectionGateway
from relay.errors import ConnectionGoneError, LivePushError

ENDPOINT = "https://abc123.execute-api.us-east-1.amazonaws.com/test"


def client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': code}}, 'PostToConnection')


@pytest.fixture
def api_client():
    client = AsyncMock()
    client.__aenter__.return_value = client
    client.__aexit__.return_value = False
    return client


@pytest.fixture
def gateway(api_client):
    session = MagicMock()
    session.client.return_value = api_client
    return ConnectionGateway(ENDPOINT, region_name="us-east-1", session=session)


@pytest.mark.asyncio
async def test_posts_json_frame(gateway, api_client):
    await gateway.send("conn_1", {"type": "chat:message", "chatId": "chat_1"})

    kwargs = api_client.post_to_connection.await_args.kwargs
    assert kwargs["ConnectionId"] == "conn_1"
    assert json.loads(kwargs["Data"]) == {"type": "chat:message", "chatId": "chat_1"}
    gateway.session.client.assert_called_once_with(
        'apigatewaymanagementapi',
        region_name="us-east-1",
        endpoint_url=ENDPOINT
    )


@pytest.mark.asyncio
async def test_gone_connection(gateway, api_client):
    api_client.post_to_connection.side_effect = client_error('GoneException')

    with pytest.raises(ConnectionGoneError) as exc_info:
        await gateway.send("conn_1", {"type": "chat:message"})

    assert exc_info.value.connection_id == "conn_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    client_error('LimitExceededException'),
    EndpointConnectionError(endpoint_url=ENDPOINT),
])
async def test_other_failures_are_retryable(gateway, api_client, error):
    api_client.post_to_connection.side_effect = error

    with pytest.raises(LivePushError):
        await gateway.send("conn_1", {"type": "chat:message"})


def test_requires_endpoint():
    with pytest.raises(ValueError):
        ConnectionGateway("")
