"""
Module: connections.py
Description: Push frames to live WebSocket connections.

Uses the API Gateway management API to post to a connection id. A
connection that no longer exists raises ConnectionGoneError (never
retried); any other failure raises LivePushError (retried by the
pipeline).
"""

import json
from typing import Any, Dict, Optional

from aioboto3 import Session
from botocore.exceptions import BotoCoreError, ClientError

from relay.errors import ConnectionGoneError, LivePushError
from relay.utils.logger import get_logger

logger = get_logger(__name__)

GONE_ERROR_CODES = frozenset({'GoneException'})


class ConnectionGateway:
    """API Gateway WebSocket management client."""

    def __init__(
        self,
        endpoint_url: str,
        region_name: Optional[str] = None,
        session: Optional[Session] = None
    ):
        if not endpoint_url or not isinstance(endpoint_url, str):
            raise ValueError("endpoint_url must be a non-empty string")

        self.endpoint_url = endpoint_url
        self.region_name = region_name
        self.session = session or Session()

    async def send(self, connection_id: str, frame: Dict[str, Any]) -> None:
        """
        Post a JSON frame to one connection.

        Raises:
            ConnectionGoneError: If the connection no longer exists
            LivePushError: On any other failure
        """
        data = json.dumps(frame, default=str).encode('utf-8')
        try:
            async with self.session.client(
                'apigatewaymanagementapi',
                region_name=self.region_name,
                endpoint_url=self.endpoint_url
            ) as client:
                await client.post_to_connection(ConnectionId=connection_id, Data=data)

        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code in GONE_ERROR_CODES:
                logger.info("Live connection gone", connection_id=connection_id, error_code=code)
                raise ConnectionGoneError(connection_id) from e

            logger.warning(
                "Live push failed",
                connection_id=connection_id,
                error_code=code,
                error_message=e.response.get('Error', {}).get('Message')
            )
            raise LivePushError(f"Push to {connection_id} failed: {code}") from e

        except BotoCoreError as e:
            logger.warning("Live push failed", connection_id=connection_id, error=str(e))
            raise LivePushError(f"Push to {connection_id} failed: {e}") from e

        logger.debug("Frame pushed to connection", connection_id=connection_id, frame_type=frame.get('type'))
