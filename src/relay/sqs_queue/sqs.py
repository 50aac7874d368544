"""
Module: sqs.py
Description: SQS client for chat delivery work queues.

Handles sending jobs to a queue, receiving batches for the worker,
deleting completed messages and extending visibility to schedule a
retry without holding the worker.
"""

import json
from typing import Any, Dict, List, Optional

from aioboto3 import Session
from botocore.exceptions import ClientError

from relay.utils.logger import get_logger

logger = get_logger(__name__)


class SQSClient:
    """
    SQS client for one work queue.

    Provides methods for sending jobs, receiving messages for
    processing, and managing message lifecycle.
    """

    def __init__(
        self,
        queue_url: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        session: Optional[Session] = None
    ):
        """
        Initialize SQS client.

        Args:
            queue_url: URL of the SQS queue
            region_name: AWS region
            endpoint_url: Optional endpoint override
            session: Shared aioboto3 session
        """
        if not queue_url or not isinstance(queue_url, str):
            raise ValueError("queue_url must be a non-empty string")

        self.queue_url = queue_url
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.session = session or Session()

        logger.info(
            "SQS client initialized",
            queue_url=queue_url
        )

    def _client(self):
        return self.session.client(
            'sqs',
            region_name=self.region_name,
            endpoint_url=self.endpoint_url
        )

    async def send_message(
        self,
        job_id: str,
        body: Dict[str, Any],
        delay_seconds: int = 0
    ) -> str:
        """
        Send a job to the queue.

        Args:
            job_id: Job identifier, attached as a message attribute
            body: JSON-serializable job body
            delay_seconds: Optional delay before message becomes available

        Returns:
            Message ID from SQS

        Raises:
            ClientError: If SQS operation fails
            ValueError: If parameters are invalid
        """
        if not job_id or not isinstance(job_id, str):
            raise ValueError("job_id must be a non-empty string")
        if not body or not isinstance(body, dict):
            raise ValueError("body must be a non-empty dictionary")

        try:
            async with self._client() as sqs:
                response = await sqs.send_message(
                    QueueUrl=self.queue_url,
                    MessageBody=json.dumps(body),
                    MessageAttributes={
                        'JobId': {
                            'StringValue': job_id,
                            'DataType': 'String'
                        }
                    },
                    DelaySeconds=delay_seconds
                )

                message_id = response['MessageId']
                logger.info(
                    "Message sent to SQS",
                    job_id=job_id,
                    message_id=message_id,
                    queue_url=self.queue_url
                )

                return message_id

        except ClientError as e:
            logger.error(
                "Failed to send message to SQS",
                job_id=job_id,
                error_code=e.response['Error']['Code'],
                error_message=e.response['Error']['Message']
            )
            raise

    async def receive_messages(
        self,
        max_messages: int = 10,
        wait_seconds: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Receive a batch of messages.

        Returns:
            Raw SQS messages including Body, ReceiptHandle, MessageId and
            the ApproximateReceiveCount attribute
        """
        async with self._client() as sqs:
            response = await sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                AttributeNames=['ApproximateReceiveCount'],
                MessageAttributeNames=['All']
            )
        return response.get('Messages', [])

    async def delete_message(self, receipt_handle: str) -> None:
        async with self._client() as sqs:
            await sqs.delete_message(
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt_handle
            )

    async def change_visibility(self, receipt_handle: str, timeout_seconds: int) -> None:
        """Hide a message for timeout_seconds; it is redelivered afterwards."""
        async with self._client() as sqs:
            await sqs.change_message_visibility(
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=timeout_seconds
            )

    async def approximate_depth(self) -> Dict[str, int]:
        """Visible and in-flight message counts."""
        async with self._client() as sqs:
            response = await sqs.get_queue_attributes(
                QueueUrl=self.queue_url,
                AttributeNames=[
                    'ApproximateNumberOfMessages',
                    'ApproximateNumberOfMessagesNotVisible',
                    'ApproximateNumberOfMessagesDelayed'
                ]
            )
        attributes = response.get('Attributes', {})
        return {
            'waiting': int(attributes.get('ApproximateNumberOfMessages', 0)),
            'in_flight': int(attributes.get('ApproximateNumberOfMessagesNotVisible', 0)),
            'delayed': int(attributes.get('ApproximateNumberOfMessagesDelayed', 0))
        }
