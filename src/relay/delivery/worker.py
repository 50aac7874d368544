"""
Module: delivery/worker.py
Description: Work queue consumer for chat message delivery.

Consumes delivery jobs from the priority and standard SQS queues and
runs them through the delivery pipeline. The priority queue is always
drained before the standard queue. A failed job stays in its queue
and its visibility is extended with exponential backoff so it is
re-submitted later; after max_receive_count receives it is logged as
exhausted and left to the queue's redrive policy.

Two entry points:
- DeliveryWorker: Long-running poller (local stacks, containers)
- handler(): Lambda SQS batch handler returning batchItemFailures
"""

import asyncio
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from relay.config.settings import Settings
from relay.delivery.pipeline import MessageDeliveryPipeline
from relay.dependencies import build_services
from relay.models.message import JobOutcome, QueuedDeliveryJob
from relay.sqs_queue.sqs import SQSClient
from relay.utils.logger import get_logger

logger = get_logger(__name__)

VISIBILITY_BACKOFF_BASE_SECONDS = 2
MAX_VISIBILITY_SECONDS = 900


def visibility_backoff(receive_count: int) -> int:
    """Seconds to hide a failed message after its Nth receive."""
    delay = VISIBILITY_BACKOFF_BASE_SECONDS * 2 ** max(receive_count - 1, 0)
    return min(delay, MAX_VISIBILITY_SECONDS)


def parse_job(body: str, receive_count: int) -> QueuedDeliveryJob:
    """Decode a queued job, recording how many times it has been received."""
    job = QueuedDeliveryJob.model_validate_json(body)
    return job.model_copy(update={'attempts': receive_count})


class DeliveryWorker:
    """
    Polls the work queues and processes delivery jobs.

    Attributes:
        pipeline: Delivery pipeline running each job
        priority_queue: Drained first
        standard_queue: Polled when the priority queue is empty
    """

    def __init__(
        self,
        pipeline: MessageDeliveryPipeline,
        priority_queue: SQSClient,
        standard_queue: SQSClient,
        settings: Settings
    ):
        self.pipeline = pipeline
        self.priority_queue = priority_queue
        self.standard_queue = standard_queue
        self.settings = settings

    async def poll_once(self) -> List[Optional[JobOutcome]]:
        """
        Receive and process one batch.

        Returns:
            Outcome per received message (None when the job failed and
            was scheduled for another attempt)
        """
        messages = await self.priority_queue.receive_messages(
            max_messages=self.settings.worker_batch_size,
            wait_seconds=0
        )
        queue = self.priority_queue

        if not messages:
            messages = await self.standard_queue.receive_messages(
                max_messages=self.settings.worker_batch_size,
                wait_seconds=self.settings.worker_wait_seconds
            )
            queue = self.standard_queue

        if not messages:
            return []

        logger.info("Processing delivery batch", queue_url=queue.queue_url, size=len(messages))
        return list(await asyncio.gather(
            *(self._handle(queue, message) for message in messages)
        ))

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until stop is set."""
        logger.info("Delivery worker started")
        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Delivery worker poll failed", error=str(e), error_type=type(e).__name__)
                await asyncio.sleep(1)
        logger.info("Delivery worker stopped")

    async def _handle(self, queue: SQSClient, message: Dict[str, Any]) -> Optional[JobOutcome]:
        receipt_handle = message['ReceiptHandle']
        receive_count = int(message.get('Attributes', {}).get('ApproximateReceiveCount', 1))

        try:
            job = parse_job(message['Body'], receive_count)
        except ValidationError as e:
            logger.error(
                "Discarding malformed delivery job",
                message_id=message.get('MessageId'),
                error=str(e)
            )
            await queue.delete_message(receipt_handle)
            return None

        try:
            outcome = await self.pipeline.process_job(job)
        except Exception as e:
            if receive_count >= self.settings.worker_max_receive_count:
                logger.error(
                    "Delivery job exhausted",
                    job_id=job.job_id,
                    outcome=JobOutcome.EXHAUSTED.value,
                    attempts=receive_count,
                    error=str(e)
                )
                return JobOutcome.EXHAUSTED

            delay = visibility_backoff(receive_count)
            logger.warning(
                "Delivery job failed, will retry",
                job_id=job.job_id,
                attempts=receive_count,
                retry_in_seconds=delay,
                error=str(e),
                error_type=type(e).__name__
            )
            await queue.change_visibility(receipt_handle, delay)
            return None

        await queue.delete_message(receipt_handle)
        logger.info("Delivery job completed", job_id=job.job_id, outcome=outcome.value)
        return outcome


async def process_records(
    pipeline: MessageDeliveryPipeline,
    records: List[Dict[str, Any]],
    settings: Settings
) -> List[Dict[str, str]]:
    """
    Process a Lambda SQS batch.

    Returns:
        batchItemFailures entries for records that should be redelivered
    """

    async def process(record: Dict[str, Any]) -> Optional[Dict[str, str]]:
        receive_count = int(record.get('attributes', {}).get('ApproximateReceiveCount', 1))
        try:
            job = parse_job(record['body'], receive_count)
        except ValidationError as e:
            logger.error("Discarding malformed delivery job", message_id=record['messageId'], error=str(e))
            return None

        try:
            outcome = await pipeline.process_job(job)
        except Exception as e:
            if receive_count >= settings.worker_max_receive_count:
                logger.error(
                    "Delivery job exhausted",
                    job_id=job.job_id,
                    outcome=JobOutcome.EXHAUSTED.value,
                    attempts=receive_count,
                    error=str(e)
                )
            else:
                logger.warning(
                    "Delivery job failed, will retry",
                    job_id=job.job_id,
                    attempts=receive_count,
                    error=str(e),
                    error_type=type(e).__name__
                )
            return {'itemIdentifier': record['messageId']}

        logger.info("Delivery job completed", job_id=job.job_id, outcome=outcome.value)
        return None

    results = await asyncio.gather(*(process(record) for record in records))
    return [failure for failure in results if failure is not None]


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for SQS delivery batches.

    Args:
        event: SQS event with batch of messages
        context: Lambda context

    Returns:
        Response with batch item failures (if any)
    """
    settings = Settings()
    services = build_services(settings)
    records = event.get('Records', [])

    logger.info("Received delivery batch", size=len(records))
    failures = asyncio.run(process_records(services.require_pipeline(), records, settings))

    if failures:
        logger.warning("Delivery batch had failures", failed=len(failures))
    return {'batchItemFailures': failures}
