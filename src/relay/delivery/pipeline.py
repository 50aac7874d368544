"""
Module: pipeline.py
Description: Presence-aware chat message delivery.

Messages are never delivered inline: enqueue_message hands the job to
a work queue (negotiation and offer messages go to the priority
queue). The worker calls process_job, which pushes to the recipient's
live connection when they are online and otherwise appends the message
to their offline entry. On reconnect the offline entry is replayed
and then cleared.

Key Components:
- MessageDeliveryPipeline.enqueue_message: Queue a job, fail fast if unreachable
- MessageDeliveryPipeline.process_job: Live push or offline fallback
- MessageDeliveryPipeline.deliver_offline_messages: Replay on reconnect
- MessageDeliveryPipeline.queue_stats: Work queue depth

Dependencies: asyncio, tenacity (via delivery.retry), aioboto3 (via sqs_queue)
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from relay.config.settings import Settings
from relay.delivery.connections import ConnectionGateway
from relay.delivery.retry import Sleep, live_push_retrying
from relay.errors import ConnectionGoneError, LivePushError, QueueUnavailableError
from relay.models.message import (
    DeliveryPriority,
    EnqueueResult,
    JobOutcome,
    OfflineMessage,
    OfflineReplayResult,
    QueuedDeliveryJob,
    SenderSummary,
)
from relay.presence.directory import PresenceDirectory
from relay.sqs_queue.sqs import SQSClient
from relay.storage.offline import OfflineMessageStore
from relay.storage.receipts import DeliveryReceiptStore
from relay.utils.clock import epoch_seconds, utc_now
from relay.utils.logger import get_logger
from relay.utils.metrics import MetricsClient

logger = get_logger(__name__)

CHAT_MESSAGE_FRAME = "chat:message"


def chat_frame(
    chat_id: str,
    message: Dict[str, Any],
    sender: SenderSummary,
    **extra: Any
) -> Dict[str, Any]:
    """Frame pushed to a live connection for one chat message."""
    frame = {
        'type': CHAT_MESSAGE_FRAME,
        'chatId': chat_id,
        'message': message,
        'sender': sender.model_dump(exclude_none=True),
    }
    frame.update(extra)
    return frame


class MessageDeliveryPipeline:
    """
    Chat message delivery with live push and offline fallback.

    Attributes:
        presence: Presence directory for recipient lookups
        offline: Offline message entries
        receipts: Live delivery receipts (suppress duplicate pushes)
        gateway: Live connection gateway
        standard_queue: Work queue for ordinary messages
        priority_queue: Work queue for negotiation and offer messages
    """

    def __init__(
        self,
        presence: PresenceDirectory,
        offline: OfflineMessageStore,
        receipts: DeliveryReceiptStore,
        gateway: ConnectionGateway,
        standard_queue: SQSClient,
        priority_queue: SQSClient,
        settings: Settings,
        metrics: Optional[MetricsClient] = None,
        sleep: Sleep = asyncio.sleep
    ):
        self.presence = presence
        self.offline = offline
        self.receipts = receipts
        self.gateway = gateway
        self.standard_queue = standard_queue
        self.priority_queue = priority_queue
        self.settings = settings
        self.metrics = metrics
        self._sleep = sleep

    async def enqueue_message(self, job: QueuedDeliveryJob) -> EnqueueResult:
        """
        Queue a delivery job.

        Raises:
            QueueUnavailableError: If the work queue rejects the job
        """
        queue = self.priority_queue if job.priority == DeliveryPriority.HIGH else self.standard_queue
        try:
            await queue.send_message(job.job_id, job.model_dump(mode='json'))
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to enqueue message",
                job_id=job.job_id,
                chat_id=job.chat_id,
                priority=job.priority.value,
                error=str(e)
            )
            raise QueueUnavailableError(f"Message queue unavailable: {e}") from e

        logger.info(
            "Message enqueued",
            job_id=job.job_id,
            chat_id=job.chat_id,
            recipient_id=job.recipient_id,
            priority=job.priority.value
        )
        return EnqueueResult(accepted=True, job_id=job.job_id, priority=job.priority)

    async def process_job(self, job: QueuedDeliveryJob) -> JobOutcome:
        """
        Deliver one job: live push when the recipient is online, else offline.

        Raises:
            ClientError: If the offline append fails, so the queue redelivers
        """
        if await self.receipts.has_receipt(job.receipt_id):
            logger.info("Message already delivered", job_id=job.job_id, receipt_id=job.receipt_id)
            return JobOutcome.DELIVERED_LIVE

        session = await self.presence.get_session(job.recipient_id)
        if session is not None:
            frame = chat_frame(job.chat_id, job.message, job.sender, jobId=job.job_id)
            try:
                await self._push(session.connection_id, frame)
            except ConnectionGoneError:
                await self.presence.mark_offline(job.recipient_id, connection_id=session.connection_id)
            except LivePushError as e:
                logger.warning(
                    "Live push exhausted, falling back to offline",
                    job_id=job.job_id,
                    recipient_id=job.recipient_id,
                    error=str(e)
                )
            else:
                await self._record_receipt(job)
                logger.info(
                    "Message delivered live",
                    job_id=job.job_id,
                    chat_id=job.chat_id,
                    recipient_id=job.recipient_id
                )
                await self._metric('MessageDeliveredLive')
                return JobOutcome.DELIVERED_LIVE

        await self.offline.append(
            job.recipient_id,
            OfflineMessage.from_job(job),
            expires_at=self._offline_horizon()
        )
        await self._metric('MessageQueuedOffline')
        return JobOutcome.DELIVERED_OFFLINE

    async def get_offline_messages(self, user_id: str) -> List[OfflineMessage]:
        entry = await self.offline.get_entry(user_id)
        return list(entry.messages) if entry else []

    async def deliver_offline_messages(self, user_id: str) -> OfflineReplayResult:
        """
        Replay a reconnected user's offline entry, then clear it.

        Presence is re-confirmed first. Every message is pushed with
        wasOffline set; if any push fails the entry is left intact so a
        later replay delivers it again. Only the replayed messages are
        cleared.
        """
        messages = await self.get_offline_messages(user_id)
        if not messages:
            return OfflineReplayResult()

        job_id = f"offline:{user_id}:{int(utc_now().timestamp() * 1000)}"
        session = await self.presence.get_session(user_id)
        if session is None:
            logger.info("User still offline, replay deferred", user_id=user_id, job_id=job_id)
            return OfflineReplayResult(pending=len(messages), job_id=job_id)

        for message in messages:
            frame = chat_frame(message.chat_id, message.message, message.sender, wasOffline=True)
            try:
                await self._push(session.connection_id, frame)
            except ConnectionGoneError:
                await self.presence.mark_offline(user_id, connection_id=session.connection_id)
                logger.info("Connection lost during replay", user_id=user_id, job_id=job_id)
                return OfflineReplayResult(pending=len(messages), job_id=job_id)
            except LivePushError as e:
                logger.warning("Offline replay failed", user_id=user_id, job_id=job_id, error=str(e))
                return OfflineReplayResult(pending=len(messages), job_id=job_id)

        cleared = await self.offline.clear(user_id, messages)
        remaining = await self.get_offline_messages(user_id)
        if not cleared:
            logger.warning("Offline entry not cleared after replay", user_id=user_id, job_id=job_id)

        logger.info(
            "Offline messages replayed",
            user_id=user_id,
            job_id=job_id,
            delivered=len(messages),
            pending=len(remaining)
        )
        return OfflineReplayResult(delivered=len(messages), pending=len(remaining), job_id=job_id)

    async def queue_stats(self) -> Dict[str, Dict[str, int]]:
        """Approximate depth of both work queues."""
        priority, standard = await asyncio.gather(
            self.priority_queue.approximate_depth(),
            self.standard_queue.approximate_depth()
        )
        return {'priority': priority, 'standard': standard}

    async def _push(self, connection_id: str, frame: Dict[str, Any]) -> None:
        retrying = live_push_retrying(
            self.settings.live_push_max_attempts,
            self.settings.live_push_backoff_base,
            sleep=self._sleep
        )
        await retrying(self.gateway.send, connection_id, frame)

    async def _record_receipt(self, job: QueuedDeliveryJob) -> None:
        try:
            await self.receipts.record(job.receipt_id, self.settings.delivery_receipt_ttl_seconds)
        except ClientError as e:
            logger.warning("Failed to record delivery receipt", job_id=job.job_id, error=str(e))

    def _offline_horizon(self) -> int:
        return epoch_seconds(utc_now() + timedelta(days=self.settings.offline_message_ttl_days))

    async def _metric(self, name: str) -> None:
        if self.metrics is not None:
            await self.metrics.put_metric(name, 1)
