"""
Module: message.py
Description: Chat message delivery and presence models.

Key Components:
- SenderSummary / PresenceProfile: Denormalized user fields
- PresenceSession: One live connection per user
- QueuedDeliveryJob: Work item consumed by the delivery worker
- OfflineMessage / OfflineMessageEntry: Per-recipient offline queue
- JobOutcome / EnqueueResult / OfflineReplayResult: Pipeline results

Dependencies: pydantic, datetime, enum, typing
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from relay.utils.clock import utc_now

NEGOTIATION_MESSAGE_TYPES = frozenset({
    "offer",
    "counter_offer",
    "offer_accepted",
    "offer_rejected",
})


class DeliveryPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


class JobOutcome(str, Enum):
    DELIVERED_LIVE = "delivered_live"
    DELIVERED_OFFLINE = "delivered_offline"
    EXHAUSTED = "exhausted"


class SenderSummary(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    avatar: Optional[str] = None


class PresenceProfile(BaseModel):
    """Profile fields denormalized onto the presence session."""

    name: Optional[str] = None
    avatar: Optional[str] = None
    role: Optional[str] = None


class PresenceSession(BaseModel):
    user_id: str = Field(..., min_length=1)
    connection_id: str = Field(..., min_length=1)
    last_seen: datetime = Field(default_factory=utc_now)
    profile: PresenceProfile = Field(default_factory=PresenceProfile)


class QueuedDeliveryJob(BaseModel):
    """
    A chat message waiting for delivery to one recipient.

    Negotiation and offer messages are queued with elevated priority so they
    are not starved behind high-volume chat traffic.
    """

    job_id: str
    chat_id: str = Field(..., min_length=1)
    message_id: str = Field(..., min_length=1)
    message: Dict[str, Any]
    sender: SenderSummary
    recipient_id: str = Field(..., min_length=1)
    message_type: str = "text"
    priority: DeliveryPriority = DeliveryPriority.NORMAL
    enqueued_at: datetime = Field(default_factory=utc_now)
    attempts: int = Field(default=0, ge=0)

    @classmethod
    def for_message(
        cls,
        chat_id: str,
        message_id: str,
        message: Dict[str, Any],
        sender: SenderSummary,
        recipient_id: str,
        message_type: str = "text"
    ) -> "QueuedDeliveryJob":
        """Build a job, deriving its id and priority from the message."""
        enqueued_at = utc_now()
        priority = (
            DeliveryPriority.HIGH
            if message_type in NEGOTIATION_MESSAGE_TYPES
            else DeliveryPriority.NORMAL
        )
        return cls(
            job_id=f"msg:{chat_id}:{int(enqueued_at.timestamp() * 1000)}:{sender.id}",
            chat_id=chat_id,
            message_id=message_id,
            message=message,
            sender=sender,
            recipient_id=recipient_id,
            message_type=message_type,
            priority=priority,
            enqueued_at=enqueued_at
        )

    @property
    def receipt_id(self) -> str:
        return f"{self.chat_id}:{self.message_id}"


class OfflineMessage(BaseModel):
    chat_id: str
    message_id: str
    message: Dict[str, Any]
    sender: SenderSummary
    queued_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_job(cls, job: QueuedDeliveryJob) -> "OfflineMessage":
        return cls(
            chat_id=job.chat_id,
            message_id=job.message_id,
            message=job.message,
            sender=job.sender
        )


class OfflineMessageEntry(BaseModel):
    user_id: str
    messages: List[OfflineMessage] = Field(default_factory=list)
    expires_at: int = Field(..., description="Epoch seconds expiry horizon")


class EnqueueResult(BaseModel):
    accepted: bool
    job_id: str
    priority: DeliveryPriority


class OfflineReplayResult(BaseModel):
    delivered: int = 0
    pending: int = 0
    job_id: Optional[str] = None
