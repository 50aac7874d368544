"""
Module: events.py
Description: Domain event models delivered to webhook subscribers.

Each event kind is its own pydantic model carrying a typed payload and
a literal event_type discriminator. WebhookEvent is the tagged union of
all kinds; the dispatcher only accepts members of it, so payload shape
is checked at construction time per event kind.

Key Components:
- EventPayload: Base model, renders the envelope "data" section
- WebhookEvent: Discriminated union of every known event
- EVENT_TYPES / WILDCARD_EVENT: Valid subscription patterns
- parse_event(): Build a typed event from a raw dictionary

Dependencies: pydantic, datetime, typing
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from relay.utils.clock import utc_now

WILDCARD_EVENT = "*"


class EventPayload(BaseModel):
    """Base class for typed domain events."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True
    )

    event_type: str

    def data(self) -> Dict[str, Any]:
        """Payload rendered for the envelope, without the discriminator."""
        return self.model_dump(mode="json", exclude={"event_type"}, exclude_none=True)


class MessageCreated(EventPayload):
    event_type: Literal["message.created"] = "message.created"
    chat_id: str
    message_id: str
    sender_id: str
    recipient_id: str
    message_type: str = "text"
    content: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class MessageRead(EventPayload):
    event_type: Literal["message.read"] = "message.read"
    chat_id: str
    message_ids: List[str] = Field(..., min_length=1)
    reader_id: str
    read_at: datetime = Field(default_factory=utc_now)


class ChatCreated(EventPayload):
    event_type: Literal["chat.created"] = "chat.created"
    chat_id: str
    participant_ids: List[str] = Field(..., min_length=2)
    listing_id: Optional[str] = None


class ChatHidden(EventPayload):
    event_type: Literal["chat.hidden"] = "chat.hidden"
    chat_id: str
    user_id: str


class ChatBlocked(EventPayload):
    event_type: Literal["chat.blocked"] = "chat.blocked"
    chat_id: str
    blocked_by: str
    blocked_user_id: str


class ChatUnblocked(EventPayload):
    event_type: Literal["chat.unblocked"] = "chat.unblocked"
    chat_id: str
    unblocked_by: str
    unblocked_user_id: str


class OfferMade(EventPayload):
    event_type: Literal["offer.made"] = "offer.made"
    chat_id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    listing_id: Optional[str] = None


class OfferAccepted(EventPayload):
    event_type: Literal["offer.accepted"] = "offer.accepted"
    chat_id: str
    offer_id: str
    accepted_by: str
    amount: Optional[float] = Field(default=None, ge=0)
    currency: str = "USD"


class OfferRejected(EventPayload):
    event_type: Literal["offer.rejected"] = "offer.rejected"
    chat_id: str
    offer_id: str
    rejected_by: str
    reason: Optional[str] = None


class UserOnline(EventPayload):
    event_type: Literal["user.online"] = "user.online"
    user_id: str
    at: datetime = Field(default_factory=utc_now)


class UserOffline(EventPayload):
    event_type: Literal["user.offline"] = "user.offline"
    user_id: str
    at: datetime = Field(default_factory=utc_now)


class TypingStarted(EventPayload):
    event_type: Literal["typing.started"] = "typing.started"
    chat_id: str
    user_id: str


class TypingStopped(EventPayload):
    event_type: Literal["typing.stopped"] = "typing.stopped"
    chat_id: str
    user_id: str


class ListingMatched(EventPayload):
    event_type: Literal["listing.matched"] = "listing.matched"
    listing_id: str
    matched_listing_id: str
    owner_id: str
    score: Optional[float] = None


class WebhookPing(EventPayload):
    """Manual test delivery."""

    event_type: Literal["test"] = "test"
    webhook_id: str
    message: str = "This is a test webhook"
    test: bool = True
    timestamp: datetime = Field(default_factory=utc_now)


WebhookEvent = Annotated[
    Union[
        MessageCreated,
        MessageRead,
        ChatCreated,
        ChatHidden,
        ChatBlocked,
        ChatUnblocked,
        OfferMade,
        OfferAccepted,
        OfferRejected,
        UserOnline,
        UserOffline,
        TypingStarted,
        TypingStopped,
        ListingMatched,
        WebhookPing,
    ],
    Field(discriminator="event_type")
]

EVENT_TYPES = (
    "message.created",
    "message.read",
    "chat.created",
    "chat.hidden",
    "chat.blocked",
    "chat.unblocked",
    "offer.made",
    "offer.accepted",
    "offer.rejected",
    "user.online",
    "user.offline",
    "typing.started",
    "typing.stopped",
    "listing.matched",
    "test",
)

SUBSCRIBABLE_PATTERNS = frozenset(EVENT_TYPES) | {WILDCARD_EVENT}

_event_adapter = TypeAdapter(WebhookEvent)


def parse_event(raw: Dict[str, Any]) -> EventPayload:
    """
    Build a typed event from a raw dictionary.

    Raises:
        pydantic.ValidationError: If event_type is unknown or the payload
            does not match that event's schema
    """
    return _event_adapter.validate_python(raw)
