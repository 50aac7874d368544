"""
Module: clock.py
Description: UTC time helpers shared by models and stores.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Render an aware datetime as ISO 8601 with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_isoformat(value: str) -> datetime:
    """Parse an ISO 8601 string (Z or offset suffix) into an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_seconds(value: datetime) -> int:
    """Whole seconds since the epoch, as used by DynamoDB TTL attributes."""
    return int(value.timestamp())
