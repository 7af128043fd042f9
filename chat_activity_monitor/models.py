"""
Data Models

This module defines the record types kept in the event store and the helpers
that build them from upstream payloads.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

# Discriminator reported for webhook / relay authors
RELAY_DISCRIMINATOR = "0000"

GUILD_TEXT_CHANNEL = 0


class EventRecord(BaseModel):
    """One observed chat message."""

    id: str
    author_id: str
    author_display_name: str = ""
    author_discriminator: str = RELAY_DISCRIMINATOR
    channel_id: str
    channel_name: str = ""
    guild_id: Optional[str] = None
    content: str = ""
    timestamp: datetime
    is_bot: bool = False
    deleted: bool = False
    channel_deleted: bool = False

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def __repr__(self):
        return f"<EventRecord(id={self.id}, author={self.author_id}, channel={self.channel_id})>"


class AllowedUser(BaseModel):
    """Entry of the access-control list consulted before running commands."""

    user_id: str
    display_name: str
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Channel:
    """A channel of a monitored guild as reported by the upstream source."""

    id: str
    name: str
    type: int = GUILD_TEXT_CHANNEL
    viewable: bool = True

    @property
    def is_scannable(self) -> bool:
        return self.type == GUILD_TEXT_CHANNEL and self.viewable


def is_real_user(record: EventRecord) -> bool:
    """True when the record was written by a human (not a bot, not a webhook relay)."""
    return not record.is_bot and record.author_discriminator != RELAY_DISCRIMINATOR


def record_from_payload(
    payload: Dict[str, Any], guild_id: Optional[str], channel: Channel
) -> EventRecord:
    """
    Build an EventRecord from a raw upstream message payload.

    Args:
        payload: Message object as returned by the upstream API
        guild_id: Guild the channel belongs to
        channel: Channel the page was fetched from

    Returns:
        EventRecord instance
    """
    author = payload.get("author") or {}
    message_id = payload.get("id")
    if not message_id or not author.get("id") or not payload.get("timestamp"):
        raise ValueError(f"Message payload missing id, author or timestamp: {payload!r}")
    return EventRecord(
        id=str(message_id),
        author_id=str(author["id"]),
        author_display_name=author.get("username") or "",
        author_discriminator=author.get("discriminator") or RELAY_DISCRIMINATOR,
        channel_id=str(payload.get("channel_id") or channel.id),
        channel_name=channel.name,
        guild_id=guild_id,
        content=payload.get("content") or "",
        timestamp=payload["timestamp"],
        is_bot=bool(author.get("bot", False)),
    )
