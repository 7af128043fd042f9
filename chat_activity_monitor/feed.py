"""
Real-time Feed Module

Maps the three live event kinds delivered by the gateway relay onto store
operations: a created message is upserted, a deleted message is flagged and
a removed channel flags every record it holds.
"""
import logging
from typing import Literal, Optional

from pydantic import BaseModel

from chat_activity_monitor.models import EventRecord
from chat_activity_monitor.store import EventStore

logger = logging.getLogger(__name__)


class FeedEvent(BaseModel):
    kind: Literal["created", "deleted", "channel_deleted"]
    record: Optional[EventRecord] = None
    message_id: Optional[str] = None
    channel_id: Optional[str] = None


def apply_event(store: EventStore, event: FeedEvent, guild_id: Optional[str] = None) -> bool:
    """
    Apply one live event to the store.

    Args:
        store: Target store
        event: The event
        guild_id: When set, created messages from other guilds are ignored

    Returns:
        True when the event changed the store
    """
    if event.kind == "created":
        if event.record is None:
            raise ValueError("created event requires a record")
        if guild_id and event.record.guild_id != guild_id:
            logger.debug(f"Ignoring message {event.record.id} from guild {event.record.guild_id}")
            return False
        store.upsert(event.record)
        return True
    if event.kind == "deleted":
        if not event.message_id:
            raise ValueError("deleted event requires a message_id")
        return store.mark_deleted(event.message_id)
    if not event.channel_id:
        raise ValueError("channel_deleted event requires a channel_id")
    return store.mark_channel_deleted(event.channel_id) > 0
