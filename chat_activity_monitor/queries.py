"""
Query Module

Aggregate counts over the event store. Every call is a fresh scan of the
store's current records; nothing is cached between calls and nothing is
mutated. Date-scoped queries cover one calendar day in the reporting time
zone. On failure a query logs the error and returns an empty result.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import Collection, Dict, Iterable, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from chat_activity_monitor import config
from chat_activity_monitor.models import EventRecord, is_real_user
from chat_activity_monitor.store import EventStore

logger = logging.getLogger(__name__)

Day = Union[date, datetime]


@dataclass
class ModeratorActivity:
    author_id: str
    author_display_name: str
    channel_id: str
    channel_name: str
    count: int = 0
    deleted_count: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ActivitySplit:
    mod_count: int = 0
    member_count: int = 0

    @property
    def total(self) -> int:
        return self.mod_count + self.member_count


def day_window(day: Day, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    Bounds of a calendar day in the reporting time zone.

    Returns:
        (start, end) where start is local midnight and end is the next local
        midnight; a timestamp belongs to the day when start <= ts < end
    """
    tz = ZoneInfo(tz_name or config.REPORT_TIMEZONE)
    if isinstance(day, datetime):
        day = day.astimezone(tz).date() if day.tzinfo else day.date()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def _filter(
    records: Iterable[EventRecord],
    guild_id: Optional[str] = None,
    day: Optional[Day] = None,
    channel_id: Optional[str] = None,
    tz_name: Optional[str] = None,
) -> Iterable[EventRecord]:
    window = day_window(day, tz_name) if day is not None else None
    for record in records:
        if guild_id is not None and record.guild_id != guild_id:
            continue
        if channel_id is not None and record.channel_id != channel_id:
            continue
        if window is not None and not (window[0] <= record.timestamp < window[1]):
            continue
        yield record


def count_all(
    store: EventStore,
    guild_id: Optional[str] = None,
    day: Optional[Day] = None,
    tz_name: Optional[str] = None,
) -> int:
    """Real-user messages, optionally for one guild and/or one day. Deleted ones count."""
    try:
        return sum(
            1
            for record in _filter(store.records(), guild_id, day, tz_name=tz_name)
            if is_real_user(record)
        )
    except Exception as e:
        logger.error(f"Error getting message count: {e}")
        return 0


def count_by_actor(
    store: EventStore,
    guild_id: str,
    author_id: str,
    day: Optional[Day] = None,
    channel_id: Optional[str] = None,
    tz_name: Optional[str] = None,
) -> int:
    """Real-user messages of one author, optionally for one channel and/or one day."""
    try:
        return sum(
            1
            for record in _filter(store.records(), guild_id, day, channel_id, tz_name)
            if record.author_id == author_id and is_real_user(record)
        )
    except Exception as e:
        logger.error(f"Error getting user message count: {e}")
        return 0


def count_by_channel(
    store: EventStore,
    channel_id: str,
    day: Optional[Day] = None,
    tz_name: Optional[str] = None,
) -> int:
    """Real-user messages of one channel across all authors."""
    try:
        return sum(
            1
            for record in _filter(store.records(), None, day, channel_id, tz_name)
            if is_real_user(record)
        )
    except Exception as e:
        logger.error(f"Error getting channel message count: {e}")
        return 0


def moderator_breakdown(
    store: EventStore,
    guild_id: str,
    mod_ids: Collection[str],
    day: Day,
    tz_name: Optional[str] = None,
) -> List[ModeratorActivity]:
    """
    Moderator messages of a day grouped by (author, channel).

    Returns:
        One ModeratorActivity per group, highest count first; ties keep the
        order in which groups were first seen
    """
    try:
        mod_ids = set(mod_ids)
        grouped: Dict[Tuple[str, str], ModeratorActivity] = {}
        for record in _filter(store.records(), guild_id, day, tz_name=tz_name):
            if record.author_id not in mod_ids or not is_real_user(record):
                continue
            key = (record.author_id, record.channel_id)
            entry = grouped.get(key)
            if entry is None:
                entry = grouped[key] = ModeratorActivity(
                    author_id=record.author_id,
                    author_display_name=record.author_display_name,
                    channel_id=record.channel_id,
                    channel_name=record.channel_name,
                )
            entry.count += 1
            if record.deleted or record.channel_deleted:
                entry.deleted_count += 1
        return sorted(grouped.values(), key=lambda entry: entry.count, reverse=True)
    except Exception as e:
        logger.error(f"Error getting moderator messages: {e}")
        return []


def mod_vs_member_split(
    store: EventStore,
    guild_id: str,
    mod_ids: Collection[str],
    day: Day,
    channel_id: Optional[str] = None,
    tz_name: Optional[str] = None,
) -> ActivitySplit:
    """Real-user messages of a day split into moderator and member counts."""
    try:
        mod_ids = set(mod_ids)
        split = ActivitySplit()
        for record in _filter(store.records(), guild_id, day, channel_id, tz_name):
            # bots and webhook relays are skipped entirely
            if not is_real_user(record):
                continue
            if record.author_id in mod_ids:
                split.mod_count += 1
            else:
                split.member_count += 1
        return split
    except Exception as e:
        logger.error(f"Error getting mods and users count: {e}")
        return ActivitySplit()


def count_by_channel_all(store: EventStore) -> Dict[str, int]:
    """All-time raw traffic per channel name, bots and relays included."""
    try:
        counts: Dict[str, int] = {}
        for record in store.records():
            name = record.channel_name or record.channel_id
            counts[name] = counts.get(name, 0) + 1
        return counts
    except Exception as e:
        logger.error(f"Error getting messages by channel: {e}")
        return {}
