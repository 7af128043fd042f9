"""
API Module

Read-only reporting endpoints over the event store, plus the allow-list,
the backfill trigger and the real-time feed entry point. The store, source
and ingestor are taken from ``app.state``.
"""
import logging
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from chat_activity_monitor import config, queries
from chat_activity_monitor.errors import FetchError, SerializationError
from chat_activity_monitor.feed import FeedEvent, apply_event
from chat_activity_monitor.ingestor import BulkIngestor, ScanInProgressError
from chat_activity_monitor.reports import build_daily_report, resolve_moderator_ids, split_message
from chat_activity_monitor.store import EventStore
from chat_activity_monitor.utils import format_size, parse_date

logger = logging.getLogger(__name__)
router = APIRouter()


def get_store(request: Request) -> EventStore:
    return request.app.state.store


def get_ingestor(request: Request) -> BulkIngestor:
    return request.app.state.ingestor


def _internal_error(what: str, e: Exception) -> HTTPException:
    logger.error(f"Error {what}: {str(e)}")
    return HTTPException(status_code=500, detail="Internal server error")


def _parse_day(value: Optional[str], default_today: bool = False) -> Optional[date]:
    if not value:
        if default_today:
            return datetime.now(ZoneInfo(config.REPORT_TIMEZONE)).date()
        return None
    day = parse_date(value)
    if day is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return day


def _moderator_ids(request: Request, guild_id: str, mod_ids: Optional[List[str]]) -> List[str]:
    if mod_ids:
        return mod_ids
    try:
        return resolve_moderator_ids(request.app.state.source, guild_id, config.MOD_ROLE_ID)
    except FetchError as e:
        logger.error(f"Error resolving moderators: {e}")
        raise HTTPException(status_code=502, detail="Could not resolve moderators")
    except Exception as e:
        raise _internal_error("resolving moderators", e)


@router.get("/messages/count")
def get_message_count(
    guild_id: Optional[str] = Query(None, description="Guild id"),
    date_str: Optional[str] = Query(None, alias="date", description="Calendar day"),
    store: EventStore = Depends(get_store),
):
    """
    Count real-user messages, optionally for one guild and one day.
    """
    day = _parse_day(date_str)
    try:
        return {"count": queries.count_all(store, guild_id, day), "date": day}
    except Exception as e:
        raise _internal_error("getting message count", e)


@router.get("/messages/by-channel")
def get_messages_by_channel(store: EventStore = Depends(get_store)):
    """
    All-time raw message counts per channel name, largest first.
    """
    try:
        by_channel = queries.count_by_channel_all(store)
        return dict(sorted(by_channel.items(), key=lambda kv: kv[1], reverse=True))
    except Exception as e:
        raise _internal_error("getting messages by channel", e)


@router.get("/users/{user_id}/count")
def get_user_message_count(
    user_id: str,
    guild_id: str = Query(config.TARGET_GUILD_ID, description="Guild id"),
    date_str: Optional[str] = Query(None, alias="date"),
    channel_id: Optional[str] = Query(None),
    store: EventStore = Depends(get_store),
):
    day = _parse_day(date_str)
    try:
        count = queries.count_by_actor(store, guild_id, user_id, day, channel_id)
        return {"user_id": user_id, "count": count, "date": day}
    except Exception as e:
        raise _internal_error(f"getting message count for user {user_id}", e)


@router.get("/channels/{channel_id}/count")
def get_channel_message_count(
    channel_id: str,
    date_str: Optional[str] = Query(None, alias="date"),
    store: EventStore = Depends(get_store),
):
    day = _parse_day(date_str)
    try:
        count = queries.count_by_channel(store, channel_id, day)
        return {"channel_id": channel_id, "count": count, "date": day}
    except Exception as e:
        raise _internal_error(f"getting message count for channel {channel_id}", e)


@router.get("/moderators/breakdown")
def get_moderator_breakdown(
    request: Request,
    guild_id: str = Query(config.TARGET_GUILD_ID),
    date_str: Optional[str] = Query(None, alias="date"),
    mod_id: Optional[List[str]] = Query(None, description="Moderator ids; resolved from the mod role when omitted"),
    store: EventStore = Depends(get_store),
):
    """
    Moderator messages of a day grouped by moderator and channel.
    """
    day = _parse_day(date_str, default_today=True)
    mod_ids = _moderator_ids(request, guild_id, mod_id)
    try:
        rows = queries.moderator_breakdown(store, guild_id, mod_ids, day)
        return {
            "date": day,
            "total": sum(row.count for row in rows),
            "groups": [row.as_dict() for row in rows],
        }
    except Exception as e:
        raise _internal_error("getting moderator breakdown", e)


@router.get("/moderators/split")
def get_mod_member_split(
    request: Request,
    guild_id: str = Query(config.TARGET_GUILD_ID),
    date_str: Optional[str] = Query(None, alias="date"),
    channel_id: Optional[str] = Query(None),
    mod_id: Optional[List[str]] = Query(None),
    store: EventStore = Depends(get_store),
):
    day = _parse_day(date_str, default_today=True)
    mod_ids = _moderator_ids(request, guild_id, mod_id)
    try:
        split = queries.mod_vs_member_split(store, guild_id, mod_ids, day, channel_id)
        return {
            "date": day,
            "mod_count": split.mod_count,
            "member_count": split.member_count,
            "total": split.total,
        }
    except Exception as e:
        raise _internal_error("getting moderator/member split", e)


@router.get("/reports/daily")
def get_daily_report(
    request: Request,
    guild_id: str = Query(config.TARGET_GUILD_ID),
    date_str: Optional[str] = Query(None, alias="date"),
    guild_name: str = Query(""),
    mod_id: Optional[List[str]] = Query(None),
    store: EventStore = Depends(get_store),
):
    """
    Daily moderator report text, pre-split for delivery.
    """
    day = _parse_day(date_str, default_today=True)
    mod_ids = _moderator_ids(request, guild_id, mod_id)
    try:
        rows = queries.moderator_breakdown(store, guild_id, mod_ids, day)
        report = build_daily_report(rows, day, guild_name)
        return {"date": day, "report": report, "chunks": split_message(report, config.MAX_REPORT_LENGTH)}
    except Exception as e:
        raise _internal_error("building daily report", e)


@router.get("/stats")
def get_database_stats(store: EventStore = Depends(get_store)):
    """
    Exact database statistics; forces a durable write first.
    """
    try:
        store.flush()
    except SerializationError as e:
        logger.error(f"Error saving store before stats: {e}")
        raise HTTPException(status_code=500, detail="Store write failed")
    try:
        stats = store.stats()
        by_channel = queries.count_by_channel_all(store)
        return {
            "total_messages": stats.total_records,
            "allowed_users": stats.allowed_users,
            "disk_usage": format_size(stats.size_bytes),
            "last_save_time": stats.last_save_time.isoformat() if stats.last_save_time else "never",
            "messages_by_channel": dict(sorted(by_channel.items(), key=lambda kv: kv[1], reverse=True)),
        }
    except Exception as e:
        raise _internal_error("getting database stats", e)


class AllowedUserIn(BaseModel):
    display_name: str


@router.get("/allowed-users")
def list_allowed_users(store: EventStore = Depends(get_store)):
    try:
        return [user.model_dump(mode="json") for user in store.list_allowed()]
    except Exception as e:
        raise _internal_error("listing allowed users", e)


@router.get("/allowed-users/{user_id}")
def check_allowed_user(user_id: str, store: EventStore = Depends(get_store)):
    try:
        return {"user_id": user_id, "allowed": store.is_allowed(user_id)}
    except Exception as e:
        raise _internal_error(f"checking allowed user {user_id}", e)


@router.put("/allowed-users/{user_id}")
def add_allowed_user(user_id: str, body: AllowedUserIn, store: EventStore = Depends(get_store)):
    try:
        return store.add_allowed(user_id, body.display_name).model_dump(mode="json")
    except Exception as e:
        raise _internal_error(f"adding allowed user {user_id}", e)


@router.delete("/allowed-users/{user_id}")
def remove_allowed_user(user_id: str, store: EventStore = Depends(get_store)):
    try:
        return {"user_id": user_id, "removed": store.remove_allowed(user_id)}
    except Exception as e:
        raise _internal_error(f"removing allowed user {user_id}", e)


@router.post("/scan", status_code=202)
def start_scan(
    background_tasks: BackgroundTasks,
    guild_id: str = Query(config.TARGET_GUILD_ID),
    ingestor: BulkIngestor = Depends(get_ingestor),
):
    """
    Start a backfill of the guild in the background.
    """
    if not guild_id:
        raise HTTPException(status_code=400, detail="guild_id is required")
    if ingestor.status.in_progress:
        raise HTTPException(status_code=409, detail="A scan is already running")
    background_tasks.add_task(_run_scan, ingestor, guild_id)
    return {"status": "started", "guild_id": guild_id}


def _run_scan(ingestor: BulkIngestor, guild_id: str) -> None:
    try:
        ingestor.scan_guild(guild_id)
    except ScanInProgressError:
        logger.warning("Scan request ignored, another scan is running")


@router.get("/scan/status")
def get_scan_status(ingestor: BulkIngestor = Depends(get_ingestor)):
    status = ingestor.status
    try:
        return {
            "in_progress": status.in_progress,
            "started_at": status.started_at.isoformat() if status.started_at else None,
            "last_completed_at": status.last_completed_at.isoformat() if status.last_completed_at else None,
            "last_error": status.last_error,
            "last_report": status.last_report.as_dict() if status.last_report else None,
        }
    except Exception as e:
        raise _internal_error("getting scan status", e)


@router.post("/events")
def post_feed_event(event: FeedEvent, store: EventStore = Depends(get_store)):
    """
    Apply one real-time event (created / deleted / channel_deleted).
    """
    try:
        changed = apply_event(store, event, guild_id=config.TARGET_GUILD_ID or None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise _internal_error(f"applying {event.kind} event", e)
    return {"kind": event.kind, "changed": changed}
