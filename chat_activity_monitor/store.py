"""
Event Store Module

In-memory holder of every EventRecord and AllowedUser for the lifetime of the
process. Durability is delegated to a PersistenceScheduler that rewrites the
snapshot file; the in-memory state stays authoritative when a write fails.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from chat_activity_monitor import config
from chat_activity_monitor.database import load_snapshot, serialize_snapshot, write_snapshot
from chat_activity_monitor.errors import SerializationError
from chat_activity_monitor.models import AllowedUser, EventRecord
from chat_activity_monitor.persistence import PersistenceScheduler

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0


@dataclass
class StoreStats:
    total_records: int
    allowed_users: int
    size_bytes: int
    last_save_time: Optional[datetime]


class EventStore:
    """
    Authoritative record set shared by the real-time feed, the bulk ingestor
    and the query functions.

    Every mutation and ``stats()`` runs under one re-entrant lock; queries read
    a list copy taken under the same lock via ``records()``.
    """

    def __init__(
        self,
        path: Path = config.STORE_PATH,
        save_delay: float = config.SAVE_DELAY_SECONDS,
        timer_factory=threading.Timer,
    ):
        self.path = Path(path)
        self._records: Dict[str, EventRecord] = {}
        self._allowed: Dict[str, AllowedUser] = {}
        self._lock = threading.RLock()
        self.scheduler = PersistenceScheduler(
            self._write_snapshot, delay=save_delay, timer_factory=timer_factory
        )

    # ---- lifecycle ----

    def load(self) -> None:
        """Load the snapshot, or create it when the file does not exist."""
        snapshot = load_snapshot(self.path)
        if snapshot is None:
            logger.info(f"No snapshot at {self.path}, creating a new one")
            self.flush()
            return
        with self._lock:
            self._records = {}
            for raw in snapshot["records"]:
                record = EventRecord.model_validate(raw)
                self._records[record.id] = record
            self._allowed = {}
            for raw in snapshot["allowedUsers"]:
                user = AllowedUser.model_validate(raw)
                self._allowed[user.user_id] = user
        logger.info(f"Event store initialized with {len(self._records)} records")

    def flush(self) -> None:
        """Forced durable write. Raises SerializationError when it fails."""
        self.scheduler.flush()

    def close(self) -> None:
        """Final forced write before shutdown; failures are logged."""
        try:
            self.flush()
        except SerializationError as e:
            logger.error(f"Final store write failed: {e}")
        self.scheduler.cancel()

    # ---- records ----

    def upsert(self, record: EventRecord) -> None:
        """Insert or replace a record by id and request a throttled write."""
        with self._lock:
            self._put(record)
        self.scheduler.request()

    def upsert_batch(self, records: Iterable[EventRecord], force: bool = False) -> UpsertResult:
        """
        Upsert many records with a single durability request.

        Args:
            records: Records to insert or replace
            force: Flush synchronously instead of requesting a throttled write

        Returns:
            UpsertResult with counts of new and replaced ids
        """
        result = UpsertResult()
        with self._lock:
            for record in records:
                if self._put(record):
                    result.updated += 1
                else:
                    result.inserted += 1
        if force:
            self.flush()
        else:
            self.scheduler.request()
        return result

    def _put(self, record: EventRecord) -> bool:
        # Caller holds self._lock. Deletion flags never go back to False.
        existing = self._records.get(record.id)
        if existing is not None:
            if existing.deleted and not record.deleted:
                record = record.model_copy(update={"deleted": True})
            if existing.channel_deleted and not record.channel_deleted:
                record = record.model_copy(update={"channel_deleted": True})
        self._records[record.id] = record
        return existing is not None

    def mark_deleted(self, record_id: str) -> bool:
        """Flag a record as deleted at the source. Returns False when the id is unknown."""
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            record.deleted = True
        self.scheduler.request()
        return True

    def mark_channel_deleted(self, channel_id: str) -> int:
        """Flag every record of a channel as channel-deleted. Returns how many matched."""
        matched = 0
        with self._lock:
            for record in self._records.values():
                if record.channel_id == channel_id:
                    record.channel_deleted = True
                    matched += 1
        self.scheduler.request()
        return matched

    def get(self, record_id: str) -> Optional[EventRecord]:
        with self._lock:
            return self._records.get(record_id)

    def exists(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._records

    def records(self) -> List[EventRecord]:
        """Point-in-time list of all records for a single scan."""
        with self._lock:
            return list(self._records.values())

    def __len__(self):
        with self._lock:
            return len(self._records)

    # ---- allow-list ----

    def is_allowed(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._allowed

    def add_allowed(self, user_id: str, display_name: str) -> AllowedUser:
        user = AllowedUser(user_id=user_id, display_name=display_name)
        with self._lock:
            self._allowed[user_id] = user
        self.scheduler.request()
        return user

    def remove_allowed(self, user_id: str) -> bool:
        with self._lock:
            removed = self._allowed.pop(user_id, None)
        self.scheduler.request()
        return removed is not None

    def list_allowed(self) -> List[AllowedUser]:
        with self._lock:
            users = list(self._allowed.values())
        return sorted(users, key=lambda u: u.display_name.casefold())

    # ---- persistence ----

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "records": [r.model_dump(mode="json") for r in self._records.values()],
                "allowedUsers": [u.model_dump(mode="json") for u in self._allowed.values()],
            }

    def _write_snapshot(self) -> None:
        try:
            snapshot = self.snapshot()
        except Exception as e:
            raise SerializationError(f"Could not build store snapshot: {e}") from e
        write_snapshot(self.path, serialize_snapshot(snapshot))

    def stats(self) -> StoreStats:
        """Counts, an estimate of the serialized size and the last completed write."""
        with self._lock:
            size = len(serialize_snapshot(self.snapshot()))
            return StoreStats(
                total_records=len(self._records),
                allowed_users=len(self._allowed),
                size_bytes=size,
                last_save_time=self.scheduler.last_write_time,
            )
