"""
Bulk Ingestor Module

Backfills message history of a guild into the event store.

Channels are sorted by name and processed in waves of at most
``concurrency_limit`` channels. A wave runs on a bounded thread pool and is
always awaited in full; a failing channel never cancels its wave-mates or the
run. After every wave the store is flushed to disk.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from chat_activity_monitor import config
from chat_activity_monitor.errors import AccessDeniedError, SerializationError
from chat_activity_monitor.models import Channel, EventRecord, record_from_payload
from chat_activity_monitor.store import EventStore
from chat_activity_monitor.transport import ChannelSource

logger = logging.getLogger(__name__)


@dataclass
class ChannelScanResult:
    channel_id: str
    channel_name: str
    scanned: int = 0
    error: Optional[str] = None
    skipped: bool = False

    @property
    def outcome(self) -> str:
        if self.error is not None:
            return f"error: {self.error}"
        if self.skipped:
            return "skipped: missing access"
        return f"scanned: {self.scanned}"


@dataclass
class ScanReport:
    guild_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    channels: List[ChannelScanResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(result.scanned for result in self.channels)

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def as_dict(self) -> dict:
        return {
            "guild_id": self.guild_id,
            "total": self.total,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "channels": [
                {
                    "channel_id": result.channel_id,
                    "channel_name": result.channel_name,
                    "outcome": result.outcome,
                }
                for result in self.channels
            ],
        }


@dataclass
class ScanStatus:
    in_progress: bool = False
    started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_report: Optional[ScanReport] = None


class ScanInProgressError(RuntimeError):
    """Raised when a scan is requested while another one is running."""


class BulkIngestor:
    """
    Paginated, concurrency-bounded backfill into an EventStore.
    """

    def __init__(
        self,
        store: EventStore,
        source: ChannelSource,
        concurrency_limit: int = config.SCAN_CONCURRENCY,
        batch_size: int = config.SCAN_BATCH_SIZE,
        max_per_channel: int = config.SCAN_MAX_PER_CHANNEL,
        buffer_size: int = config.SCAN_BUFFER_SIZE,
        page_delay: float = config.SCAN_PAGE_DELAY_SECONDS,
        wave_delay: float = config.SCAN_WAVE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.store = store
        self.source = source
        self.concurrency_limit = concurrency_limit
        self.batch_size = batch_size
        self.max_per_channel = max_per_channel
        self.buffer_size = buffer_size
        self.page_delay = page_delay
        self.wave_delay = wave_delay
        self._sleep = sleep
        self.status = ScanStatus()
        self._status_lock = threading.Lock()

    def scan_guild(self, guild_id: str) -> ScanReport:
        """
        Backfill every scannable channel of a guild.

        Returns:
            ScanReport with the per-channel outcome and the total ingested
        """
        with self._status_lock:
            if self.status.in_progress:
                raise ScanInProgressError("A scan is already running")
            self.status.in_progress = True
            self.status.started_at = datetime.now(timezone.utc)
            self.status.last_error = None

        report = ScanReport(guild_id=guild_id, started_at=self.status.started_at)
        try:
            logger.info(f"Starting scan for guild {guild_id}")
            channels = sorted(
                (c for c in self.source.list_channels(guild_id) if c.is_scannable),
                key=lambda c: c.name,
            )
            waves = [
                channels[i : i + self.concurrency_limit]
                for i in range(0, len(channels), self.concurrency_limit)
            ]
            with ThreadPoolExecutor(
                max_workers=self.concurrency_limit, thread_name_prefix="scan"
            ) as pool:
                for index, wave in enumerate(waves):
                    report.channels.extend(self._run_wave(pool, wave, guild_id))
                    try:
                        self.store.flush()
                    except SerializationError as e:
                        logger.error(f"Store flush after wave {index + 1} failed: {e}")
                    if index < len(waves) - 1:
                        self._sleep(self.wave_delay)
        except Exception as e:
            logger.error(f"Scan of guild {guild_id} failed: {e}")
            with self._status_lock:
                self.status.last_error = str(e)
        finally:
            report.completed_at = datetime.now(timezone.utc)
            with self._status_lock:
                self.status.in_progress = False
                self.status.last_completed_at = report.completed_at
                self.status.last_report = report

        logger.info(
            f"Scan complete for guild {guild_id}. Total messages: {report.total} "
            f"in {report.duration_seconds:.2f} seconds"
        )
        return report

    def _run_wave(self, pool, wave: List[Channel], guild_id: str) -> List[ChannelScanResult]:
        futures = [pool.submit(self.scan_channel, channel, guild_id) for channel in wave]
        wait(futures)
        results = []
        for channel, future in zip(wave, futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.error(f"Error scanning channel #{channel.name}: {e}")
                results.append(
                    ChannelScanResult(channel.id, channel.name, error=str(e))
                )
        return results

    def scan_channel(self, channel: Channel, guild_id: Optional[str]) -> ChannelScanResult:
        """
        Page backwards through one channel's history.

        Stops on an empty page, a short page, or once ``max_per_channel``
        messages were read. Fetch errors end this channel only; whatever was
        already read is kept.
        """
        result = ChannelScanResult(channel.id, channel.name)
        buffer: List[EventRecord] = []
        before = None
        logger.info(f"Scanning channel #{channel.name}")

        try:
            while result.scanned < self.max_per_channel:
                limit = min(self.batch_size, self.max_per_channel - result.scanned)
                try:
                    page = self.source.fetch_page(channel.id, before=before, limit=limit)
                except AccessDeniedError:
                    logger.info(f"Missing access to channel #{channel.name}")
                    result.skipped = True
                    break
                except Exception as e:
                    logger.error(f"Error fetching messages from #{channel.name}: {e}")
                    result.error = str(e)
                    break

                if not page:
                    break
                page = page[:limit]
                try:
                    records = [record_from_payload(raw, guild_id, channel) for raw in page]
                except (ValueError, KeyError) as e:
                    logger.error(f"Malformed message in #{channel.name}: {e}")
                    result.error = str(e)
                    break
                buffer.extend(records)
                result.scanned += len(page)
                before = str(page[-1]["id"])

                end_reached = len(page) < limit
                if len(buffer) >= self.buffer_size or end_reached:
                    self.store.upsert_batch(buffer)
                    buffer = []
                if end_reached or result.scanned >= self.max_per_channel:
                    break
                self._sleep(self.page_delay)
        finally:
            if buffer:
                self.store.upsert_batch(buffer)

        logger.info(f"Scanned {result.scanned} messages from #{channel.name}")
        return result
