"""
Persistence Module

Coalesces store mutations into throttled durable writes.

The scheduler is a small state machine (IDLE -> PENDING -> FLUSHING -> IDLE).
``request()`` arms a single timer; further requests while a write is pending
or in progress only mark the store dirty. ``flush()`` cancels the timer and
writes synchronously, raising if the write fails.
"""
import functools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from chat_activity_monitor import config
from chat_activity_monitor.errors import SerializationError

logger = logging.getLogger(__name__)

IDLE = "idle"
PENDING = "pending"
FLUSHING = "flushing"


class PersistenceScheduler:
    """
    Throttles durable writes of the whole store.

    Args:
        write: Callable performing one full write; raises SerializationError on failure
        delay: Seconds between the first request and the write
        timer_factory: Builds the timer, ``threading.Timer`` compatible
    """

    def __init__(
        self,
        write: Callable[[], None],
        delay: float = config.SAVE_DELAY_SECONDS,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self._write_fn = write
        self.delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._state = IDLE
        self._dirty = False
        self._timer = None
        self._generation = 0
        self.last_write_time: Optional[datetime] = None
        self.write_count = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._dirty

    def request(self) -> None:
        """Ask for a durable write within ``delay`` seconds."""
        with self._lock:
            self._dirty = True
            if self._state != IDLE:
                return
            self._arm()

    def flush(self) -> None:
        """Write immediately, cancelling any pending timer. Raises SerializationError."""
        with self._lock:
            self._cancel_timer()
        self._write()

    def cancel(self) -> None:
        """Drop a pending timer without writing (used on shutdown after a final flush)."""
        with self._lock:
            self._cancel_timer()
            if self._state == PENDING:
                self._state = IDLE

    def _arm(self) -> None:
        # Caller holds self._lock
        self._generation += 1
        self._state = PENDING
        timer = self._timer_factory(
            self.delay, functools.partial(self._on_timer, self._generation)
        )
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        # Caller holds self._lock
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            self._generation += 1

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state != PENDING:
                return
            self._timer = None
            if not self._dirty:
                self._state = IDLE
                return
        try:
            self._write()
        except SerializationError as e:
            logger.error(f"Scheduled store write failed: {e}")

    def _write(self) -> None:
        with self._write_lock:
            with self._lock:
                self._state = FLUSHING
                self._dirty = False
            try:
                self._write_fn()
            except Exception:
                with self._lock:
                    self._dirty = True
                    self._state = IDLE
                raise
            with self._lock:
                self.last_write_time = datetime.now(timezone.utc)
                self.write_count += 1
                self._state = IDLE
                # Mutations that arrived during the write still need a save
                if self._dirty:
                    self._arm()
