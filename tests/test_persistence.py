"""
Tests for the PersistenceScheduler state machine
"""
import pytest

from chat_activity_monitor.errors import SerializationError
from chat_activity_monitor.persistence import FLUSHING, IDLE, PENDING, PersistenceScheduler

from conftest import FakeTimer


class Writer:
    def __init__(self):
        self.calls = 0
        self.fail = False
        self.during = None

    def __call__(self):
        self.calls += 1
        if self.during:
            self.during()
        if self.fail:
            raise SerializationError("disk full")


@pytest.fixture
def writer():
    return Writer()


@pytest.fixture
def scheduler(writer):
    return PersistenceScheduler(writer, delay=5, timer_factory=FakeTimer)


class TestThrottle:
    """Tests for throttled requests"""

    def test_request_arms_one_timer(self, scheduler):
        scheduler.request()

        assert scheduler.state == PENDING
        assert len(FakeTimer.created) == 1
        assert FakeTimer.created[0].interval == 5
        assert FakeTimer.created[0].started

    def test_many_requests_coalesce_into_one_write(self, scheduler, writer):
        for _ in range(50):
            scheduler.request()

        assert len(FakeTimer.created) == 1
        assert writer.calls == 0

        FakeTimer.created[0].fire()

        assert writer.calls == 1
        assert scheduler.state == IDLE
        assert scheduler.last_write_time is not None
        assert not scheduler.dirty

    def test_request_after_write_arms_new_timer(self, scheduler):
        scheduler.request()
        FakeTimer.created[0].fire()
        scheduler.request()

        assert len(FakeTimer.created) == 2
        assert scheduler.state == PENDING

    def test_request_during_write_rearms_after(self, scheduler, writer):
        writer.during = scheduler.request
        scheduler.request()
        FakeTimer.created[0].fire()

        assert writer.calls == 1
        assert len(FakeTimer.created) == 2
        assert scheduler.state == PENDING


class TestForcedFlush:
    """Tests for forced flushes"""

    def test_flush_cancels_pending_timer(self, scheduler, writer):
        scheduler.request()
        timer = FakeTimer.created[0]

        scheduler.flush()

        assert writer.calls == 1
        assert timer.cancelled
        assert scheduler.state == IDLE

    def test_stale_timer_callback_is_ignored(self, scheduler, writer):
        scheduler.request()
        timer = FakeTimer.created[0]
        scheduler.flush()

        # Simulate a timer thread that fired just before cancel()
        timer.function()

        assert writer.calls == 1

    def test_flush_without_pending_request_writes(self, scheduler, writer):
        scheduler.flush()

        assert writer.calls == 1
        assert FakeTimer.created == []

    def test_flush_failure_propagates(self, scheduler, writer):
        writer.fail = True

        with pytest.raises(SerializationError):
            scheduler.flush()

        assert scheduler.state == IDLE
        assert scheduler.dirty
        assert scheduler.last_write_time is None


class TestScheduledFailure:
    """Tests for failures of timer-driven writes"""

    def test_failure_is_logged_not_raised(self, scheduler, writer, caplog):
        writer.fail = True
        scheduler.request()

        FakeTimer.created[0].fire()

        assert scheduler.state == IDLE
        assert "Scheduled store write failed" in caplog.text

    def test_next_request_retries(self, scheduler, writer):
        writer.fail = True
        scheduler.request()
        FakeTimer.created[0].fire()

        writer.fail = False
        scheduler.request()
        FakeTimer.created[1].fire()

        assert writer.calls == 2
        assert scheduler.write_count == 1

    def test_state_is_flushing_while_writing(self, scheduler, writer):
        seen = []
        writer.during = lambda: seen.append(scheduler.state)

        scheduler.flush()

        assert seen == [FLUSHING]
