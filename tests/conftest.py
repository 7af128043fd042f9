"""
Shared test fixtures for pytest
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from chat_activity_monitor.errors import AccessDeniedError, TransientFetchError
from chat_activity_monitor.models import Channel, EventRecord
from chat_activity_monitor.store import EventStore


class FakeTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class FakeSource:
    """
    Scripted upstream source.

    ``histories`` maps channel id to the number of messages it holds (newest
    has the highest id); ``failing`` maps channel id to the exception raised
    by every fetch of that channel.
    """

    def __init__(self, channels, histories, failing=None, guild_id="G"):
        self.channels = channels
        self.histories = histories
        self.failing = failing or {}
        self.guild_id = guild_id
        self.fetches = []
        self.roles = [{"id": "R1", "name": "Moderator"}, {"id": "R2", "name": "Member"}]
        self.role_members = {"R1": ["M1", "M2"]}
        self._lock = threading.Lock()

    def list_channels(self, guild_id):
        return list(self.channels)

    def fetch_page(self, channel_id, before=None, limit=100):
        with self._lock:
            self.fetches.append((channel_id, before, limit))
        if channel_id in self.failing:
            raise self.failing[channel_id]
        total = self.histories.get(channel_id, 0)
        top = int(before) - 1 if before else total
        ids = range(top, max(top - limit, 0), -1)
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        return [
            {
                "id": str(i),
                "channel_id": channel_id,
                "author": {"id": f"U{i % 3}", "username": f"user{i % 3}", "discriminator": "1234"},
                "content": f"message {i}",
                "timestamp": (base + timedelta(seconds=i)).isoformat(),
            }
            for i in ids
        ]

    def fetch_count(self, channel_id):
        return sum(1 for fetch in self.fetches if fetch[0] == channel_id)

    def list_roles(self, guild_id):
        return self.roles

    def list_role_members(self, guild_id, role_id):
        return self.role_members.get(role_id, [])


@pytest.fixture(autouse=True)
def reset_fake_timers():
    FakeTimer.created = []
    yield


@pytest.fixture
def store(tmp_path):
    """Create a fresh EventStore whose throttle timer is driven manually"""
    return EventStore(tmp_path / "store.json", save_delay=5, timer_factory=FakeTimer)


@pytest.fixture
def make_record():
    """Factory for EventRecords with sensible defaults"""

    def _make(record_id, **overrides):
        fields = {
            "id": str(record_id),
            "author_id": "U1",
            "author_display_name": "alice",
            "author_discriminator": "1234",
            "channel_id": "10",
            "channel_name": "general",
            "guild_id": "G",
            "content": "hello",
            "timestamp": datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            "is_bot": False,
        }
        fields.update(overrides)
        return EventRecord(**fields)

    return _make


@pytest.fixture
def channels():
    return [
        Channel(id="C", name="charlie"),
        Channel(id="A", name="alpha"),
        Channel(id="B", name="bravo"),
    ]


@pytest.fixture
def denied():
    return AccessDeniedError("Missing access")


@pytest.fixture
def transient():
    return TransientFetchError("HTTP 500", status_code=500)
