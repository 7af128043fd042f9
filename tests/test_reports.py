"""
Tests for report building and moderator resolution
"""
from datetime import date

from chat_activity_monitor.models import Channel
from chat_activity_monitor.queries import ModeratorActivity
from chat_activity_monitor.reports import build_daily_report, resolve_moderator_ids, split_message

from conftest import FakeSource


def row(author_id, name, channel, count, deleted=0):
    return ModeratorActivity(author_id, name, channel, channel, count, deleted)


class TestDailyReport:
    def test_report_orders_moderators_and_channels(self):
        breakdown = [
            row("M1", "alice", "general", 5, deleted=1),
            row("M2", "bob", "general", 4),
            row("M2", "bob", "random", 3),
            row("M1", "alice", "random", 1),
        ]

        report = build_daily_report(breakdown, date(2024, 3, 1), "Test Guild")
        lines = report.split("\n")

        assert lines[0] == "**Daily Moderator Report - Fri Mar 01 2024**"
        assert "**Server:** Test Guild" in lines
        assert lines.index("• **bob**: 7 messages") < lines.index("• **alice**: 6 messages (1 deleted)")
        assert "  └ #general: 5" in lines
        assert "• #general: 9 messages" in lines
        assert "**Deleted Messages:** 1" in lines
        assert lines[-1] == "**Total Messages:** 13"

    def test_report_without_activity(self):
        report = build_daily_report([], date(2024, 3, 1))

        assert "No moderator activity found." in report
        assert "Total Messages" not in report


class TestSplitMessage:
    def test_short_text_is_one_chunk(self):
        assert split_message("a\nb", 100) == ["a\nb"]

    def test_splits_on_line_boundaries(self):
        text = "\n".join(["x" * 10] * 5)

        chunks = split_message(text, 25)

        assert chunks == ["x" * 10 + "\n" + "x" * 10] * 2 + ["x" * 10]
        assert all(len(chunk) <= 25 for chunk in chunks)


class TestModeratorResolution:
    def test_configured_role(self):
        source = FakeSource([Channel("A", "alpha")], {})
        source.role_members["R9"] = ["X"]

        assert resolve_moderator_ids(source, "G", "R9") == ["X"]

    def test_falls_back_to_role_name(self):
        source = FakeSource([], {})

        assert resolve_moderator_ids(source, "G") == ["M1", "M2"]

    def test_no_matching_role(self):
        source = FakeSource([], {})
        source.roles = [{"id": "R2", "name": "Member"}]

        assert resolve_moderator_ids(source, "G") == []
