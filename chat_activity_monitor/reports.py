"""
Reports Module

Turns moderator breakdown rows into the daily report text handed to the
notification collaborator, and resolves who counts as a moderator.
"""
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

from chat_activity_monitor import config
from chat_activity_monitor.queries import ModeratorActivity
from chat_activity_monitor.transport import ChannelSource

logger = logging.getLogger(__name__)


def resolve_moderator_ids(
    source: ChannelSource, guild_id: str, role_id: Optional[str] = None
) -> List[str]:
    """
    Member ids holding the moderator role.

    Uses ``role_id`` when given; otherwise the first role whose name contains
    one of ``config.MOD_ROLE_NAME_HINTS``. Returns an empty list when no such
    role exists.
    """
    if not role_id:
        roles = source.list_roles(guild_id)
        match = next(
            (
                role
                for role in roles
                if any(hint in (role.get("name") or "").lower() for hint in config.MOD_ROLE_NAME_HINTS)
            ),
            None,
        )
        if match is None:
            logger.info(f"No moderator role found in guild {guild_id}")
            return []
        role_id = str(match["id"])
    return source.list_role_members(guild_id, role_id)


def build_daily_report(
    breakdown: Sequence[ModeratorActivity], day: date, guild_name: str = ""
) -> str:
    """Render a moderator breakdown as the daily report text."""
    mods: Dict[str, dict] = {}
    channels: Dict[str, int] = {}
    total = 0
    total_deleted = 0
    for row in breakdown:
        mod = mods.setdefault(
            row.author_id,
            {"name": row.author_display_name, "total": 0, "deleted": 0, "channels": {}},
        )
        mod["total"] += row.count
        mod["deleted"] += row.deleted_count
        mod["channels"][row.channel_name] = mod["channels"].get(row.channel_name, 0) + row.count
        channels[row.channel_name] = channels.get(row.channel_name, 0) + row.count
        total += row.count
        total_deleted += row.deleted_count

    lines = [f"**Daily Moderator Report - {day.strftime('%a %b %d %Y')}**"]
    if guild_name:
        lines.append(f"**Server:** {guild_name}")
    lines.append("")

    if not mods:
        lines.append("No moderator activity found.")
        return "\n".join(lines)

    lines.append("**Moderator Activity:**")
    for mod in sorted(mods.values(), key=lambda m: m["total"], reverse=True):
        line = f"• **{mod['name']}**: {mod['total']} messages"
        if mod["deleted"] > 0:
            line += f" ({mod['deleted']} deleted)"
        lines.append(line)
        for name, count in sorted(mod["channels"].items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"  └ #{name}: {count}")

    lines.append("")
    lines.append("**Channel Summary:**")
    for name, count in sorted(channels.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"• #{name}: {count} messages")

    if total_deleted > 0:
        lines.append("")
        lines.append(f"**Deleted Messages:** {total_deleted}")

    lines.append("")
    lines.append(f"**Total Messages:** {total}")
    return "\n".join(lines)


def split_message(text: str, max_length: int = config.MAX_REPORT_LENGTH) -> List[str]:
    """
    Split text on line boundaries into chunks of at most ``max_length`` characters.

    A single line longer than ``max_length`` becomes its own chunk unchanged.
    """
    chunks = []
    current = ""
    for line in text.split("\n"):
        if current and len(current) + len(line) + 1 > max_length:
            chunks.append(current)
            current = ""
        current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks
