"""
Utility helpers shared by the API and the reports.
"""
from datetime import date, datetime
from typing import Optional

# Tried in order, first match wins (day-first formats take precedence)
DATE_FORMATS = ["%d/%m/%Y", "%d%m%Y", "%Y-%m-%d", "%m/%d/%Y", "%d-%m-%Y"]


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a user-supplied calendar date.

    Returns:
        The date, or None when the value is empty or matches no known format
    """
    if not value:
        return None
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def format_size(size_bytes: int) -> dict:
    return {
        "bytes": size_bytes,
        "kilobytes": round(size_bytes / 1024, 2),
        "megabytes": round(size_bytes / 1024 / 1024, 2),
    }
