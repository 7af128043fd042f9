"""
Database Module

This module reads and writes the durable snapshot of the event store:
a single JSON document ``{"records": [...], "allowedUsers": [...]}``
rewritten as a whole on every save.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from chat_activity_monitor.errors import SerializationError

logger = logging.getLogger(__name__)


def serialize_snapshot(snapshot: Dict[str, Any]) -> bytes:
    """
    Serialize a snapshot dict to the on-disk representation.

    Args:
        snapshot: Dict with ``records`` and ``allowedUsers`` lists of JSON-ready dicts

    Returns:
        UTF-8 encoded JSON
    """
    try:
        return json.dumps(snapshot, indent=2).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Could not serialize store snapshot: {e}") from e


def write_snapshot(path: Path, data: bytes) -> None:
    """
    Atomically replace the snapshot file at ``path`` with ``data``.

    The bytes go to a temporary file in the same directory which is then
    renamed over the target, so readers never observe a partial file.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise SerializationError(f"Could not write store snapshot to {path}: {e}") from e


def load_snapshot(path: Path) -> Optional[Dict[str, Any]]:
    """
    Load the snapshot file.

    Returns:
        The decoded snapshot, or None when the file does not exist yet
    """
    path = Path(path)
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise SerializationError(f"Snapshot at {path} is not a JSON object")
    data.setdefault("records", [])
    data.setdefault("allowedUsers", [])
    logger.info(
        f"Loaded snapshot from {path}: {len(data['records'])} records, "
        f"{len(data['allowedUsers'])} allowed users"
    )
    return data
