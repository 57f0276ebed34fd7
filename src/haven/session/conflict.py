"""Last-write-wins reconciliation between two snapshots of one record.

The resolver picks a whole record; it never merges fields. If the same user
edits on two devices while one is offline, the older device's unique changes
are lost when the newer snapshot wins. That is the accepted cost of keeping
reconciliation deterministic and single-writer.
"""

from datetime import datetime
from typing import Any

EPOCH = 0.0


def last_activity_of(record: dict[str, Any] | None) -> float:
    """Extract session_info.last_activity as epoch seconds.

    Accepts numeric epoch seconds or ISO-8601 text. Anything missing or
    unparseable counts as the epoch.
    """
    if not record:
        return EPOCH
    info = record.get("session_info")
    if not isinstance(info, dict):
        return EPOCH

    value = info.get("last_activity")
    if isinstance(value, bool) or value is None:
        return EPOCH
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return EPOCH
    return EPOCH


def resolve_conflict(local: dict[str, Any], remote: dict[str, Any]) -> dict[str, Any]:
    """Return whichever candidate saw activity last; ties go to local."""
    if last_activity_of(local) >= last_activity_of(remote):
        return local
    return remote
