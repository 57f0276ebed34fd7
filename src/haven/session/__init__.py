"""Session lifecycle, timers and host signals."""

from .conflict import last_activity_of, resolve_conflict
from .connectivity import ConnectivityProbe
from .events import HostEvents
from .manager import SessionManager
from .models import (
    PendingSyncEntry,
    Session,
    SessionAnalytics,
    SessionSettings,
    SessionStatus,
    UserProgress,
    UserState,
)
from .timers import AsyncioScheduler, ManualScheduler

__all__ = [
    "AsyncioScheduler",
    "ConnectivityProbe",
    "HostEvents",
    "ManualScheduler",
    "PendingSyncEntry",
    "Session",
    "SessionAnalytics",
    "SessionManager",
    "SessionSettings",
    "SessionStatus",
    "UserProgress",
    "UserState",
    "last_activity_of",
    "resolve_conflict",
]
