"""Data models for sessions and the user snapshots they carry."""

import copy
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any

MOOD_LEVELS = ("very-low", "low", "neutral", "good", "excellent")
ENERGY_LEVELS = ("depleted", "low", "moderate", "high", "energized")
FOCUS_LEVELS = ("scattered", "unfocused", "moderate", "focused", "hyperfocused")
STRESS_LEVELS = ("calm", "mild", "moderate", "high", "overwhelming")


class SessionStatus(Enum):
    """Lifecycle states of the session manager."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    PAUSED = "paused"
    TIMED_OUT = "timed_out"
    ENDED = "ended"

    @property
    def is_live(self) -> bool:
        """True while a session object exists."""
        return self in (SessionStatus.ACTIVE, SessionStatus.PAUSED)


def _known_fields(cls: type, data: dict[str, Any] | None) -> dict[str, Any]:
    """Keep only keys that are dataclass fields of cls.

    Raises:
        TypeError: If data is present but not a mapping.
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TypeError(f"{cls.__name__} data must be an object, got {type(data).__name__}")
    names = {f.name for f in fields(cls)}
    return {k: copy.deepcopy(v) for k, v in data.items() if k in names}


def pending_from(data: Any) -> list[dict[str, Any]]:
    """Copy a stored pending-recommendations list.

    Raises:
        TypeError: If data is present but not a list.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise TypeError(f"pending_recommendations must be a list, got {type(data).__name__}")
    return copy.deepcopy(data)


def _default_preferences() -> dict[str, Any]:
    return {
        "communication_style": "gentle",
        "preferred_practices": [],
        "time_preferences": {
            "preferred_session_length": 10,
            "reminder_frequency": "moderate",
            "best_time_of_day": "flexible",
        },
    }


def _default_accessibility_needs() -> dict[str, Any]:
    return {
        "screen_reader": False,
        "high_contrast": False,
        "large_text": False,
        "reduced_motion": False,
        "voice_input": False,
    }


@dataclass
class UserState:
    """How the user is doing right now, as last reported."""

    current_mood: str = "neutral"
    energy_level: str = "moderate"
    focus_capacity: str = "moderate"
    stress_level: str = "mild"
    recent_challenges: list[Any] = field(default_factory=list)
    preferences: dict[str, Any] = field(default_factory=_default_preferences)
    accessibility_needs: dict[str, Any] = field(default_factory=_default_accessibility_needs)

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty if valid)."""
        errors = []
        if self.current_mood not in MOOD_LEVELS:
            errors.append(f"Invalid mood level: {self.current_mood}")
        if self.energy_level not in ENERGY_LEVELS:
            errors.append(f"Invalid energy level: {self.energy_level}")
        if self.focus_capacity not in FOCUS_LEVELS:
            errors.append(f"Invalid focus level: {self.focus_capacity}")
        if self.stress_level not in STRESS_LEVELS:
            errors.append(f"Invalid stress level: {self.stress_level}")
        if not isinstance(self.recent_challenges, list):
            errors.append("Recent challenges must be a list")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "UserState":
        return cls(**_known_fields(cls, data))


@dataclass
class UserProgress:
    """Accumulated history of assessments, recommendations and streaks."""

    user_id: str = ""
    assessment_history: list[Any] = field(default_factory=list)
    completed_recommendations: list[Any] = field(default_factory=list)
    wellness_streak: int = 0
    achievements: list[Any] = field(default_factory=list)
    patterns: list[Any] = field(default_factory=list)

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty if valid)."""
        errors = []
        if not self.user_id or not isinstance(self.user_id, str):
            errors.append("User progress must have a valid user id")
        for name in ("assessment_history", "completed_recommendations", "achievements", "patterns"):
            if not isinstance(getattr(self, name), list):
                errors.append(f"{name} must be a list")
        if not isinstance(self.wellness_streak, int) or self.wellness_streak < 0:
            errors.append("Wellness streak must be a non-negative integer")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, user_id: str = "") -> "UserProgress":
        values = _known_fields(cls, data)
        if not values.get("user_id"):
            values["user_id"] = user_id
        return cls(**values)


@dataclass
class SessionSettings:
    """Timer and connectivity settings for one session.

    Attributes:
        auto_save: Whether the periodic auto-save timer runs.
        auto_save_interval: Seconds between auto-saves.
        idle_timeout: Seconds of inactivity before the session ends.
        offline_mode: Whether the host was offline when last observed.
    """

    auto_save: bool = True
    auto_save_interval: float = 30.0
    idle_timeout: float = 1800.0  # 30 minutes
    offline_mode: bool = False

    def __post_init__(self) -> None:
        if self.auto_save_interval <= 0:
            raise ValueError("auto_save_interval must be positive")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")

    def merged(self, overrides: dict[str, Any] | None) -> "SessionSettings":
        """Return a copy with overrides applied."""
        return replace(self, **(overrides or {}))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SessionSettings":
        return cls(**_known_fields(cls, data))


@dataclass
class Session:
    """State for the single live session."""

    user_id: str
    session_id: str
    start_time: float
    last_activity: float
    user_state: UserState = field(default_factory=UserState)
    user_progress: UserProgress = field(default_factory=UserProgress)
    pending_recommendations: list[dict[str, Any]] = field(default_factory=list)
    settings: SessionSettings = field(default_factory=SessionSettings)
    activity_count: int = 0

    def idle_seconds(self, now: float) -> float:
        return max(0.0, now - self.last_activity)

    def is_expired(self, now: float) -> bool:
        """Check if the idle budget is used up."""
        return self.idle_seconds(now) >= self.settings.idle_timeout

    def to_record(self) -> dict[str, Any]:
        """Serialize to the payload written on every save.

        The result shares no mutable state with the session, so it can sit in
        the pending-sync queue while the session keeps changing.
        """
        return {
            "user_state": self.user_state.to_dict(),
            "user_progress": self.user_progress.to_dict(),
            "pending_recommendations": copy.deepcopy(self.pending_recommendations),
            "session_info": {
                "session_id": self.session_id,
                "start_time": self.start_time,
                "last_activity": self.last_activity,
                "activity_count": self.activity_count,
                "settings": self.settings.to_dict(),
            },
        }

    @classmethod
    def from_record(cls, user_id: str, record: dict[str, Any]) -> "Session":
        """Rebuild a session from a stored record with a session_info block.

        Raises:
            KeyError, TypeError, ValueError: If session_info is malformed.
        """
        info = record["session_info"]
        return cls(
            user_id=user_id,
            session_id=str(info["session_id"]),
            start_time=float(info["start_time"]),
            last_activity=float(info["last_activity"]),
            user_state=UserState.from_dict(record.get("user_state")),
            user_progress=UserProgress.from_dict(record.get("user_progress"), user_id=user_id),
            pending_recommendations=pending_from(record.get("pending_recommendations")),
            settings=SessionSettings.from_dict(info.get("settings")),
            activity_count=int(info.get("activity_count", 0)),
        )


@dataclass
class PendingSyncEntry:
    """A save made while offline, waiting to be replayed."""

    user_id: str
    payload: dict[str, Any]
    enqueued_at: float


@dataclass(frozen=True)
class SessionAnalytics:
    """Point-in-time view of the live session's timing."""

    duration: float = 0.0
    activity_count: int = 0
    is_active: bool = False
    time_until_timeout: float = 0.0
