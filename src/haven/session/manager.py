"""Session lifecycle manager: one live session, its timers and offline queue.

Persistence on the background path (auto-save, idle-timeout save, offline
queue drain, passive host signals) never raises. Failures there are written to
the stdlib log and the JSONL event log and then dropped, so the worst case for
the user is losing the most recent unsaved changes. Calls that need a session
(touch and the mutators) raise NoActiveSession instead.
"""

import logging
import uuid
import weakref
from collections import deque
from typing import Any

from ..errors import HavenError, NoActiveSession, SessionConflict
from ..logging import JSONLLogger, get_logger
from ..storage import PersistentStore
from .conflict import resolve_conflict
from .events import ACTIVITY, HIDDEN, OFFLINE, ONLINE, SESSION_EXPIRED, UNLOAD, VISIBLE, HostEvents
from .models import (
    PendingSyncEntry,
    Session,
    SessionAnalytics,
    SessionSettings,
    SessionStatus,
    UserProgress,
    UserState,
    pending_from,
)
from .timers import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

AUTO_SAVE_TIMER = "auto_save"
IDLE_TIMER = "idle_timeout"

# Errors a save may hit: storage failures plus payloads that will not serialize.
_PERSIST_ERRORS = (HavenError, TypeError, ValueError)

# One live session per store instance, across all managers in the process.
_store_owners: "weakref.WeakKeyDictionary[PersistentStore, SessionManager]" = weakref.WeakKeyDictionary()


class SessionManager:
    """Owns the live session, the auto-save and idle timers, and the offline queue."""

    def __init__(
        self,
        store: PersistentStore,
        *,
        events: HostEvents | None = None,
        scheduler: Scheduler | None = None,
        event_log: JSONLLogger | None = None,
        defaults: SessionSettings | None = None,
    ) -> None:
        self.store = store
        self.events = events if events is not None else HostEvents()
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.event_log = event_log if event_log is not None else get_logger()
        self.defaults = defaults or SessionSettings()

        self._session: Session | None = None
        self._status = SessionStatus.INACTIVE
        self._auto_save_timer: TimerHandle | None = None
        self._idle_timer: TimerHandle | None = None
        self._pending_sync: deque[PendingSyncEntry] = deque()

        self._handlers = {
            ONLINE: self._on_online,
            OFFLINE: self._on_offline,
            HIDDEN: self._on_hidden,
            VISIBLE: self._on_visible,
            ACTIVITY: self._on_activity,
            UNLOAD: self._on_unload,
        }
        for event, handler in self._handlers.items():
            self.events.subscribe(event, handler)

    @property
    def session(self) -> Session | None:
        """The live session, or None."""
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def pending_sync(self) -> list[PendingSyncEntry]:
        """Queued offline saves, oldest first."""
        return list(self._pending_sync)

    @property
    def auto_save_armed(self) -> bool:
        return self._auto_save_timer is not None and self._auto_save_timer.active

    @property
    def idle_timer_armed(self) -> bool:
        return self._idle_timer is not None and self._idle_timer.active

    def _set_status(self, status: SessionStatus) -> None:
        if status == self._status:
            return
        old = self._status
        self._status = status
        session = self._session
        self.event_log.log_transition(
            old.value,
            status.value,
            user_id=session.user_id if session else None,
            session_id=session.session_id if session else None,
        )

    def _require_session(self, operation: str) -> Session:
        if self._session is None:
            raise NoActiveSession(operation)
        return self._session

    def _claim_store(self) -> None:
        owner = _store_owners.get(self.store)
        if owner is not None and owner is not self and owner.session is not None:
            raise SessionConflict("Another session manager has a live session on this store")
        _store_owners[self.store] = self

    def _release_store(self) -> None:
        if _store_owners.get(self.store) is self:
            del _store_owners[self.store]

    def _arm_auto_save(self) -> None:
        self._disarm_auto_save()
        session = self._session
        if session is not None and session.settings.auto_save:
            self._auto_save_timer = self.scheduler.call_every(
                AUTO_SAVE_TIMER, session.settings.auto_save_interval, self._on_auto_save
            )

    def _disarm_auto_save(self) -> None:
        if self._auto_save_timer is not None:
            self._auto_save_timer.cancel()
            self._auto_save_timer = None

    def _arm_idle_timer(self) -> None:
        self._disarm_idle_timer()
        session = self._session
        if session is not None:
            self._idle_timer = self.scheduler.call_later(
                IDLE_TIMER, session.settings.idle_timeout, self._on_idle_timeout
            )

    def _disarm_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    async def _on_auto_save(self) -> None:
        if self._session is None:
            return
        await self.save()

    async def _on_idle_timeout(self) -> None:
        session = self._session
        if session is None:
            return

        logger.info("Session %s timed out after %ss idle",
                    session.session_id, session.settings.idle_timeout)
        self._set_status(SessionStatus.TIMED_OUT)
        self.event_log.log("session_timeout", user_id=session.user_id, session_id=session.session_id)
        await self.end()
        await self.events.emit(SESSION_EXPIRED, user_id=session.user_id, session_id=session.session_id)

    def _new_session_id(self) -> str:
        """Generate a new session ID."""
        return f"session_{int(self.scheduler.now() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _activate(self, session: Session) -> None:
        self._session = session
        self._set_status(SessionStatus.ACTIVE)
        self._arm_auto_save()
        self._arm_idle_timer()

    async def start(self, user_id: str, settings: dict[str, Any] | None = None) -> Session:
        """Start a session for user_id, ending any live one first.

        Args:
            user_id: The user the session belongs to.
            settings: Partial SessionSettings overrides.

        Returns:
            The new session.
        """
        if self._session is not None:
            await self.end()
        self._claim_store()

        record = self.store.retrieve(user_id) or {}
        now = self.scheduler.now()
        base = self.defaults.merged({"offline_mode": not self.events.online})

        try:
            user_state = UserState.from_dict(record.get("user_state"))
            user_progress = UserProgress.from_dict(record.get("user_progress"), user_id=user_id)
            pending = pending_from(record.get("pending_recommendations"))
        except (TypeError, ValueError) as e:
            logger.warning("Stored record for %s is malformed, starting fresh: %s", user_id, e)
            self.event_log.log_failure("seed_failed", e, user_id=user_id)
            user_state, user_progress, pending = UserState(), UserProgress(user_id=user_id), []

        session = Session(
            user_id=user_id,
            session_id=self._new_session_id(),
            start_time=now,
            last_activity=now,
            user_state=user_state,
            user_progress=user_progress,
            pending_recommendations=pending,
            settings=base.merged(settings),
        )
        self._activate(session)
        self.event_log.log(
            "session_start",
            user_id=user_id,
            session_id=session.session_id,
            resumed=False,
            offline=session.settings.offline_mode,
        )

        await self.save()
        return session

    async def end(self) -> None:
        """Save and discard the live session; a no-op when inactive."""
        session = self._session
        if session is None:
            return

        await self.save()
        self._disarm_auto_save()
        self._disarm_idle_timer()

        self._set_status(SessionStatus.ENDED)
        self.event_log.log(
            "session_end",
            user_id=session.user_id,
            session_id=session.session_id,
            duration=self.scheduler.now() - session.start_time,
        )
        self._session = None
        self._set_status(SessionStatus.INACTIVE)
        self._release_store()

    async def save(self) -> None:
        """Persist the live session; failures are logged, never raised.

        While offline the payload is also queued for replay on reconnect, and
        still written to the store so a direct retrieve sees the latest save.
        """
        session = self._session
        if session is None:
            return

        try:
            payload = session.to_record()
            if not self.events.online:
                self._pending_sync.append(
                    PendingSyncEntry(session.user_id, payload, self.scheduler.now())
                )
                self.event_log.log(
                    "sync_queued",
                    user_id=session.user_id,
                    session_id=session.session_id,
                    queued=len(self._pending_sync),
                )
            self.store.store(session.user_id, payload)
        except _PERSIST_ERRORS as e:
            logger.warning("Failed to save session %s: %s", session.session_id, e)
            self.event_log.log_failure(
                "save_failed", e, user_id=session.user_id, session_id=session.session_id
            )
            return

        self.event_log.log("session_saved", user_id=session.user_id, session_id=session.session_id)

    async def load(self, user_id: str) -> Session | None:
        """Resume a stored session for user_id if it is still within its idle budget.

        Returns:
            The resumed session, or None if there is nothing to resume.
        """
        if self._session is not None:
            await self.end()

        record = self.store.retrieve(user_id)
        if not record or not record.get("session_info"):
            return None

        try:
            session = Session.from_record(user_id, record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Stored session for %s is malformed: %s", user_id, e)
            self.event_log.log_failure("load_failed", e, user_id=user_id)
            return None

        now = self.scheduler.now()
        if session.is_expired(now):
            logger.info("Stored session %s expired %ss ago",
                        session.session_id, session.idle_seconds(now) - session.settings.idle_timeout)
            self.event_log.log(
                "session_expired_on_load",
                user_id=user_id,
                session_id=session.session_id,
                idle_seconds=session.idle_seconds(now),
            )
            return None

        self._claim_store()
        session.settings.offline_mode = not self.events.online
        self._activate(session)
        self.event_log.log("session_start", user_id=user_id, session_id=session.session_id, resumed=True)
        return session

    def touch(self) -> None:
        """Record activity and restart the idle window."""
        session = self._require_session("touch")
        session.last_activity = self.scheduler.now()
        session.activity_count += 1
        self._arm_idle_timer()

    async def pause(self) -> None:
        """Stop auto-saving and save now, e.g. when the host goes to the background."""
        if self._status != SessionStatus.ACTIVE:
            return
        self._disarm_auto_save()
        self._set_status(SessionStatus.PAUSED)
        await self.save()

    def resume(self) -> None:
        """Re-arm auto-save and count the return as activity."""
        if self._status != SessionStatus.PAUSED:
            return
        self._set_status(SessionStatus.ACTIVE)
        self._arm_auto_save()
        self.touch()

    async def close(self) -> None:
        """Detach from host events and stop timers without saving."""
        for event, handler in self._handlers.items():
            self.events.unsubscribe(event, handler)
        self._disarm_auto_save()
        self._disarm_idle_timer()
        self._release_store()

    def add_pending_recommendation(self, recommendation: dict[str, Any]) -> None:
        session = self._require_session("add_pending_recommendation")
        session.pending_recommendations.append(recommendation)
        self.touch()

    def remove_pending_recommendation(self, recommendation_id: str) -> None:
        session = self._require_session("remove_pending_recommendation")
        session.pending_recommendations = [
            rec for rec in session.pending_recommendations if rec.get("id") != recommendation_id
        ]
        self.touch()

    def update_user_state(self, **changes: Any) -> None:
        """Assign fields on the user-state snapshot.

        Raises:
            AttributeError: If a field does not exist on UserState.
        """
        session = self._require_session("update_user_state")
        _assign(session.user_state, changes)
        self.touch()

    def update_user_progress(self, **changes: Any) -> None:
        """Assign fields on the user-progress snapshot.

        Raises:
            AttributeError: If a field does not exist on UserProgress.
        """
        session = self._require_session("update_user_progress")
        _assign(session.user_progress, changes)
        self.touch()

    async def sync_pending(self) -> int:
        """Replay queued offline saves in order.

        Each entry is reconciled against what the store currently holds and
        written only if it wins. An entry whose session_info matches the
        stored one is skipped, so the store never steps back to an older
        save. A failure stops the drain and leaves that entry and everything
        after it queued.

        Returns:
            Number of entries drained.
        """
        drained = 0
        while self._pending_sync:
            entry = self._pending_sync[0]
            try:
                if _should_replay(entry, self.store.retrieve(entry.user_id)):
                    self.store.store(entry.user_id, entry.payload)
            except _PERSIST_ERRORS as e:
                logger.warning("Pending sync stopped with %d entries left: %s",
                               len(self._pending_sync), e)
                self.event_log.log_failure(
                    "sync_failed", e, user_id=entry.user_id, remaining=len(self._pending_sync)
                )
                return drained
            self._pending_sync.popleft()
            drained += 1

        if drained:
            logger.info("Synced %d pending save(s)", drained)
            self.event_log.log("sync_complete", synced=drained)
        return drained

    def analytics(self) -> SessionAnalytics:
        """Timing of the live session; zeroed when inactive."""
        session = self._session
        if session is None:
            return SessionAnalytics()

        now = self.scheduler.now()
        remaining = max(0.0, session.settings.idle_timeout - session.idle_seconds(now))
        return SessionAnalytics(
            duration=now - session.start_time,
            activity_count=session.activity_count,
            is_active=remaining > 0,
            time_until_timeout=remaining,
        )

    async def _on_online(self) -> None:
        if self._session is not None:
            self._session.settings.offline_mode = False
        await self.sync_pending()

    def _on_offline(self) -> None:
        if self._session is not None:
            self._session.settings.offline_mode = True

    async def _on_hidden(self) -> None:
        await self.pause()

    def _on_visible(self) -> None:
        self.resume()

    def _on_activity(self, **_: Any) -> None:
        if self._session is not None:
            self.touch()

    async def _on_unload(self) -> None:
        await self.save()


def _assign(target: Any, changes: dict[str, Any]) -> None:
    for name in changes:
        if not hasattr(target, name):
            raise AttributeError(f"{type(target).__name__} has no field {name!r}")
    for name, value in changes.items():
        setattr(target, name, value)


def _should_replay(entry: PendingSyncEntry, current: dict[str, Any] | None) -> bool:
    if current is None:
        return True
    # Offline saves also write the store in order, so matching session_info
    # means the store already holds this save or a later one.
    if entry.payload.get("session_info") == current.get("session_info"):
        return False
    return resolve_conflict(entry.payload, current) is entry.payload
