"""Shared pytest fixtures."""

from pathlib import Path

import pytest

from haven.errors import MediumError
from haven.logging import JSONLLogger
from haven.session import HostEvents, ManualScheduler, SessionManager
from haven.storage import InMemoryMedium, PersistentStore


class FlakyMedium(InMemoryMedium):
    """In-memory medium that can be switched into failing every call."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def _check(self) -> None:
        if self.failing:
            raise MediumError("medium offline")

    def get(self, key: str) -> str | None:
        self._check()
        return super().get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        super().set(key, value)

    def remove(self, key: str) -> None:
        self._check()
        super().remove(key)

    def keys(self) -> list[str]:
        self._check()
        return super().keys()


@pytest.fixture
def event_log(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path / "logs")


@pytest.fixture
def medium() -> FlakyMedium:
    return FlakyMedium()


@pytest.fixture
def store(medium: FlakyMedium, event_log: JSONLLogger) -> PersistentStore:
    return PersistentStore(medium, event_log=event_log)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def events() -> HostEvents:
    return HostEvents(online=True)


@pytest.fixture
def manager(
    store: PersistentStore,
    events: HostEvents,
    scheduler: ManualScheduler,
    event_log: JSONLLogger,
) -> SessionManager:
    return SessionManager(store, events=events, scheduler=scheduler, event_log=event_log)
