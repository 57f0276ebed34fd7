"""Configuration loaded from environment variables.

The entry point loads a .env file first (python-dotenv), so every setting can
live there or in the real environment.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import httpx

from .logging import JSONLLogger
from .session import ConnectivityProbe, HostEvents, SessionSettings
from .storage import FernetCipher, InMemoryMedium, PersistentStore, SQLiteMedium, XorCipher
from .storage.cipher import Cipher
from .storage.media import StorageMedium
from .storage.store import DEFAULT_PREFIX

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "memory")


@dataclass
class HavenConfig:
    """Configuration for storage, sessions and connectivity.

    Attributes:
        data_dir: Root directory for Haven's files (~/.haven).
        backend: Storage medium, "sqlite" or "memory".
        db_path: SQLite database file (data_dir/haven.db if None).
        prefix: Key prefix namespacing all records.
        log_dir: Directory for the JSONL event log (data_dir/logs if None).
        auto_save_interval: Default seconds between auto-saves.
        idle_timeout: Default idle seconds before a session ends.
        encryption_key: Secret for Fernet; XOR obfuscation is used if None.
        connectivity_url: Endpoint polled to detect connectivity, if any.
        connectivity_interval: Seconds between connectivity probes.
    """

    data_dir: Path | None = None
    backend: str = "sqlite"
    db_path: Path | None = None
    prefix: str = DEFAULT_PREFIX
    log_dir: Path | None = None
    auto_save_interval: float = 30.0
    idle_timeout: float = 1800.0
    encryption_key: str | None = None
    connectivity_url: str | None = None
    connectivity_interval: float = 15.0

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.data_dir is None:
            self.data_dir = Path.home() / ".haven"
        self.data_dir = Path(self.data_dir).expanduser()

        if self.db_path is None:
            self.db_path = self.data_dir / "haven.db"
        if self.log_dir is None:
            self.log_dir = self.data_dir / "logs"

        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}")
        if not self.prefix:
            raise ValueError("prefix must not be empty")
        if self.auto_save_interval <= 0:
            raise ValueError("auto_save_interval must be positive")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if self.connectivity_interval <= 0:
            raise ValueError("connectivity_interval must be positive")

    def session_defaults(self) -> SessionSettings:
        """Default settings for new sessions."""
        return SessionSettings(
            auto_save_interval=self.auto_save_interval,
            idle_timeout=self.idle_timeout,
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_path(name: str) -> Path | None:
    raw = os.getenv(name)
    return Path(raw).expanduser() if raw else None


def load_config() -> HavenConfig:
    """Load HavenConfig from environment variables."""
    return HavenConfig(
        data_dir=_env_path("HAVEN_DATA_DIR"),
        backend=os.getenv("HAVEN_BACKEND", "sqlite"),
        db_path=_env_path("HAVEN_DB_PATH"),
        prefix=os.getenv("HAVEN_PREFIX", DEFAULT_PREFIX),
        log_dir=_env_path("HAVEN_LOG_DIR"),
        auto_save_interval=_env_float("HAVEN_AUTO_SAVE_INTERVAL", 30.0),
        idle_timeout=_env_float("HAVEN_IDLE_TIMEOUT", 1800.0),
        encryption_key=os.getenv("HAVEN_ENCRYPTION_KEY") or None,
        connectivity_url=os.getenv("HAVEN_CONNECTIVITY_URL") or None,
        connectivity_interval=_env_float("HAVEN_CONNECTIVITY_INTERVAL", 15.0),
    )


def build_cipher(config: HavenConfig) -> Cipher:
    if config.encryption_key:
        return FernetCipher(config.encryption_key)
    logger.debug("No HAVEN_ENCRYPTION_KEY set, sensitive fields are only obfuscated")
    return XorCipher()


def build_medium(config: HavenConfig) -> StorageMedium:
    if config.backend == "memory":
        return InMemoryMedium()
    assert config.db_path is not None
    return SQLiteMedium(config.db_path)


def build_event_log(config: HavenConfig) -> JSONLLogger:
    return JSONLLogger(log_dir=config.log_dir)


def build_store(config: HavenConfig, event_log: JSONLLogger | None = None) -> PersistentStore:
    """Construct the configured medium, cipher and store."""
    return PersistentStore(
        build_medium(config),
        cipher=build_cipher(config),
        prefix=config.prefix,
        event_log=event_log if event_log is not None else build_event_log(config),
    )


def build_connectivity_probe(
    config: HavenConfig,
    events: HostEvents,
    client: httpx.AsyncClient | None = None,
) -> ConnectivityProbe | None:
    """Construct a probe for HAVEN_CONNECTIVITY_URL, or None if it is unset."""
    if not config.connectivity_url:
        return None
    return ConnectivityProbe(
        events,
        config.connectivity_url,
        interval=config.connectivity_interval,
        client=client,
    )
