"""Key/value storage media.

A medium is anything that can get, set and remove string values by string key,
enumerate its keys and report how many it holds. The persistent store is
written against this contract only, so any of the media below (or a browser
bridge, a remote KV service, ...) can sit underneath it.
"""

import sqlite3
from pathlib import Path
from typing import Protocol

from ..errors import MediumError


class StorageMedium(Protocol):
    """Contract every storage medium satisfies."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def __len__(self) -> int: ...


class InMemoryMedium:
    """Dictionary-backed medium. Nothing survives the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class SQLiteMedium:
    """Persistent medium using a single SQLite key/value table.

    The table is created lazily on first use. Every sqlite3 error is raised
    as MediumError so callers only need to know about one failure type.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the medium with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(self.db_path)
            except (OSError, sqlite3.Error) as e:
                raise MediumError(f"Cannot open {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
            self.init_db()
        return self._conn

    def init_db(self) -> None:
        """Create the kv table if it doesn't exist."""
        conn = self._get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key         TEXT PRIMARY KEY,
                    value       TEXT NOT NULL,
                    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot initialize kv table: {e}") from e

    def get(self, key: str) -> str | None:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot read {key!r}: {e}") from e
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = datetime('now')
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot write {key!r}: {e}") from e

    def remove(self, key: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot remove {key!r}: {e}") from e

    def keys(self) -> list[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT key FROM kv ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot list keys: {e}") from e
        return [row["key"] for row in rows]

    def __len__(self) -> int:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT COUNT(*) AS n FROM kv").fetchone()
        except sqlite3.Error as e:
            raise MediumError(f"Cannot count keys: {e}") from e
        return row["n"]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
