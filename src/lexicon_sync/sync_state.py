"""Key-value stores for the task-sync marker."""

from __future__ import annotations

import sqlite3
from typing import Optional, Protocol

from lexicon_sync.db import Clock, utc_timestamp

TASK_SYNC_MARKER_KEY = "task_specs"


class MarkerStore(Protocol):
    def get(self) -> Optional[str]: ...

    def set(self, value: Optional[str]) -> None: ...

    def clear(self) -> None: ...


class InMemoryMarkerStore:
    """Process-local marker, handy for tests and one-off runs."""

    def __init__(self, value: Optional[str] = None):
        self._value = value

    def get(self) -> Optional[str]:
        return self._value

    def set(self, value: Optional[str]) -> None:
        self._value = value

    def clear(self) -> None:
        self._value = None


class SqliteMarkerStore:
    """Marker persisted as one row of the ``sync_state`` table."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        key: str = TASK_SYNC_MARKER_KEY,
        clock: Clock = utc_timestamp,
    ):
        self._conn = conn
        self._key = key
        self._clock = clock

    @property
    def key(self) -> str:
        return self._key

    def get(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM sync_state WHERE key = ?", (self._key,)
        ).fetchone()
        return row[0] if row else None

    def set(self, value: Optional[str]) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO sync_state (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT (key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (self._key, value, self._clock()),
            )

    def clear(self) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM sync_state WHERE key = ?", (self._key,))
