"""Write-through snapshot store for cold-start data.

Selected cache entries are mirrored into a small SQLite key/value table so
that a freshly started process has something plausible to serve before its
first network round-trip completes.  The store lives at
``$MNNO_DATA_DIR/snapshots.db`` (default: ``~/.mnno-school/snapshots.db``).

Snapshots are advisory.  Every failure here (malformed JSON, an oversized
payload, a SQLite error) is logged and treated as a miss; nothing is ever
raised to the caller.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRY_BYTES = 200 * 1024
SNAPSHOT_VERSION = 1


class SnapshotTooLarge(Exception):
    """Raised internally when a payload exceeds the per-entry quota."""


class LocalPersistence:
    """Key/value snapshot store with a versioned ``{version, data, timestamp}`` envelope."""

    def __init__(
        self,
        path: Path | str = ":memory:",
        *,
        version: int = SNAPSHOT_VERSION,
        max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = str(path)
        self.version = version
        self.max_entry_bytes = max_entry_bytes
        self._clock = clock
        self._conn: sqlite3.Connection | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.path != ":memory:":
                try:
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    raise sqlite3.OperationalError(
                        f"Cannot create snapshot directory: {exc}"
                    ) from exc
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
            self._conn = conn
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(self, key: str, data: Any) -> bool:
        """Store *data* under *key*; returns False (and clears the key) on failure."""
        envelope = {"version": self.version, "data": data, "timestamp": self._clock()}
        try:
            payload = json.dumps(envelope, separators=(",", ":"))
            size = len(payload.encode("utf-8"))
            if size > self.max_entry_bytes:
                raise SnapshotTooLarge(
                    f"{size} bytes exceeds the {self.max_entry_bytes}-byte quota"
                )
            conn = self._get_conn()
            conn.execute(
                "INSERT OR REPLACE INTO snapshots (key, value) VALUES (?, ?)", (key, payload)
            )
            conn.commit()
        except (TypeError, ValueError, SnapshotTooLarge, sqlite3.Error) as exc:
            logger.warning("Could not persist snapshot %s: %s", key, exc)
            self.clear(key)
            return False
        logger.debug("Persisted snapshot %s", key)
        return True

    def read(self, key: str, max_age_minutes: float) -> Any | None:
        """Return the data stored under *key*, or ``None`` if absent or unusable.

        Stale, malformed or other-version snapshots are removed on read.
        """
        try:
            row = (
                self._get_conn()
                .execute("SELECT value FROM snapshots WHERE key = ?", (key,))
                .fetchone()
            )
        except sqlite3.Error as exc:
            logger.warning("Could not read snapshot %s: %s", key, exc)
            return None
        if row is None:
            return None

        try:
            envelope = json.loads(row[0])
            version = envelope["version"]
            timestamp = float(envelope["timestamp"])
            data = envelope["data"]
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Discarding malformed snapshot %s: %s", key, exc)
            self.clear(key)
            return None

        if version != self.version:
            logger.info(
                "Discarding snapshot %s: version %s, expected %s", key, version, self.version
            )
            self.clear(key)
            return None

        age_minutes = (self._clock() - timestamp) / 60
        if age_minutes > max_age_minutes:
            logger.debug("Snapshot %s expired (%.1f min old)", key, age_minutes)
            self.clear(key)
            return None
        return data

    def clear(self, key: str) -> None:
        try:
            conn = self._get_conn()
            conn.execute("DELETE FROM snapshots WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Could not clear snapshot %s: %s", key, exc)

    def clear_namespace(self, namespace: str) -> int:
        """Remove every snapshot whose key starts with ``"{namespace}:"``."""
        doomed = [k for k in self.keys() if k.startswith(f"{namespace}:")]
        for k in doomed:
            self.clear(k)
        return len(doomed)

    def clear_all(self) -> None:
        try:
            conn = self._get_conn()
            conn.execute("DELETE FROM snapshots")
            conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Could not clear snapshots: %s", exc)

    def keys(self) -> list[str]:
        try:
            rows = self._get_conn().execute("SELECT key FROM snapshots ORDER BY key").fetchall()
        except sqlite3.Error as exc:
            logger.warning("Could not list snapshots: %s", exc)
            return []
        return [r[0] for r in rows]

    def purge_expired(self, max_age_minutes: float) -> int:
        """Drop every snapshot that :meth:`read` would reject; returns the count."""
        purged = 0
        for key in self.keys():
            if self.read(key, max_age_minutes) is None:
                purged += 1
        if purged:
            logger.info("Purged %d expired snapshot(s)", purged)
        return purged
