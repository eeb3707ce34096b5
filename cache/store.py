"""
cache/store.py -- SQLite-backed key/value cache with per-entry TTL.

Holds short-lived user projections in front of the user-lookup path. The
cache is strictly advisory: a miss (or an empty cache) only costs a
repository read, never changes an outcome. Flows that change what a user may
do (profile update, activation, deactivation, logout-all-devices, role and
permission changes) remove the entry before returning.

Keys are namespaced "<entity>:<id>"; build them with user_key(). Values are
JSON. Every operation is idempotent per key, so concurrent callers need no
client-side locking.

Usage:
    cache = SessionCache()
    cache.set(user_key(uid), projection_dict, ttl=900)
    data = cache.get(user_key(uid))     # dict or None
    cache.remove(user_key(uid))
    cache.purge_expired()               # call periodically to trim old entries
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Optional

from core.clock import Clock, SystemClock, to_iso
from core.config import get_settings

logger = logging.getLogger("volcanion.cache")

_DDL = """
CREATE TABLE IF NOT EXISTS session_cache (
    cache_key   TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  TEXT NOT NULL
);
"""


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


class SessionCache:
    """Each operation opens its own short-lived connection; WAL lets readers
    proceed while a writer commits. ":memory:" is refused because every
    connection would see a different, empty database.
    """

    def __init__(self, db_path: Optional[str] = None, clock: Optional[Clock] = None) -> None:
        settings = get_settings()
        self.default_ttl = settings.user_cache_ttl_seconds
        self._clock = clock or SystemClock()
        self._path = db_path or settings.cache_db_path
        if self._path == ":memory:":
            raise ValueError("SessionCache needs a file path; ':memory:' is not shared between connections")
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_DDL)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30)
        try:
            with conn:  # commit on success, rollback on error
                yield conn
        finally:
            conn.close()

    def _now(self) -> str:
        return to_iso(self._clock.now())

    def get(self, key: str) -> Optional[Any]:
        """Return cached data for key if it exists and hasn't expired."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data, expires_at FROM session_cache WHERE cache_key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        data, expires_at = row
        if expires_at <= self._now():
            self.remove(key)
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Dropping undecodable cache entry %s", key)
            self.remove(key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value for key, replacing any existing entry. ttl is in seconds."""
        expires_at = to_iso(self._clock.now() + timedelta(seconds=ttl or self.default_ttl))
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO session_cache (cache_key, data, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value, default=str), expires_at),
            )

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM session_cache WHERE cache_key = ?", (key,))

    def remove_by_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix, e.g. "user:". Returns rows removed."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM session_cache WHERE cache_key LIKE ? ESCAPE '\\'",
                (escaped + "%",),
            )
            return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all entries past their TTL. Returns number of rows removed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM session_cache WHERE expires_at <= ?", (self._now(),))
            return cursor.rowcount

    def close(self) -> None:
        """Nothing is held open between operations; kept so owners can release the cache uniformly."""
