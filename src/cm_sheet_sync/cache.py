"""
Request caches for Campaign Manager entities.

Two interchangeable implementations of the :class:`Cache` contract:

- :class:`InMemoryCache` is private to one load operation and never expires.
- :class:`SQLiteCache` is shared by every row of a push batch and survives
  between runs, evicting entries once their TTL elapses.

Keys carry the session generation (see :class:`~cm_sheet_sync.sync.session.SessionState`)
so entries written by an earlier operation are never served to a later one.
"""

import json
import logging
import re
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ._files import secure_file

logger = logging.getLogger(__name__)

# Six hours, the longest entry lifetime the shared cache hands out
DEFAULT_TTL = 21600

# ---------------------------------------------------------------------------
# Database schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_expires ON cache_entries(expires_at);
"""

# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def parse_ttl(ttl_string: str) -> int:
    """
    Parse a TTL string into seconds.

    Supports formats: ``'1h'``, ``'30m'``, ``'1d'``, ``'3600s'``, ``'1h30m'``.
    Bare numbers are treated as **hours** (e.g. ``'4'`` = 4 hours).

    Raises:
        ValueError: If format is invalid.
    """
    if not ttl_string:
        return 0

    try:
        return int(ttl_string) * 3600
    except ValueError:
        pass

    matches = re.findall(r"(\d+)([dhms])", ttl_string.lower())
    if not matches:
        raise ValueError(
            f"Invalid TTL format: {ttl_string}. "
            "Use formats like '1h', '30m', '1d', or a bare number for hours."
        )

    multipliers = {"d": 86400, "h": 3600, "m": 60, "s": 1}
    return sum(int(value) * multipliers[unit] for value, unit in matches)


class Cache(Protocol):
    """Key/value contract shared by the in-process and the persistent cache."""

    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: int | None = None) -> None: ...


class InMemoryCache:
    """Plain dict cache. Fast, unbounded, gone when the process exits."""

    def __init__(self) -> None:
        self._items: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._items.get(key)

    def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._items[key] = value

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


# ---------------------------------------------------------------------------
# CacheStats
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Statistics about cache usage."""

    total_entries: int
    expired_entries: int
    cache_hits: int
    cache_misses: int
    db_size_bytes: int
    db_path: str


# ---------------------------------------------------------------------------
# SQLiteCache
# ---------------------------------------------------------------------------


class SQLiteCache:
    """
    SQLite-backed shared cache with per-entry TTL.

    Values are stored as JSON text, so anything put into the cache comes back
    as a fresh copy rather than the same object.
    """

    def __init__(
        self,
        cache_dir: str | None = None,
        default_ttl: int = DEFAULT_TTL,
        name: str = "entities",
    ):
        """
        Initialise the cache.

        Args:
            cache_dir: Directory for cache databases.  Defaults to
                ``~/.cm-sheet-sync/``.
            default_ttl: TTL in seconds for entries put without an explicit
                one.  0 = never expire.
            name: Database file stem, one file per name.
        """
        self.default_ttl = default_ttl
        self.cache_hits = 0
        self.cache_misses = 0

        if cache_dir:
            self.cache_dir = Path(cache_dir)
        else:
            self.cache_dir = Path.home() / ".cm-sheet-sync"
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", name)[:200]
        self.db_path = self.cache_dir / f"{safe}.db"

        self._init_db()
        secure_file(self.db_path)
        logger.debug("SQLite cache initialised at %s", self.db_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def _conn(self) -> sqlite3.Connection:
        """Return a new connection with WAL journaling and a busy timeout."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on miss or expiry."""
        now = time.time()
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data, expires_at FROM cache_entries WHERE cache_key = ?",
                (key,),
            ).fetchone()

        if row is None:
            self.cache_misses += 1
            return None

        if row["expires_at"] is not None and row["expires_at"] <= now:
            logger.debug("Cache entry %s expired", key)
            self.cache_misses += 1
            return None

        self.cache_hits += 1
        return json.loads(row["data"])

    def put(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*, replacing any previous entry."""
        ttl = ttl if ttl is not None else self.default_ttl
        now = time.time()
        expires_at = now + ttl if ttl > 0 else None

        with self._conn() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries (cache_key, data, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (key, json.dumps(value, default=str), now, expires_at),
            )
            conn.commit()

    def clear(self, prefix: str | None = None) -> None:
        """
        Clear cached data.

        Args:
            prefix: If given, only clear entries whose key starts with it
                (e.g. ``'Placements|'``).  Otherwise wipe everything.
        """
        with self._conn() as conn:
            if prefix:
                conn.execute(
                    "DELETE FROM cache_entries WHERE substr(cache_key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
            else:
                conn.execute("DELETE FROM cache_entries")
            conn.commit()
        logger.info("Cache cleared%s", f" for prefix {prefix}" if prefix else "")

    def cleanup_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM cache_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (time.time(),),
            )
            conn.commit()
            removed = cursor.rowcount
        if removed:
            logger.debug("Removed %d expired cache entries", removed)
        return removed

    def get_stats(self) -> CacheStats:
        """Return statistics about the cache database."""
        with self._conn() as conn:
            total = conn.execute("SELECT COUNT(*) AS cnt FROM cache_entries").fetchone()["cnt"]
            expired = conn.execute(
                "SELECT COUNT(*) AS cnt FROM cache_entries "
                "WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (time.time(),),
            ).fetchone()["cnt"]

        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return CacheStats(
            total_entries=total,
            expired_entries=expired,
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            db_size_bytes=db_size,
            db_path=str(self.db_path),
        )
