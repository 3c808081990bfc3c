"""Stable identity mapping between database rows and entity files.

Database row ids are not portable across installs, merges or rebases, so
entity files never contain them.  Instead every row the engine touches is
given a *stable id*: a 128-bit random token rendered as 32 uppercase hex
characters.  The ``IdentityMap`` owns that mapping on top of a pluggable
``IdentityStore``:

* ``InMemoryIdentityStore`` -- process-local dicts, for tests and
  single-shot tools.
* ``SQLiteIdentityStore`` -- durable table (WAL mode), safe to share
  between concurrent requests and processes.

Stable ids are append-only.  Forgetting a row only retires its volatile
id; the stable id remains known so historical files stay meaningful, and
is never handed out again.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

STABLE_ID_BYTES = 16


def generate_stable_id() -> str:
    """Return a fresh 128-bit random stable id (32 uppercase hex chars)."""
    return secrets.token_hex(STABLE_ID_BYTES).upper()


def _volatile_key(volatile_id: int | str) -> str:
    # Row ids arrive as ints from the host and as strings from files/CLI.
    return str(volatile_id)


class IdentityStore(Protocol):
    """Backing store contract for the identity map.

    Implementations must be transactional at the row level: ``insert``
    is insert-if-absent and returns whichever stable id won, or ``None``
    when the offered stable id is already assigned to another row.
    """

    def lookup(self, kind: str, volatile_id: str) -> str | None: ...

    def reverse_lookup(self, kind: str, stable_id: str) -> str | None: ...

    def insert(
        self, kind: str, volatile_id: str, stable_id: str
    ) -> str | None: ...

    def remove_by_volatile_id(self, kind: str, volatile_id: str) -> None: ...

    def contains(self, kind: str, stable_id: str) -> bool: ...

    def contains_any(self, stable_id: str) -> bool: ...


class InMemoryIdentityStore:
    """Dict-backed identity store guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._forward: dict[tuple[str, str], str] = {}
        # stable id -> (kind, volatile id or None when retired)
        self._reverse: dict[str, tuple[str, str | None]] = {}

    def lookup(self, kind: str, volatile_id: str) -> str | None:
        with self._lock:
            return self._forward.get((kind, volatile_id))

    def reverse_lookup(self, kind: str, stable_id: str) -> str | None:
        with self._lock:
            entry = self._reverse.get(stable_id)
        if entry is None or entry[0] != kind:
            return None
        return entry[1]

    def insert(self, kind: str, volatile_id: str, stable_id: str) -> str | None:
        with self._lock:
            existing = self._forward.get((kind, volatile_id))
            if existing is not None:
                return existing
            if stable_id in self._reverse:
                return None
            self._forward[(kind, volatile_id)] = stable_id
            self._reverse[stable_id] = (kind, volatile_id)
            return stable_id

    def remove_by_volatile_id(self, kind: str, volatile_id: str) -> None:
        with self._lock:
            stable_id = self._forward.pop((kind, volatile_id), None)
            if stable_id is not None:
                self._reverse[stable_id] = (kind, None)

    def contains(self, kind: str, stable_id: str) -> bool:
        with self._lock:
            entry = self._reverse.get(stable_id)
        return entry is not None and entry[0] == kind

    def contains_any(self, stable_id: str) -> bool:
        with self._lock:
            return stable_id in self._reverse


class SQLiteIdentityStore:
    """SQLite-backed identity store.

    One row per stable id.  ``volatile_id`` is nullable: retiring a row
    sets it to NULL in place.  A partial unique index keeps live
    ``(kind, volatile_id)`` pairs unique so concurrent first lookups
    converge on one stable id.

    A connection is opened per call so instances can be shared between
    threads.

    Args:
        db_path: Path to the SQLite database file (created if missing).
        timeout: Seconds SQLite waits on a locked database.
    """

    _SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS vp_id (
            stable_id   TEXT PRIMARY KEY,
            kind        TEXT NOT NULL,
            volatile_id TEXT
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS vp_id_live
            ON vp_id (kind, volatile_id)
            WHERE volatile_id IS NOT NULL
        """,
    )

    def __init__(self, db_path: Path, timeout: float = 10.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                for statement in self._SCHEMA:
                    conn.execute(statement)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path), timeout=self._timeout)

    def _query_one(self, sql: str, params: tuple) -> tuple | None:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def lookup(self, kind: str, volatile_id: str) -> str | None:
        row = self._query_one(
            "SELECT stable_id FROM vp_id WHERE kind = ? AND volatile_id = ?",
            (kind, volatile_id),
        )
        return row[0] if row else None

    def reverse_lookup(self, kind: str, stable_id: str) -> str | None:
        row = self._query_one(
            "SELECT volatile_id FROM vp_id WHERE kind = ? AND stable_id = ?",
            (kind, stable_id),
        )
        return row[0] if row else None

    def insert(self, kind: str, volatile_id: str, stable_id: str) -> str | None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT OR IGNORE INTO vp_id (stable_id, kind, volatile_id) "
                    "VALUES (?, ?, ?)",
                    (stable_id, kind, volatile_id),
                )
            row = conn.execute(
                "SELECT stable_id FROM vp_id WHERE kind = ? AND volatile_id = ?",
                (kind, volatile_id),
            ).fetchone()
        finally:
            conn.close()
        # No live row means the stable id collided with another row.
        return row[0] if row else None

    def remove_by_volatile_id(self, kind: str, volatile_id: str) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "UPDATE vp_id SET volatile_id = NULL "
                    "WHERE kind = ? AND volatile_id = ?",
                    (kind, volatile_id),
                )
        finally:
            conn.close()

    def contains(self, kind: str, stable_id: str) -> bool:
        row = self._query_one(
            "SELECT 1 FROM vp_id WHERE kind = ? AND stable_id = ?",
            (kind, stable_id),
        )
        return row is not None

    def contains_any(self, stable_id: str) -> bool:
        row = self._query_one(
            "SELECT 1 FROM vp_id WHERE stable_id = ?", (stable_id,)
        )
        return row is not None


class IdentityMap:
    """Resolve volatile row ids to stable ids and back.

    Args:
        store: Backing store shared by every storage in the process.
        max_attempts: How many fresh ids to try before giving up on a
            (practically impossible) run of collisions.
    """

    def __init__(self, store: IdentityStore, max_attempts: int = 5) -> None:
        self._store = store
        self._max_attempts = max_attempts

    @property
    def store(self) -> IdentityStore:
        return self._store

    def resolve(self, kind: str, volatile_id: int | str) -> str:
        """Return the stable id for a row, assigning one on first use."""
        key = _volatile_key(volatile_id)
        existing = self._store.lookup(kind, key)
        if existing is not None:
            return existing

        for _ in range(self._max_attempts):
            candidate = generate_stable_id()
            if self._store.contains_any(candidate):
                continue
            winner = self._store.insert(kind, key, candidate)
            if winner is None:
                continue
            if winner == candidate:
                logger.debug(
                    "Assigned stable id %s to %s #%s", winner, kind, key
                )
            return winner
        raise RuntimeError(
            f"Could not assign a unique stable id for {kind} #{key}"
        )

    def lookup(self, kind: str, volatile_id: int | str) -> str | None:
        """Return the stable id for a row without assigning one."""
        return self._store.lookup(kind, _volatile_key(volatile_id))

    def reverse_resolve(self, kind: str, stable_id: str) -> str | None:
        """Return the volatile id for *stable_id*, or ``None`` on a miss.

        A miss covers both unknown ids and ids whose row was forgotten.
        """
        volatile_id = self._store.reverse_lookup(kind, stable_id)
        if volatile_id is None:
            logger.debug("Identity miss: %s %s", kind, stable_id)
        return volatile_id

    def is_known(self, kind: str, stable_id: str) -> bool:
        """Return ``True`` if *stable_id* was ever assigned for *kind*."""
        return self._store.contains(kind, stable_id)

    def forget(self, kind: str, volatile_id: int | str) -> None:
        """Retire a deleted row's volatile id.

        The stable id stays known but no longer resolves in either
        direction; resolving the same volatile id later assigns a new one.
        """
        key = _volatile_key(volatile_id)
        self._store.remove_by_volatile_id(kind, key)
        logger.debug("Forgot %s #%s", kind, key)
