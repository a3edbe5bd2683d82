"""SQLite-backed local cache for sessions and pending remote writes."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from .models import OperationKind, PendingOperation, Session
from .schema import decode_session, decode_sessions, encode_session

logger = logging.getLogger(__name__)

SESSIONS_KEY_PREFIX = "tap-track-sessions"


def open_cache_database(path: Union[Path, str]) -> sqlite3.Connection:
    """Open (and initialize) the cache database."""
    conn = sqlite3.connect(str(path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    # slots: serialized session lists keyed per identity.
    # pending_operations: writes still owed to the remote store, in order.
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS slots (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS pending_operations (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            session_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_pending_user
            ON pending_operations(user_id, seq);
        """
    )


def sessions_key(user_id: str) -> str:
    return f"{SESSIONS_KEY_PREFIX}:{user_id}"


class LocalCache:
    """Durable fallback for session state, written only by the engine."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = db_path
        self._conn = open_cache_database(db_path)
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def load_sessions(self, user_id: str) -> list[Session]:
        row = self._conn.execute(
            "SELECT value FROM slots WHERE key = ?", (sessions_key(user_id),)
        ).fetchone()
        if row is None:
            return []
        try:
            payload = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Cached sessions for %s are not valid JSON; ignoring them.", user_id)
            return []
        if not isinstance(payload, list):
            logger.warning("Cached sessions for %s are not a list; ignoring them.", user_id)
            return []
        sessions = decode_sessions(payload, source="cached")
        return [session for session in sessions if session.user_id == user_id]

    def save_sessions(self, user_id: str, sessions: list[Session]) -> None:
        value = json.dumps([encode_session(session) for session in sessions])
        self._conn.execute(
            """
            INSERT INTO slots (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value=excluded.value
            """,
            (sessions_key(user_id), value),
        )

    def enqueue(self, operation: PendingOperation) -> PendingOperation:
        session = operation.session
        cur = self._conn.execute(
            """
            INSERT INTO pending_operations (user_id, kind, session_id, payload)
            VALUES (?, ?, ?, ?)
            """,
            (
                session.user_id,
                operation.kind.value,
                session.id,
                json.dumps(encode_session(session)),
            ),
        )
        logger.debug("Queued pending %s for session %s", operation.kind.value, session.id)
        return PendingOperation(kind=operation.kind, session=session, seq=cur.lastrowid)

    def pending_operations(self, user_id: str) -> list[PendingOperation]:
        rows = self._conn.execute(
            """
            SELECT seq, kind, payload
            FROM pending_operations
            WHERE user_id = ?
            ORDER BY seq
            """,
            (user_id,),
        ).fetchall()
        operations: list[PendingOperation] = []
        for row in rows:
            try:
                kind = OperationKind(row["kind"])
                session = decode_session(json.loads(row["payload"]))
            except (json.JSONDecodeError, ValidationError, ValueError):
                logger.warning("Dropping malformed pending operation seq=%s", row["seq"])
                self.remove_pending(row["seq"])
                continue
            operations.append(PendingOperation(kind=kind, session=session, seq=row["seq"]))
        return operations

    def remove_pending(self, seq: int) -> None:
        self._conn.execute("DELETE FROM pending_operations WHERE seq = ?", (seq,))

    def pending_count(self, user_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM pending_operations WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return int(row["n"])

    def clear_user(self, user_id: str) -> None:
        """Forget everything cached for ``user_id``."""
        self._conn.execute("DELETE FROM slots WHERE key = ?", (sessions_key(user_id),))
        self._conn.execute("DELETE FROM pending_operations WHERE user_id = ?", (user_id,))
