"""SQLite persistence behind the remote ``timer_sessions`` store."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from .errors import ActiveSessionConflictError, SessionAlreadyCompletedError, SessionNotFoundError
from .schema import SessionRecord


def open_database(
    path: Union[Path, str], *, check_same_thread: bool = True
) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        str(path),
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Union[Path, str], *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS timer_sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration INTEGER,
            task_name TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_user
            ON timer_sessions(user_id, start_time);
        """
    )


def _utc_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def row_to_wire(row: sqlite3.Row) -> dict[str, object]:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "date": row["date"],
        "start_time": row["start_time"],
        "end_time": row["end_time"],
        "duration": row["duration"],
        "taskName": row["task_name"],
    }


def fetch_session(
    conn: sqlite3.Connection, session_id: str, user_id: str
) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT id, user_id, date, start_time, end_time, duration, task_name
        FROM timer_sessions
        WHERE id = ? AND user_id = ?
        """,
        (session_id, user_id),
    ).fetchone()


def fetch_sessions_for_user(conn: sqlite3.Connection, user_id: str) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            """
            SELECT id, user_id, date, start_time, end_time, duration, task_name
            FROM timer_sessions
            WHERE user_id = ?
            ORDER BY start_time;
            """,
            (user_id,),
        )
    )


def insert_session(
    conn: sqlite3.Connection,
    record: SessionRecord,
    *,
    require_no_active: bool = False,
) -> tuple[sqlite3.Row, bool]:
    """Insert ``record`` unless a row with its id already exists.

    Returns the stored row and whether it was created. With
    ``require_no_active`` the insert of an active session fails when the owner
    already has a different active session.
    """
    now = _utc_iso(datetime.now(timezone.utc))
    conn.execute("BEGIN IMMEDIATE")
    try:
        existing = conn.execute(
            "SELECT user_id FROM timer_sessions WHERE id = ?", (record.id,)
        ).fetchone()
        if existing is not None:
            if existing["user_id"] != record.user_id:
                raise SessionNotFoundError(record.id)
            conn.execute("COMMIT")
            return fetch_session(conn, record.id, record.user_id), False

        if require_no_active and record.end_time is None:
            active = conn.execute(
                """
                SELECT id FROM timer_sessions
                WHERE user_id = ? AND end_time IS NULL
                LIMIT 1
                """,
                (record.user_id,),
            ).fetchone()
            if active is not None:
                raise ActiveSessionConflictError(record.user_id, active["id"])

        conn.execute(
            """
            INSERT INTO timer_sessions (
                id, user_id, date, start_time, end_time, duration, task_name,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.date,
                _utc_iso(record.start_time),
                _utc_iso(record.end_time),
                record.duration,
                record.task_name,
                now,
                now,
            ),
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return fetch_session(conn, record.id, record.user_id), True


def complete_session(
    conn: sqlite3.Connection,
    session_id: str,
    user_id: str,
    *,
    end_time: datetime,
    duration: int,
) -> tuple[sqlite3.Row, bool]:
    """Record the end of a session owned by ``user_id``.

    A session ends once. Returns the stored row and whether it changed;
    repeating the same completion is a no-op, a different one is refused.
    """
    end_iso = _utc_iso(end_time)
    conn.execute("BEGIN IMMEDIATE")
    try:
        existing = fetch_session(conn, session_id, user_id)
        if existing is None:
            raise SessionNotFoundError(session_id)
        if existing["end_time"] is not None:
            if existing["end_time"] != end_iso or existing["duration"] != duration:
                raise SessionAlreadyCompletedError(session_id)
            conn.execute("COMMIT")
            return existing, False

        conn.execute(
            """
            UPDATE timer_sessions
            SET end_time = ?, duration = ?, updated_at = ?
            WHERE id = ? AND user_id = ? AND end_time IS NULL
            """,
            (
                end_iso,
                duration,
                _utc_iso(datetime.now(timezone.utc)),
                session_id,
                user_id,
            ),
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return fetch_session(conn, session_id, user_id), True
