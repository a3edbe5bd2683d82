"""Clients for the remote ``timer_sessions`` store."""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from .db import complete_session, database_connection, fetch_sessions_for_user, insert_session, row_to_wire
from .errors import (
    ActiveSessionConflictError,
    RemoteStoreError,
    RemoteUnavailableError,
    SessionAlreadyCompletedError,
    SessionNotFoundError,
)
from .models import Session
from .schema import SessionRecord, decode_session, decode_sessions

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


ChangeListener = Callable[[ChangeType, Session], None]


class RemoteStore(ABC):
    """Contract every remote session store implements."""

    @abstractmethod
    async def insert_session(self, session: Session, *, require_no_active: bool = False) -> Session:
        """Create ``session``; inserting an id that already exists is a no-op.

        Raises:
            ActiveSessionConflictError: ``require_no_active`` was set and the
                owner already has a different active session.
            RemoteUnavailableError: the store could not be reached.
        """

    @abstractmethod
    async def update_session(self, session: Session) -> Session:
        """Write ``end_time`` and ``duration`` of an existing session.

        Raises:
            SessionNotFoundError: no such session for the owner.
            SessionAlreadyCompletedError: the session already ended differently.
            RemoteUnavailableError: the store could not be reached.
        """

    @abstractmethod
    async def fetch_sessions(self, user_id: str) -> list[Session]:
        """Return every session owned by ``user_id``."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store is reachable."""

    def subscribe(self, user_id: str, listener: ChangeListener) -> Optional[Callable[[], None]]:
        """Register for pushed changes; returns an unsubscribe callable.

        Stores without push support return None.
        """
        return None

    async def aclose(self) -> None:
        return None


class HttpRemoteStore(RemoteStore):
    """Talks to the HTTP service exposed by :mod:`tap_track.webapp`."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def insert_session(self, session: Session, *, require_no_active: bool = False) -> Session:
        response = await self._request(
            "PUT",
            f"/api/timer_sessions/{session.id}",
            session.user_id,
            params={"require_no_active": "true" if require_no_active else "false"},
            json=SessionRecord.from_session(session).to_wire(),
        )
        if response.status_code == 409:
            detail = _detail(response)
            raise ActiveSessionConflictError(session.user_id, detail.get("active_id"))
        self._raise_for_status(response, session.id)
        return self._decode_one(response)

    async def update_session(self, session: Session) -> Session:
        if session.end_time is None or session.duration is None:
            raise ValueError("Only completed sessions can be written back")
        response = await self._request(
            "PATCH",
            f"/api/timer_sessions/{session.id}",
            session.user_id,
            json={
                "end_time": session.end_time.isoformat(),
                "duration": session.duration,
            },
        )
        if response.status_code == 409:
            raise SessionAlreadyCompletedError(session.id)
        self._raise_for_status(response, session.id)
        return self._decode_one(response)

    async def fetch_sessions(self, user_id: str) -> list[Session]:
        response = await self._request("GET", "/api/timer_sessions", user_id)
        self._raise_for_status(response, None)
        try:
            rows = response.json().get("sessions", [])
        except ValueError as exc:
            raise RemoteUnavailableError("Remote store returned invalid JSON") from exc
        return decode_sessions(rows)

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/api/status")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, user_id: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(
                method, url, headers={USER_HEADER: user_id}, **kwargs
            )
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(f"{method} {url} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, session_id: Optional[str]) -> None:
        if response.status_code == 404 and session_id is not None:
            raise SessionNotFoundError(session_id)
        if response.status_code >= 500:
            raise RemoteUnavailableError(
                f"Remote store answered {response.status_code}"
            )
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"Remote store rejected request ({response.status_code}): {_detail(response)}"
            )

    @staticmethod
    def _decode_one(response: httpx.Response) -> Session:
        try:
            return decode_session(response.json()["session"])
        except (KeyError, ValueError, ValidationError) as exc:
            raise RemoteStoreError("Remote store returned a malformed session") from exc


class LocalRemoteStore(RemoteStore):
    """In-process store over the same SQLite schema the HTTP service uses.

    Supports push subscriptions: listeners registered for a user hear about
    every write made through this instance.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = db_path
        self._listeners: dict[str, list[ChangeListener]] = {}

    async def insert_session(self, session: Session, *, require_no_active: bool = False) -> Session:
        record = SessionRecord.from_session(session)
        try:
            with database_connection(self.db_path) as conn:
                row, created = insert_session(conn, record, require_no_active=require_no_active)
        except sqlite3.Error as exc:
            raise RemoteUnavailableError(str(exc)) from exc
        stored = decode_session(row_to_wire(row))
        if created:
            self._publish(ChangeType.CREATED, stored)
        return stored

    async def update_session(self, session: Session) -> Session:
        if session.end_time is None or session.duration is None:
            raise ValueError("Only completed sessions can be written back")
        try:
            with database_connection(self.db_path) as conn:
                row, changed = complete_session(
                    conn,
                    session.id,
                    session.user_id,
                    end_time=session.end_time,
                    duration=session.duration,
                )
        except sqlite3.Error as exc:
            raise RemoteUnavailableError(str(exc)) from exc
        stored = decode_session(row_to_wire(row))
        if changed:
            self._publish(ChangeType.UPDATED, stored)
        return stored

    async def fetch_sessions(self, user_id: str) -> list[Session]:
        try:
            with database_connection(self.db_path) as conn:
                rows = fetch_sessions_for_user(conn, user_id)
        except sqlite3.Error as exc:
            raise RemoteUnavailableError(str(exc)) from exc
        return decode_sessions(row_to_wire(row) for row in rows)

    async def ping(self) -> bool:
        try:
            with database_connection(self.db_path):
                return True
        except sqlite3.Error:
            return False

    def subscribe(self, user_id: str, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.setdefault(user_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(user_id, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _publish(self, change: ChangeType, session: Session) -> None:
        for listener in list(self._listeners.get(session.user_id, [])):
            try:
                listener(change, session)
            except Exception:
                logger.exception("Change listener failed for session %s", session.id)


def _detail(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    detail = body.get("detail") if isinstance(body, dict) else None
    return detail if isinstance(detail, dict) else {"message": detail}
