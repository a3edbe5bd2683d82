"""Session reconciliation engine.

The engine owns the session list and the active-session pointer for one
signed-in user. Every mutation lands in memory and in the local cache first;
the remote store is written afterwards and, when it cannot be reached, the
write is queued and replayed later by :meth:`SessionEngine.sync_pending_operations`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Iterable, Optional

from .cache import LocalCache
from .clock import Clock, whole_seconds_between
from .errors import (
    ActiveSessionConflictError,
    ClockSanityError,
    RemoteStoreError,
    RemoteUnavailableError,
    SessionNotFoundError,
)
from .models import Identity, Notice, OperationKind, PendingOperation, Session
from .normalization import normalize_task_name
from .remote import ChangeType, RemoteStore

logger = logging.getLogger(__name__)


class SessionEngine:
    """Tracks sessions for a single identity and keeps them in sync."""

    def __init__(
        self,
        identity: Identity,
        remote: RemoteStore,
        cache: LocalCache,
        *,
        clock: Optional[Clock] = None,
        online: bool = True,
        notify: Optional[Callable[[Notice], None]] = None,
    ) -> None:
        self.identity = identity
        self.active_session: Optional[Session] = None
        self.is_online = online
        self.initialized = False
        self._remote = remote
        self._cache = cache
        self._clock = clock or Clock()
        self._notify = notify
        self._sessions: list[Session] = []
        self._notices: list[Notice] = []
        # start/stop/rollover run one at a time; replay has its own lock so a
        # mutation can trigger it.
        self._mutation_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def sessions(self) -> tuple[Session, ...]:
        return tuple(self._sessions)

    @property
    def clock(self) -> Clock:
        return self._clock

    def pending_operations(self) -> list[PendingOperation]:
        return self._cache.pending_operations(self.user_id)

    # Loading

    async def load(self) -> None:
        """Populate state from the remote store, falling back to the cache."""
        await self._reload()
        if self._unsubscribe is None:
            self._unsubscribe = self._remote.subscribe(self.user_id, self._on_remote_change)

        stale = self.active_session
        if stale is not None and stale.date < self._clock.today_key():
            if await self.check_rollover():
                self._add_notice(
                    "warning",
                    f"A session left running since {stale.date} was closed and its "
                    f"date corrected to {self._clock.today_key()}.",
                )
        self.initialized = True
        logger.info(
            "Loaded %d sessions for %s (active=%s, online=%s)",
            len(self._sessions),
            self.user_id,
            self.active_session.id if self.active_session else None,
            self.is_online,
        )

    async def _reload(self) -> None:
        sessions: Optional[list[Session]] = None
        if self.is_online:
            await self.sync_pending_operations()
            try:
                remote_sessions = await self._remote.fetch_sessions(self.user_id)
            except RemoteStoreError as exc:
                logger.warning("Could not fetch sessions for %s: %s", self.user_id, exc)
                self._add_notice("info", "Remote store unavailable; showing locally saved sessions.")
            else:
                sessions = self._overlay_pending(
                    [s for s in remote_sessions if s.user_id == self.user_id]
                )
        if sessions is None:
            sessions = self._cache.load_sessions(self.user_id)
        self._replace_state(sessions)
        self._persist()

    def _overlay_pending(self, sessions: list[Session]) -> list[Session]:
        merged = {session.id: session for session in sessions}
        for operation in self._cache.pending_operations(self.user_id):
            merged[operation.session.id] = operation.session
        return list(merged.values())

    def _replace_state(self, sessions: Iterable[Session]) -> None:
        by_id: dict[str, Session] = {}
        for session in sessions:
            by_id[session.id] = session
        self._sessions = list(by_id.values())

        active = [session for session in self._sessions if session.is_active]
        active.sort(key=lambda session: session.start_time, reverse=True)
        if len(active) > 1:
            logger.warning(
                "Found %d active sessions for %s; keeping %s",
                len(active),
                self.user_id,
                active[0].id,
            )
        self.active_session = active[0] if active else None

    # Mutations

    async def start(self, task_name: Optional[str] = None) -> Optional[Session]:
        """Begin a new session; returns None when one is already running."""
        async with self._mutation_lock:
            return await self._start_locked(task_name)

    async def stop(self) -> Optional[Session]:
        """Complete the active session; returns None when nothing is running.

        Raises:
            ClockSanityError: the computed duration is not positive. The active
                session is left untouched so the user can retry.
        """
        async with self._mutation_lock:
            return await self._stop_locked()

    async def _start_locked(self, task_name: Optional[str]) -> Optional[Session]:
        if self.active_session is not None:
            logger.info("Ignoring start: session %s is already running", self.active_session.id)
            return None

        now = self._clock.now()
        session = Session(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            date=self._clock.date_key(now),
            start_time=now,
            task_name=normalize_task_name(task_name),
        )
        self._upsert(session)
        self.active_session = session
        self._persist()
        logger.info("Started session %s on %s", session.id, session.date)

        try:
            await self._write_remote(OperationKind.START, session)
        except ActiveSessionConflictError as exc:
            logger.warning("Start rejected by remote store: %s", exc)
            self._sessions = [s for s in self._sessions if s.id != session.id]
            if self.active_session is not None and self.active_session.id == session.id:
                self.active_session = None
            self._persist()
            self._add_notice("warning", "A session is already running elsewhere; showing it instead.")
            await self._reload()
            return None
        return session

    async def _stop_locked(self) -> Optional[Session]:
        active = self.active_session
        if active is None:
            logger.info("Ignoring stop: no session is running")
            return None

        now = self._clock.now()
        if active.start_time > now:
            raise ClockSanityError(
                f"Session {active.id} starts in the future ({active.start_time.isoformat()}); "
                "check the system clock."
            )
        duration = whole_seconds_between(active.start_time, now)
        if duration <= 0:
            raise ClockSanityError(
                f"Session {active.id} has no elapsed time yet; try stopping again."
            )

        completed = active.completed(now, duration)
        self._upsert(completed)
        self.active_session = None
        self._persist()
        logger.info("Stopped session %s after %ss", completed.id, duration)

        await self._write_remote(OperationKind.STOP, completed)
        return completed

    async def check_rollover(self) -> bool:
        """Split the active session at the local date boundary.

        Closes a session whose date is no longer today and starts a new one for
        today with the same task name. Returns True when the replacement session
        was started; a remote conflict leaves the other client's session active
        and returns False.
        """
        async with self._mutation_lock:
            active = self.active_session
            if active is None:
                return False
            today = self._clock.today_key()
            if active.date == today:
                return False

            logger.info("Rolling session %s over from %s to %s", active.id, active.date, today)
            try:
                await self._stop_locked()
            except ClockSanityError as exc:
                logger.warning("Rollover of %s skipped: %s", active.id, exc)
                return False
            return await self._start_locked(active.task_name) is not None

    # Remote writes

    async def _write_remote(self, kind: OperationKind, session: Session) -> None:
        if self.is_online and self._cache.pending_count(self.user_id):
            await self.sync_pending_operations()
        if not self.is_online or self._cache.pending_count(self.user_id):
            # Keep remote writes in order behind anything still queued.
            self._queue(kind, session)
            return

        try:
            if kind is OperationKind.START:
                await self._remote.insert_session(session, require_no_active=True)
            else:
                await self._remote.update_session(session)
        except ActiveSessionConflictError:
            raise
        except RemoteStoreError as exc:
            logger.warning("Remote %s of %s failed, queuing: %s", kind.value, session.id, exc)
            self._queue(kind, session)

    def _queue(self, kind: OperationKind, session: Session) -> None:
        self._cache.enqueue(PendingOperation(kind=kind, session=session))
        self._add_notice("info", "Saved locally; changes will sync when the connection returns.")

    async def sync_pending_operations(self) -> int:
        """Replay queued remote writes in order; returns how many succeeded."""
        if not self.is_online:
            return 0
        async with self._sync_lock:
            replayed = 0
            for operation in self._cache.pending_operations(self.user_id):
                try:
                    await self._replay(operation)
                except RemoteUnavailableError as exc:
                    logger.warning(
                        "Replay of pending %s for %s failed: %s",
                        operation.kind.value,
                        operation.session.id,
                        exc,
                    )
                    break
                except RemoteStoreError as exc:
                    logger.error(
                        "Dropping pending %s for %s rejected by remote store: %s",
                        operation.kind.value,
                        operation.session.id,
                        exc,
                    )
                else:
                    replayed += 1
                if operation.seq is not None:
                    self._cache.remove_pending(operation.seq)
            if replayed:
                logger.info("Replayed %d pending operations for %s", replayed, self.user_id)
            return replayed

    async def _replay(self, operation: PendingOperation) -> None:
        session = operation.session
        if operation.kind is OperationKind.START:
            await self._remote.insert_session(session)
            return
        try:
            await self._remote.update_session(session)
        except SessionNotFoundError:
            await self._remote.insert_session(session)

    async def set_online(self, online: bool) -> None:
        if online == self.is_online:
            return
        self.is_online = online
        if online:
            logger.info("Connection restored; replaying pending operations")
            await self.sync_pending_operations()
        else:
            logger.info("Connection lost; writes will be queued locally")

    # Aggregation

    def get_daily_total(self, date_key: str) -> int:
        return sum(
            session.duration
            for session in self._sessions
            if session.date == date_key and session.duration is not None
        )

    def get_total_with_running_session(self, date_key: str) -> int:
        total = self.get_daily_total(date_key)
        active = self.active_session
        if active is not None and active.date == date_key:
            total += active.elapsed_seconds(self._clock.now())
        return total

    # Push changes

    def _on_remote_change(self, change: ChangeType, session: Session) -> None:
        if session.user_id != self.user_id:
            return
        # Local copies with queued writes are newer than anything the store holds.
        if any(op.session.id == session.id for op in self.pending_operations()):
            logger.debug("Ignoring push for %s: local writes still pending", session.id)
            return
        local = self._find(session.id)
        if (
            change is not ChangeType.DELETED
            and session.is_active
            and local is not None
            and not local.is_active
        ):
            logger.debug("Ignoring push reopening completed session %s", session.id)
            return

        active = self.active_session
        if change is ChangeType.DELETED:
            self._sessions = [s for s in self._sessions if s.id != session.id]
            if active is not None and active.id == session.id:
                self.active_session = None
        else:
            self._upsert(session)
            if session.is_active:
                if active is None:
                    self.active_session = session
                elif active.id != session.id:
                    logger.warning(
                        "Remote session %s started while %s is active locally",
                        session.id,
                        active.id,
                    )
            elif active is not None and active.id == session.id:
                self.active_session = None
        self._persist()

    # Bookkeeping

    def _find(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def _upsert(self, session: Session) -> None:
        for index, existing in enumerate(self._sessions):
            if existing.id == session.id:
                self._sessions[index] = session
                return
        self._sessions.append(session)

    def _persist(self) -> None:
        self._cache.save_sessions(self.user_id, self._sessions)

    def _add_notice(self, level: str, message: str) -> None:
        notice = Notice(level=level, message=message)
        self._notices.append(notice)
        if self._notify is not None:
            self._notify(notice)

    def drain_notices(self) -> list[Notice]:
        notices, self._notices = self._notices, []
        return notices

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def discard(self) -> None:
        """Drop in-memory state and this identity's cached data."""
        self.close()
        self._cache.clear_user(self.user_id)
        self._sessions = []
        self.active_session = None
        self.initialized = False
