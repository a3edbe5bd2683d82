"""Builds one session engine per signed-in identity."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .cache import LocalCache
from .clock import Clock
from .engine import SessionEngine
from .errors import AuthenticationRequiredError
from .identity import IdentityProvider
from .models import Identity, Notice, Session
from .remote import RemoteStore

logger = logging.getLogger(__name__)


class TrackerService:
    """Owns the engine for the current identity and swaps it on sign-in/out."""

    def __init__(
        self,
        identities: IdentityProvider,
        remote: RemoteStore,
        cache: LocalCache,
        *,
        clock: Optional[Clock] = None,
        notify: Optional[Callable[[Notice], None]] = None,
    ) -> None:
        self.identities = identities
        self.remote = remote
        self.cache = cache
        self.clock = clock or Clock()
        self._notify = notify
        self._engine: Optional[SessionEngine] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def engine(self) -> Optional[SessionEngine]:
        return self._engine

    async def open(self) -> None:
        """Start following the identity provider and load the current user."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identities.subscribe(self._on_identity_changed)
        if self.identities.current is not None and self._engine is None:
            await self._activate(self.identities.current)

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._engine is not None:
            self._engine.close()
            self._engine = None

    def require_engine(self) -> SessionEngine:
        if self._engine is None:
            raise AuthenticationRequiredError()
        return self._engine

    async def start(self, task_name: Optional[str] = None) -> Optional[Session]:
        return await self.require_engine().start(task_name)

    async def stop(self) -> Optional[Session]:
        return await self.require_engine().stop()

    async def sync(self) -> int:
        return await self.require_engine().sync_pending_operations()

    async def _on_identity_changed(self, identity: Optional[Identity]) -> None:
        previous = self._engine
        if previous is not None:
            if identity is not None and identity.user_id == previous.user_id:
                return
            await self._deactivate(previous)
        if identity is not None:
            await self._activate(identity)

    async def _activate(self, identity: Identity) -> None:
        online = await self.remote.ping()
        engine = SessionEngine(
            identity,
            self.remote,
            self.cache,
            clock=self.clock,
            online=online,
            notify=self._notify,
        )
        await engine.load()
        self._engine = engine

    async def _deactivate(self, engine: SessionEngine) -> None:
        self._engine = None
        await engine.sync_pending_operations()
        leftover = self.cache.pending_count(engine.user_id)
        if leftover:
            logger.warning(
                "Discarding %d unsynced operations for %s on sign-out",
                leftover,
                engine.user_id,
            )
        engine.discard()
