"""Adapter around whatever supplies the signed-in user."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from .models import Identity

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Identity]], Awaitable[None]]


class IdentityProvider:
    """Holds the current identity and notifies listeners when it changes.

    The tracker never authenticates anyone itself; an authentication layer
    calls :meth:`sign_in` / :meth:`sign_out` and the tracker reacts.
    """

    def __init__(self, identity: Optional[Identity] = None) -> None:
        self._current = identity
        self._listeners: list[IdentityListener] = []

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_in(self, identity: Identity) -> None:
        if self._current == identity:
            return
        logger.info("Signed in as %s", identity.email or identity.user_id)
        self._current = identity
        await self._emit()

    async def sign_out(self) -> None:
        if self._current is None:
            return
        logger.info("Signed out %s", self._current.email or self._current.user_id)
        self._current = None
        await self._emit()

    async def _emit(self) -> None:
        for listener in list(self._listeners):
            await listener(self._current)
