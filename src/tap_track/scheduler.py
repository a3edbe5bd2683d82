"""Single timer source for rollover checks and connectivity probes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .config import TrackerSettings
from .service import TrackerService

logger = logging.getLogger(__name__)

TICK = "tick"


class RolloverScheduler:
    """Runs periodic checks against the current engine.

    External events (window focus, visibility, network changes) call
    :meth:`poke` instead of checking on their own; pokes arriving within the
    debounce interval of the previous check are coalesced.
    """

    def __init__(
        self,
        service: TrackerService,
        settings: TrackerSettings,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._service = service
        self._settings = settings
        self._monotonic = monotonic
        self._wake = asyncio.Event()
        self._reason: str = TICK
        self._last_check: Optional[float] = None
        self._stopping = False

    def poke(self, reason: str) -> None:
        """Ask for a check as soon as the loop is free."""
        self._reason = reason
        self._wake.set()

    def stop(self) -> None:
        self._stopping = True
        self._wake.set()

    async def run_once(self, reason: str = TICK) -> bool:
        """Probe connectivity, replay pending writes and check for rollover.

        Returns True when the active session was rolled over.
        """
        engine = self._service.engine
        if engine is None:
            return False

        now = self._monotonic()
        debounce = self._settings.debounce_interval.total_seconds()
        if (
            reason != TICK
            and self._last_check is not None
            and now - self._last_check < debounce
        ):
            logger.debug("Skipping %s check inside debounce window", reason)
            return False
        self._last_check = now

        online = await self._service.remote.ping()
        await engine.set_online(online)
        if online:
            await engine.sync_pending_operations()
        rolled = await engine.check_rollover()
        if rolled:
            logger.info("Rollover performed after %s check", reason)
        return rolled

    async def run(self) -> None:
        """Loop until :meth:`stop` is called."""
        interval = self._settings.tick_interval.total_seconds()
        logger.info("Scheduler running every %.0fs", interval)
        while not self._stopping:
            reason = TICK
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            else:
                reason = self._reason
                self._reason = TICK
                self._wake.clear()
            if self._stopping:
                break
            try:
                await self.run_once(reason)
            except Exception:
                logger.exception("Scheduled %s check failed", reason)
        logger.info("Scheduler stopped.")
