"""Configuration models and helpers for the tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for the engine, scheduler and remote client."""

    tick_interval: timedelta = timedelta(seconds=30)
    debounce_interval: timedelta = timedelta(seconds=5)
    request_timeout: timedelta = timedelta(seconds=10)
    remote_url: Optional[str] = None
    timezone: Optional[ZoneInfo] = None

    @classmethod
    def from_options(
        cls,
        tick_seconds: float = 30.0,
        debounce_seconds: float | None = None,
        timeout_seconds: float = 10.0,
        remote_url: str | None = None,
        timezone_name: str | None = None,
    ) -> "TrackerSettings":
        debounce = (
            debounce_seconds if debounce_seconds is not None else min(tick_seconds / 6, 5.0)
        )
        return cls(
            tick_interval=timedelta(seconds=tick_seconds),
            debounce_interval=timedelta(seconds=debounce),
            request_timeout=timedelta(seconds=timeout_seconds),
            remote_url=remote_url.strip() or None if remote_url else None,
            timezone=parse_timezone(timezone_name) if timezone_name else None,
        )


def parse_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {name}") from exc
