"""Domain models for tracked sessions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class Identity:
    """The signed-in user, as supplied by the identity provider."""

    user_id: str
    email: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Session:
    """A single stretch of tracked time; active while ``end_time`` is unset."""

    id: str
    user_id: str
    date: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    task_name: str = ""

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def elapsed_seconds(self, now: datetime) -> int:
        """Seconds since the start, floored at zero to tolerate clock skew."""
        return max(0, int((now - self.start_time).total_seconds()))

    def completed(self, end_time: datetime, duration: int) -> "Session":
        return replace(self, end_time=end_time, duration=duration)


class OperationKind(str, Enum):
    START = "start"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class PendingOperation:
    """A local mutation the remote store has not confirmed yet."""

    kind: OperationKind
    session: Session
    seq: Optional[int] = None


@dataclass(frozen=True, slots=True)
class Notice:
    """A message meant for the user rather than the log."""

    level: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now().astimezone())
