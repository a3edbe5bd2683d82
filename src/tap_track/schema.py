"""Wire records for the ``timer_sessions`` collection.

Rows coming back from the remote store or the local cache are decoded through
:class:`SessionRecord` so that a malformed row is rejected at the boundary
instead of leaking missing fields into the engine.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .models import Session

logger = logging.getLogger(__name__)

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class SessionRecord(BaseModel):
    id: str = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    date: str = Field(pattern=DATE_PATTERN)
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)
    task_name: str = Field(default="", alias="taskName")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("date")
    @classmethod
    def _real_calendar_date(cls, value: str) -> str:
        date.fromisoformat(value)
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("task_name", mode="before")
    @classmethod
    def _null_task_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @model_validator(mode="after")
    def _completion_fields_agree(self) -> "SessionRecord":
        if (self.end_time is None) != (self.duration is None):
            raise ValueError("end_time and duration must be set together")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @classmethod
    def from_session(cls, session: Session) -> "SessionRecord":
        return cls(
            id=session.id,
            user_id=session.user_id,
            date=session.date,
            start_time=session.start_time,
            end_time=session.end_time,
            duration=session.duration,
            task_name=session.task_name,
        )

    def to_session(self) -> Session:
        return Session(
            id=self.id,
            user_id=self.user_id,
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=self.duration,
            task_name=self.task_name,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CompletionPatch(BaseModel):
    """Partial update applied when a session is stopped."""

    end_time: datetime
    duration: int = Field(ge=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("end_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def encode_session(session: Session) -> dict[str, Any]:
    return SessionRecord.from_session(session).to_wire()


def decode_session(row: Any) -> Session:
    """Decode one row, raising :class:`pydantic.ValidationError` if malformed."""
    return SessionRecord.model_validate(row).to_session()


def decode_sessions(rows: Iterable[Any], *, source: str = "remote") -> list[Session]:
    """Decode rows, dropping (and logging) the ones that fail validation."""
    sessions: list[Session] = []
    for row in rows:
        try:
            sessions.append(decode_session(row))
        except ValidationError as exc:
            logger.warning(
                "Rejected malformed %s session row %r: %s",
                source,
                row.get("id") if isinstance(row, dict) else row,
                exc.errors(include_url=False),
            )
    return sessions
