"""Daily and monthly reports over tracked sessions."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from .clock import format_date, format_duration, format_time, last_n_days, parse_date_key
from .engine import SessionEngine
from .models import Session

MIN_SCALE_SECONDS = 3600


@dataclass(frozen=True, slots=True)
class DayTotal:
    date: str
    seconds: int
    session_count: int


@dataclass(frozen=True, slots=True)
class DailyReportRow:
    date: str
    label: str
    seconds: int
    percentage: int


def day_label(index: int, key: str) -> str:
    if index == 0:
        return "Today"
    if index == 1:
        return "Yesterday"
    return format_date(key)


def build_daily_report(engine: SessionEngine, days: int = 7, today: Optional[date] = None) -> list[DailyReportRow]:
    """Totals for the last ``days`` days, scaled against the busiest day."""
    today = today or parse_date_key(engine.clock.today_key())
    keys = last_n_days(days, today)
    totals = [engine.get_daily_total(key) for key in keys]
    scale = max([*totals, MIN_SCALE_SECONDS])
    return [
        DailyReportRow(
            date=key,
            label=day_label(index, key),
            seconds=seconds,
            percentage=min(100, seconds * 100 // scale),
        )
        for index, (key, seconds) in enumerate(zip(keys, totals))
    ]


def build_monthly_overview(sessions: Iterable[Session], days: int = 30, *, today: date) -> list[DayTotal]:
    """Completed-session count and total for each of the last ``days`` days."""
    seconds_by_day: defaultdict[str, int] = defaultdict(int)
    count_by_day: defaultdict[str, int] = defaultdict(int)
    for session in sessions:
        if session.duration is None:
            continue
        seconds_by_day[session.date] += session.duration
        count_by_day[session.date] += 1
    return [
        DayTotal(date=key, seconds=seconds_by_day[key], session_count=count_by_day[key])
        for key in last_n_days(days, today)
    ]


def activity_band(seconds: int) -> str:
    if seconds > 3 * 3600:
        return "high"
    if seconds > 3600:
        return "medium"
    if seconds > 0:
        return "low"
    return "none"


class ReportPrinter:
    """Render human-readable reports in the console."""

    def __init__(self, engine: SessionEngine) -> None:
        self.engine = engine

    def print_status(self) -> None:
        engine = self.engine
        today = engine.clock.today_key()
        active = engine.active_session
        if active is None:
            print("No session running.")
        else:
            elapsed = active.elapsed_seconds(engine.clock.now())
            label = f" ({active.task_name})" if active.task_name else ""
            print(f"Running{label}: {format_time(elapsed)} since {active.start_time:%H:%M:%S}")
        print(f"Today: {format_duration(engine.get_total_with_running_session(today))}")
        pending = len(engine.pending_operations())
        if pending:
            print(f"{pending} change(s) waiting to sync.")

    def print_daily_report(self, days: int = 7) -> None:
        rows = build_daily_report(self.engine, days)
        print("Daily report")
        print("-" * 40)
        for row in rows:
            bar = "#" * (row.percentage // 5)
            print(f"  {row.label:<12} {format_duration(row.seconds):>8}  {bar}")

    def print_monthly_overview(self, days: int = 30) -> None:
        today = parse_date_key(self.engine.clock.today_key())
        totals = build_monthly_overview(self.engine.sessions, days, today=today)
        if not any(day.seconds for day in totals):
            print("No sessions recorded in the selected period.")
            return

        print("Monthly overview")
        print("-" * 40)
        print(f"  {'Date':<12} {'Sessions':>8} {'Total':>8}")
        for day in totals:
            print(
                f"  {format_date(day.date):<12} {day.session_count:>8} "
                f"{format_duration(day.seconds):>8}  {activity_band(day.seconds)}"
            )
