"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import date, timedelta, tzinfo
from typing import Optional

from .models import Database
from .stats import (
    SessionSummary,
    daily_summary,
    local_now,
    monday_of,
    weekly_summary,
)

BAR_WIDTH = 40


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db: Database, tz: Optional[tzinfo] = None) -> None:
        self.db = db
        self.tz = tz

    def print_report(self, today: Optional[date] = None) -> None:
        today = today or local_now(self.tz).date()
        if not len(self.db):
            print("No data recorded yet.")
            return

        week = weekly_summary(self.db, today, self.tz)
        days = [
            daily_summary(self.db, week.week_start + timedelta(days=offset), self.tz)
            for offset in range(7)
        ]
        days = [day for day in days if day.total and day.day <= today]
        scale = max((max(day.focus_total, day.idle_total) for day in days), default=timedelta(hours=1))

        print("Focus Report")
        print("=" * 40)
        for day in days:
            label = f"{day.day.isoformat()} (Today)" if day.day == today else day.day.isoformat()
            print()
            print(f"Date: {label}")
            print(f"  Focus: [{render_bar(day.focus_total, scale)}] {format_duration(day.focus_total)}")
            print(f"  Idle:  [{render_bar(day.idle_total, scale)}] {format_duration(day.idle_total)}")
            print(f"  Interruptions: {day.interruption_count}")
            if day.focus_sessions:
                print(f"  Avg Focus Session: {format_duration(day.avg_focus_session)}")
            if day.interruption_count:
                print(f"  Avg Interruption:  {format_duration(day.avg_idle_session)}")

        print()
        print(f"Weekly Summary (starting Monday {monday_of(today).isoformat()})")
        print("-" * 40)
        week_scale = max(week.focus_total, week.idle_total)
        print(f"Total Focus: [{render_bar(week.focus_total, week_scale)}] {format_duration(week.focus_total)}")
        print(f"Total Idle:  [{render_bar(week.idle_total, week_scale)}] {format_duration(week.idle_total)}")
        print(f"Total Interruptions: {week.interruption_count}")
        if week.focus_sessions:
            print(f"Avg Focus Session:   {format_duration(week.avg_focus_session)}")
        if week.interruption_count:
            print(f"Avg Interruption:    {format_duration(week.avg_idle_session)}")

    def print_session(self, summary: SessionSummary) -> None:
        print("This session")
        print("-" * 40)
        print(f"Focus: {format_duration(summary.focus_total)} in {summary.focus_count} sessions")
        print(f"Idle:  {format_duration(summary.idle_total)} in {summary.idle_count} interruptions")
        if summary.max_focus is not None and summary.min_focus is not None:
            print(
                f"Longest focus: {format_duration(summary.max_focus)}  "
                f"shortest: {format_duration(summary.min_focus)}"
            )


def render_bar(value: timedelta, scale: timedelta, width: int = BAR_WIDTH) -> str:
    if scale <= timedelta(0):
        filled = 0
    else:
        filled = min(width, round(value / scale * width))
    return "#" * filled + "." * (width - filled)


def format_duration(value: timedelta | float) -> str:
    seconds = value.total_seconds() if isinstance(value, timedelta) else value
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
