from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from focus_tracker.models import Database, IntervalKind
from focus_tracker.reporting import SummaryPrinter, format_duration, render_bar
from focus_tracker.stats import session_summary

from conftest import make_interval


def test_format_duration():
    assert format_duration(timedelta(seconds=30)) == "00:00:30"
    assert format_duration(timedelta(seconds=90)) == "00:01:30"
    assert format_duration(3661) == "01:01:01"


def test_render_bar():
    assert render_bar(timedelta(minutes=30), timedelta(hours=1), width=10) == "#####....."
    assert render_bar(timedelta(0), timedelta(0), width=4) == "...."


def test_report_lists_days_and_week(capsys):
    start = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)
    db = Database(
        [
            make_interval(start, 60),
            make_interval(start + timedelta(minutes=60), 15, IntervalKind.IDLE),
            make_interval(start + timedelta(days=1), 30),
        ]
    )
    SummaryPrinter(db, tz=timezone.utc).print_report(date(2024, 3, 6))

    out = capsys.readouterr().out
    assert "Date: 2024-03-05" in out
    assert "Date: 2024-03-06 (Today)" in out
    assert "Interruptions: 1" in out
    assert "Weekly Summary (starting Monday 2024-03-04)" in out
    assert "Total Focus: [" in out and "01:30:00" in out


def test_report_without_data(capsys):
    SummaryPrinter(Database(), tz=timezone.utc).print_report(date(2024, 3, 6))
    assert "No data recorded yet." in capsys.readouterr().out


def test_session_block(capsys):
    start = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)
    db = Database([make_interval(start, 20), make_interval(start + timedelta(minutes=20), 40)])
    SummaryPrinter(db, tz=timezone.utc).print_session(session_summary(db))

    out = capsys.readouterr().out
    assert "01:00:00 in 2 sessions" in out
    assert "Longest focus: 00:40:00" in out
