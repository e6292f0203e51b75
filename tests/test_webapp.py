from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from focus_tracker.config import TrackerSettings
from focus_tracker.models import Database, IntervalKind
from focus_tracker.sampler import SequenceSampler
from focus_tracker.store import IntervalStore
from focus_tracker.webapp import TrackerRunner, create_app

from conftest import make_interval


def _seed(db_path) -> datetime:
    start = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=3)
    IntervalStore(db_path).save(
        Database(
            [
                make_interval(start, 30),
                make_interval(start + timedelta(minutes=30), 10, IntervalKind.IDLE),
            ]
        )
    )
    return start


def test_status_without_tracker(db_path):
    app = create_app(db_path=db_path, start_tracker=False)
    with TestClient(app) as client:
        payload = client.get("/api/status").json()
    assert payload["tracker_running"] is False
    assert payload["idle_minutes"] == 5.0
    assert "state" not in payload


def test_intervals_and_weekly_read_from_disk(db_path):
    start = _seed(db_path)
    day = start.astimezone().date().isoformat()
    app = create_app(db_path=db_path, start_tracker=False)
    with TestClient(app) as client:
        intervals = client.get("/api/intervals", params={"date": day}).json()["intervals"]
        weekly = client.get("/api/weekly", params={"week": day}).json()

    assert sum(item["duration_seconds"] for item in intervals) <= 40 * 60
    assert len(weekly["days"]) == 7
    assert weekly["focus_seconds"] + weekly["idle_seconds"] == sum(
        item["focus_seconds"] + item["idle_seconds"] for item in weekly["days"]
    )


def test_bad_date_is_rejected(db_path):
    app = create_app(db_path=db_path, start_tracker=False)
    with TestClient(app) as client:
        response = client.get("/api/daily", params={"date": "06/03/2024"})
    assert response.status_code == 400


def test_running_tracker_reports_state_and_resets(db_path):
    _seed(db_path)
    settings = TrackerSettings(sample_interval=timedelta(milliseconds=20))
    runner = TrackerRunner(db_path, settings, sampler_factory=lambda: SequenceSampler([0]))
    app = create_app(db_path=db_path, settings=settings, runner=runner)
    with TestClient(app) as client:
        status = client.get("/api/status").json()
        assert status["tracker_running"] is True
        assert status["state"] in ("focus", "waiting")

        assert client.post("/api/reset").json() == {"reset": True}
        weekly = client.get("/api/weekly").json()
        assert weekly["idle_seconds"] == 0

    assert not runner.is_running()
    assert not (db_path.parent / "tracker.pid").exists()
