from __future__ import annotations

import json
import multiprocessing
import os
import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest

from focus_tracker.errors import StorageReadError, StorageWriteError
from focus_tracker.locking import LockFile, read_lock_pid
from focus_tracker.models import Database, Interval, IntervalKind, utc_now
from focus_tracker.store import IntervalStore, prune_intervals

from conftest import make_interval


def test_load_missing_file_is_empty(store):
    db = store.load()
    assert len(db) == 0
    assert not store.path.exists()


def test_save_then_load_round_trip(store, db_path, t0):
    db = Database(
        [
            make_interval(t0 - timedelta(hours=2), 30),
            make_interval(t0 - timedelta(hours=1, minutes=30), 5, IntervalKind.IDLE),
            make_interval(t0 - timedelta(hours=1, minutes=25), 45),
        ]
    )
    store.save(db)

    reloaded = IntervalStore(db_path, clock=store.clock).load()
    assert reloaded.intervals == db.intervals
    assert not store.lock_path.exists()


def test_file_is_a_json_array_of_records(store, db_path, t0):
    store.append(make_interval(t0, 10))
    store.save()

    payload = json.loads(db_path.read_text(encoding="utf-8"))
    assert payload == [
        {
            "start": "2024-03-06T10:00:00+00:00",
            "end": "2024-03-06T10:10:00+00:00",
            "kind": "focus",
        }
    ]


def test_load_accepts_legacy_object_and_z_suffix(store, db_path):
    db_path.write_text(
        json.dumps(
            {
                "intervals": [
                    {"start": "2024-03-06T09:00:00Z", "end": "2024-03-06T09:30:00Z", "kind": "Focus"},
                    {"start": "2024-03-06T09:30:00Z", "end": "2024-03-06T09:30:00Z", "kind": "Idle"},
                ]
            }
        ),
        encoding="utf-8",
    )
    db = store.load()
    assert len(db) == 1
    assert db.intervals[0].kind is IntervalKind.FOCUS
    assert db.intervals[0].duration == timedelta(minutes=30)


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"other": 1}',
        '[{"start": "2024-03-06T09:00:00", "kind": "focus"}]',
        '[{"start": "2024-03-06T09:00:00", "end": "2024-03-06T10:00:00", "kind": "nap"}]',
        '[{"start": "2024-03-06T10:00:00", "end": "2024-03-06T09:00:00", "kind": "idle"}]',
        "[42]",
    ],
)
def test_malformed_file_is_fatal_and_left_untouched(store, db_path, content):
    db_path.write_text(content, encoding="utf-8")
    with pytest.raises(StorageReadError) as excinfo:
        store.load()
    assert str(db_path) in str(excinfo.value)
    assert db_path.read_text(encoding="utf-8") == content


def test_prune_drops_intervals_older_than_thirty_days(store, t0):
    old = make_interval(t0 - timedelta(days=31), 10)
    recent = make_interval(t0 - timedelta(days=29), 10)
    store.append(old)
    store.append(recent)

    removed = store.prune(t0)

    assert removed == 1
    assert store.database.intervals == [recent]


def test_prune_is_idempotent(t0):
    intervals = [make_interval(t0 - timedelta(days=days), 10) for days in (40, 30.5, 12, 1)]
    once = prune_intervals(intervals, t0)
    twice = prune_intervals(once, t0)
    assert once == twice
    assert len(once) == 2


def test_load_prunes_expired_history(store, db_path, t0):
    records = [
        make_interval(t0 - timedelta(days=45), 10).to_record(),
        make_interval(t0 - timedelta(days=2), 10).to_record(),
    ]
    db_path.write_text(json.dumps(records), encoding="utf-8")
    assert len(store.load()) == 1


def test_reset_persists_empty_database(store, db_path, t0):
    store.append(make_interval(t0, 10))
    store.save()
    store.reset()
    assert json.loads(db_path.read_text(encoding="utf-8")) == []
    assert len(store.database) == 0


def test_save_fails_when_lock_is_held(store, t0):
    store.lock_path.write_text(str(os.getpid()), encoding="ascii")
    store.append(make_interval(t0, 10))

    with pytest.raises(StorageWriteError):
        store.save()

    assert not store.path.exists()
    assert store.lock_path.exists()


def test_stale_lock_is_broken(store, t0):
    store.lock_path.write_text(str(os.getpid()), encoding="ascii")
    old = time.time() - 60
    os.utime(store.lock_path, (old, old))
    store.append(make_interval(t0, 10))

    store.save()

    assert store.path.exists()
    assert not store.lock_path.exists()


def test_failed_write_leaves_previous_file_and_no_temp(store, db_path, t0, monkeypatch):
    store.append(make_interval(t0, 10))
    store.save()
    before = db_path.read_text(encoding="utf-8")

    def refuse(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", refuse)
    store.append(make_interval(t0 + timedelta(minutes=10), 5, IntervalKind.IDLE))
    with pytest.raises(StorageWriteError):
        store.save()

    assert db_path.read_text(encoding="utf-8") == before
    assert sorted(p.name for p in db_path.parent.iterdir()) == ["intervals.json"]


def test_concurrent_saves_leave_one_complete_file(db_path, clock, t0):
    first = Database([make_interval(t0 + timedelta(minutes=i), 1) for i in range(200)])
    second = Database([make_interval(t0, 30, IntervalKind.IDLE)])
    stores = [IntervalStore(db_path, lock_timeout=5.0, clock=clock) for _ in range(2)]
    barrier = threading.Barrier(2)
    errors: list[Exception] = []

    def save(store: IntervalStore, db: Database) -> None:
        barrier.wait()
        try:
            store.save(db)
        except StorageWriteError as exc:
            errors.append(exc)

    threads = [
        threading.Thread(target=save, args=(stores[0], first)),
        threading.Thread(target=save, args=(stores[1], second)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    loaded = IntervalStore(db_path, clock=clock).load()
    assert loaded.intervals in (first.intervals, second.intervals)
    assert sorted(p.name for p in db_path.parent.iterdir()) == ["intervals.json"]


def _hold_save_lock(lock_path: str, ready, release) -> None:
    lock = LockFile(Path(lock_path), stale_after=30)
    if lock.acquire(timeout=5):
        ready.set()
        release.wait(30)
        lock.release()


def _save_records(db_path: str, records: list, start) -> None:
    start.wait(30)
    db = Database.from_intervals(Interval.from_record(record) for record in records)
    IntervalStore(Path(db_path), lock_timeout=10.0).save(db)


def test_lock_held_by_another_live_process_blocks_save(store, db_path, t0):
    ctx = multiprocessing.get_context("spawn")
    ready, release = ctx.Event(), ctx.Event()
    holder = ctx.Process(target=_hold_save_lock, args=(str(store.lock_path), ready, release))
    holder.start()
    try:
        assert ready.wait(30)
        assert read_lock_pid(store.lock_path) == holder.pid
        assert not LockFile(store.lock_path, stale_after=5).is_stale()

        store.append(make_interval(t0, 10))
        with pytest.raises(StorageWriteError):
            store.save()
        assert not db_path.exists()
    finally:
        release.set()
        holder.join(30)

    assert holder.exitcode == 0
    store.save()
    assert len(json.loads(db_path.read_text(encoding="utf-8"))) == 1


def test_concurrent_saves_from_two_processes(db_path):
    base = utc_now().replace(microsecond=0) - timedelta(hours=6)
    first = [make_interval(base + timedelta(minutes=i), 1).to_record() for i in range(300)]
    second = [make_interval(base, 30, IntervalKind.IDLE).to_record()]
    ctx = multiprocessing.get_context("spawn")
    start = ctx.Event()
    workers = [
        ctx.Process(target=_save_records, args=(str(db_path), records, start))
        for records in (first, second)
    ]
    for worker in workers:
        worker.start()
    start.set()
    for worker in workers:
        worker.join(60)

    assert [worker.exitcode for worker in workers] == [0, 0]
    payload = json.loads(db_path.read_text(encoding="utf-8"))
    assert payload in (first, second)
    assert sorted(p.name for p in db_path.parent.iterdir()) == ["intervals.json"]
