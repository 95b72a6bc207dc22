"""
Backend-specific storage tests: on-disk / in-Redis layout, factory selection,
and schema creation.
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from neynar_history.config.settings import Settings
from neynar_history.core.exceptions import PersistenceFailure
from neynar_history.storage.backend import get_backend
from neynar_history.storage.file_backend import FileBackend
from neynar_history.storage.kv_backend import TRACKED_KEY, snapshot_key
from neynar_history.storage.models import Snapshot, TrackedEntry, format_timestamp, parse_timestamp

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_timestamp_round_trip_keeps_microseconds():
    ts = T0 + timedelta(microseconds=123456)
    text = format_timestamp(ts)
    assert text == "2026-01-01T12:00:00.123456Z"
    assert parse_timestamp(text) == ts
    assert parse_timestamp(1767268800) == T0


def test_snapshot_rejects_invalid_values():
    with pytest.raises(ValueError):
        Snapshot(fid=1, score=1.5, captured_at=T0)
    with pytest.raises(ValueError):
        Snapshot(fid=True, score=0.5, captured_at=T0)
    with pytest.raises(ValueError):
        Snapshot(fid=1, score=0.5, captured_at=T0, source="web")


def test_naive_timestamps_are_utc():
    snap = Snapshot(fid=1, score=0.5, captured_at=datetime(2026, 1, 1, 12, 0))
    assert snap.captured_at == T0


def test_file_document_layout(file_backend):
    file_backend.update_history(4, lambda h: h + [Snapshot(fid=4, score=0.5, captured_at=T0)])
    file_backend.update_tracked(lambda e: e + [TrackedEntry(fid=4, tracked_at=T0, referenced_at=T0)])
    doc = json.loads(file_backend.path.read_text(encoding="utf-8"))
    assert doc["snapshots"]["4"] == [
        {"fid": 4, "score": 0.5, "captured_at": "2026-01-01T12:00:00.000000Z", "source": "api"}
    ]
    assert doc["tracked"][0]["fid"] == 4
    assert doc["tracked"][0]["pinned"] is False


def test_file_backend_missing_file_is_empty(tmp_path):
    backend = FileBackend(tmp_path / "nested" / "history.json")
    assert backend.load_history(1) == []
    assert backend.load_tracked() == []
    backend.ensure_schema()
    assert backend.path.exists()


def test_redis_key_layout(redis_backend):
    redis_backend.update_history(4, lambda h: h + [Snapshot(fid=4, score=0.5, captured_at=T0)])
    redis_backend.update_tracked(lambda e: e + [TrackedEntry(fid=4, tracked_at=T0, referenced_at=T0)])
    client = redis_backend._client
    assert snapshot_key(4) == "nh:snapshots:v1:4"
    assert json.loads(client.get(snapshot_key(4)))[0]["score"] == 0.5
    assert json.loads(client.get(TRACKED_KEY))[0]["fid"] == 4


def test_redis_corrupt_value_is_persistence_failure(redis_backend):
    redis_backend._client.set(snapshot_key(4), "not json")
    with pytest.raises(PersistenceFailure):
        redis_backend.load_history(4)


def test_failed_mutation_leaves_history_untouched(backend):
    backend.update_history(4, lambda h: [Snapshot(fid=4, score=0.5, captured_at=T0)])

    def fail(history):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        backend.update_history(4, fail)
    assert [s.score for s in backend.load_history(4)] == [0.5]


def test_sql_tracked_round_trip(sql_backend):
    entry = TrackedEntry(fid=9, tracked_at=T0, referenced_at=T0 + timedelta(seconds=1), pinned=True)
    sql_backend.update_tracked(lambda e: [entry])
    assert sql_backend.load_tracked() == [entry]
    sql_backend.update_tracked(lambda e: [replace(e[0], pinned=False)])
    assert sql_backend.load_tracked()[0].pinned is False


def test_sql_writes_take_a_lock_row_per_target(sql_backend):
    from sqlalchemy import select

    from neynar_history.storage.sql_backend import WriteLockRow

    sql_backend.update_history(4, lambda h: h + [Snapshot(fid=4, score=0.5, captured_at=T0)])
    sql_backend.update_history(4, lambda h: h)
    sql_backend.update_tracked(lambda e: e)
    with sql_backend.engine.connect() as conn:
        rows = dict(conn.execute(select(WriteLockRow.name, WriteLockRow.version)).all())
    assert rows == {"history:4": 2, "tracked": 1}


def test_sql_concurrent_tracks_stay_within_capacity(sql_backend, clock):
    from neynar_history.history.registry import TrackingRegistry

    registry = TrackingRegistry(sql_backend, max_size=3, clock=clock)
    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(registry.track, range(1, 13)))
    assert len(sql_backend.load_tracked()) == 3


def test_get_backend_file(tmp_path):
    settings = Settings(store_backend="file", snapshot_file_path=str(tmp_path / "h.json"))
    backend = get_backend(settings)
    assert backend.name == "file"
    assert (tmp_path / "h.json").exists()


def test_get_backend_sql_creates_tables(tmp_path):
    from sqlalchemy import inspect

    settings = Settings(store_backend="sql", database_url=f"sqlite:///{tmp_path / 'h.db'}")
    backend = get_backend(settings)
    try:
        assert backend.name == "sql"
        assert {"snapshots", "tracked", "write_locks"} <= set(inspect(backend.engine).get_table_names())
    finally:
        backend.close()


def test_get_backend_unknown():
    with pytest.raises(ValueError):
        get_backend(Settings(store_backend="mongo"))
