"""Tests for firststep.core.store — SQLite and JSON file backends."""

import json

import pytest

from firststep.core.config import Config
from firststep.core.events import MicroStarted, SessionStarted, TrackEvent
from firststep.core.store import (
    JsonFileEventStore,
    SqliteEventStore,
    get_store,
)

T0 = 1771664400.0
DAY = "2026-02-21"


def _event(i=0, **overrides) -> TrackEvent:
    e = TrackEvent.create(
        "exec.micro_started",
        MicroStarted("s1", "t1", "Report", f"step {i}"),
        now=T0 + i,
    )
    if overrides:
        data = e.to_dict()
        data.update(overrides)
        e = TrackEvent.from_dict(data)
    return e


@pytest.fixture
def sqlite_store(tmp_path):
    s = SqliteEventStore(tmp_path / "test.db")
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def json_store(tmp_path):
    return JsonFileEventStore(tmp_path / "events")


@pytest.fixture(params=["sqlite", "json"])
def any_store(request, sqlite_store, json_store):
    return sqlite_store if request.param == "sqlite" else json_store


# ── Shared contract ───────────────────────────────────────────────────────────


class TestStoreContract:
    def test_append_then_read_preserves_order(self, any_store):
        batch = [_event(i, date=DAY) for i in range(3)]
        assert any_store.append(DAY, batch) is True
        assert any_store.append(DAY, [_event(3, date=DAY)]) is True
        got = any_store.read(DAY)
        assert [e.payload.micro_action for e in got] == [
            "step 0", "step 1", "step 2", "step 3",
        ]
        assert got[0] == batch[0]

    def test_read_unknown_date_is_empty(self, any_store):
        assert any_store.read("1999-01-01") == []

    def test_empty_append_is_ok(self, any_store):
        assert any_store.append(DAY, []) is True
        assert any_store.read(DAY) == []

    def test_dates_most_recent_first(self, any_store):
        any_store.append("2026-02-20", [_event(0, date="2026-02-20")])
        any_store.append("2026-02-21", [_event(1, date="2026-02-21")])
        assert any_store.dates() == ["2026-02-21", "2026-02-20"]

    def test_partitions_are_independent(self, any_store):
        any_store.append("2026-02-20", [_event(0, date="2026-02-20")])
        any_store.append("2026-02-21", [_event(1, date="2026-02-21")])
        assert len(any_store.read("2026-02-20")) == 1
        assert len(any_store.read("2026-02-21")) == 1

    def test_stats(self, any_store):
        any_store.append(DAY, [_event(i, date=DAY) for i in range(2)])
        stats = any_store.stats()
        assert stats["events"] == 2
        assert stats["days"] == 1


# ── SQLite ────────────────────────────────────────────────────────────────────


class TestSqliteStore:
    def test_initialize_creates_schema(self, sqlite_store):
        conn = sqlite_store._conn()
        tables = {
            r[0] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {"schema_version", "events"} <= tables

    def test_initialize_is_idempotent(self, sqlite_store):
        sqlite_store.initialize()
        row = sqlite_store._conn().execute(
            "SELECT COUNT(*) as c FROM schema_version"
        ).fetchone()
        assert row["c"] == 1

    def test_wal_mode(self, sqlite_store):
        mode = sqlite_store._conn().execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    def test_retried_batch_is_not_duplicated(self, sqlite_store):
        batch = [_event(i, date=DAY) for i in range(2)]
        sqlite_store.append(DAY, batch)
        sqlite_store.append(DAY, batch)  # INSERT OR IGNORE
        assert len(sqlite_store.read(DAY)) == 2

    def test_append_failure_returns_false(self, sqlite_store):
        sqlite_store._conn().execute("DROP TABLE events")
        assert sqlite_store.append(DAY, [_event(0, date=DAY)]) is False

    def test_read_failure_returns_empty(self, sqlite_store):
        sqlite_store._conn().execute("DROP TABLE events")
        assert sqlite_store.read(DAY) == []

    def test_unreadable_row_is_skipped(self, sqlite_store):
        sqlite_store.append(DAY, [_event(0, date=DAY)])
        with sqlite_store._conn() as conn:
            conn.execute(
                "INSERT INTO events (id, date, type, timestamp, payload) "
                "VALUES ('bad', ?, 'exec.micro_started', 0, 'not json')",
                (DAY,),
            )
        assert len(sqlite_store.read(DAY)) == 1

    def test_non_object_payload_is_skipped(self, sqlite_store):
        good = _event(0, date=DAY)
        sqlite_store.append(DAY, [good])
        with sqlite_store._conn() as conn:
            conn.execute(
                "INSERT INTO events (id, date, type, timestamp, payload) "
                "VALUES ('listy', ?, 'exec.micro_started', 0, '[\"oops\"]')",
                (DAY,),
            )
        assert sqlite_store.read(DAY) == [good]


# ── JSON files ────────────────────────────────────────────────────────────────


class TestJsonStore:
    def test_one_file_per_day(self, json_store):
        json_store.append(DAY, [_event(0, date=DAY)])
        path = json_store.path_for(DAY)
        assert path.name == f"events-{DAY}.json"
        data = json.loads(path.read_text())
        assert isinstance(data, list)
        assert data[0]["type"] == "exec.micro_started"
        assert data[0]["payload"]["micro_action"] == "step 0"

    def test_no_temp_files_left_behind(self, json_store):
        json_store.append(DAY, [_event(0, date=DAY)])
        json_store.append(DAY, [_event(1, date=DAY)])
        names = [p.name for p in json_store.directory.iterdir()]
        assert names == [f"events-{DAY}.json"]

    def test_invalid_date_is_rejected(self, json_store):
        assert json_store.append("../escape", [_event(0)]) is False
        assert json_store.read("../escape") == []

    def test_corrupt_file_reads_empty_and_is_not_overwritten(self, json_store):
        path = json_store.path_for(DAY)
        path.write_text("{not json")
        assert json_store.read(DAY) == []
        assert json_store.append(DAY, [_event(0, date=DAY)]) is False
        assert path.read_text() == "{not json"

    def test_unknown_event_type_is_skipped(self, json_store):
        good = _event(0, date=DAY)
        path = json_store.path_for(DAY)
        path.write_text(json.dumps([
            {"id": "x", "type": "exec.teleported", "timestamp": 0, "payload": {}},
            good.to_dict(),
        ]))
        assert json_store.read(DAY) == [good]

    def test_non_object_payload_is_skipped(self, json_store):
        good = _event(0, date=DAY)
        json_store.path_for(DAY).write_text(json.dumps([
            {"id": "a", "type": "exec.micro_started", "timestamp": 1771664400000,
             "date": DAY, "payload": ["oops"]},
            {"id": "b", "type": "exec.micro_started", "timestamp": 1771664400000,
             "date": DAY, "payload": "oops"},
            good.to_dict(),
        ]))
        assert json_store.read(DAY) == [good]

    def test_dates_ignores_stray_files(self, json_store):
        json_store.append(DAY, [_event(0, date=DAY)])
        (json_store.directory / "notes.txt").write_text("hi")
        (json_store.directory / "events-latest.json").write_text("[]")
        assert json_store.dates() == [DAY]


# ── Accessor ──────────────────────────────────────────────────────────────────


class TestGetStore:
    def test_same_location_same_instance(self, tmp_path):
        cfg = Config(db_path=str(tmp_path / "a.db"))
        assert get_store(cfg) is get_store(cfg)

    def test_backend_selection(self, tmp_path):
        sqlite_cfg = Config(db_path=str(tmp_path / "b.db"))
        json_cfg = Config(store_backend="json", events_dir=str(tmp_path / "ev"))
        assert isinstance(get_store(sqlite_cfg), SqliteEventStore)
        assert isinstance(get_store(json_cfg), JsonFileEventStore)

    def test_sqlite_store_is_initialized(self, tmp_path):
        cfg = Config(db_path=str(tmp_path / "c.db"))
        s = get_store(cfg)
        e = TrackEvent.create("session.started", SessionStarted("s", "t", "x"), now=T0)
        assert s.append(e.date, [e]) is True
        assert s.read(e.date) == [e]
