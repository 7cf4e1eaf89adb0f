"""
Event stores — append-only, date-partitioned persistence for TrackEvents.

Two backends share one contract:
    append(date, events) -> bool   all-or-nothing
    read(date) -> [TrackEvent]     [] for unknown dates, never raises

SqliteEventStore is the default. JsonFileEventStore keeps one JSON file
per day, which is convenient for inspection and hand-editing.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .events import TrackEvent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class EventStore(Protocol):
    def append(self, date: str, events: Sequence[TrackEvent]) -> bool: ...

    def read(self, date: str) -> List[TrackEvent]: ...

    def dates(self) -> List[str]: ...


def _decode_rows(date: str, rows: Sequence[Dict[str, Any]]) -> List[TrackEvent]:
    events: List[TrackEvent] = []
    for raw in rows:
        try:
            events.append(TrackEvent.from_dict(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable event on {date}: {e}")
    return events


# ── SQLite ────────────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now')),
    description TEXT
);

CREATE TABLE IF NOT EXISTS events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    date TEXT NOT NULL,
    type TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    payload TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_date ON events(date, seq);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
"""


class SqliteEventStore:
    """SQLite-backed event log. One transaction per append."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn

        conn = sqlite3.connect(self.db_path, timeout=5.0, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        conn.row_factory = sqlite3.Row
        self._local.conn = conn
        return conn

    def initialize(self) -> None:
        """Create tables if this is a fresh database."""
        conn = self._conn()
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, description) VALUES (?, ?)",
            (SCHEMA_VERSION, "firststep event log"),
        )
        conn.commit()

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn:
            conn.close()
            self._local.conn = None

    def append(self, date: str, events: Sequence[TrackEvent]) -> bool:
        if not events:
            return True
        rows = [
            (
                e.id,
                date,
                e.type,
                e.timestamp,
                e.version,
                json.dumps(e.payload.to_dict(), ensure_ascii=False),
            )
            for e in events
        ]
        try:
            conn = self._conn()
            with conn:
                # Retried batches carry the same ids; OR IGNORE keeps them single
                conn.executemany(
                    """INSERT OR IGNORE INTO events
                       (id, date, type, timestamp, version, payload)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    rows,
                )
        except sqlite3.Error as e:
            logger.error(f"Appending {len(rows)} events for {date} failed: {e}")
            return False
        return True

    def read(self, date: str) -> List[TrackEvent]:
        try:
            rows = self._conn().execute(
                "SELECT * FROM events WHERE date=? ORDER BY seq", (date,)
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Reading events for {date} failed: {e}")
            return []

        raw = []
        for r in rows:
            try:
                payload = json.loads(r["payload"])
            except json.JSONDecodeError:
                logger.warning(f"Skipping event {r['id']}: payload is not JSON")
                continue
            raw.append({
                "id": r["id"],
                "type": r["type"],
                "timestamp": r["timestamp"],
                "date": r["date"],
                "version": r["version"],
                "payload": payload,
            })
        return _decode_rows(date, raw)

    def dates(self) -> List[str]:
        try:
            rows = self._conn().execute(
                "SELECT DISTINCT date FROM events ORDER BY date DESC"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Listing dates failed: {e}")
            return []
        return [r["date"] for r in rows]

    def stats(self) -> Dict[str, Any]:
        conn = self._conn()
        events = conn.execute("SELECT COUNT(*) as c FROM events").fetchone()["c"]
        days = conn.execute("SELECT COUNT(DISTINCT date) as c FROM events").fetchone()["c"]
        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "backend": "sqlite",
            "path": str(self.db_path),
            "size_mb": round(db_size / (1024 * 1024), 2),
            "events": events,
            "days": days,
        }


# ── JSON files ────────────────────────────────────────────────────────────────


class JsonFileEventStore:
    """One ``events-YYYY-MM-DD.json`` file per day.

    Appends read the whole file, merge, and atomically replace it. This is
    safe for a single writer only.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, date: str) -> Path:
        return self.directory / f"events-{date}.json"

    def _load(self, path: Path) -> List[Dict[str, Any]]:
        if not path.is_file():
            return []
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{path.name} does not contain a JSON array")
        return data

    def append(self, date: str, events: Sequence[TrackEvent]) -> bool:
        if not _DATE_RE.match(date):
            logger.error(f"Refusing to append to invalid date partition {date!r}")
            return False
        if not events:
            return True

        path = self.path_for(date)
        try:
            existing = self._load(path)
            merged = existing + [e.to_dict() for e in events]
            fd, tmp = tempfile.mkstemp(
                dir=self.directory, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(merged, f, ensure_ascii=False, indent=2)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except (OSError, ValueError) as e:
            logger.error(f"Appending {len(events)} events for {date} failed: {e}")
            return False
        return True

    def read(self, date: str) -> List[TrackEvent]:
        if not _DATE_RE.match(date):
            return []
        try:
            rows = self._load(self.path_for(date))
        except (OSError, ValueError) as e:
            logger.error(f"Reading events for {date} failed: {e}")
            return []
        return _decode_rows(date, [r for r in rows if isinstance(r, dict)])

    def dates(self) -> List[str]:
        found = []
        for p in self.directory.glob("events-*.json"):
            date = p.stem[len("events-"):]
            if _DATE_RE.match(date):
                found.append(date)
        return sorted(found, reverse=True)

    def stats(self) -> Dict[str, Any]:
        files = list(self.directory.glob("events-*.json"))
        return {
            "backend": "json",
            "path": str(self.directory),
            "size_mb": round(sum(p.stat().st_size for p in files) / (1024 * 1024), 2),
            "events": sum(len(self.read(d)) for d in self.dates()),
            "days": len(files),
        }


# ── Accessor ──────────────────────────────────────────────────────────────────

_store_instances: Dict[str, EventStore] = {}
_store_lock = threading.Lock()


def get_store(cfg: Optional[Any] = None) -> EventStore:
    """Get or create the configured event store (process-wide per location)."""
    from .config import Config

    cfg = cfg or Config.load()
    if cfg.store_backend == "json":
        key = f"json:{cfg.resolved_events_dir}"
    else:
        key = f"sqlite:{cfg.resolved_db_path}"

    with _store_lock:
        if key not in _store_instances:
            if cfg.store_backend == "json":
                store: EventStore = JsonFileEventStore(cfg.resolved_events_dir)
            else:
                sqlite_store = SqliteEventStore(cfg.resolved_db_path)
                sqlite_store.initialize()
                store = sqlite_store
            _store_instances[key] = store
        return _store_instances[key]
