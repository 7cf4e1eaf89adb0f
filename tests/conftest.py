"""Shared fixtures: fake clock, in-memory store, scripted advisor."""

from typing import Dict, List, Optional

import pytest

from firststep.core.events import TrackEvent
from firststep.core.models import PivotOffer, Task
from firststep.focus.controller import SessionController
from firststep.tracking.tracker import EventTracker

# 2026-02-21 09:00:00 UTC
T0 = 1771664400.0


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryStore:
    """EventStore double. ``fail_next`` makes the next N appends fail."""

    def __init__(self):
        self.partitions: Dict[str, List[TrackEvent]] = {}
        self.fail_next = 0
        self.calls: List[str] = []

    def append(self, date, events) -> bool:
        self.calls.append(date)
        if self.fail_next:
            self.fail_next -= 1
            return False
        self.partitions.setdefault(date, []).extend(events)
        return True

    def read(self, date) -> List[TrackEvent]:
        return list(self.partitions.get(date, []))

    def dates(self) -> List[str]:
        return sorted(self.partitions, reverse=True)

    def all(self) -> List[TrackEvent]:
        return [e for d in sorted(self.partitions) for e in self.partitions[d]]


class FakeAdvisor:
    def __init__(
        self,
        first: Optional[List[str]] = None,
        causes: Optional[List[str]] = None,
        pivot: Optional[PivotOffer] = None,
        error: Optional[Exception] = None,
    ):
        self.first = first or []
        self.causes = causes or []
        self.pivot = pivot or PivotOffer()
        self.error = error
        self.calls: List[tuple] = []

    async def suggest_first_actions(self, ctx):
        self.calls.append(("first", ctx))
        if self.error:
            raise self.error
        return self.first

    async def suggest_stuck_causes(self, ctx):
        self.calls.append(("causes", ctx))
        if self.error:
            raise self.error
        return self.causes

    async def suggest_pivot(self, ctx, reason):
        self.calls.append(("pivot", ctx, reason))
        if self.error:
            raise self.error
        return self.pivot


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def tracker(store, clock):
    # High threshold so tests decide when to flush
    return EventTracker(store, flush_threshold=1000, clock=clock)


@pytest.fixture
def fake_advisor():
    return FakeAdvisor


@pytest.fixture
def task():
    return Task(id="t1", title="Write the quarterly report", note="due Friday")


@pytest.fixture
def make_controller(tracker, clock):
    def _make(advisor=None, **kwargs):
        ids = iter(f"sess-{i}" for i in range(1, 100))
        return SessionController(
            tracker, advisor, clock=clock, new_session_id=lambda: next(ids), **kwargs
        )
    return _make
