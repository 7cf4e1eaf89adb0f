"""
Event tracker — buffered, non-blocking delivery of TrackEvents to a store.

Usage:
    tracker = EventTracker(store)
    tracker.init()                  # inside a running event loop
    tracker.track("exec.micro_completed", MicroCompleted(...))
    ...
    tracker.destroy()               # final flush

Events are stamped synchronously and buffered in memory. The buffer is
flushed every ``flush_interval`` seconds, whenever it reaches
``flush_threshold`` events, and at interpreter shutdown. A date group that
fails to append goes back to the front of the buffer and is retried on the
next flush.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from ..core.events import Payload, TrackEvent
from ..core.store import EventStore

logger = logging.getLogger(__name__)

FLUSH_INTERVAL = 5.0
FLUSH_THRESHOLD = 10


class EventTracker:
    def __init__(
        self,
        store: EventStore,
        *,
        flush_interval: float = FLUSH_INTERVAL,
        flush_threshold: int = FLUSH_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.flush_interval = flush_interval
        self.flush_threshold = max(1, flush_threshold)
        self.clock = clock
        self._buffer: Deque[TrackEvent] = deque()
        self._task: Optional[asyncio.Task] = None
        self._initialized = False

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def init(self) -> None:
        """Start periodic flushing and register the shutdown flush."""
        if self._initialized:
            return
        self._initialized = True
        atexit.register(self.flush)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; periodic flush disabled")
        else:
            self._task = loop.create_task(self._flush_loop())

        logger.debug(
            f"Tracker started: interval={self.flush_interval}s "
            f"threshold={self.flush_threshold}"
        )

    def destroy(self) -> None:
        """Flush what is buffered and stop the periodic task."""
        self.flush()
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._initialized:
            atexit.unregister(self.flush)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.flush()

    # ── Core API ──────────────────────────────────────────────────────────

    def track(
        self,
        event_type: str,
        payload: Union[Payload, Dict[str, Any]],
    ) -> TrackEvent:
        """Record one event. Raises ValueError for unknown event types."""
        event = TrackEvent.create(event_type, payload, now=self.clock())
        self._buffer.append(event)
        logger.debug(f"Tracked {event_type} ({event.id[:8]})")

        if len(self._buffer) >= self.flush_threshold:
            self.flush()
        return event

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def buffered(self) -> List[TrackEvent]:
        return list(self._buffer)

    def flush(self) -> int:
        """Write buffered events to the store, grouped by date.

        Returns the number of events persisted. Failed groups are requeued
        ahead of anything tracked since, in their original order.
        """
        if not self._buffer:
            return 0

        to_write = list(self._buffer)
        self._buffer.clear()

        by_date: Dict[str, List[TrackEvent]] = {}
        for event in to_write:
            by_date.setdefault(event.date, []).append(event)

        written = 0
        failed: List[TrackEvent] = []
        for date, events in by_date.items():
            try:
                ok = self.store.append(date, events)
            except Exception as e:
                logger.error(f"Event store raised while appending {date}: {e}")
                ok = False

            if ok:
                written += len(events)
            else:
                logger.error(
                    f"Failed to persist {len(events)} events for {date}; "
                    "requeued for retry"
                )
                failed.extend(events)

        # extendleft reverses its argument
        self._buffer.extendleft(reversed(failed))
        return written
