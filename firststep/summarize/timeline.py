"""Day timeline — one entry per step-level event, in log order."""

from __future__ import annotations

from datetime import datetime
from typing import List, Sequence

from ..core.events import TrackEvent
from ..core.models import TimelineEntry
from .daily import dedupe, round_half_up


def _clock(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M")


def build_timeline(events: Sequence[TrackEvent]) -> List[TimelineEntry]:
    entries: List[TimelineEntry] = []

    for event in dedupe(events):
        p = event.payload
        time = _clock(event.timestamp)

        if event.type == "exec.micro_completed":
            entries.append(TimelineEntry(
                time, p.micro_action, "completed", round_half_up(p.actual_seconds / 60)
            ))
        elif event.type == "exec.flow_entered":
            entries.append(TimelineEntry(time, f"Flow: {p.task_title}", "flow"))
        elif event.type == "exec.flow_ended":
            entries.append(TimelineEntry(
                time, "Flow ended", "flow", round_half_up(p.flow_duration_seconds / 60)
            ))
        elif event.type == "stuck.triggered":
            entries.append(TimelineEntry(
                time, f"Stuck: {p.micro_action}", "stuck", round_half_up(p.elapsed_seconds / 60)
            ))
        elif event.type == "abandon.exit":
            entries.append(TimelineEntry(
                time, f"Abandoned: {p.micro_action}", "abandoned",
                round_half_up(p.elapsed_seconds / 60),
            ))

    return entries
