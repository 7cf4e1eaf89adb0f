"""
Daily summary builder — replay one day's events into a DailySummary.

Pure and deterministic: the same event list always yields the same
summary, and the input is never modified. The event log is the source of
truth; the summary is never stored.

    events = store.read("2026-02-21")
    summary = build_daily_summary("2026-02-21", events)
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..core.events import TrackEvent
from ..core.models import (
    Abandonment,
    DailySummary,
    FlowRecord,
    MacroTask,
    MicroStep,
    Planning,
    Stats,
    StuckRecord,
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_iso(timestamp_ms: int) -> str:
    return (
        datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def dedupe(events: Iterable[TrackEvent]) -> List[TrackEvent]:
    """Drop repeated deliveries of the same event id, keeping the first."""
    seen: Set[str] = set()
    unique = []
    for e in events:
        if e.id in seen:
            continue
        seen.add(e.id)
        unique.append(e)
    return unique


def _by_type(events: Sequence[TrackEvent]) -> Dict[str, List[TrackEvent]]:
    grouped: Dict[str, List[TrackEvent]] = {}
    for e in events:
        grouped.setdefault(e.type, []).append(e)
    return grouped


def _latest(grouped: Dict[str, List[TrackEvent]], event_type: str) -> Optional[TrackEvent]:
    items = grouped.get(event_type)
    return items[-1] if items else None


def build_daily_summary(date: str, events: Sequence[TrackEvent]) -> DailySummary:
    """Aggregate a day's event stream into a structured summary."""
    events = dedupe(events)
    grouped = _by_type(events)

    # -------- Planning (last write wins) --------
    dump = _latest(grouped, "plan.brain_dump")
    focus = _latest(grouped, "plan.focus_selected")
    first = _latest(grouped, "plan.first_micro")

    planning = Planning(
        brain_dump_tasks=[t.get("title", "") for t in dump.payload.tasks] if dump else [],
        focus_task_title=focus.payload.task_title if focus else None,
        first_micro_action=first.payload.micro_action if first else None,
        scaffold_source=first.payload.source if first else None,
    )

    # -------- Micro-step trail, in event order --------
    trail: List[MicroStep] = []
    for e in events:
        p = e.payload
        if e.type == "exec.micro_completed":
            delta = None
            if p.estimated_seconds is not None:
                delta = p.actual_seconds - p.estimated_seconds
            trail.append(MicroStep(
                micro_action=p.micro_action,
                actual_seconds=p.actual_seconds,
                status="completed",
                estimated_seconds=p.estimated_seconds,
                time_delta_seconds=delta,
            ))
        elif e.type == "stuck.triggered":
            trail.append(MicroStep(
                micro_action=p.micro_action,
                actual_seconds=p.elapsed_seconds,
                status="stuck",
            ))
        elif e.type == "abandon.exit":
            trail.append(MicroStep(
                micro_action=p.micro_action,
                actual_seconds=p.elapsed_seconds,
                status="abandoned",
            ))

    # -------- Flow intervals --------
    flow_events = _pair_flows(events)

    # -------- Stuck & rescue --------
    completed = grouped.get("exec.micro_completed", [])
    pivots = grouped.get("stuck.pivot_chosen", [])
    stuck_events: List[StuckRecord] = []
    for reason in grouped.get("stuck.reason", []):
        sid = reason.payload.session_id
        pivot = next(
            (p for p in pivots
             if p.payload.session_id == sid and p.timestamp > reason.timestamp),
            None,
        )
        rescued: Optional[bool] = None
        if pivot is not None:
            rescued = any(
                mc.payload.session_id == sid and mc.timestamp > pivot.timestamp
                for mc in completed
            )
        stuck_events.append(StuckRecord(
            micro_action=reason.payload.micro_action,
            reason=reason.payload.reason,
            reason_source=reason.payload.reason_source,
            pivot_chosen=pivot.payload.chosen_pivot if pivot else "",
            pivot_source=pivot.payload.pivot_source if pivot else "",
            rescue_succeeded=rescued,
        ))

    # -------- Abandonments --------
    abandonments = [
        Abandonment(
            micro_action=e.payload.micro_action,
            task_title=e.payload.task_title,
            elapsed_seconds=e.payload.elapsed_seconds,
            time=to_iso(e.timestamp),
        )
        for e in grouped.get("abandon.exit", [])
    ]

    # -------- Macro task closure --------
    macro = _latest(grouped, "session.macro_completed")
    macro_task = MacroTask(
        title=focus.payload.task_title if focus else None,
        completed=macro is not None,
        completed_via=macro.payload.completed_via if macro else None,
    )

    # -------- Leftovers --------
    leftovers = _latest(grouped, "daily.leftovers")
    leftover_tasks = (
        [t.get("title", "") for t in leftovers.payload.leftover_tasks] if leftovers else []
    )

    # -------- Stats --------
    total_flow = sum(f.duration_seconds for f in flow_events)
    total_focus = sum(
        e.payload.total_duration_seconds for e in grouped.get("session.ended", [])
    )
    deltas = [m.time_delta_seconds for m in trail if m.time_delta_seconds is not None]
    stats = Stats(
        total_micro_steps=len(trail),
        completed_micro_steps=len(completed),
        total_stuck_count=len(stuck_events),
        total_flow_minutes=round_half_up(total_flow / 60),
        total_focus_minutes=round_half_up(total_focus / 60),
        average_time_delta_seconds=(
            round_half_up(sum(deltas) / len(deltas)) if deltas else None
        ),
    )

    return DailySummary(
        date=date,
        planning=planning,
        micro_step_trail=trail,
        flow_events=flow_events,
        stuck_events=stuck_events,
        abandonments=abandonments,
        macro_task=macro_task,
        leftover_tasks=leftover_tasks,
        stats=stats,
    )


def _pair_flows(events: Sequence[TrackEvent]) -> List[FlowRecord]:
    """Pair each flow entry with the next unclaimed flow end of its session."""
    records: List[FlowRecord] = []
    claimed: Set[int] = set()
    for i, enter in enumerate(events):
        if enter.type != "exec.flow_entered":
            continue
        sid = enter.payload.session_id
        duration = 0
        for j in range(i + 1, len(events)):
            end = events[j]
            if (
                j not in claimed
                and end.type == "exec.flow_ended"
                and end.payload.session_id == sid
            ):
                claimed.add(j)
                duration = end.payload.flow_duration_seconds
                break
        records.append(FlowRecord(
            task_title=enter.payload.task_title,
            triggered_at=to_iso(enter.timestamp),
            duration_seconds=duration,
            last_micro_before_flow=enter.payload.last_micro_action,
        ))
    return records
