"""
Event taxonomy — the closed set of behavioral facts firststep records.

Every user action becomes one TrackEvent. Events are stored per calendar
day and replayed at day's end to build the DailySummary.

Adding a new kind of event:
  1. Define a payload dataclass below with a unique ``event_type``.
  2. Register it in ``_PAYLOAD_CLASSES``.
Nothing in the store or tracker needs to change.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

EVENT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Payload:
    event_type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Payload:
        # Unknown keys are dropped so newer files stay readable
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ── Planning ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BrainDump(Payload):
    event_type: ClassVar[str] = "plan.brain_dump"

    tasks: List[Dict[str, str]]  # [{"id": ..., "title": ...}]
    task_count: int


@dataclass(frozen=True)
class FocusSelected(Payload):
    event_type: ClassVar[str] = "plan.focus_selected"

    task_id: str
    task_title: str
    task_note: Optional[str] = None


@dataclass(frozen=True)
class FirstMicro(Payload):
    event_type: ClassVar[str] = "plan.first_micro"

    task_id: str
    task_title: str
    micro_action: str
    source: str  # "self" | "ai_chip"


# ── Execution ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MicroStarted(Payload):
    event_type: ClassVar[str] = "exec.micro_started"

    session_id: str
    task_id: str
    task_title: str
    micro_action: str
    estimated_seconds: Optional[int] = None


@dataclass(frozen=True)
class MicroCompleted(Payload):
    event_type: ClassVar[str] = "exec.micro_completed"

    session_id: str
    task_id: str
    task_title: str
    micro_action: str
    actual_seconds: int
    estimated_seconds: Optional[int] = None


@dataclass(frozen=True)
class FlowEntered(Payload):
    event_type: ClassVar[str] = "exec.flow_entered"

    session_id: str
    task_id: str
    task_title: str
    last_micro_action: str
    completed_step_count: int


@dataclass(frozen=True)
class FlowEnded(Payload):
    event_type: ClassVar[str] = "exec.flow_ended"

    session_id: str
    task_id: str
    task_title: str
    flow_duration_seconds: int
    end_reason: str  # "task_done" | "exit" | "stuck"


# ── Stuck & rescue ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StuckTriggered(Payload):
    event_type: ClassVar[str] = "stuck.triggered"

    session_id: str
    task_id: str
    micro_action: str
    elapsed_seconds: int


@dataclass(frozen=True)
class StuckReason(Payload):
    event_type: ClassVar[str] = "stuck.reason"

    session_id: str
    task_id: str
    micro_action: str
    reason: str
    reason_source: str  # "ai_chip" | "self"


@dataclass(frozen=True)
class PivotOffered(Payload):
    event_type: ClassVar[str] = "stuck.pivot_offered"

    session_id: str
    task_id: str
    empathy: str
    pivot_suggestions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PivotChosen(Payload):
    event_type: ClassVar[str] = "stuck.pivot_chosen"

    session_id: str
    task_id: str
    chosen_pivot: str
    pivot_source: str  # "ai_chip" | "self" | "resume_original"


# ── Abandonment ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AbandonExit(Payload):
    event_type: ClassVar[str] = "abandon.exit"

    session_id: str
    task_id: str
    task_title: str
    micro_action: str
    elapsed_seconds: int
    phase: str


# ── Session lifecycle ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionStarted(Payload):
    event_type: ClassVar[str] = "session.started"

    session_id: str
    task_id: str
    task_title: str


@dataclass(frozen=True)
class SessionEnded(Payload):
    event_type: ClassVar[str] = "session.ended"

    session_id: str
    task_id: str
    task_title: str
    total_duration_seconds: int
    completed_micro_steps: int
    end_reason: str  # "task_done" | "exit" | "abandon"


@dataclass(frozen=True)
class MacroCompleted(Payload):
    event_type: ClassVar[str] = "session.macro_completed"

    task_id: str
    task_title: str
    completed_via: str  # "flow" | "manual" | "subtasks_all_done"


# ── Daily snapshot ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DailyLeftovers(Payload):
    event_type: ClassVar[str] = "daily.leftovers"

    leftover_tasks: List[Dict[str, str]]  # [{"id", "title", "priority"}]
    total_count: int


_PAYLOAD_CLASSES = (
    BrainDump,
    FocusSelected,
    FirstMicro,
    MicroStarted,
    MicroCompleted,
    FlowEntered,
    FlowEnded,
    StuckTriggered,
    StuckReason,
    PivotOffered,
    PivotChosen,
    AbandonExit,
    SessionStarted,
    SessionEnded,
    MacroCompleted,
    DailyLeftovers,
)

EVENT_TYPES: Dict[str, Type[Payload]] = {c.event_type: c for c in _PAYLOAD_CLASSES}


def coerce_payload(event_type: str, payload: Union[Payload, Dict[str, Any]]) -> Payload:
    """Return a payload instance of the class registered for event_type.

    Raises ValueError for unknown types or mismatched payload classes.
    A dict is converted; missing required fields raise TypeError.
    """
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type}")
    if isinstance(payload, cls):
        return payload
    if isinstance(payload, dict):
        return cls.from_dict(payload)
    raise ValueError(
        f"Payload {type(payload).__name__} does not match event type {event_type}"
    )


def local_date(timestamp_ms: int) -> str:
    """Calendar day (local time) for an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class TrackEvent:
    id: str
    type: str
    timestamp: int  # epoch milliseconds
    date: str       # YYYY-MM-DD
    payload: Payload
    version: int = EVENT_SCHEMA_VERSION

    @classmethod
    def create(
        cls,
        event_type: str,
        payload: Union[Payload, Dict[str, Any]],
        *,
        now: float,
    ) -> TrackEvent:
        """Stamp a new event. ``now`` is epoch seconds."""
        body = coerce_payload(event_type, payload)
        timestamp = int(round(now * 1000))
        return cls(
            id=uuid.uuid4().hex,
            type=event_type,
            timestamp=timestamp,
            date=local_date(timestamp),
            payload=body,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "date": self.date,
            "version": self.version,
            "payload": self.payload.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TrackEvent:
        event_type = data["type"]
        cls_payload = EVENT_TYPES.get(event_type)
        if cls_payload is None:
            raise ValueError(f"Unknown event type: {event_type}")
        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValueError(f"Payload of {event_type} is not an object")
        return cls(
            id=str(data["id"]),
            type=event_type,
            timestamp=int(data["timestamp"]),
            date=str(data.get("date") or local_date(int(data["timestamp"]))),
            payload=cls_payload.from_dict(payload),
            version=int(data.get("version", EVENT_SCHEMA_VERSION)),
        )
