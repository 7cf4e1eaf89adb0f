"""Data models for firststep."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Phase(str, Enum):
    IDLE = "idle"
    SCAFFOLDING = "scaffolding"
    EXECUTING = "executing"
    RELAY = "relay"
    STUCK_A = "stuck_a"     # waiting for a stuck reason
    STUCK_B = "stuck_b"     # waiting for a pivot choice
    FLOW = "flow"
    DONE = "done"


# Phases in which a micro-action is underway
MID_ACTION_PHASES = frozenset({Phase.EXECUTING, Phase.STUCK_A, Phase.STUCK_B})


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    note: str = ""
    priority: str = "medium"  # high | medium | low

    def ref(self) -> Dict[str, str]:
        return {"id": self.id, "title": self.title}


@dataclass(frozen=True)
class PivotOffer:
    empathy: str = ""
    pivots: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FocusSession:
    session_id: str
    task_id: str
    task_title: str
    current_micro_task: str
    start_time: float          # phase-entry instant, epoch seconds
    started_at: float          # session creation instant
    is_flow_mode: bool = False
    micro_history: Tuple[str, ...] = ()
    estimated_seconds: Optional[int] = None
    flow_started_at: Optional[float] = None
    current_subtask_id: Optional[str] = None
    current_subtask_title: Optional[str] = None
    stuck_reason: Optional[str] = None
    stuck_episode: int = 0     # bumped on every stuck.reason
    pivot_offer: Optional[PivotOffer] = None

    @property
    def last_completed(self) -> Optional[str]:
        return self.micro_history[-1] if self.micro_history else None


@dataclass(frozen=True)
class FocusState:
    phase: Phase = Phase.IDLE
    task: Optional[Task] = None
    session: Optional[FocusSession] = None


# ── Daily summary ─────────────────────────────────────────────────────────────


@dataclass
class Planning:
    brain_dump_tasks: List[str] = field(default_factory=list)
    focus_task_title: Optional[str] = None
    first_micro_action: Optional[str] = None
    scaffold_source: Optional[str] = None  # "self" | "ai_chip"


@dataclass
class MicroStep:
    micro_action: str
    actual_seconds: int
    status: str  # "completed" | "stuck" | "abandoned"
    estimated_seconds: Optional[int] = None
    time_delta_seconds: Optional[int] = None


@dataclass
class FlowRecord:
    task_title: str
    triggered_at: str  # ISO time
    duration_seconds: int
    last_micro_before_flow: str


@dataclass
class StuckRecord:
    micro_action: str
    reason: str
    reason_source: str
    pivot_chosen: str
    pivot_source: str
    rescue_succeeded: Optional[bool]


@dataclass
class Abandonment:
    micro_action: str
    task_title: str
    elapsed_seconds: int
    time: str  # ISO time


@dataclass
class MacroTask:
    title: Optional[str] = None
    completed: bool = False
    completed_via: Optional[str] = None


@dataclass
class Stats:
    total_micro_steps: int = 0
    completed_micro_steps: int = 0
    total_stuck_count: int = 0
    total_flow_minutes: int = 0
    total_focus_minutes: int = 0
    average_time_delta_seconds: Optional[int] = None


@dataclass
class DailySummary:
    date: str
    planning: Planning = field(default_factory=Planning)
    micro_step_trail: List[MicroStep] = field(default_factory=list)
    flow_events: List[FlowRecord] = field(default_factory=list)
    stuck_events: List[StuckRecord] = field(default_factory=list)
    abandonments: List[Abandonment] = field(default_factory=list)
    macro_task: MacroTask = field(default_factory=MacroTask)
    leftover_tasks: List[str] = field(default_factory=list)
    stats: Stats = field(default_factory=Stats)


@dataclass
class TimelineEntry:
    time: str    # HH:MM local
    title: str
    status: str  # "completed" | "stuck" | "abandoned" | "flow"
    duration_min: Optional[int] = None
