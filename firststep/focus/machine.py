"""
Focus session state machine — pure transition functions.

    step(state, command, now) -> Transition | None

A Transition carries the next FocusState and the event payloads the move
emits, in emission order. ``None`` means the command is not defined for the
current phase; callers treat that as a no-op. Nothing here performs I/O,
reads the clock, or generates ids: ``now`` and new session ids come in
with the command.

    idle ─▶ scaffolding ─▶ executing ◀─▶ relay ─▶ flow ─▶ done
                              │  ▲         │               ▲
                              ▼  │         └───────────────┘
                           stuck_a ─▶ stuck_b ─▶ executing

``exit`` is accepted from every phase except idle and always lands in idle.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from ..core.events import (
    AbandonExit,
    BrainDump,
    DailyLeftovers,
    FirstMicro,
    FlowEnded,
    FlowEntered,
    FocusSelected,
    MacroCompleted,
    MicroCompleted,
    MicroStarted,
    Payload,
    PivotChosen,
    PivotOffered,
    SessionEnded,
    SessionStarted,
    StuckReason,
    StuckTriggered,
)
from ..core.models import (
    MID_ACTION_PHASES,
    FocusSession,
    FocusState,
    Phase,
    PivotOffer,
    Task,
)

SOURCES = ("self", "ai_chip")
PIVOT_SOURCES = ("self", "ai_chip", "resume_original")
MANUAL_COMPLETIONS = ("manual", "subtasks_all_done")


# ── Commands ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StartScaffolding:
    task: Task
    pool: Tuple[Task, ...] = ()


@dataclass(frozen=True)
class ConfirmFirstAction:
    label: str
    session_id: str
    source: str = "self"
    estimated_seconds: Optional[int] = None
    subtask_id: Optional[str] = None
    subtask_title: Optional[str] = None


@dataclass(frozen=True)
class CompleteAction:
    pass


@dataclass(frozen=True)
class RequestUnstuck:
    pass


@dataclass(frozen=True)
class AdvanceTo:
    label: str
    estimated_seconds: Optional[int] = None
    subtask_id: Optional[str] = None
    subtask_title: Optional[str] = None


@dataclass(frozen=True)
class EnterFlow:
    pass


@dataclass(frozen=True)
class SubmitReason:
    reason: str
    source: str = "self"


@dataclass(frozen=True)
class ResumeOriginal:
    pass


@dataclass(frozen=True)
class OfferPivot:
    """Advisor response arriving for ``session_id``.

    ``episode`` is the session's stuck_episode when the request was made;
    a response for an earlier episode is rejected.
    """

    session_id: str
    offer: PivotOffer
    episode: Optional[int] = None


@dataclass(frozen=True)
class ChoosePivot:
    label: str
    source: str = "self"
    estimated_seconds: Optional[int] = None


@dataclass(frozen=True)
class FinishTask:
    completed_via: Optional[str] = None


@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class RecordLeftovers:
    tasks: Tuple[Task, ...] = ()


@dataclass(frozen=True)
class Transition:
    state: FocusState
    events: Tuple[Payload, ...] = ()


# Phase → phases a single legal command can lead to (besides staying put)
GRAPH: Dict[Phase, FrozenSet[Phase]] = {
    Phase.IDLE: frozenset({Phase.SCAFFOLDING}),
    Phase.SCAFFOLDING: frozenset({Phase.EXECUTING, Phase.IDLE}),
    Phase.EXECUTING: frozenset({Phase.RELAY, Phase.STUCK_A, Phase.IDLE}),
    Phase.RELAY: frozenset({Phase.EXECUTING, Phase.FLOW, Phase.DONE, Phase.IDLE}),
    Phase.STUCK_A: frozenset({Phase.STUCK_B, Phase.EXECUTING, Phase.IDLE}),
    Phase.STUCK_B: frozenset({Phase.EXECUTING, Phase.IDLE}),
    Phase.FLOW: frozenset({Phase.DONE, Phase.IDLE}),
    Phase.DONE: frozenset({Phase.SCAFFOLDING, Phase.IDLE}),
}

# Phase → command types accepted there
LEGAL: Dict[Phase, FrozenSet[type]] = {
    Phase.IDLE: frozenset({StartScaffolding, RecordLeftovers}),
    Phase.SCAFFOLDING: frozenset({ConfirmFirstAction, Exit, RecordLeftovers}),
    Phase.EXECUTING: frozenset({CompleteAction, RequestUnstuck, Exit, RecordLeftovers}),
    Phase.RELAY: frozenset({AdvanceTo, EnterFlow, FinishTask, Exit, RecordLeftovers}),
    Phase.STUCK_A: frozenset({SubmitReason, ResumeOriginal, Exit, RecordLeftovers}),
    Phase.STUCK_B: frozenset({OfferPivot, ChoosePivot, Exit, RecordLeftovers}),
    Phase.FLOW: frozenset({CompleteAction, FinishTask, Exit, RecordLeftovers}),
    Phase.DONE: frozenset({StartScaffolding, Exit, RecordLeftovers}),
}


def _elapsed(since: Optional[float], now: float) -> int:
    if since is None:
        return 0
    return max(0, int(round(now - since)))


def _label(text: Optional[str]) -> str:
    return (text or "").strip()


# ── Handlers ──────────────────────────────────────────────────────────────────


def _start_scaffolding(state: FocusState, cmd: StartScaffolding, now: float) -> Optional[Transition]:
    task = cmd.task
    pool = cmd.pool or (task,)
    events = (
        BrainDump(tasks=[t.ref() for t in pool], task_count=len(pool)),
        FocusSelected(task_id=task.id, task_title=task.title, task_note=task.note or None),
    )
    return Transition(FocusState(phase=Phase.SCAFFOLDING, task=task), events)


def _confirm_first_action(state: FocusState, cmd: ConfirmFirstAction, now: float) -> Optional[Transition]:
    task = state.task
    label = _label(cmd.label)
    if task is None or not label or cmd.source not in SOURCES:
        return None

    session = FocusSession(
        session_id=cmd.session_id,
        task_id=task.id,
        task_title=task.title,
        current_micro_task=label,
        start_time=now,
        started_at=now,
        estimated_seconds=cmd.estimated_seconds,
        current_subtask_id=cmd.subtask_id,
        current_subtask_title=cmd.subtask_title,
    )
    events = (
        FirstMicro(task_id=task.id, task_title=task.title, micro_action=label, source=cmd.source),
        SessionStarted(session_id=session.session_id, task_id=task.id, task_title=task.title),
        _micro_started(session),
    )
    return Transition(replace(state, phase=Phase.EXECUTING, session=session), events)


def _micro_started(s: FocusSession) -> MicroStarted:
    return MicroStarted(
        session_id=s.session_id,
        task_id=s.task_id,
        task_title=s.task_title,
        micro_action=s.current_micro_task,
        estimated_seconds=s.estimated_seconds,
    )


def _complete_action(state: FocusState, cmd: CompleteAction, now: float) -> Optional[Transition]:
    s = state.session
    if s is None:
        return None
    if state.phase is Phase.FLOW:
        return _finish_task(state, FinishTask(), now)

    event = MicroCompleted(
        session_id=s.session_id,
        task_id=s.task_id,
        task_title=s.task_title,
        micro_action=s.current_micro_task,
        actual_seconds=_elapsed(s.start_time, now),
        estimated_seconds=s.estimated_seconds,
    )
    session = replace(
        s,
        micro_history=s.micro_history + (s.current_micro_task,),
        start_time=now,
        estimated_seconds=None,
    )
    return Transition(replace(state, phase=Phase.RELAY, session=session), (event,))


def _request_unstuck(state: FocusState, cmd: RequestUnstuck, now: float) -> Optional[Transition]:
    s = state.session
    if s is None:
        return None
    event = StuckTriggered(
        session_id=s.session_id,
        task_id=s.task_id,
        micro_action=s.current_micro_task,
        elapsed_seconds=_elapsed(s.start_time, now),
    )
    session = replace(s, stuck_reason=None, pivot_offer=None)
    return Transition(replace(state, phase=Phase.STUCK_A, session=session), (event,))


def _advance_to(state: FocusState, cmd: AdvanceTo, now: float) -> Optional[Transition]:
    s = state.session
    label = _label(cmd.label)
    if s is None or not label:
        return None

    session = replace(
        s,
        current_micro_task=label,
        start_time=now,
        estimated_seconds=cmd.estimated_seconds,
        current_subtask_id=cmd.subtask_id or s.current_subtask_id,
        current_subtask_title=cmd.subtask_title or s.current_subtask_title,
    )
    return Transition(
        replace(state, phase=Phase.EXECUTING, session=session),
        (_micro_started(session),),
    )


def _enter_flow(state: FocusState, cmd: EnterFlow, now: float) -> Optional[Transition]:
    s = state.session
    if s is None:
        return None
    event = FlowEntered(
        session_id=s.session_id,
        task_id=s.task_id,
        task_title=s.task_title,
        last_micro_action=s.last_completed or s.current_micro_task,
        completed_step_count=len(s.micro_history),
    )
    # The display label becomes the macro task itself
    session = replace(
        s,
        is_flow_mode=True,
        current_micro_task=s.task_title,
        start_time=now,
        flow_started_at=now,
    )
    return Transition(replace(state, phase=Phase.FLOW, session=session), (event,))


def _submit_reason(state: FocusState, cmd: SubmitReason, now: float) -> Optional[Transition]:
    s = state.session
    reason = _label(cmd.reason)
    if s is None or not reason or cmd.source not in SOURCES:
        return None
    event = StuckReason(
        session_id=s.session_id,
        task_id=s.task_id,
        micro_action=s.current_micro_task,
        reason=reason,
        reason_source=cmd.source,
    )
    session = replace(
        s, stuck_reason=reason, stuck_episode=s.stuck_episode + 1, pivot_offer=None
    )
    return Transition(replace(state, phase=Phase.STUCK_B, session=session), (event,))


def _resume_original(state: FocusState, cmd: ResumeOriginal, now: float) -> Optional[Transition]:
    if state.session is None:
        return None
    return Transition(replace(state, phase=Phase.EXECUTING))


def _offer_pivot(state: FocusState, cmd: OfferPivot, now: float) -> Optional[Transition]:
    s = state.session
    if s is None or s.session_id != cmd.session_id:
        return None
    if cmd.episode is not None and cmd.episode != s.stuck_episode:
        return None

    offer = cmd.offer
    session = replace(s, pivot_offer=offer)
    events: Tuple[Payload, ...] = ()
    if offer.empathy or offer.pivots:
        events = (
            PivotOffered(
                session_id=s.session_id,
                task_id=s.task_id,
                empathy=offer.empathy,
                pivot_suggestions=list(offer.pivots),
            ),
        )
    return Transition(replace(state, session=session), events)


def _choose_pivot(state: FocusState, cmd: ChoosePivot, now: float) -> Optional[Transition]:
    s = state.session
    if s is None or cmd.source not in PIVOT_SOURCES:
        return None

    label = _label(cmd.label)
    if cmd.source == "resume_original":
        label = label or s.current_micro_task
    if not label:
        return None

    chosen = PivotChosen(
        session_id=s.session_id,
        task_id=s.task_id,
        chosen_pivot=label,
        pivot_source=cmd.source,
    )
    session = replace(
        s,
        current_micro_task=label,
        start_time=now,
        estimated_seconds=cmd.estimated_seconds,
        stuck_reason=None,
        pivot_offer=None,
    )
    return Transition(
        replace(state, phase=Phase.EXECUTING, session=session),
        (chosen, _micro_started(session)),
    )


def _finish_task(state: FocusState, cmd: FinishTask, now: float) -> Optional[Transition]:
    s = state.session
    if s is None:
        return None

    events: Tuple[Payload, ...] = ()
    if state.phase is Phase.FLOW:
        completed_via = "flow"
        events += (
            FlowEnded(
                session_id=s.session_id,
                task_id=s.task_id,
                task_title=s.task_title,
                flow_duration_seconds=_elapsed(s.flow_started_at, now),
                end_reason="task_done",
            ),
        )
    else:
        completed_via = cmd.completed_via or "manual"
        if completed_via not in MANUAL_COMPLETIONS:
            return None

    events += (
        MacroCompleted(task_id=s.task_id, task_title=s.task_title, completed_via=completed_via),
        _session_ended(s, now, "task_done"),
    )
    return Transition(FocusState(phase=Phase.DONE, task=state.task), events)


def _session_ended(s: FocusSession, now: float, reason: str) -> SessionEnded:
    return SessionEnded(
        session_id=s.session_id,
        task_id=s.task_id,
        task_title=s.task_title,
        total_duration_seconds=_elapsed(s.started_at, now),
        completed_micro_steps=len(s.micro_history),
        end_reason=reason,
    )


def _exit(state: FocusState, cmd: Exit, now: float) -> Optional[Transition]:
    s = state.session
    if s is None:
        return Transition(FocusState())

    events: Tuple[Payload, ...] = ()
    if state.phase in MID_ACTION_PHASES:
        events += (
            AbandonExit(
                session_id=s.session_id,
                task_id=s.task_id,
                task_title=s.task_title,
                micro_action=s.current_micro_task,
                elapsed_seconds=_elapsed(s.start_time, now),
                phase=state.phase.value,
            ),
        )
    elif state.phase is Phase.FLOW:
        events += (
            FlowEnded(
                session_id=s.session_id,
                task_id=s.task_id,
                task_title=s.task_title,
                flow_duration_seconds=_elapsed(s.flow_started_at, now),
                end_reason="exit",
            ),
        )
    events += (_session_ended(s, now, "exit"),)
    return Transition(FocusState(), events)


def _record_leftovers(state: FocusState, cmd: RecordLeftovers, now: float) -> Optional[Transition]:
    event = DailyLeftovers(
        leftover_tasks=[
            {"id": t.id, "title": t.title, "priority": t.priority} for t in cmd.tasks
        ],
        total_count=len(cmd.tasks),
    )
    return Transition(state, (event,))


_HANDLERS: Dict[type, Callable[..., Optional[Transition]]] = {
    StartScaffolding: _start_scaffolding,
    ConfirmFirstAction: _confirm_first_action,
    CompleteAction: _complete_action,
    RequestUnstuck: _request_unstuck,
    AdvanceTo: _advance_to,
    EnterFlow: _enter_flow,
    SubmitReason: _submit_reason,
    ResumeOriginal: _resume_original,
    OfferPivot: _offer_pivot,
    ChoosePivot: _choose_pivot,
    FinishTask: _finish_task,
    Exit: _exit,
    RecordLeftovers: _record_leftovers,
}


def is_legal(phase: Phase, command: object) -> bool:
    return type(command) in LEGAL[phase]


def step(state: FocusState, command: object, now: float) -> Optional[Transition]:
    """Apply one command. Returns None when the command is illegal here."""
    if not is_legal(state.phase, command):
        return None
    return _HANDLERS[type(command)](state, command, now)
