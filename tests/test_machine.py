"""Tests for firststep.focus.machine — pure transitions and legality."""

import random

import pytest

from firststep.core.models import FocusState, Phase, PivotOffer, Task
from firststep.focus.machine import (
    GRAPH,
    LEGAL,
    AdvanceTo,
    ChoosePivot,
    CompleteAction,
    ConfirmFirstAction,
    EnterFlow,
    Exit,
    FinishTask,
    OfferPivot,
    RecordLeftovers,
    RequestUnstuck,
    ResumeOriginal,
    StartScaffolding,
    SubmitReason,
    is_legal,
    step,
)

T0 = 1771664400.0
TASK = Task(id="t1", title="Write the quarterly report")


def _types(transition):
    return [p.event_type for p in transition.events]


def _run(commands, state=None, now=T0):
    """Apply commands in order, 10s apart. Returns (state, all event types)."""
    state = state or FocusState()
    types = []
    for i, cmd in enumerate(commands):
        t = step(state, cmd, now + 10 * i)
        assert t is not None, f"{type(cmd).__name__} rejected in {state.phase}"
        state = t.state
        types.extend(_types(t))
    return state, types


def _executing():
    state, _ = _run([
        StartScaffolding(TASK),
        ConfirmFirstAction("Open a blank doc", session_id="sess-1"),
    ])
    return state


class TestScaffolding:
    def test_start_emits_planning_events(self):
        t = step(FocusState(), StartScaffolding(TASK), T0)
        assert t.state.phase is Phase.SCAFFOLDING
        assert t.state.task == TASK
        assert _types(t) == ["plan.brain_dump", "plan.focus_selected"]
        assert t.events[0].task_count == 1

    def test_brain_dump_lists_pool(self):
        pool = (TASK, Task(id="t2", title="Call the bank"))
        t = step(FocusState(), StartScaffolding(TASK, pool=pool), T0)
        assert t.events[0].task_count == 2
        assert [x["id"] for x in t.events[0].tasks] == ["t1", "t2"]

    def test_confirm_creates_session(self):
        state, types = _run([
            StartScaffolding(TASK),
            ConfirmFirstAction(" Open a blank doc ", session_id="sess-1", source="ai_chip"),
        ])
        assert state.phase is Phase.EXECUTING
        assert state.session.session_id == "sess-1"
        assert state.session.current_micro_task == "Open a blank doc"
        assert types[2:] == ["plan.first_micro", "session.started", "exec.micro_started"]

    def test_confirm_rejects_blank_label(self):
        state, _ = _run([StartScaffolding(TASK)])
        assert step(state, ConfirmFirstAction("   ", session_id="s"), T0) is None

    def test_confirm_rejects_unknown_source(self):
        state, _ = _run([StartScaffolding(TASK)])
        assert step(state, ConfirmFirstAction("go", session_id="s", source="psychic"), T0) is None


class TestExecution:
    def test_complete_records_duration(self):
        state = _executing()
        t = step(state, CompleteAction(), T0 + 10 + 95)
        assert t.state.phase is Phase.RELAY
        assert _types(t) == ["exec.micro_completed"]
        assert t.events[0].actual_seconds == 95
        assert t.state.session.micro_history == ("Open a blank doc",)

    def test_advance_starts_next_step(self):
        state, types = _run([CompleteAction(), AdvanceTo("Write the title")], _executing())
        assert state.phase is Phase.EXECUTING
        assert state.session.current_micro_task == "Write the title"
        assert types == ["exec.micro_completed", "exec.micro_started"]

    def test_flow_then_finish(self):
        state, types = _run([CompleteAction(), EnterFlow(), FinishTask()], _executing())
        assert state.phase is Phase.DONE
        assert state.session is None
        assert types == [
            "exec.micro_completed",
            "exec.flow_entered",
            "exec.flow_ended",
            "session.macro_completed",
            "session.ended",
        ]

    def test_complete_in_flow_finishes_task(self):
        state, _ = _run([CompleteAction(), EnterFlow()], _executing())
        t = step(state, CompleteAction(), T0 + 600)
        assert t.state.phase is Phase.DONE
        assert t.events[1].completed_via == "flow"
        assert t.events[0].end_reason == "task_done"

    def test_flow_entered_reports_last_step(self):
        state, _ = _run([CompleteAction()], _executing())
        t = step(state, EnterFlow(), T0 + 100)
        assert t.events[0].last_micro_action == "Open a blank doc"
        assert t.events[0].completed_step_count == 1
        assert t.state.session.current_micro_task == TASK.title

    def test_manual_finish_from_relay(self):
        state, _ = _run([CompleteAction()], _executing())
        t = step(state, FinishTask("subtasks_all_done"), T0 + 100)
        assert _types(t) == ["session.macro_completed", "session.ended"]
        assert t.events[0].completed_via == "subtasks_all_done"

    def test_finish_rejects_flow_via_outside_flow(self):
        state, _ = _run([CompleteAction()], _executing())
        assert step(state, FinishTask("flow"), T0) is None


class TestStuck:
    def test_unstuck_path(self):
        state, types = _run(
            [RequestUnstuck(), SubmitReason("Too many emails", "ai_chip")], _executing()
        )
        assert state.phase is Phase.STUCK_B
        assert state.session.stuck_reason == "Too many emails"
        assert types == ["stuck.triggered", "stuck.reason"]

    def test_resume_keeps_timer_and_emits_nothing(self):
        state = _executing()
        started = state.session.start_time
        t1 = step(state, RequestUnstuck(), T0 + 30)
        t2 = step(t1.state, ResumeOriginal(), T0 + 40)
        assert t2.state.phase is Phase.EXECUTING
        assert t2.events == ()
        assert t2.state.session.start_time == started

    def test_offer_pivot_records_offer(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        offer = PivotOffer(empathy="That happens.", pivots=("Search by sender",))
        t = step(state, OfferPivot("sess-1", offer), T0 + 50)
        assert t.state.phase is Phase.STUCK_B
        assert t.state.session.pivot_offer == offer
        assert _types(t) == ["stuck.pivot_offered"]

    def test_offer_for_other_session_is_ignored(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        assert step(state, OfferPivot("sess-old", PivotOffer("x", ("y",))), T0) is None

    def test_offer_for_earlier_stuck_episode_is_ignored(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        episode = state.session.stuck_episode
        state, _ = _run(
            [ChoosePivot("Smaller step"), RequestUnstuck(), SubmitReason("still vague")], state
        )
        assert state.session.stuck_episode == episode + 1
        late = OfferPivot("sess-1", PivotOffer("x", ("y",)), episode=episode)
        assert step(state, late, T0) is None
        current = OfferPivot("sess-1", PivotOffer("x", ("y",)), episode=episode + 1)
        assert step(state, current, T0).state.session.pivot_offer == PivotOffer("x", ("y",))

    def test_empty_offer_emits_nothing(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        t = step(state, OfferPivot("sess-1", PivotOffer()), T0)
        assert t.events == ()

    def test_choose_pivot_restarts_step(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        t = step(state, ChoosePivot("Search by sender", "ai_chip"), T0 + 500)
        assert t.state.phase is Phase.EXECUTING
        assert t.state.session.current_micro_task == "Search by sender"
        assert t.state.session.start_time == T0 + 500
        assert t.state.session.stuck_reason is None
        assert _types(t) == ["stuck.pivot_chosen", "exec.micro_started"]

    def test_resume_original_pivot_defaults_label(self):
        state, _ = _run([RequestUnstuck(), SubmitReason("vague")], _executing())
        t = step(state, ChoosePivot("", "resume_original"), T0 + 500)
        assert t.events[0].chosen_pivot == "Open a blank doc"
        assert t.events[0].pivot_source == "resume_original"


class TestExit:
    @pytest.mark.parametrize("prefix,phase", [
        ([], "executing"),
        ([RequestUnstuck()], "stuck_a"),
        ([RequestUnstuck(), SubmitReason("vague")], "stuck_b"),
    ])
    def test_exit_mid_action_is_abandonment(self, prefix, phase):
        state, _ = _run(prefix, _executing())
        t = step(state, Exit(), T0 + 300)
        assert t.state == FocusState()
        assert _types(t) == ["abandon.exit", "session.ended"]
        assert t.events[0].phase == phase
        assert t.events[1].end_reason == "exit"

    def test_exit_from_relay(self):
        state, _ = _run([CompleteAction()], _executing())
        t = step(state, Exit(), T0 + 300)
        assert _types(t) == ["session.ended"]

    def test_exit_from_flow_ends_flow(self):
        state, _ = _run([CompleteAction(), EnterFlow()], _executing())
        t = step(state, Exit(), T0 + 900)
        assert _types(t) == ["exec.flow_ended", "session.ended"]
        assert t.events[0].end_reason == "exit"

    def test_exit_without_session(self):
        state, _ = _run([StartScaffolding(TASK)])
        t = step(state, Exit(), T0)
        assert t.state == FocusState()
        assert t.events == ()

    def test_exit_from_idle_is_illegal(self):
        assert step(FocusState(), Exit(), T0) is None


class TestLeftovers:
    def test_allowed_in_any_phase_without_state_change(self):
        tasks = (Task(id="t2", title="Call the bank", priority="high"),)
        for state in (FocusState(), _executing()):
            t = step(state, RecordLeftovers(tasks), T0)
            assert t.state == state
            assert _types(t) == ["daily.leftovers"]
            assert t.events[0].leftover_tasks == [
                {"id": "t2", "title": "Call the bank", "priority": "high"}
            ]


# ── Properties over command sequences ─────────────────────────────────────────

_ALL_COMMANDS = [
    StartScaffolding(TASK),
    ConfirmFirstAction("Open a blank doc", session_id="sess-x"),
    CompleteAction(),
    RequestUnstuck(),
    AdvanceTo("Next step"),
    EnterFlow(),
    SubmitReason("vague"),
    ResumeOriginal(),
    OfferPivot("sess-x", PivotOffer("ok", ("a",))),
    ChoosePivot("Smaller step"),
    FinishTask(),
    Exit(),
    RecordLeftovers(()),
]


class TestProperties:
    def test_every_phase_has_rules(self):
        assert set(GRAPH) == set(Phase)
        assert set(LEGAL) == set(Phase)

    def test_illegal_commands_are_noops(self):
        state = _executing()
        for cmd in _ALL_COMMANDS:
            if not is_legal(state.phase, cmd):
                assert step(state, cmd, T0) is None

    @pytest.mark.parametrize("seed", range(20))
    def test_random_walk_stays_on_graph(self, seed):
        rng = random.Random(seed)
        state = FocusState()
        step_open = False
        for i in range(200):
            cmd = rng.choice(_ALL_COMMANDS)
            t = step(state, cmd, T0 + i)
            if t is None:
                continue
            assert is_legal(state.phase, cmd)
            assert t.state.phase == state.phase or t.state.phase in GRAPH[state.phase]
            if t.state.phase in (Phase.IDLE, Phase.SCAFFOLDING, Phase.DONE):
                assert t.state.session is None
            else:
                assert t.state.session is not None

            for p in t.events:
                if p.event_type == "exec.micro_started":
                    step_open = True
                elif p.event_type == "exec.micro_completed":
                    # Only a started, not yet completed step can complete
                    assert step_open
                    step_open = False
                elif p.event_type == "session.ended":
                    step_open = False
            state = t.state
