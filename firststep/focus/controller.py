"""
Session controller — owns the current FocusState and drives transitions.

Each public method builds a command, runs it through ``machine.step`` and,
when the move is legal, stores the new state and hands the emitted
payloads to the EventTracker. Illegal commands return False and emit
nothing.

Advisor-backed methods are coroutines. Their results are applied only if
the session that asked is still the current one; a user may exit while a
request is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from ..core.models import FocusSession, FocusState, Phase, PivotOffer, Task
from ..summarize.llm import clean_list
from ..tracking.tracker import EventTracker
from . import machine
from .advisor import AdvisorService, Suggestions, TaskContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionController:
    def __init__(
        self,
        tracker: EventTracker,
        advisor: Optional[AdvisorService] = None,
        *,
        clock: Callable[[], float] = time.time,
        advisor_timeout: Optional[float] = None,
        suggestion_count: int = 2,
        new_session_id: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.tracker = tracker
        self.advisor = advisor
        self.clock = clock
        self.advisor_timeout = advisor_timeout
        self.suggestion_count = suggestion_count
        self._new_session_id = new_session_id
        self._state = FocusState()

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> FocusState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def session(self) -> Optional[FocusSession]:
        return self._state.session

    def elapsed(self) -> int:
        """Seconds since the current phase was entered (0 without a session)."""
        s = self._state.session
        if s is None:
            return 0
        return max(0, int(self.clock() - s.start_time))

    def _apply(self, command: object) -> bool:
        transition = machine.step(self._state, command, self.clock())
        if transition is None:
            logger.debug(
                f"Ignored {type(command).__name__} in phase {self._state.phase.value}"
            )
            return False

        previous = self._state.phase
        self._state = transition.state
        for payload in transition.events:
            self.tracker.track(payload.event_type, payload)

        if previous is not self._state.phase:
            logger.info(f"Focus phase {previous.value} -> {self._state.phase.value}")
        return True

    # ── Commands ──────────────────────────────────────────────────────────

    def start_scaffolding(self, task: Task, pool: Optional[Iterable[Task]] = None) -> bool:
        return self._apply(machine.StartScaffolding(task=task, pool=tuple(pool or ())))

    def confirm_first_action(
        self,
        label: str,
        source: str = "self",
        *,
        estimated_seconds: Optional[int] = None,
        subtask_id: Optional[str] = None,
        subtask_title: Optional[str] = None,
    ) -> bool:
        return self._apply(
            machine.ConfirmFirstAction(
                label=label,
                session_id=self._new_session_id(),
                source=source,
                estimated_seconds=estimated_seconds,
                subtask_id=subtask_id,
                subtask_title=subtask_title,
            )
        )

    def complete_action(self) -> bool:
        return self._apply(machine.CompleteAction())

    def request_unstuck(self) -> bool:
        return self._apply(machine.RequestUnstuck())

    def advance_to(
        self,
        label: str,
        *,
        estimated_seconds: Optional[int] = None,
        subtask_id: Optional[str] = None,
        subtask_title: Optional[str] = None,
    ) -> bool:
        return self._apply(
            machine.AdvanceTo(
                label=label,
                estimated_seconds=estimated_seconds,
                subtask_id=subtask_id,
                subtask_title=subtask_title,
            )
        )

    def enter_flow(self) -> bool:
        return self._apply(machine.EnterFlow())

    def resume_original(self) -> bool:
        return self._apply(machine.ResumeOriginal())

    def choose_pivot(
        self,
        label: str,
        source: str = "self",
        *,
        estimated_seconds: Optional[int] = None,
    ) -> bool:
        return self._apply(
            machine.ChoosePivot(label=label, source=source, estimated_seconds=estimated_seconds)
        )

    def finish_task(self, completed_via: Optional[str] = None) -> bool:
        return self._apply(machine.FinishTask(completed_via=completed_via))

    def exit(self) -> bool:
        return self._apply(machine.Exit())

    def record_leftovers(self, tasks: Iterable[Task]) -> bool:
        return self._apply(machine.RecordLeftovers(tasks=tuple(tasks)))

    async def submit_reason(self, reason: str, source: str = "self") -> Suggestions:
        """Record why the user is stuck, move to stuck_b, then ask for pivots.

        The transition happens before the advisor is awaited. The pivot
        offer is applied only if the same session is still waiting in
        stuck_b on the same stuck episode when the response arrives.
        """
        if not self._apply(machine.SubmitReason(reason=reason, source=source)):
            return Suggestions(error="not waiting for a stuck reason")

        session = self._state.session
        ctx = self._context(session)
        offer, error = await self._call(
            lambda adv: adv.suggest_pivot(ctx, reason.strip()),
            default=PivotOffer(),
            what="pivot",
        )
        raw_pivots = offer.pivots if isinstance(offer.pivots, (list, tuple)) else []
        pivots = clean_list(list(raw_pivots), self.suggestion_count)
        offer = PivotOffer(empathy=str(offer.empathy or "").strip(), pivots=tuple(pivots))

        if not self._is_current(session.session_id, Phase.STUCK_B, session.stuck_episode):
            logger.debug(f"Dropping stale pivot offer for session {session.session_id[:8]}")
            return Suggestions(error=error, stale=True)

        self._apply(machine.OfferPivot(
            session_id=session.session_id, offer=offer, episode=session.stuck_episode
        ))
        return Suggestions(items=list(offer.pivots), empathy=offer.empathy, error=error)

    # ── Suggestions (no state change) ─────────────────────────────────────

    async def suggest_first_actions(self) -> Suggestions:
        task = self._state.task
        if self.phase is not Phase.SCAFFOLDING or task is None:
            return Suggestions(error="no task is being scaffolded")
        ctx = TaskContext(task_title=task.title)
        return await self._suggest(lambda adv: adv.suggest_first_actions(ctx), "first actions")

    async def suggest_next_actions(self) -> Suggestions:
        session = self._state.session
        if self.phase is not Phase.RELAY or session is None:
            return Suggestions(error="not between steps")
        ctx = TaskContext(
            task_title=session.task_title,
            last_step=session.last_completed,
            subtask_title=session.current_subtask_title,
        )
        return await self._suggest(lambda adv: adv.suggest_first_actions(ctx), "next actions")

    async def suggest_stuck_causes(self) -> Suggestions:
        session = self._state.session
        if self.phase is not Phase.STUCK_A or session is None:
            return Suggestions(error="not stuck")
        ctx = self._context(session)
        return await self._suggest(lambda adv: adv.suggest_stuck_causes(ctx), "stuck causes")

    # ── Helpers ───────────────────────────────────────────────────────────

    def _context(self, session: FocusSession) -> TaskContext:
        return TaskContext(
            task_title=session.task_title,
            micro_action=session.current_micro_task,
            last_step=session.last_completed,
            subtask_title=session.current_subtask_title,
        )

    def _is_current(
        self, session_id: str, phase: Phase, episode: Optional[int] = None
    ) -> bool:
        s = self._state.session
        if s is None or s.session_id != session_id or self.phase is not phase:
            return False
        return episode is None or s.stuck_episode == episode

    async def _suggest(
        self,
        call: Callable[[AdvisorService], Awaitable[List[str]]],
        what: str,
    ) -> Suggestions:
        items, error = await self._call(call, default=[], what=what)
        return Suggestions(items=clean_list(items, self.suggestion_count), error=error)

    async def _call(
        self,
        call: Callable[[AdvisorService], Awaitable[T]],
        *,
        default: T,
        what: str,
    ):
        """Run one advisor call. Returns (result, error) and never raises."""
        if self.advisor is None:
            return default, None
        try:
            if self.advisor_timeout is not None:
                result = await asyncio.wait_for(call(self.advisor), self.advisor_timeout)
            else:
                result = await call(self.advisor)
        except asyncio.TimeoutError:
            logger.warning(f"Advisor timed out fetching {what}")
            return default, f"advisor timed out after {self.advisor_timeout:g}s"
        except Exception as e:
            logger.warning(f"Advisor failed fetching {what}: {e}")
            return default, f"advisor error: {str(e)[:80]}"

        if result is None:
            return default, None
        if isinstance(default, PivotOffer) and not isinstance(result, PivotOffer):
            logger.warning(f"Advisor returned {type(result).__name__} for {what}")
            return default, "advisor returned a malformed response"
        if isinstance(default, list) and not isinstance(result, list):
            logger.warning(f"Advisor returned {type(result).__name__} for {what}")
            return default, "advisor returned a malformed response"
        return result, None
