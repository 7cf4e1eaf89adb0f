"""
Advisor — suggestion source for first actions, stuck causes and pivots.

The controller only depends on the AdvisorService protocol. LLMAdvisor is
the litellm-backed implementation. Any advisor may raise or return junk;
the controller turns that into "no suggestions".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..core.models import PivotOffer
from ..summarize.llm import call_llm, clean_list

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskContext:
    task_title: str
    micro_action: Optional[str] = None
    last_step: Optional[str] = None
    subtask_title: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"task": self.task_title}
        if self.subtask_title:
            payload["current_subtask"] = self.subtask_title
        if self.micro_action:
            payload["current_micro_action"] = self.micro_action
        if self.last_step:
            payload["just_finished"] = self.last_step
        return payload


@dataclass
class Suggestions:
    """What the caller gets back from an advisor-backed operation."""

    items: List[str] = field(default_factory=list)
    empathy: str = ""
    error: Optional[str] = None
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class AdvisorService(Protocol):
    async def suggest_first_actions(self, ctx: TaskContext) -> List[str]: ...

    async def suggest_stuck_causes(self, ctx: TaskContext) -> List[str]: ...

    async def suggest_pivot(self, ctx: TaskContext, reason: str) -> PivotOffer: ...


class LLMAdvisor:
    """AdvisorService backed by summarize.llm.call_llm."""

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        timeout: float = 30.0,
        count: int = 2,
    ):
        self.model = model
        self.timeout = timeout
        self.count = count

    async def _ask(self, task: str, payload: Dict[str, Any]) -> Any:
        payload = dict(payload, count=self.count)
        _, result = await call_llm(task, payload, model=self.model, timeout=self.timeout)
        if result is None:
            raise ValueError(f"advisor returned no usable response for {task}")
        return result

    async def suggest_first_actions(self, ctx: TaskContext) -> List[str]:
        result = await self._ask("first_actions", ctx.to_payload())
        items = clean_list(result, self.count)
        if not items:
            raise ValueError(f"unexpected first_actions format: {str(result)[:60]}")
        return items

    async def suggest_stuck_causes(self, ctx: TaskContext) -> List[str]:
        result = await self._ask("stuck_causes", ctx.to_payload())
        return clean_list(result, self.count)

    async def suggest_pivot(self, ctx: TaskContext, reason: str) -> PivotOffer:
        payload = ctx.to_payload()
        payload["stuck_reason"] = reason
        result = await self._ask("pivot", payload)
        if not isinstance(result, dict):
            raise ValueError(f"unexpected pivot format: {str(result)[:60]}")
        return PivotOffer(
            empathy=str(result.get("empathy") or "").strip(),
            pivots=tuple(clean_list(result.get("pivots"), self.count)),
        )
