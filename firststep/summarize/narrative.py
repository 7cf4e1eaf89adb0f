"""
Narrative rendering — turn a DailySummary into plain text context for the
evening reflection conversation. Formatting only; the summary is not
modified.
"""

from __future__ import annotations

from typing import List

from ..core.models import DailySummary
from .daily import round_half_up

_STATUS_MARK = {"completed": "done", "stuck": "stuck", "abandoned": "dropped"}
_SOURCE_LABEL = {"ai_chip": "suggested", "self": "typed by the user"}


def _minutes(seconds: float) -> int:
    return round_half_up(seconds / 60)


def _signed(minutes: int) -> str:
    return f"+{minutes}" if minutes > 0 else str(minutes)


def summary_to_context(summary: DailySummary) -> str:
    """Render the summary as ordered markdown sections."""
    lines: List[str] = [f"## Behavior log for {summary.date}", ""]

    # Planning
    plan = summary.planning
    lines.append("### Plan")
    dump = ", ".join(plan.brain_dump_tasks) or "not recorded"
    lines.append(f"- Brain dump ({len(plan.brain_dump_tasks)} tasks): {dump}")
    lines.append(f"- Focus task: {plan.focus_task_title or 'none'}")
    source = _SOURCE_LABEL.get(plan.scaffold_source or "", "unknown")
    lines.append(f"- First step: {plan.first_micro_action or 'none'} (source: {source})")

    # Trail
    stats = summary.stats
    lines.append("")
    lines.append(
        f"### Steps ({stats.total_micro_steps} total, "
        f"{stats.completed_micro_steps} completed)"
    )
    for step in summary.micro_step_trail:
        delta = ""
        if step.time_delta_seconds is not None:
            delta = f", {_signed(_minutes(step.time_delta_seconds))} min vs estimate"
        lines.append(
            f"- [{_STATUS_MARK.get(step.status, step.status)}] {step.micro_action} "
            f"({_minutes(step.actual_seconds)} min{delta})"
        )

    if summary.flow_events:
        lines.append("")
        lines.append("### Flow")
        for f in summary.flow_events:
            lines.append(
                f'- "{f.task_title}": entered flow after "{f.last_micro_before_flow}", '
                f"lasted {_minutes(f.duration_seconds)} min"
            )

    if summary.stuck_events:
        lines.append("")
        lines.append("### Stuck and rescue")
        for s in summary.stuck_events:
            if s.rescue_succeeded:
                outcome = "recovered"
            elif s.rescue_succeeded is False:
                outcome = "did not recover"
            else:
                outcome = "unresolved"
            pivot = s.pivot_chosen or "no pivot chosen"
            lines.append(
                f'- Stuck on "{s.micro_action}": "{s.reason}" -> "{pivot}" -> {outcome}'
            )

    if summary.abandonments:
        lines.append("")
        lines.append("### Abandoned")
        for a in summary.abandonments:
            lines.append(
                f'- {a.time}: gave up "{a.micro_action}" ({a.task_title}) '
                f"after {_minutes(a.elapsed_seconds)} min"
            )

    macro = summary.macro_task
    lines.append("")
    lines.append("### Macro task")
    if macro.completed:
        status = f"completed (via {macro.completed_via})"
    else:
        status = "not completed"
    lines.append(f"- {macro.title or 'none'}: {status}")

    if summary.leftover_tasks:
        lines.append("")
        lines.append("### Leftovers")
        lines.append(f"- {', '.join(summary.leftover_tasks)}")

    lines.append("")
    lines.append("### Stats")
    lines.append(f"- Focus: {stats.total_focus_minutes} min")
    lines.append(f"- Flow: {stats.total_flow_minutes} min")
    lines.append(f"- Stuck: {stats.total_stuck_count} times")
    if stats.average_time_delta_seconds is not None:
        avg = stats.average_time_delta_seconds
        minutes = abs(_minutes(avg))
        if minutes == 0:
            lines.append("- Average estimate error: under a minute")
        else:
            direction = "over" if avg > 0 else "under"
            lines.append(f"- Average estimate error: {minutes} min {direction} estimate")

    return "\n".join(lines)


def build_reflection_prompt(context: str) -> str:
    """System prompt for the end-of-day reflection chat."""
    return (
        "You are the user's friend helping with a daily review. Speak naturally, "
        "like a chat message: no cheerleading, no lectures, no headings or bold, "
        "at most one emoji per message, 2-4 sentences each.\n\n"
        "## Conversation plan\n"
        "Send one message at a time and wait for the reply.\n"
        "1. Pick something that went well in today's data and ask how it felt.\n"
        "2. If the data shows getting stuck, abandoning, or long gaps, mention it "
        "without judgement and ask what happened.\n"
        "3. Ask what they want to adjust tomorrow and which small action to try.\n"
        "4. After the third answer, write a short wrap-up: what went well, what "
        "was hard, one practical focus technique that fits their day, and a "
        "brief encouragement.\n\n"
        "## Rules\n"
        "- Start chatting in the first message, no self-introduction.\n"
        "- Quote concrete task names and durations from the data.\n\n"
        "========== Today's data ==========\n"
        f"{context}\n"
        "========== End of data =========="
    )
