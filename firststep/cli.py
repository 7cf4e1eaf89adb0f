#!/usr/bin/env python3
"""
fs — firststep CLI

Usage:
    fs init                              Initialize config and event store
    fs status                            Config and event store diagnostics
    fs dates                             List days with recorded events
    fs events [DATE]                     Raw events for a day (default: today)
    fs summary [DATE]                    Structured daily summary (JSON)
    fs context [DATE]                    Daily summary as narrative text
    fs timeline [DATE]                   Step-by-step timeline for a day
    fs reflect [DATE]                    Talk through the daily review (empty line ends)
    fs focus <task> [--note TEXT] [--no-llm]
                                         Run an interactive focus session
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import uuid
from typing import List, Optional


def _json_out(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _date_arg(args) -> Optional[str]:
    positional = [a for a in args if not a.startswith("-")]
    return positional[0] if positional else None


def cmd_init(args):
    from firststep.api import init
    result = init()
    for item in result["created"]:
        print(f"  created: {item}")
    for item in result["existing"]:
        print(f"  exists:  {item}")
    print("\nfirststep initialized.")
    print("Next: edit ~/.firststep/config.yaml to set your api_key")
    print('Then: fs focus "<a task>"')


def cmd_status(args):
    from firststep.api import status
    result = status()
    print(f"  model:    {result['llm_model']}")
    if result.get("api_key_ok"):
        print("  api_key:  OK")
    else:
        print(f"  api_key:  MISSING: {result.get('api_key_error', '')}")
    if "store_error" in result:
        print(f"  store:    {result['store_error']}")
    else:
        print(f"  store:    {result.get('backend', '?')} at {result.get('path', '?')}")
        print(
            f"  data:     {result.get('events', 0)} events "
            f"over {result.get('days', 0)} days"
        )


def cmd_dates(args):
    from firststep.api import dates
    _json_out(dates())


def cmd_events(args):
    from firststep.api import events
    _json_out(events(_date_arg(args)))


def cmd_summary(args):
    from firststep.api import summary
    _json_out(summary(_date_arg(args)))


def cmd_context(args):
    from firststep.api import context
    print(context(_date_arg(args))["content"])


def cmd_timeline(args):
    from firststep.api import timeline
    entries = timeline(_date_arg(args))
    if not entries:
        print("No steps recorded.")
        return
    for e in entries:
        minutes = f"  ({e['duration_min']} min)" if e["duration_min"] is not None else ""
        print(f"  {e['time']}  [{e['status']:9s}] {e['title']}{minutes}")


def cmd_reflect(args):
    from firststep.api import REFLECTION_OPENER, reflect

    date = _date_arg(args)
    messages = [{"role": "user", "content": REFLECTION_OPENER}]
    while True:
        result = reflect(date, messages)
        if "error" in result:
            _err(result["error"])
        print(f"\n{result['reply']}\n")
        messages.append({"role": "assistant", "content": result["reply"]})

        try:
            line = input("you> ").strip()
        except EOFError:
            line = ""
        if not line or line in ("exit", "quit"):
            return
        messages.append({"role": "user", "content": line})


def cmd_focus(args):
    from firststep.core.models import Task

    note = _get_opt(args, "--note") or ""
    rest = []
    skip = False
    for a in args:
        if skip:
            skip = False
        elif a == "--note":
            skip = True
        elif a != "--no-llm":
            rest.append(a)
    if not rest:
        _err("Usage: fs focus <task> [--note TEXT] [--no-llm]")

    task = Task(id=uuid.uuid4().hex[:12], title=" ".join(rest), note=note)
    asyncio.run(_run_focus(task, use_llm="--no-llm" not in args))


# ── Interactive focus session ────────────────────────────────────────────────

_FOCUS_HELP = """\
  start <text|n>   confirm the first action (scaffolding)
  done             finish the current step (in flow: finish the task)
  next <text|n>    start the next step (after done)
  flow             stop tracking steps, just work on the task
  finish           mark the whole task complete
  stuck            ask for help with the current step
  reason <text|n>  say why you are stuck
  resume           go back to the original step
  pivot <text|n>   switch to another step
  exit             leave the session
"""


class _FocusShell:
    def __init__(self, controller):
        self.controller = controller
        self.chips: List[str] = []

    def _pick(self, arg: str):
        """Resolve a chip number to its text. Returns (label, source)."""
        if arg.isdigit() and 0 < int(arg) <= len(self.chips):
            return self.chips[int(arg) - 1], "ai_chip"
        return arg, "self"

    def _show(self, result) -> None:
        self.chips = list(result.items)
        if result.empathy:
            print(f"  {result.empathy}")
        for i, chip in enumerate(self.chips, 1):
            print(f"  [{i}] {chip}")
        if result.error and not result.stale:
            print(f"  ! {result.error}", file=sys.stderr)

    def _prompt(self) -> str:
        c = self.controller
        label = c.session.current_micro_task if c.session else (c.state.task.title if c.state.task else "")
        return f"[{c.phase.value}] {label}> "

    async def run(self, task) -> None:
        from firststep.core.models import Phase

        c = self.controller
        c.start_scaffolding(task)
        print(f"Task: {task.title}")
        print("What is the very first physical action? (start <text|n>, help)")
        self._show(await c.suggest_first_actions())

        while c.phase not in (Phase.IDLE, Phase.DONE):
            try:
                line = (await asyncio.to_thread(input, self._prompt())).strip()
            except EOFError:
                line = "exit"
            if not line:
                continue
            name, _, arg = line.partition(" ")
            await self.dispatch(name, arg.strip())

        if c.phase is Phase.DONE:
            print("Task complete.")

    async def dispatch(self, name: str, arg: str) -> None:
        c = self.controller
        ok = True
        if name == "help":
            print(_FOCUS_HELP)
            return
        if name == "start":
            label, source = self._pick(arg)
            ok = c.confirm_first_action(label, source)
        elif name == "done":
            ok = c.complete_action()
            if ok and c.session is not None:
                self._show(await c.suggest_next_actions())
        elif name == "next":
            label, _ = self._pick(arg)
            ok = c.advance_to(label)
        elif name == "flow":
            ok = c.enter_flow()
        elif name == "finish":
            ok = c.finish_task()
        elif name == "stuck":
            ok = c.request_unstuck()
            if ok:
                self._show(await c.suggest_stuck_causes())
        elif name == "reason":
            reason, source = self._pick(arg)
            ok = c.phase.value == "stuck_a" and bool(reason)
            if ok:
                self._show(await c.submit_reason(reason, source))
        elif name == "resume":
            ok = c.resume_original() or c.choose_pivot("", "resume_original")
        elif name == "pivot":
            label, source = self._pick(arg)
            ok = c.choose_pivot(label, source)
        elif name in ("exit", "quit"):
            ok = c.exit()
        else:
            print(f"Unknown command: {name} (try help)")
            return
        if not ok:
            print(f"  '{name}' is not available in phase {c.phase.value}")


async def _run_focus(task, *, use_llm: bool) -> None:
    from firststep.api import create_controller

    controller = create_controller(use_llm=use_llm)
    controller.tracker.init()
    try:
        await _FocusShell(controller).run(task)
    finally:
        controller.tracker.destroy()


COMMANDS = {
    "init": cmd_init,
    "status": cmd_status,
    "dates": cmd_dates,
    "events": cmd_events,
    "summary": cmd_summary,
    "context": cmd_context,
    "timeline": cmd_timeline,
    "reflect": cmd_reflect,
    "focus": cmd_focus,
}


def _get_opt(args, flag):
    """Extract value after a flag from args list."""
    if flag in args:
        idx = args.index(flag)
        if idx + 1 < len(args):
            return args[idx + 1]
    return None


def _err(msg):
    print(msg, file=sys.stderr)
    sys.exit(1)


def main():
    logging.basicConfig(
        level=os.getenv("FIRSTSTEP_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help", "help"):
        print(__doc__.strip())
        sys.exit(0)

    cmd = sys.argv[1]
    handler = COMMANDS.get(cmd)
    if not handler:
        print(f"Unknown command: {cmd}", file=sys.stderr)
        print(f"Available: {', '.join(COMMANDS.keys())}", file=sys.stderr)
        sys.exit(1)

    handler(sys.argv[2:])


if __name__ == "__main__":
    main()
