"""
firststep API — clean, importable functions for all operations.

Every function except create_controller returns JSON-serializable
dicts/lists. Designed to be called from scripts, the CLI, or other tools.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date as _date
from typing import Any, Dict, List, Optional

REFLECTION_OPENER = "Let's review my day."


def today() -> str:
    return _date.today().isoformat()


def init() -> Dict[str, Any]:
    """Initialize firststep: create config dir, default config, and event store."""
    from .core.config import Config, _config_path
    from .core.store import get_store

    config_path = _config_path()
    results: Dict[str, Any] = {"created": [], "existing": []}

    # 1. Create parent dir
    config_dir = config_path.parent
    if config_dir.exists():
        results["existing"].append(str(config_dir))
    else:
        config_dir.mkdir(parents=True)
        results["created"].append(str(config_dir))

    # 2. Write default config.yaml (skip if exists)
    if config_path.exists():
        results["existing"].append(str(config_path))
    else:
        config_path.write_text(_DEFAULT_CONFIG_TEMPLATE)
        results["created"].append(str(config_path))

    # 3. Initialize the event store
    cfg = Config.load()
    location = (
        cfg.resolved_events_dir if cfg.store_backend == "json" else cfg.resolved_db_path
    )
    if location.exists():
        results["existing"].append(str(location))
    else:
        get_store(cfg)
        results["created"].append(str(location))

    return results


def status() -> Dict[str, Any]:
    """Config and event store diagnostics."""
    from .core.config import Config
    from .core.store import get_store

    cfg = Config.load()
    result: Dict[str, Any] = {
        "llm_model": cfg.llm_model,
        "store_backend": cfg.store_backend,
    }
    key_error = cfg.check_api_key()
    result["api_key_ok"] = key_error is None
    if key_error:
        result["api_key_error"] = key_error

    try:
        result.update(get_store(cfg).stats())
    except Exception as e:
        result["store_error"] = str(e)
    return result


def dates() -> List[str]:
    """Days that have recorded events, most recent first."""
    from .core.store import get_store
    return get_store().dates()


def events(date: Optional[str] = None) -> List[Dict[str, Any]]:
    """Raw events for one day, in append order."""
    from .core.store import get_store
    return [e.to_dict() for e in get_store().read(date or today())]


def summary(date: Optional[str] = None) -> Dict[str, Any]:
    """Structured DailySummary for one day."""
    from .core.store import get_store
    from .summarize.daily import build_daily_summary

    day = date or today()
    return asdict(build_daily_summary(day, get_store().read(day)))


def context(date: Optional[str] = None) -> Dict[str, Any]:
    """Narrative text rendering of the day's summary."""
    from .core.store import get_store
    from .summarize.daily import build_daily_summary
    from .summarize.narrative import summary_to_context

    day = date or today()
    built = build_daily_summary(day, get_store().read(day))
    return {"date": day, "content": summary_to_context(built)}


def timeline(date: Optional[str] = None) -> List[Dict[str, Any]]:
    """Step-level timeline for one day."""
    from .core.store import get_store
    from .summarize.timeline import build_timeline

    return [asdict(t) for t in build_timeline(get_store().read(date or today()))]


def reflect(
    date: Optional[str] = None,
    messages: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """Run one turn of the evening reflection chat for a day.

    ``messages`` is the conversation so far (user/assistant turns, no system
    message). With no messages the model opens the conversation.
    """
    import asyncio

    from .core.config import Config
    from .summarize.llm import call_llm_chat
    from .summarize.narrative import build_reflection_prompt

    cfg = Config.load()
    if err := cfg.check_api_key():
        return {"error": err}
    cfg.inject_api_key()

    day = date or today()
    system_prompt = build_reflection_prompt(context(day)["content"])
    history = list(messages or [])
    if not history:
        history = [{"role": "user", "content": REFLECTION_OPENER}]

    reply = asyncio.run(call_llm_chat(
        [{"role": "system", "content": system_prompt}] + history,
        model=cfg.llm_model,
        timeout=cfg.llm_timeout,
    ))
    if reply is None:
        return {"error": "Reflection model call failed", "date": day}
    return {"date": day, "reply": reply}


def create_controller(*, use_llm: bool = True):
    """Build a SessionController wired to the configured store and advisor.

    The caller owns the tracker lifecycle (controller.tracker.init/destroy).
    """
    from .core.config import Config
    from .core.store import get_store
    from .focus.advisor import LLMAdvisor
    from .focus.controller import SessionController
    from .tracking.tracker import EventTracker

    cfg = Config.load()
    tracker = EventTracker(
        get_store(cfg),
        flush_interval=cfg.flush_interval,
        flush_threshold=cfg.flush_threshold,
    )

    advisor = None
    if use_llm and cfg.check_api_key() is None:
        cfg.inject_api_key()
        advisor = LLMAdvisor(
            model=cfg.llm_model,
            timeout=cfg.llm_timeout,
            count=cfg.suggestion_count,
        )

    return SessionController(
        tracker,
        advisor,
        advisor_timeout=cfg.advisor_timeout,
        suggestion_count=cfg.suggestion_count,
    )


_DEFAULT_CONFIG_TEMPLATE = """\
# firststep configuration

# ── Event store ──────────────────────────────────────────
# "sqlite" (default) or "json" (one file per day)
store_backend: sqlite
db_path: ~/.firststep/db/firststep.db
events_dir: ~/.firststep/events

# ── Tracker ──────────────────────────────────────────────
flush_interval: 5.0
flush_threshold: 10

# ── Advisor (LLM) ────────────────────────────────────────
# Model string uses litellm format: "provider/model-name"
# Examples:
#   anthropic/claude-haiku-4-5-20251001   (Anthropic)
#   openai/gpt-4o-mini                    (OpenAI)
#   deepseek/deepseek-chat                (DeepSeek)
llm_model: anthropic/claude-haiku-4-5-20251001
llm_timeout: 30.0
# advisor_timeout: 10
suggestion_count: 2

# API key for the provider above. Alternatively export the provider's
# env var (ANTHROPIC_API_KEY, OPENAI_API_KEY, ...).
# api_key: sk-...
"""
