"""
Model calls for suggestions and the evening reflection.

Requests go through litellm, which picks the provider from the model
string ("anthropic/...", "openai/...", "deepseek/...") and reads the
provider's key from the environment (see Config.inject_api_key).

Suggestion calls expect JSON back; replies are parsed leniently and any
failure comes back as None rather than an exception.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# ── Task Prompts ──────────────────────────────────────────────────────────────

TASK_PROMPTS: Dict[str, str] = {
    "first_actions": (
        "You help people with attention difficulties start work.\n"
        "Given a task (and optionally the step they just finished), propose "
        "tiny, concrete, physical actions that can be started right now.\n"
        "Each action is at most 8 words.\n\n"
        "Output a STRICT JSON array of strings only, for example:\n"
        '["Open a blank document", "Find the meeting notes"]'
    ),
    "stuck_causes": (
        "You are a focus first-aid assistant. The user got stuck while doing "
        "a micro-action. Guess the most likely concrete obstacles (real "
        "situations, not abstractions). Phrase each as a short question.\n\n"
        "Output a STRICT JSON array of strings only, for example:\n"
        '["Too many messages to scroll through?", "Forgot who sent it?"]'
    ),
    "pivot": (
        "You are a warm focus first-aid assistant. The user is stuck and told "
        "you why. Respond with:\n"
        "1. empathy: one very short, genuine sentence (no platitudes).\n"
        "2. pivots: micro-actions that lower the bar or route around the "
        "obstacle, each at most 12 words with an estimated time in brackets.\n\n"
        "Output STRICT JSON only:\n"
        '{"empathy": "string", "pivots": ["string", "string"]}'
    ),
}


# ── JSON Extraction ───────────────────────────────────────────────────────────

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_JSON_CHUNK = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*?\])")


def _loads(text: str) -> Optional[Any]:
    try:
        return json.loads(text, strict=False)
    except json.JSONDecodeError:
        return None


def extract_json(text: str) -> Optional[Any]:
    """Pull a JSON object or array out of a model reply.

    Tries, in order: the first fenced block, the whole reply, and the first
    bracketed chunk inside it.
    """
    if not text:
        return None

    s = text.strip()
    fenced = _FENCE.search(s)
    if fenced:
        s = fenced.group(1).strip()

    parsed = _loads(s)
    if parsed is not None:
        return parsed

    chunk = _JSON_CHUNK.search(s)
    return _loads(chunk.group(1)) if chunk else None


def clean_list(value: Any, limit: int) -> List[str]:
    """Normalize an LLM list: strings only, stripped, non-empty, capped."""
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if v is not None]
    return [i for i in items if i][:limit]


# ── Completion ────────────────────────────────────────────────────────────────

def _resolve_model(model: Optional[str]) -> str:
    if model is not None:
        return model
    from ..core.config import Config
    cfg = Config.load()
    cfg.inject_api_key()
    return cfg.llm_model


async def _complete(
    messages: List[Dict[str, str]],
    *,
    model: str,
    timeout: float,
    max_tokens: int,
    temperature: float,
    label: str,
) -> Tuple[Optional[str], Optional[str]]:
    """One acompletion round trip. Returns (model_used, text) or (None, None)."""
    try:
        from litellm import acompletion
    except ImportError:
        logger.error("litellm not installed. Run: pip install litellm")
        return None, None

    start = time.time()
    try:
        response = await acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout,
        )
    except Exception as e:
        logger.error(f"LLM {label} failed after {time.time() - start:.1f}s: {e}")
        return None, None

    text = response.choices[0].message.content or ""
    model_used = str(getattr(response, "model", None) or model)
    logger.debug(f"LLM {label} ok: model={model_used} elapsed={time.time() - start:.1f}s")
    return model_used, text


async def call_llm(
    task: str,
    payload: Dict[str, Any],
    *,
    model: Optional[str] = None,
    timeout: float = 30.0,
    max_tokens: int = 256,
) -> Tuple[Optional[str], Optional[Any]]:
    """Ask for a JSON answer to one of the TASK_PROMPTS.

    ``payload`` is sent as the JSON user message. Returns
    ``(model_used, parsed)``; ``parsed`` is None when the reply held no
    JSON, and both are None when the request itself failed.
    """
    model = _resolve_model(model)
    system_prompt = TASK_PROMPTS.get(task) or (
        f"Complete the '{task}' task. Output STRICT JSON only."
    )
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False, default=str)},
    ]

    model_used, text = await _complete(
        messages,
        model=model,
        timeout=timeout,
        max_tokens=max_tokens,
        temperature=0.7,
        label=f"task={task}",
    )
    if model_used is None:
        return None, None

    parsed = extract_json(text or "")
    if parsed is None:
        logger.warning(f"LLM returned non-JSON for task={task}: {(text or '')[:200]}")
    return model_used, parsed


async def call_llm_chat(
    messages: List[Dict[str, str]],
    *,
    model: Optional[str] = None,
    timeout: float = 60.0,
    max_tokens: int = 800,
) -> Optional[str]:
    """Multi-turn chat returning raw text (used for the evening reflection)."""
    _, text = await _complete(
        messages,
        model=_resolve_model(model),
        timeout=timeout,
        max_tokens=max_tokens,
        temperature=0.8,
        label=f"chat ({len(messages)} messages)",
    )
    return text.strip() if text is not None else None
