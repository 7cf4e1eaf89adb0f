"""Configuration for firststep.

Values come from ``~/.firststep/config.yaml`` (or ``$FIRSTSTEP_CONFIG``),
then ``FIRSTSTEP_*`` environment variables, which win.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = "~/.firststep/db/firststep.db"
_DEFAULT_EVENTS_DIR = "~/.firststep/events"
_DEFAULT_CONFIG_PATH = "~/.firststep/config.yaml"

_STORE_BACKENDS = ("sqlite", "json")

# Substring of the litellm model string -> provider key variable
_MODEL_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gpt": "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "dashscope": "DASHSCOPE_API_KEY",
    "qwen": "DASHSCOPE_API_KEY",
    "volcengine": "VOLCENGINE_API_KEY",
    "doubao": "VOLCENGINE_API_KEY",
    "moonshot": "MOONSHOT_API_KEY",
    "groq": "GROQ_API_KEY",
}

# Environment variable -> Config field
_ENV_OVERRIDES = {
    "FIRSTSTEP_STORE": "store_backend",
    "FIRSTSTEP_DB_PATH": "db_path",
    "FIRSTSTEP_EVENTS_DIR": "events_dir",
    "FIRSTSTEP_LLM_MODEL": "llm_model",
    "FIRSTSTEP_API_KEY": "api_key",
}


def _config_path(path: Optional[str] = None) -> Path:
    if path:
        return Path(path).expanduser()
    return Path(os.getenv("FIRSTSTEP_CONFIG") or _DEFAULT_CONFIG_PATH).expanduser()


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class Config:
    # Event store
    store_backend: str = "sqlite"  # "sqlite" | "json"
    db_path: str = _DEFAULT_DB_PATH
    events_dir: str = _DEFAULT_EVENTS_DIR

    # Tracker
    flush_interval: float = 5.0
    flush_threshold: int = 10

    # Advisor (LLM)
    llm_model: str = "anthropic/claude-haiku-4-5-20251001"
    llm_timeout: float = 30.0
    api_key: Optional[str] = None
    advisor_timeout: Optional[float] = None
    suggestion_count: int = 2

    @classmethod
    def load(cls, path: Optional[str] = None) -> Config:
        """Build a Config from the YAML file and the environment.

        A missing or unparsable file yields the defaults. Unknown keys
        are ignored, and so are values that do not convert.
        """
        config_path = _config_path(path)
        data: Dict[str, Any] = {}
        if config_path.is_file():
            try:
                data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Ignoring unreadable config {config_path}: {e}")
            if not isinstance(data, dict):
                data = {}

        for env_var, name in _ENV_OVERRIDES.items():
            if value := os.getenv(env_var):
                data[name] = value

        cfg = cls()
        for f in fields(cls):
            if f.name not in data:
                continue
            convert = _CONVERTERS[f.name]
            try:
                setattr(cfg, f.name, convert(data[f.name]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid config value {f.name}={data[f.name]!r}")

        if cfg.store_backend not in _STORE_BACKENDS:
            logger.warning(f"Unknown store_backend {cfg.store_backend!r}; using sqlite")
            cfg.store_backend = "sqlite"
        return cfg

    @classmethod
    def set_config(cls, key: str, value: Any, path: Optional[str] = None) -> None:
        """Write a single key into config.yaml, preserving the other keys."""
        config_path = _config_path(path)
        data: dict = {}
        if config_path.is_file():
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}

        data[key] = value
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(
            yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8"
        )

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()

    @property
    def resolved_events_dir(self) -> Path:
        return Path(self.events_dir).expanduser()

    def inject_api_key(self) -> None:
        """Export api_key under the provider variable litellm reads.

        An already exported variable is left alone.
        """
        env_var = self._env_var_for_model()
        if self.api_key and env_var:
            os.environ.setdefault(env_var, self.api_key.strip())

    def _env_var_for_model(self) -> Optional[str]:
        model = self.llm_model.lower()
        return next(
            (env_var for keyword, env_var in _MODEL_ENV_KEYS.items() if keyword in model),
            None,
        )

    def check_api_key(self) -> Optional[str]:
        """None when a key is available for llm_model, else a message."""
        env_var = self._env_var_for_model()
        if env_var is None:
            return f"Unknown provider for model '{self.llm_model}'"
        if self.api_key or os.getenv(env_var):
            return None
        return f"No API key: set api_key in config.yaml or export {env_var}"


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "store_backend": str,
    "db_path": str,
    "events_dir": str,
    "flush_interval": float,
    "flush_threshold": int,
    "llm_model": str,
    "llm_timeout": float,
    "api_key": _optional_str,
    "advisor_timeout": _optional_float,
    "suggestion_count": int,
}
