"""
Settings read from the environment. Built once per session (or app) and
passed explicitly; nothing here is mutated after construction.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODIFY_URL = "http://localhost:8000"

_TRUTHY = {"1", "true", "yes", "on"}


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", key, raw, default)
        return default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", key, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: str | None = None
    llm_model: str = DEFAULT_MODEL
    llm_temperature: float = 0.2
    modify_url: str = DEFAULT_MODIFY_URL
    http_timeout: float = 30.0
    retry_attempts: int = 3
    retry_initial: float = 1.0
    retry_max: float = 5.0
    history_limit: int = 10
    loading_delay: float = 0.0
    strict: bool = False

    @property
    def llm_available(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key.strip())

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            llm_model=env.get("INFRAFLOW_LLM_MODEL") or DEFAULT_MODEL,
            llm_temperature=_float(env, "INFRAFLOW_LLM_TEMPERATURE", 0.2),
            modify_url=(env.get("INFRAFLOW_MODIFY_URL") or DEFAULT_MODIFY_URL).rstrip("/"),
            http_timeout=_float(env, "INFRAFLOW_HTTP_TIMEOUT", 30.0),
            retry_attempts=max(1, _int(env, "INFRAFLOW_RETRY_ATTEMPTS", 3)),
            retry_initial=_float(env, "INFRAFLOW_RETRY_INITIAL", 1.0),
            retry_max=_float(env, "INFRAFLOW_RETRY_MAX", 5.0),
            history_limit=_int(env, "INFRAFLOW_HISTORY_LIMIT", 10),
            loading_delay=_float(env, "INFRAFLOW_LOADING_DELAY", 0.0),
            strict=(env.get("INFRAFLOW_STRICT") or "").strip().lower() in _TRUTHY,
        )
