"""
Conversation context: bounded prompt/result history plus the caller's
current spec. Values are never mutated; update_context returns a new one.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field

from infraflow.spec import ParseResult, Spec

DEFAULT_HISTORY_LIMIT = 10


class HistoryEntry(BaseModel):
    prompt: str
    result: ParseResult
    timestamp: float = Field(default_factory=time.time, description="Seconds since epoch")

    model_config = {"frozen": True}


class ConversationContext(BaseModel):
    history: tuple[HistoryEntry, ...] = ()
    current_spec: Spec | None = None

    model_config = {"frozen": True}

    @property
    def last_result(self) -> ParseResult | None:
        return self.history[-1].result if self.history else None


def create_context(current_spec: Spec | None = None) -> ConversationContext:
    return ConversationContext(
        history=(),
        current_spec=current_spec.model_copy(deep=True) if current_spec is not None else None,
    )


def update_context(
    context: ConversationContext,
    prompt: str,
    result: ParseResult,
    limit: int = DEFAULT_HISTORY_LIMIT,
    timestamp: float | None = None,
) -> ConversationContext:
    """Append (prompt, result), keep the last `limit` entries, advance current_spec when the result carries one."""
    entry_kwargs: dict[str, Any] = {"prompt": prompt, "result": result}
    if timestamp is not None:
        entry_kwargs["timestamp"] = timestamp
    history = (*context.history, HistoryEntry(**entry_kwargs))
    if limit > 0:
        history = history[-limit:]
    return ConversationContext(
        history=history,
        current_spec=result.spec if result.spec is not None else context.current_spec,
    )
