"""
Smart parser: the resolution orchestrator.

Without a current spec every prompt is a "create": template resolver, then
component detector, then fallback; the first strategy that resolves wins.
With a current spec, edit phrasing (add/remove/modify/connect/disconnect/
query) is applied incrementally instead. Parsing is synchronous, performs no
I/O and never raises to its caller, except for integrity violations in
strict mode.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from infraflow.commands import detect_command_type, run_command
from infraflow.context import ConversationContext, create_context
from infraflow.errors import SpecIntegrityError
from infraflow.resolvers import DEFAULT_RESOLVERS, Resolver, ResolutionStatus, fallback_spec
from infraflow.spec import CONFIDENCE_FALLBACK, CONFIDENCE_INVALID, ParseResult

logger = logging.getLogger(__name__)

MSG_NOT_A_STRING = "프롬프트는 문자열이어야 합니다."
MSG_INVALID_SPEC = "생성된 아키텍처가 올바르지 않습니다"
MSG_RESOLVER_FAILED = "프롬프트를 해석하는 중 오류가 발생했습니다"


def normalize_prompt(prompt: str) -> str:
    return prompt.strip().lower()


class SmartParser:
    """Ordered-attempt resolver loop plus incremental-command dispatch."""

    def __init__(self, resolvers: Sequence[Resolver] | None = None, strict: bool = False):
        self.resolvers: tuple[Resolver, ...] = tuple(resolvers or DEFAULT_RESOLVERS)
        self.strict = strict

    def parse(self, prompt: Any, context: ConversationContext | None = None) -> ParseResult:
        if not isinstance(prompt, str):
            logger.warning("Rejected non-string prompt of type %s", type(prompt).__name__)
            return ParseResult(
                success=False,
                confidence=CONFIDENCE_INVALID,
                error=f"{MSG_NOT_A_STRING} (got {type(prompt).__name__})",
            )
        context = context or create_context()
        command = detect_command_type(prompt)
        if context.current_spec is None or command == "create":
            return self.create(prompt)
        try:
            return run_command(command, prompt.strip(), context.current_spec)
        except SpecIntegrityError:
            raise
        except Exception as e:
            logger.exception("Incremental command '%s' failed", command)
            return ParseResult(
                success=False,
                spec=context.current_spec,
                confidence=CONFIDENCE_INVALID,
                command_type=command,
                error=str(e),
            )

    def create(self, prompt: str) -> ParseResult:
        """Run the resolution strategies in order on a fresh prompt."""
        normalized = normalize_prompt(prompt)
        for resolver in self.resolvers:
            try:
                resolution = resolver(normalized)
            except Exception as e:
                if self.strict and isinstance(e, SpecIntegrityError):
                    raise
                return self._crashed(resolver, e)
            if resolution.status is ResolutionStatus.NOT_RESOLVED:
                continue
            if resolution.status is ResolutionStatus.INVALID:
                return self._invalid(resolver, list(resolution.problems))
            return resolution.result.model_copy(update={"command_type": "create"})
        # Custom resolver chains may omit the fallback; keep the guarantee anyway
        logger.warning("Resolver chain exhausted without a result; using fallback spec")
        return ParseResult(
            success=True,
            spec=fallback_spec(),
            confidence=CONFIDENCE_FALLBACK,
            command_type="create",
            is_fallback=True,
        )

    def _invalid(self, resolver: Resolver, problems: list[str]) -> ParseResult:
        name = getattr(resolver, "__name__", repr(resolver))
        if self.strict:
            raise SpecIntegrityError([f"{name}: {p}" for p in problems])
        logger.error("Resolver %s produced an invalid spec: %s", name, "; ".join(problems))
        return ParseResult(
            success=False,
            spec=fallback_spec(),
            confidence=CONFIDENCE_INVALID,
            command_type="create",
            is_fallback=True,
            error=f"{MSG_INVALID_SPEC}: {'; '.join(problems)}",
        )

    def _crashed(self, resolver: Resolver, error: Exception) -> ParseResult:
        name = getattr(resolver, "__name__", repr(resolver))
        logger.exception("Resolver %s failed", name)
        return ParseResult(
            success=False,
            spec=fallback_spec(),
            confidence=CONFIDENCE_INVALID,
            command_type="create",
            is_fallback=True,
            error=f"{MSG_RESOLVER_FAILED}: {error}",
        )


_default_parser = SmartParser()


def smart_parse(prompt: Any, context: ConversationContext | None = None) -> ParseResult:
    """Parse with the default (non-strict) strategy chain."""
    return _default_parser.parse(prompt, context)
