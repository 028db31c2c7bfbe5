"""
Editing session: the single writer of the current spec.

State lives in one immutable SessionState value that is replaced wholesale
on every commit. Async submissions take a ticket from the coordinator and
commit only while that ticket is still the latest one; superseded work is
dropped without touching state.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from infraflow.client import ModifyClient
from infraflow.config import Settings
from infraflow.context import ConversationContext, create_context, update_context
from infraflow.coordinator import RequestCoordinator, RetryPolicy, Ticket, modify_failure
from infraflow.errors import (
    InvalidInputError,
    ModifyError,
    RequestCancelled,
    SpecIntegrityError,
)
from infraflow.layout import merge_positions, positions_of, render_to_spec, spec_to_render
from infraflow.parser import SmartParser
from infraflow.spec import (
    CONFIDENCE_INVALID,
    CONFIDENCE_TEMPLATE,
    ModifyRequest,
    ModifyResult,
    ParseResult,
    Position,
    RenderEdge,
    RenderNode,
    Spec,
)
from infraflow.templates import get_template
from infraflow.validation import load_spec

logger = logging.getLogger(__name__)

MSG_EMPTY_PROMPT = "프롬프트를 입력해주세요."
MSG_UNKNOWN_TEMPLATE = "알 수 없는 템플릿입니다"

# (spec, source, prompt); source is "parse", "template" or "llm-modify"
GeneratedHook = Callable[[Spec, str, str], Any]


@dataclass(frozen=True)
class SessionState:
    current_spec: Spec | None = None
    positions: Mapping[str, Position] = field(default_factory=dict)
    context: ConversationContext = field(default_factory=create_context)
    last_result: ParseResult | None = None
    last_modify: ModifyResult | None = None
    loading: bool = False


def _invalid_prompt(prompt: Any) -> str | None:
    if not isinstance(prompt, str):
        return f"프롬프트는 문자열이어야 합니다. (got {type(prompt).__name__})"
    if not prompt.strip():
        return MSG_EMPTY_PROMPT
    return None


class EditingSession:
    def __init__(
        self,
        settings: Settings | None = None,
        parser: SmartParser | None = None,
        client: ModifyClient | None = None,
        on_generated: GeneratedHook | None = None,
    ):
        self.settings = settings or Settings.from_env()
        self.parser = parser or SmartParser(strict=self.settings.strict)
        self.coordinator = RequestCoordinator(RetryPolicy.from_settings(self.settings))
        self.on_generated = on_generated
        self._client = client
        self._state = SessionState()
        self._background: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # State access (always re-read through the session, never captured)
    # -----------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_spec(self) -> Spec | None:
        return self._state.current_spec

    @property
    def loading(self) -> bool:
        return self._state.loading

    def snapshot(self) -> Spec | None:
        """Copy of the current spec for a persistence layer."""
        spec = self._state.current_spec
        return spec.model_copy(deep=True) if spec is not None else None

    def render(self) -> tuple[list[RenderNode], list[RenderEdge]]:
        if self._state.current_spec is None:
            return ([], [])
        return spec_to_render(self._state.current_spec, self._state.positions)

    def _commit(self, ticket: Ticket, **changes: Any) -> bool:
        if not self.coordinator.is_current(ticket):
            logger.debug("Dropping stale result for request %d", ticket.request_id)
            return False
        self._state = replace(self._state, **changes)
        return True

    def _notify(self, spec: Spec, source: str, prompt: str) -> None:
        """Fire-and-forget feedback hook; its failures never reach the caller."""
        if self.on_generated is None:
            return
        try:
            outcome = self.on_generated(spec.model_copy(deep=True), source, prompt)
        except Exception:
            logger.exception("on_generated hook failed (source=%s)", source)
            return
        if inspect.isawaitable(outcome):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("Async on_generated hook skipped outside an event loop (source=%s)", source)
                if inspect.iscoroutine(outcome):
                    outcome.close()
                return
            task = asyncio.ensure_future(outcome)
            self._background.add(task)
            task.add_done_callback(self._hook_done)

    def _hook_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("on_generated hook failed", exc_info=task.exception())

    def _reject(self, error: str, command_type: str | None = None) -> ParseResult:
        result = ParseResult(
            success=False,
            spec=self._state.current_spec,
            confidence=CONFIDENCE_INVALID,
            command_type=command_type,
            error=error,
        )
        self._state = replace(self._state, last_result=result)
        return result

    # -----------------------------------------------------------------------
    # Prompt → spec (local parser)
    # -----------------------------------------------------------------------
    async def submit_prompt(self, prompt: Any, delay: float | None = None) -> ParseResult | None:
        """
        Parse a prompt against the current context. Returns the result, or
        None when this submission was superseded before it could commit.
        """
        problem = _invalid_prompt(prompt)
        if problem:
            return self._reject(problem)

        ticket = self.coordinator.begin()
        self._state = replace(self._state, loading=True)
        delay = self.settings.loading_delay if delay is None else delay
        try:
            if delay > 0:
                await ticket.token.sleep(delay)
            else:
                # Yield once so a newer submission in the same tick can supersede this one
                await ticket.token.run(asyncio.sleep(0))
        except RequestCancelled:
            logger.debug("Parse request %d cancelled", ticket.request_id)
            return None
        if not self.coordinator.is_current(ticket):
            return None

        state = self._state
        result = self.parser.parse(prompt, state.context)
        spec = result.spec if result.spec is not None else state.current_spec
        positions = merge_positions(spec, state.positions) if spec is not None else state.positions
        committed = self._commit(
            ticket,
            current_spec=spec,
            positions=positions,
            context=update_context(state.context, prompt, result, limit=self.settings.history_limit),
            last_result=result,
            loading=False,
        )
        if not committed:
            return None
        if result.success and result.spec is not None and result.command_type != "query":
            self._notify(result.spec, "parse", prompt)
        return result

    # -----------------------------------------------------------------------
    # Prompt + spec → operations (remote LLM)
    # -----------------------------------------------------------------------
    def _modify_client(self) -> ModifyClient:
        if self._client is None:
            self._client = ModifyClient.from_settings(self.settings)
        return self._client

    def _record_modify(self, ticket: Ticket, prompt: str, result: ModifyResult, spec: Spec | None) -> bool:
        state = self._state
        new_spec = spec if spec is not None else state.current_spec
        parse_view = ParseResult(
            success=result.success,
            spec=new_spec,
            confidence=CONFIDENCE_TEMPLATE if result.success else CONFIDENCE_INVALID,
            command_type="llm-modify",
            error=result.error,
            modifications=result.operations or [],
            explanation=result.reasoning,
        )
        return self._commit(
            ticket,
            current_spec=new_spec,
            positions=merge_positions(new_spec, state.positions) if new_spec is not None else state.positions,
            context=update_context(state.context, prompt, parse_view, limit=self.settings.history_limit),
            last_result=parse_view,
            last_modify=result,
            loading=False,
        )

    async def submit_modify(self, prompt: Any, fallback_to_parse: bool = False) -> ModifyResult | None:
        """
        Ask the remote modify endpoint for a diff against the current spec.
        Returns the ModifyResult, or None when superseded. With
        fallback_to_parse, a failed call still updates the canvas through the
        local parser.
        """
        problem = _invalid_prompt(prompt)
        if problem:
            return modify_failure(ModifyError.invalid_prompt(problem))
        base = self._state.current_spec
        if base is None or not base.nodes:
            return modify_failure(ModifyError.empty_diagram())

        ticket = self.coordinator.begin()
        self._state = replace(self._state, loading=True)
        nodes, edges = spec_to_render(base, self._state.positions)
        request = ModifyRequest(prompt=prompt, current_spec=base, nodes=nodes, edges=edges)
        client = self._modify_client()
        try:
            result = await self.coordinator.modify(lambda: client.modify(request), ticket)
        except RequestCancelled:
            logger.debug("Modify request %d cancelled", ticket.request_id)
            return None
        except Exception as e:
            logger.exception("Modify request %d failed unexpectedly", ticket.request_id)
            result = modify_failure(e)
        if not self.coordinator.is_current(ticket):
            return None

        new_spec = None
        if result.success:
            try:
                new_spec = load_spec(result.spec) if result.spec is not None else None
            except (InvalidInputError, SpecIntegrityError) as e:
                logger.warning("Rejected modify result for request %d: %s", ticket.request_id, e)
                result = modify_failure(ModifyError.invalid_response(str(e)), reasoning=result.reasoning)
            else:
                if new_spec is None:
                    result = modify_failure(ModifyError.invalid_response("no spec"), reasoning=result.reasoning)

        if not result.success and fallback_to_parse:
            parsed = self.parser.parse(prompt, self._state.context)
            self._commit(
                ticket,
                current_spec=parsed.spec or self._state.current_spec,
                positions=merge_positions(parsed.spec, self._state.positions) if parsed.spec else self._state.positions,
                context=update_context(self._state.context, prompt, parsed, limit=self.settings.history_limit),
                last_result=parsed,
                last_modify=result,
                loading=False,
            )
            return result

        if not self._record_modify(ticket, prompt, result, new_spec):
            return None
        if result.success and new_spec is not None:
            self._notify(new_spec, "llm-modify", prompt)
        return result

    # -----------------------------------------------------------------------
    # Direct state changes
    # -----------------------------------------------------------------------
    def select_template(self, template_id: str) -> ParseResult:
        ticket = self.coordinator.begin()
        spec = get_template(template_id)
        if spec is None:
            self._commit(ticket, loading=False)
            return self._reject(f"{MSG_UNKNOWN_TEMPLATE}: {template_id}", command_type="template")
        result = ParseResult(
            success=True,
            spec=spec,
            confidence=CONFIDENCE_TEMPLATE,
            template_used=template_id,
            command_type="template",
        )
        state = self._state
        self._commit(
            ticket,
            current_spec=spec,
            positions=merge_positions(spec, state.positions),
            context=update_context(state.context, template_id, result, limit=self.settings.history_limit),
            last_result=result,
            loading=False,
        )
        self._notify(spec, "template", template_id)
        return result

    def load_spec(self, data: Any) -> Spec:
        """
        Rehydrate from a persisted snapshot; supersedes in-flight requests.
        Raises InvalidInputError / SpecIntegrityError for bad payloads.
        """
        spec = load_spec(data)
        ticket = self.coordinator.begin()
        self._commit(
            ticket,
            current_spec=spec,
            positions=merge_positions(spec, {}),
            context=create_context(spec),
            last_result=None,
            last_modify=None,
            loading=False,
        )
        return spec

    def sync_from_render(self, nodes: list[RenderNode], edges: list[RenderEdge]) -> Spec:
        """
        Adopt the canvas state (manual moves, edits) as the current spec.
        Supersedes in-flight requests, which were computed against the old base.
        """
        base = self._state.current_spec
        spec = render_to_spec(
            nodes,
            edges,
            name=base.name if base else "",
            description=base.description if base else "",
        )
        ticket = self.coordinator.begin()
        context = self._state.context
        self._commit(
            ticket,
            current_spec=spec,
            positions=positions_of(nodes),
            context=ConversationContext(history=context.history, current_spec=spec),
            loading=False,
        )
        return spec

    def cancel(self) -> None:
        self.coordinator.cancel()
        self._state = replace(self._state, loading=False)

    async def aclose(self) -> None:
        self.cancel()
        if self._client is not None:
            await self._client.aclose()
