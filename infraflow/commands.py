"""
Incremental-edit commands over an existing spec ("WAF 추가해줘", "캐시 삭제해줘").

Each handler translates the prompt into typed operations and runs them
through the diff applier, so local edits get the same atomicity as
LLM-proposed ones. Handlers never raise; failures keep the current spec.
"""

from __future__ import annotations

import logging
import re

from infraflow.catalog import (
    detect_component_type,
    detect_components,
    label_for_type,
    mint_node_id,
)
from infraflow.diff import apply_operations
from infraflow.spec import (
    CONFIDENCE_FALLBACK,
    CONFIDENCE_TEMPLATE,
    AddEdge,
    AddNode,
    CommandType,
    ModifyNode,
    NodeDraft,
    Operation,
    ParseResult,
    RemoveEdge,
    RemoveNode,
    Spec,
)

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.ASCII

# (pattern, command) checked in order; disconnect precedes connect so that
# "disconnect" / "연결 해제" are not taken as connect requests.
COMMAND_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(추가|붙여|넣어|더해|add|insert)", _FLAGS), "add"),
    (re.compile(r"(추가해줘|추가해|붙여줘|넣어줘|더해줘)$", _FLAGS), "add"),
    (re.compile(r"앞에|뒤에|사이에|위에|아래에", _FLAGS), "add"),
    (re.compile(r"^(삭제|제거|없애|빼|remove|delete)", _FLAGS), "remove"),
    (re.compile(r"(삭제해줘|삭제해|제거해줘|제거해|없애줘|빼줘)$", _FLAGS), "remove"),
    (re.compile(r"^(수정|변경|바꿔|modify|change|update)", _FLAGS), "modify"),
    (re.compile(r"(수정해|변경해|바꿔줘)$", _FLAGS), "modify"),
    (re.compile(r"연결.*해제|끊어|disconnect|unlink", _FLAGS), "disconnect"),
    (re.compile(r"연결|connect|link", _FLAGS), "connect"),
    (re.compile(r"\?$|뭐야|뭔가요|알려줘|설명해", _FLAGS), "query"),
)

# Insertion anchors: Korean postpositions follow the anchor, English prepositions precede it
_AFTER_RE = (re.compile(r"(\S+?)\s*(?:뒤에|다음에)"), re.compile(r"after\s+(\S+)", _FLAGS))
_BEFORE_RE = (re.compile(r"(\S+?)\s*(?:앞에|이전에)"), re.compile(r"before\s+(\S+)", _FLAGS))
_BETWEEN_RE = (
    re.compile(r"(\S+?)(?:와|과)?\s+(\S+?)\s*사이에"),
    re.compile(r"between\s+(\S+)\s+and\s+(\S+)", _FLAGS),
)
_QUOTED_RE = re.compile(r"[\"'“‘]([^\"'”’]+)[\"'”’]")

MSG_NO_SPEC = "먼저 아키텍처를 생성해주세요."
MSG_ADD_NOTHING = "추가할 컴포넌트를 인식하지 못했습니다."
MSG_REMOVE_NOTHING = "제거할 컴포넌트를 찾지 못했습니다."
MSG_CONNECT_TWO = "연결할 두 컴포넌트를 지정해주세요."
MSG_DISCONNECT_TWO = "연결 해제할 두 컴포넌트를 지정해주세요."
MSG_NOT_FOUND = "해당 컴포넌트를 찾을 수 없습니다."
MSG_MODIFY_HINT = '변경할 이름을 따옴표로 지정해주세요. 예: 방화벽 이름을 "Edge FW"로 변경해줘'


def detect_command_type(prompt: str) -> str:
    normalized = (prompt or "").strip().lower()
    for pattern, command in COMMAND_PATTERNS:
        if pattern.search(normalized):
            return command
    return "create"


def _mentioned_types(prompt: str) -> list[str]:
    return [p.type for p in detect_components(prompt)]


def _anchor(prompt: str, spec: Spec, patterns: tuple[re.Pattern[str], ...]) -> tuple[str, str] | None:
    """(node id, node type) of the first existing node named by an anchor phrase."""
    for pattern in patterns:
        m = pattern.search(prompt)
        if not m:
            continue
        node_type = detect_component_type(m.group(1))
        if node_type is None:
            continue
        node = spec.first_of_type(node_type)
        if node is not None:
            return (node.id, node_type)
    return None


def _between(prompt: str, spec: Spec) -> tuple[str, str, set[str]] | None:
    for pattern in _BETWEEN_RE:
        m = pattern.search(prompt)
        if not m:
            continue
        first = detect_component_type(m.group(1))
        second = detect_component_type(m.group(2))
        if first is None or second is None:
            continue
        a = spec.first_of_type(first)
        b = spec.first_of_type(second)
        if a is not None and b is not None and a.id != b.id:
            return (a.id, b.id, {first, second})
    return None


def _failure(command: str, spec: Spec, error: str) -> ParseResult:
    return ParseResult(
        success=False,
        spec=spec,
        confidence=CONFIDENCE_FALLBACK,
        command_type=command,
        error=error,
    )


def _apply(command: str, spec: Spec, operations: list[Operation]) -> ParseResult:
    outcome = apply_operations(spec, operations)
    if not outcome.success:
        return _failure(command, spec, "; ".join(outcome.errors))
    return ParseResult(
        success=True,
        spec=outcome.spec,
        confidence=CONFIDENCE_TEMPLATE,
        command_type=command,
        modifications=operations,
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def handle_add(prompt: str, spec: Spec) -> ParseResult:
    between = _between(prompt, spec)
    after = before = None
    anchor_types: set[str] = set()
    if between is not None:
        anchor_types = between[2]
    else:
        after = _anchor(prompt, spec, _AFTER_RE)
        before = None if after else _anchor(prompt, spec, _BEFORE_RE)
        anchor = after or before
        if anchor is not None:
            anchor_types = {anchor[1]}

    types = _mentioned_types(prompt)
    to_add = [t for t in types if t not in anchor_types] or types
    if not to_add:
        return _failure("add", spec, MSG_ADD_NOTHING)

    if between is None and after is None and before is None and spec.nodes:
        after = (spec.nodes[-1].id, spec.nodes[-1].type)

    operations: list[Operation] = []
    for node_type in to_add:
        draft = NodeDraft(id=mint_node_id(node_type), type=node_type, label=label_for_type(node_type))
        if between is not None:
            operations.append(AddNode(node=draft, between=(between[0], between[1])))
            # Each later node splices in after the previous one
            between = (draft.id, between[1], between[2])
        elif after is not None:
            operations.append(AddNode(node=draft, after=after[0]))
        elif before is not None:
            operations.append(AddNode(node=draft, before=before[0]))
        else:
            operations.append(AddNode(node=draft))
    return _apply("add", spec, operations)


def handle_remove(prompt: str, spec: Spec) -> ParseResult:
    ids: list[str] = []
    for node_type in _mentioned_types(prompt):
        ids.extend(n.id for n in spec.nodes if n.type == node_type and n.id not in ids)
    if not ids:
        return _failure("remove", spec, MSG_REMOVE_NOTHING)
    return _apply("remove", spec, [RemoveNode(node_id=i) for i in ids])


def _pair(prompt: str, spec: Spec, command: str, too_few: str) -> tuple[str, str] | ParseResult:
    types = _mentioned_types(prompt)
    if len(types) < 2:
        return _failure(command, spec, too_few)
    source = spec.first_of_type(types[0])
    target = spec.first_of_type(types[1])
    if source is None or target is None:
        return _failure(command, spec, MSG_NOT_FOUND)
    return (source.id, target.id)


def handle_connect(prompt: str, spec: Spec) -> ParseResult:
    pair = _pair(prompt, spec, "connect", MSG_CONNECT_TWO)
    if isinstance(pair, ParseResult):
        return pair
    return _apply("connect", spec, [AddEdge(source=pair[0], target=pair[1])])


def handle_disconnect(prompt: str, spec: Spec) -> ParseResult:
    pair = _pair(prompt, spec, "disconnect", MSG_DISCONNECT_TWO)
    if isinstance(pair, ParseResult):
        return pair
    a, b = pair
    return _apply("disconnect", spec, [RemoveEdge(source=a, target=b), RemoveEdge(source=b, target=a)])


def handle_modify(prompt: str, spec: Spec) -> ParseResult:
    """Relabel the first mentioned node when the prompt quotes a new name."""
    quoted = _QUOTED_RE.search(prompt)
    if not quoted:
        return _failure("modify", spec, MSG_MODIFY_HINT)
    new_label = quoted.group(1).strip()
    # Type mentions inside the quoted label do not pick the target
    outside = prompt[: quoted.start()] + " " + prompt[quoted.end() :]
    for node_type in _mentioned_types(outside):
        node = spec.first_of_type(node_type)
        if node is not None:
            return _apply("modify", spec, [ModifyNode(node_id=node.id, label=new_label)])
    return _failure("modify", spec, MSG_NOT_FOUND)


def handle_query(prompt: str, spec: Spec) -> ParseResult:
    return ParseResult(
        success=True,
        spec=spec,
        confidence=CONFIDENCE_TEMPLATE,
        command_type="query",
        query=prompt,
    )


HANDLERS = {
    "add": handle_add,
    "remove": handle_remove,
    "modify": handle_modify,
    "connect": handle_connect,
    "disconnect": handle_disconnect,
    "query": handle_query,
}


def run_command(command: CommandType, prompt: str, spec: Spec | None) -> ParseResult:
    """Dispatch an incremental command; spec must be the caller's current spec."""
    if spec is None:
        return ParseResult(success=False, confidence=0, command_type=command, error=MSG_NO_SPEC)
    handler = HANDLERS.get(command)
    if handler is None:
        raise ValueError(f"No incremental handler for command '{command}'")
    logger.info("Incremental command '%s' on spec with %d node(s)", command, len(spec.nodes))
    return handler(prompt, spec)
