"""
Trust-boundary guards: everything that crosses into the core from an
untrusted source (LLM output, persisted snapshots) is normalized and checked
here before the diff applier or the session sees it.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from infraflow.errors import InvalidInputError, ModifyError, SpecIntegrityError
from infraflow.spec import OPERATION_LIST, Operation, Spec, validate_spec

logger = logging.getLogger(__name__)

# Tier normalization: alias -> canonical
TIER_ALIASES: dict[str, str] = {
    "external": "external",
    "internet": "external",
    "public": "external",
    "edge": "external",
    "dmz": "dmz",
    "dmz_zone": "dmz",
    "perimeter": "dmz",
    "gateway": "dmz",
    "internal": "internal",
    "private": "internal",
    "on_prem": "internal",
    "onprem": "internal",
    "app": "internal",
    "web": "internal",
    "data": "data",
    "data_layer": "data",
    "db": "data",
    "database": "data",
    "storage": "data",
}

# Verbs emitted by older prompt revisions -> canonical operation kinds
LEGACY_OPERATION_TYPES = ("add", "remove", "modify", "replace", "connect", "disconnect")


def _normalize_tier_id(raw: str) -> str:
    """Lowercase, replace non-alphanumeric with underscore, collapse underscores."""
    s = (raw or "").strip().lower()
    s = re.sub(r"[^a-z0-9]+", "_", s)
    return re.sub(r"_+", "_", s).strip("_")


def canonical_tier(raw: Any) -> str | None:
    """Map a tier alias to one of external/dmz/internal/data; unknown values become None."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    return TIER_ALIASES.get(_normalize_tier_id(raw))


def _ensure_list(obj: Any) -> list[Any]:
    if isinstance(obj, list):
        return obj
    return [obj] if obj is not None else []


# ---------------------------------------------------------------------------
# Structural integrity
# ---------------------------------------------------------------------------
def spec_integrity_errors(spec: Spec) -> list[str]:
    """Duplicate node ids and connections that reference missing nodes."""
    problems: list[str] = []
    seen: set[str] = set()
    for n in spec.nodes:
        if n.id in seen:
            problems.append(f"Duplicate node id '{n.id}'.")
        seen.add(n.id)
    for i, c in enumerate(spec.connections):
        if c.source not in seen:
            problems.append(f"Connection {i} references non-existent source node '{c.source}'.")
        if c.target not in seen:
            problems.append(f"Connection {i} references non-existent target node '{c.target}'.")
    return problems


def ensure_integrity(spec: Spec) -> Spec:
    problems = spec_integrity_errors(spec)
    if problems:
        raise SpecIntegrityError(problems)
    return spec


# ---------------------------------------------------------------------------
# Persisted specs
# ---------------------------------------------------------------------------
def _normalize_spec_dict(data: dict[str, Any]) -> dict[str, Any]:
    nodes = []
    for n in _ensure_list(data.get("nodes", [])):
        if isinstance(n, dict) and "tier" in n:
            n = {**n, "tier": canonical_tier(n.get("tier"))}
        nodes.append(n)
    return {**data, "nodes": nodes, "connections": _ensure_list(data.get("connections", []))}


def load_spec(data: Any) -> Spec:
    """
    Rehydrate a spec handed back by a persistence layer.
    Raises InvalidInputError on shape errors, SpecIntegrityError on dangling references.
    """
    if isinstance(data, Spec):
        return ensure_integrity(data.model_copy(deep=True))
    if not isinstance(data, dict):
        raise InvalidInputError(f"Persisted spec must be an object, got {type(data).__name__}")
    spec, errors = validate_spec(_normalize_spec_dict(data))
    if spec is None:
        raise InvalidInputError("; ".join(errors))
    return ensure_integrity(spec)


# ---------------------------------------------------------------------------
# Untrusted LLM output
# ---------------------------------------------------------------------------
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of model output: a fenced block first,
    then the first balanced {...}. Raises ModifyError(INVALID_JSON).
    """
    candidates: list[str] = []
    fenced = _FENCE_RE.search(text or "")
    if fenced:
        candidates.append(fenced.group(1))
    balanced = _first_balanced_object(text or "")
    if balanced:
        candidates.append(balanced)
    last_error = "no JSON object found"
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug("JSON candidate rejected: %s", e)
            last_error = str(e)
            continue
        if isinstance(parsed, dict):
            return parsed
        last_error = "top-level JSON value is not an object"
    raise ModifyError.invalid_json(last_error)


def _legacy_to_canonical(op: dict[str, Any]) -> dict[str, Any]:
    """Rewrite {type: add|remove|modify|replace|connect|disconnect, target, data} operations."""
    kind = op.get("type")
    data = op.get("data") if isinstance(op.get("data"), dict) else {}
    if kind == "add":
        between = data.get("betweenNodes") or data.get("between_nodes")
        return {
            "type": "add-node",
            "node": {
                "type": op.get("target"),
                "label": data.get("label"),
                "tier": data.get("tier"),
                "description": data.get("description"),
            },
            "after": data.get("afterNode") or data.get("after_node"),
            "before": data.get("beforeNode") or data.get("before_node"),
            "between": list(between) if isinstance(between, (list, tuple)) else None,
        }
    if kind == "remove":
        return {"type": "remove-node", "nodeId": op.get("target")}
    if kind == "modify":
        return {
            "type": "modify-node",
            "nodeId": op.get("target"),
            "label": data.get("label"),
            "description": data.get("description"),
            "tier": data.get("tier"),
        }
    if kind == "replace":
        return {
            "type": "modify-node",
            "nodeId": op.get("target"),
            "newType": data.get("newType") or data.get("new_type"),
            "label": data.get("label"),
            "description": data.get("description"),
        }
    if kind in ("connect", "disconnect"):
        out = {
            "type": "add-edge" if kind == "connect" else "remove-edge",
            "source": data.get("source"),
            "target": data.get("target"),
        }
        if kind == "connect":
            out["flowType"] = data.get("flowType") or data.get("flow_type")
            out["label"] = data.get("label")
        return out
    return op


def _normalize_operation(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    op = _legacy_to_canonical(raw) if raw.get("type") in LEGACY_OPERATION_TYPES else dict(raw)
    node = op.get("node")
    if isinstance(node, dict) and node.get("tier") is not None:
        op["node"] = {**node, "tier": canonical_tier(node.get("tier"))}
    if op.get("type") == "modify-node" and op.get("tier") is not None:
        op["tier"] = canonical_tier(op.get("tier"))
    # Drop explicit nulls so optional fields fall back to their defaults
    return {k: v for k, v in op.items() if v is not None}


def coerce_operations(raw_ops: Any) -> list[Operation]:
    """Validate an untrusted operation list. Raises ModifyError(INVALID_RESPONSE)."""
    if not isinstance(raw_ops, list):
        raise ModifyError.invalid_response("operations must be a list")
    normalized = [_normalize_operation(op) for op in raw_ops]
    try:
        return OPERATION_LIST.validate_python(normalized)
    except ValidationError as e:
        messages = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            messages.append(f"{loc}: {err.get('msg')}")
        raise ModifyError.invalid_response(", ".join(messages)) from e


def parse_llm_response(text: str) -> tuple[str, list[Operation]]:
    """
    Parse a model reply of the form {"reasoning": str, "operations": [...]}.
    Returns (reasoning, operations); raises ModifyError on any shape problem.
    """
    payload = extract_json_object(text)
    reasoning = payload.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise ModifyError.invalid_response("reasoning: 변경 이유 설명이 필요합니다")
    operations = coerce_operations(payload.get("operations"))
    if not operations:
        raise ModifyError.invalid_response("operations: 최소 하나의 작업이 필요합니다")
    return (reasoning.strip(), operations)
