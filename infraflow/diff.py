"""
Diff applier: applies typed operations to a spec, all-or-nothing.

Operations run in list order against a private deep copy, so later operations
see earlier ones (add-node then add-edge to it is valid). Any invalid
operation aborts the whole call and the base spec is returned untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, Field

from infraflow.catalog import label_for_type, mint_node_id, tier_for_type
from infraflow.errors import DiffValidationError
from infraflow.spec import (
    AddEdge,
    AddNode,
    Connection,
    ModifyNode,
    Node,
    Operation,
    RemoveEdge,
    RemoveNode,
    Spec,
)
from infraflow.validation import spec_integrity_errors

logger = logging.getLogger(__name__)


class ApplyResult(BaseModel):
    success: bool
    spec: Spec
    applied: int = Field(default=0, description="Operations applied (0 on failure)")
    errors: list[str] = Field(default_factory=list)
    missing_references: list[str] = Field(default_factory=list)
    failed_operation: int | None = Field(default=None, description="Index of the rejected operation, if one was")
    added_node_ids: list[str] = Field(default_factory=list)


def _require_node(spec: Spec, node_id: str, role: str) -> Node:
    node = spec.find_node(node_id)
    if node is None:
        raise DiffValidationError(f"{role} node '{node_id}' does not exist", [node_id])
    return node


def _has_edge(spec: Spec, source: str, target: str) -> bool:
    return any(c.source == source and c.target == target for c in spec.connections)


# ---------------------------------------------------------------------------
# Per-operation handlers (mutate the working copy in place)
# ---------------------------------------------------------------------------
def _apply_add_node(spec: Spec, op: AddNode) -> str:
    draft = op.node
    node_id = draft.id or mint_node_id(draft.type)
    if spec.find_node(node_id) is not None:
        raise DiffValidationError(f"add-node: node id '{node_id}' already exists", [node_id])
    # Anchors must exist before the new node is inserted
    if op.between is not None:
        src, tgt = op.between
        _require_node(spec, src, "between")
        _require_node(spec, tgt, "between")
    if op.after is not None:
        _require_node(spec, op.after, "after")
    if op.before is not None:
        _require_node(spec, op.before, "before")

    spec.nodes.append(
        Node(
            id=node_id,
            type=draft.type,
            label=draft.label or label_for_type(draft.type),
            tier=draft.tier or tier_for_type(draft.type),
            description=draft.description,
        )
    )
    if op.between is not None:
        src, tgt = op.between
        spec.connections = [c for c in spec.connections if not (c.source == src and c.target == tgt)]
        spec.connections.append(Connection(source=src, target=node_id))
        spec.connections.append(Connection(source=node_id, target=tgt))
    else:
        if op.after is not None:
            spec.connections.append(Connection(source=op.after, target=node_id))
        if op.before is not None:
            spec.connections.append(Connection(source=node_id, target=op.before))
    return node_id


def _apply_remove_node(spec: Spec, op: RemoveNode) -> None:
    _require_node(spec, op.node_id, "remove-node:")
    spec.nodes = [n for n in spec.nodes if n.id != op.node_id]
    spec.connections = [c for c in spec.connections if op.node_id not in (c.source, c.target)]


def _apply_modify_node(spec: Spec, op: ModifyNode) -> None:
    node = _require_node(spec, op.node_id, "modify-node:")
    if op.new_type is not None and op.new_type != node.type:
        node.type = op.new_type
        if op.label is None:
            node.label = label_for_type(op.new_type)
    if op.label is not None:
        node.label = op.label
    if op.description is not None:
        node.description = op.description
    if op.tier is not None:
        node.tier = op.tier


def _apply_add_edge(spec: Spec, op: AddEdge) -> None:
    missing = [ref for ref in (op.source, op.target) if spec.find_node(ref) is None]
    if missing:
        raise DiffValidationError(
            f"add-edge {op.source}→{op.target}: unknown node(s) {', '.join(missing)}", missing
        )
    if op.source == op.target:
        raise DiffValidationError(f"add-edge: self-loop on '{op.source}' is not allowed")
    if _has_edge(spec, op.source, op.target):
        logger.debug("add-edge %s→%s already present; skipped", op.source, op.target)
        return
    spec.connections.append(
        Connection(source=op.source, target=op.target, flow_type=op.flow_type or "request", label=op.label)
    )


def _apply_remove_edge(spec: Spec, op: RemoveEdge) -> None:
    missing = [ref for ref in (op.source, op.target) if spec.find_node(ref) is None]
    if missing:
        raise DiffValidationError(
            f"remove-edge {op.source}→{op.target}: unknown node(s) {', '.join(missing)}", missing
        )
    spec.connections = [c for c in spec.connections if not (c.source == op.source and c.target == op.target)]


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def apply_operations(base: Spec, operations: Sequence[Operation]) -> ApplyResult:
    """
    Apply operations atomically. On failure the returned spec is a copy of
    base and errors names the offending operation and reference.
    """
    working = base.model_copy(deep=True)
    added: list[str] = []
    for index, op in enumerate(operations):
        try:
            if isinstance(op, AddNode):
                added.append(_apply_add_node(working, op))
            elif isinstance(op, RemoveNode):
                _apply_remove_node(working, op)
            elif isinstance(op, ModifyNode):
                _apply_modify_node(working, op)
            elif isinstance(op, AddEdge):
                _apply_add_edge(working, op)
            elif isinstance(op, RemoveEdge):
                _apply_remove_edge(working, op)
            else:
                raise DiffValidationError(f"unknown operation {op!r}")
        except DiffValidationError as e:
            logger.info("Diff rejected at operation %d (%s): %s", index, getattr(op, "type", "?"), e)
            return ApplyResult(
                success=False,
                spec=base.model_copy(deep=True),
                errors=[f"operation {index}: {e}"],
                missing_references=e.references,
                failed_operation=index,
            )

    problems = spec_integrity_errors(working)
    if problems:
        # Base spec was already inconsistent; refuse rather than propagate it
        return ApplyResult(success=False, spec=base.model_copy(deep=True), errors=problems)

    return ApplyResult(success=True, spec=working, applied=len(operations), added_node_ids=added)
