"""
Resolution strategies: template keywords, component synonyms, fixed fallback.

Each strategy is a plain callable taking the normalized prompt and returning
a Resolution. NOT_RESOLVED is the ordinary "try the next strategy" signal;
INVALID means the strategy produced a spec that breaks its own invariants.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import NamedTuple

from infraflow.catalog import detect_components, label_for_type
from infraflow.spec import (
    CONFIDENCE_COMPONENT,
    CONFIDENCE_FALLBACK,
    CONFIDENCE_TEMPLATE,
    Connection,
    Node,
    ParseResult,
    Spec,
)
from infraflow.templates import (
    FALLBACK_TEMPLATE_ID,
    get_entry,
    match_by_id,
    match_by_keywords,
    trigger_examples,
)
from infraflow.validation import spec_integrity_errors

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "입력하신 내용을 정확히 인식하지 못했습니다."


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    NOT_RESOLVED = "not_resolved"
    INVALID = "invalid"


class Resolution(NamedTuple):
    status: ResolutionStatus
    result: ParseResult | None = None
    problems: tuple[str, ...] = ()

    @classmethod
    def not_resolved(cls) -> Resolution:
        return cls(ResolutionStatus.NOT_RESOLVED)


Resolver = Callable[[str], Resolution]


def _checked(result: ParseResult) -> Resolution:
    problems = spec_integrity_errors(result.spec) if result.spec is not None else ["resolver returned no spec"]
    if problems:
        return Resolution(ResolutionStatus.INVALID, result, tuple(problems))
    return Resolution(ResolutionStatus.RESOLVED, result)


def _unique_labels(spec: Spec) -> list[str]:
    seen: list[str] = []
    for n in spec.nodes:
        label = n.label or label_for_type(n.type)
        if label not in seen:
            seen.append(label)
    return seen


def explain_template(spec: Spec, template_id: str) -> str:
    lines = [f"「{spec.name or template_id}」 템플릿이 적용되었습니다."]
    if spec.description:
        lines.append(spec.description)
    labels = _unique_labels(spec)
    if labels:
        lines.append(f"구성: {', '.join(labels)}")
    return "\n".join(lines)


def explain_components(spec: Spec) -> str:
    labels = _unique_labels(spec)
    return (
        "요청하신 내용에서 다음 구성요소를 감지하여 인프라를 생성했습니다.\n"
        f"구성: {', '.join(labels)} ({len(labels)}개 컴포넌트)"
    )


# ---------------------------------------------------------------------------
# Template resolver
# ---------------------------------------------------------------------------
def resolve_template(prompt: str) -> Resolution:
    """First table entry (declaration order) with any keyword in the prompt, then a template-id pass."""
    matched = match_by_keywords(prompt)
    if matched is not None:
        entry, keyword = matched
        logger.info("Template '%s' matched on keyword '%s'", entry.template_id, keyword)
    else:
        entry = match_by_id(prompt)
        if entry is None:
            return Resolution.not_resolved()
        logger.info("Template '%s' matched on id", entry.template_id)
    spec = entry.spec.model_copy(deep=True)
    return _checked(
        ParseResult(
            success=True,
            spec=spec,
            confidence=CONFIDENCE_TEMPLATE,
            template_used=entry.template_id,
            explanation=explain_template(spec, entry.template_id),
        )
    )


# ---------------------------------------------------------------------------
# Component detector
# ---------------------------------------------------------------------------
def build_component_spec(prompt: str) -> Spec | None:
    """
    One node per detected component type, a user node prepended when absent,
    chained in detection order. Plain substring scanning: "ips" inside
    "ipsum" counts as IDS/IPS.
    """
    found = detect_components(prompt)
    if not found:
        return None
    nodes = [Node(id=f"{p.type}-{i}", type=p.type, label=p.label) for i, p in enumerate(found)]
    if not any(n.type == "user" for n in nodes):
        nodes.insert(0, Node(id="user", type="user", label="User"))
    connections = [
        Connection(source=nodes[i].id, target=nodes[i + 1].id, flow_type="request")
        for i in range(len(nodes) - 1)
    ]
    return Spec(name="Custom Architecture", description="", nodes=nodes, connections=connections)


def detect_components_resolver(prompt: str) -> Resolution:
    spec = build_component_spec(prompt)
    if spec is None:
        return Resolution.not_resolved()
    logger.info("Component detection found %d node(s)", len(spec.nodes))
    return _checked(
        ParseResult(
            success=True,
            spec=spec,
            confidence=CONFIDENCE_COMPONENT,
            explanation=explain_components(spec),
        )
    )


# ---------------------------------------------------------------------------
# Fallback generator
# ---------------------------------------------------------------------------
def fallback_spec() -> Spec:
    entry = get_entry(FALLBACK_TEMPLATE_ID)
    return entry.spec.model_copy(deep=True)


def resolve_fallback(prompt: str) -> Resolution:
    """Always resolves: the WAF-fronted web tier."""
    logger.warning("No template or component matched; using fallback '%s'", FALLBACK_TEMPLATE_ID)
    spec = fallback_spec()
    return Resolution(
        ResolutionStatus.RESOLVED,
        ParseResult(
            success=True,
            spec=spec,
            confidence=CONFIDENCE_FALLBACK,
            template_used=FALLBACK_TEMPLATE_ID,
            is_fallback=True,
            warnings=[FALLBACK_WARNING],
            suggestions=trigger_examples(),
            explanation=explain_template(spec, FALLBACK_TEMPLATE_ID),
        ),
    )


DEFAULT_RESOLVERS: tuple[Resolver, ...] = (
    resolve_template,
    detect_components_resolver,
    resolve_fallback,
)
