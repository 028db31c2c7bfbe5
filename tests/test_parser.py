"""
Tests for the resolution strategies and the smart parser.
"""

import pytest

from infraflow.context import create_context
from infraflow.errors import SpecIntegrityError
from infraflow.parser import SmartParser, smart_parse
from infraflow.resolvers import (
    FALLBACK_WARNING,
    Resolution,
    ResolutionStatus,
    build_component_spec,
    resolve_fallback,
    resolve_template,
)
from infraflow.spec import Connection, Node, ParseResult, Spec
from infraflow.validation import spec_integrity_errors


def test_template_keyword_beats_component_detection():
    result = smart_parse("firewall과 web server")
    assert result.success
    assert result.template_used == "simple-waf"
    assert result.confidence == 0.8
    assert result.command_type == "create"


def test_korean_three_tier_prompt():
    result = smart_parse("3티어 웹 아키텍처")
    assert result.template_used == "3tier"
    assert result.confidence == 0.8
    assert result.explanation


def test_single_component_gets_user_node():
    result = smart_parse("firewall")
    assert result.success
    assert result.confidence == 0.5
    assert result.template_used is None
    types = [n.type for n in result.spec.nodes]
    assert types == ["user", "firewall"]
    assert [(c.source, c.target) for c in result.spec.connections] == [("user", "firewall-0")]


def test_empty_prompt_falls_back():
    result = smart_parse("")
    assert result.success
    assert result.confidence == 0.3
    assert result.is_fallback
    assert result.template_used == "simple-waf"
    assert FALLBACK_WARNING in result.warnings
    assert result.suggestions


def test_lorem_ipsum_hits_substring_match():
    result = smart_parse("xyzzy lorem ipsum dolor sit amet")
    assert result.confidence == 0.5
    assert "ids-ips" in [n.type for n in result.spec.nodes]


def test_non_string_prompt_is_rejected():
    result = smart_parse(42)
    assert not result.success
    assert result.confidence == 0


def test_template_id_second_pass():
    resolution = resolve_template("use the zero-trust layout")
    assert resolution.status is ResolutionStatus.RESOLVED
    assert resolution.result.template_used == "zero-trust"


def test_template_miss_is_not_resolved():
    assert resolve_template("xyzzy").status is ResolutionStatus.NOT_RESOLVED


def test_component_spec_is_consistent():
    spec = build_component_spec("user, waf, 로드밸런서, 웹서버, db")
    assert spec.nodes[0].id == "user-0"
    assert spec_integrity_errors(spec) == []
    assert len(spec.connections) == len(spec.nodes) - 1


def test_fallback_always_resolves():
    resolution = resolve_fallback("anything")
    assert resolution.status is ResolutionStatus.RESOLVED
    assert resolution.result.is_fallback


def test_results_never_share_template_state():
    a = smart_parse("3tier")
    a.spec.nodes.clear()
    b = smart_parse("3tier")
    assert b.spec.nodes


def _broken(prompt):
    spec = Spec(
        nodes=[Node(id="a", type="user", label="A")],
        connections=[Connection(source="a", target="ghost")],
    )
    return Resolution(ResolutionStatus.INVALID, ParseResult(success=True, spec=spec, confidence=0.8), ("dangling ghost",))


def test_invalid_resolution_converted_when_not_strict():
    result = SmartParser(resolvers=[_broken]).parse("x")
    assert not result.success
    assert result.confidence == 0
    assert result.spec.nodes


def test_invalid_resolution_raises_when_strict():
    with pytest.raises(SpecIntegrityError):
        SmartParser(resolvers=[_broken], strict=True).parse("x")


def test_exhausted_chain_still_returns_fallback():
    result = SmartParser(resolvers=[lambda p: Resolution.not_resolved()]).parse("x")
    assert result.success
    assert result.is_fallback


def test_edit_command_without_spec_is_create():
    result = smart_parse("WAF 추가해줘")
    assert result.command_type == "create"
    assert result.template_used == "simple-waf"


def test_edit_command_with_spec_is_incremental():
    base = smart_parse("3tier").spec
    result = smart_parse("캐시 추가해줘", create_context(base))
    assert result.command_type == "add"
    assert len(result.spec.nodes) == len(base.nodes) + 1


@pytest.mark.parametrize(
    "prompt",
    ["", "   ", "\n\t", "🙂🙂", "방화벽과 DB", "Kubernetes 클러스터 with redis", "a" * 5000],
)
def test_parse_is_total_for_strings(prompt):
    result = smart_parse(prompt)
    assert result.success
    assert result.confidence in (0.3, 0.5, 0.8)
    assert result.spec is not None and result.spec.nodes


def _explodes(prompt):
    raise RuntimeError("resolver bug")


def test_crashing_resolver_becomes_failed_result():
    result = SmartParser(resolvers=[_explodes, resolve_fallback]).parse("anything")
    assert not result.success
    assert result.confidence == 0
    assert result.command_type == "create"
    assert "resolver bug" in result.error


def test_crashing_resolver_does_not_raise_in_strict_mode():
    result = SmartParser(resolvers=[_explodes], strict=True).parse("anything")
    assert not result.success


def test_integrity_error_from_resolver_raises_when_strict():
    def corrupt(prompt):
        raise SpecIntegrityError(["dangling ghost"])

    with pytest.raises(SpecIntegrityError):
        SmartParser(resolvers=[corrupt], strict=True).parse("anything")
    assert not SmartParser(resolvers=[corrupt]).parse("anything").success
