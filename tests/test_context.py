"""
Tests for conversation context bookkeeping.
"""

from infraflow.context import create_context, update_context
from infraflow.spec import ParseResult
from infraflow.templates import get_template


def _result(template_id="3tier"):
    return ParseResult(success=True, spec=get_template(template_id), confidence=0.8, template_used=template_id)


def test_create_context_copies_spec():
    spec = get_template("vpn")
    ctx = create_context(spec)
    spec.nodes.clear()
    assert ctx.current_spec.nodes
    assert ctx.history == ()


def test_update_context_is_non_mutating():
    ctx = create_context()
    new = update_context(ctx, "3tier", _result(), timestamp=1.0)
    assert ctx.history == ()
    assert len(new.history) == 1
    assert new.history[0].timestamp == 1.0
    assert new.current_spec.name == get_template("3tier").name
    assert new.last_result.template_used == "3tier"


def test_update_context_keeps_spec_when_result_has_none():
    ctx = update_context(create_context(), "3tier", _result())
    new = update_context(ctx, "?", ParseResult(success=False, confidence=0, error="bad"))
    assert new.current_spec == ctx.current_spec


def test_history_is_bounded():
    ctx = create_context()
    for i in range(15):
        ctx = update_context(ctx, f"prompt {i}", _result(), limit=10)
    assert len(ctx.history) == 10
    assert ctx.history[0].prompt == "prompt 5"
    assert ctx.history[-1].prompt == "prompt 14"
