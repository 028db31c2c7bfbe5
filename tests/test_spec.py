"""
Unit tests for the spec models (Pydantic + JSON schema + wire aliases).
"""

import pytest
from pydantic import ValidationError

from infraflow.spec import (
    OPERATION_LIST,
    AddEdge,
    AddNode,
    Connection,
    ModifyResult,
    Node,
    ParseResult,
    RemoveNode,
    Spec,
    get_json_schema,
    get_operations_schema,
    validate_spec,
)


def _spec_dict():
    return {
        "name": "Mini",
        "nodes": [
            {"id": "user", "type": "user", "label": "User", "tier": "external"},
            {"id": "fw", "type": "firewall", "label": "Firewall"},
        ],
        "connections": [{"source": "user", "target": "fw", "flowType": "encrypted"}],
    }


def test_node_valid():
    n = Node(id="waf", type="waf", label="WAF", tier="dmz")
    assert n.id == "waf"
    assert n.description is None


def test_node_rejects_empty_id():
    with pytest.raises(ValidationError):
        Node(id="", type="waf", label="WAF")


def test_node_rejects_unknown_type():
    with pytest.raises(ValidationError):
        Node(id="x", type="mainframe", label="X")


def test_validate_spec_minimal_valid():
    spec, errors = validate_spec(_spec_dict())
    assert errors == []
    assert spec is not None
    assert spec.connections[0].flow_type == "encrypted"
    assert spec.node_ids() == ["user", "fw"]


def test_validate_spec_reports_location():
    data = _spec_dict()
    data["nodes"][1]["tier"] = "moon"
    spec, errors = validate_spec(data)
    assert spec is None
    assert any(e.startswith("nodes.1.tier") for e in errors)


def test_validate_spec_forbids_extra_fields():
    data = _spec_dict()
    data["zones"] = []
    spec, errors = validate_spec(data)
    assert spec is None
    assert errors


def test_connection_defaults_to_request():
    c = Connection(source="a", target="b")
    assert c.flow_type == "request"


def test_spec_lookup_helpers():
    spec, _ = validate_spec(_spec_dict())
    assert spec.find_node("fw").type == "firewall"
    assert spec.find_node("nope") is None
    assert spec.first_of_type("user").id == "user"


def test_parse_result_dumps_camel_case():
    r = ParseResult(success=True, confidence=0.8, template_used="3tier", is_fallback=False)
    dumped = r.model_dump(by_alias=True)
    assert dumped["templateUsed"] == "3tier"
    assert "isFallback" in dumped


def test_parse_result_confidence_bounds():
    with pytest.raises(ValidationError):
        ParseResult(success=True, confidence=1.5)


def test_parse_result_is_frozen():
    r = ParseResult(success=True, confidence=0.5)
    with pytest.raises(ValidationError):
        r.confidence = 0.8


def test_operation_list_discriminates_on_type():
    ops = OPERATION_LIST.validate_python([
        {"type": "add-node", "node": {"type": "cache"}, "after": "web1"},
        {"type": "remove-node", "nodeId": "waf"},
        {"type": "add-edge", "source": "a", "target": "b"},
    ])
    assert isinstance(ops[0], AddNode)
    assert ops[0].node.id is None
    assert isinstance(ops[1], RemoveNode)
    assert ops[1].node_id == "waf"
    assert isinstance(ops[2], AddEdge)


def test_operation_list_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        OPERATION_LIST.validate_python([{"type": "rename-node", "nodeId": "x"}])


def test_modify_result_accepts_wire_payload():
    payload = {
        "success": False,
        "error": "boom",
        "errorDetail": {"code": "NODE_NOT_FOUND", "userMessage": "missing", "recoverable": True},
    }
    result = ModifyResult.model_validate(payload)
    assert result.error_detail.code.value == "NODE_NOT_FOUND"


def test_get_json_schema():
    schema = get_json_schema()
    assert "properties" in schema
    assert "nodes" in schema["properties"]
    assert "connections" in schema["properties"]


def test_get_operations_schema_lists_variants():
    schema = get_operations_schema()
    assert schema["type"] == "array"


def test_spec_round_trips_through_wire_format():
    spec = Spec.model_validate(_spec_dict())
    again = Spec.model_validate(spec.model_dump(mode="json", by_alias=True))
    assert again == spec
