"""
Tests for the atomic diff applier.
"""

from infraflow.diff import apply_operations
from infraflow.spec import (
    AddEdge,
    AddNode,
    Connection,
    ModifyNode,
    NodeDraft,
    RemoveEdge,
    RemoveNode,
)
from infraflow.templates import get_template


def _base():
    return get_template("simple-waf")


def _edges(spec):
    return {(c.source, c.target) for c in spec.connections}


def test_add_edge_to_missing_node_leaves_base_unchanged():
    base = _base()
    before = base.model_copy(deep=True)
    result = apply_operations(base, [AddEdge(source="web1", target="ghost")])
    assert not result.success
    assert result.spec == before
    assert base == before
    assert result.missing_references == ["ghost"]
    assert result.failed_operation == 0
    assert "ghost" in result.errors[0]


def test_failure_rolls_back_earlier_operations():
    base = _base()
    result = apply_operations(base, [
        RemoveNode(node_id="waf"),
        ModifyNode(node_id="nope", label="x"),
    ])
    assert not result.success
    assert result.spec.find_node("waf") is not None
    assert result.errors[0].startswith("operation 1:")


def test_remove_node_cascades_edges():
    result = apply_operations(_base(), [RemoveNode(node_id="lb")])
    assert result.success
    assert result.spec.find_node("lb") is None
    assert all("lb" not in edge for edge in _edges(result.spec))


def test_later_operations_see_earlier_ones():
    result = apply_operations(_base(), [
        AddNode(node=NodeDraft(id="cache1", type="cache")),
        AddEdge(source="web1", target="cache1", flow_type="sync"),
    ])
    assert result.success
    assert ("web1", "cache1") in _edges(result.spec)
    assert result.added_node_ids == ["cache1"]
    cache = result.spec.find_node("cache1")
    assert cache.label == "Cache"
    assert cache.tier == "data"


def test_add_node_mints_id_when_absent():
    result = apply_operations(_base(), [AddNode(node=NodeDraft(type="ids-ips"), after="waf")])
    assert result.success
    new_id = result.added_node_ids[0]
    assert new_id.startswith("ids-ips-")
    assert ("waf", new_id) in _edges(result.spec)


def test_add_node_between_splices_edge():
    result = apply_operations(
        _base(),
        [AddNode(node=NodeDraft(id="fw", type="firewall"), between=("user", "waf"))],
    )
    assert result.success
    edges = _edges(result.spec)
    assert ("user", "waf") not in edges
    assert ("user", "fw") in edges
    assert ("fw", "waf") in edges


def test_add_node_rejects_duplicate_id():
    result = apply_operations(_base(), [AddNode(node=NodeDraft(id="waf", type="waf"))])
    assert not result.success


def test_add_node_rejects_missing_anchor():
    result = apply_operations(_base(), [AddNode(node=NodeDraft(type="cache"), before="ghost")])
    assert not result.success
    assert result.missing_references == ["ghost"]


def test_modify_node_new_type_keeps_id_and_edges():
    result = apply_operations(_base(), [ModifyNode(node_id="waf", new_type="firewall")])
    assert result.success
    node = result.spec.find_node("waf")
    assert node.type == "firewall"
    assert node.label == "Firewall"
    assert ("user", "waf") in _edges(result.spec)


def test_modify_node_label_only():
    result = apply_operations(_base(), [ModifyNode(node_id="web1", label="Frontend", description="nginx")])
    node = result.spec.find_node("web1")
    assert node.label == "Frontend"
    assert node.description == "nginx"
    assert node.type == "web-server"


def test_add_edge_duplicate_is_skipped():
    result = apply_operations(_base(), [AddEdge(source="user", target="waf")])
    assert result.success
    assert len(result.spec.connections) == len(_base().connections)


def test_add_edge_self_loop_rejected():
    result = apply_operations(_base(), [AddEdge(source="waf", target="waf")])
    assert not result.success
    assert result.missing_references == []


def test_remove_missing_edge_is_noop():
    result = apply_operations(_base(), [RemoveEdge(source="web1", target="web2")])
    assert result.success
    assert _edges(result.spec) == _edges(_base())


def test_remove_edge_with_unknown_node_fails():
    result = apply_operations(_base(), [RemoveEdge(source="web1", target="ghost")])
    assert not result.success


def test_empty_operation_list_is_identity():
    result = apply_operations(_base(), [])
    assert result.success
    assert result.spec == _base()


def test_inconsistent_base_is_refused_without_blaming_an_operation():
    base = _base()
    base.connections.append(Connection(source="web1", target="ghost"))
    result = apply_operations(base, [])
    assert not result.success
    assert result.failed_operation is None
