"""
Tests for the editing session: single-writer state, request fencing and hooks.
"""

import asyncio

import httpx
import pytest

from infraflow.client import ModifyClient
from infraflow.config import Settings
from infraflow.diff import apply_operations
from infraflow.errors import InvalidInputError, ModifyError, ModifyErrorCode, TransientNetworkError
from infraflow.spec import ModifyResult, RemoveNode
from infraflow.session import MSG_EMPTY_PROMPT, EditingSession
from infraflow.templates import get_template

SETTINGS = Settings(retry_attempts=2, retry_initial=0, retry_max=0)


class FakeClient:
    """Stands in for ModifyClient; optionally blocks until released."""

    def __init__(self, result=None, error=None, gate=None):
        self.result = result
        self.error = error
        self.gate = gate
        self.requests = []

    async def modify(self, request):
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self):
        pass


def _without_waf():
    base = get_template("simple-waf")
    op = RemoveNode(node_id="waf")
    spec = apply_operations(base, [op]).spec
    return ModifyResult(success=True, spec=spec, reasoning="WAF 제거", operations=[op])


def test_submit_prompt_commits_result():
    session = EditingSession(SETTINGS)
    result = asyncio.run(session.submit_prompt("3티어 웹 아키텍처"))
    assert result.template_used == "3tier"
    assert session.current_spec.name == get_template("3tier").name
    assert set(session.state.positions) == set(session.current_spec.node_ids())
    assert not session.loading
    assert len(session.state.context.history) == 1


@pytest.mark.parametrize("prompt", ["", "   ", None, 3])
def test_invalid_prompt_rejected_without_consuming_request(prompt):
    session = EditingSession(SETTINGS)
    result = asyncio.run(session.submit_prompt(prompt))
    assert not result.success
    assert result.confidence == 0
    assert session.coordinator.latest_id == 0
    assert session.current_spec is None


def test_newer_prompt_supersedes_older_one():
    session = EditingSession(SETTINGS)

    async def main():
        return await asyncio.gather(
            session.submit_prompt("3티어", delay=0.05),
            session.submit_prompt("vpn 원격 접속", delay=0),
        )

    older, newer = asyncio.run(main())
    assert older is None
    assert newer.template_used == "vpn"
    assert session.current_spec.name == get_template("vpn").name


def test_incremental_edit_uses_current_spec():
    session = EditingSession(SETTINGS)

    async def main():
        await session.submit_prompt("simple-waf")
        return await session.submit_prompt("WAF 삭제해줘")

    result = asyncio.run(main())
    assert result.command_type == "remove"
    assert session.current_spec.first_of_type("waf") is None
    assert "waf" not in session.state.positions


def test_previous_positions_survive_edits():
    session = EditingSession(SETTINGS)

    async def main():
        await session.submit_prompt("simple-waf")
        before = dict(session.state.positions)
        await session.submit_prompt("캐시 추가해줘")
        return before

    before = asyncio.run(main())
    for node_id, pos in before.items():
        assert session.state.positions[node_id] == pos


def test_modify_success_updates_state_and_history():
    client = FakeClient(result=_without_waf())
    hooks = []
    session = EditingSession(SETTINGS, client=client, on_generated=lambda spec, source, prompt: hooks.append(source))
    session.select_template("simple-waf")

    result = asyncio.run(session.submit_modify("WAF 제거해줘"))
    assert result.success
    assert session.current_spec.first_of_type("waf") is None
    assert session.state.last_modify is result
    assert session.state.context.last_result.command_type == "llm-modify"
    assert hooks == ["template", "llm-modify"]
    sent = client.requests[0]
    assert sent.current_spec.first_of_type("waf") is not None
    assert len(sent.nodes) == len(sent.current_spec.nodes)


def test_modify_on_empty_diagram():
    session = EditingSession(SETTINGS, client=FakeClient())
    result = asyncio.run(session.submit_modify("WAF 추가"))
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.EMPTY_DIAGRAM
    assert session.coordinator.latest_id == 0


def test_modify_failure_keeps_spec():
    session = EditingSession(SETTINGS, client=FakeClient(error=TransientNetworkError("502", 502)))
    session.select_template("simple-waf")
    before = session.current_spec

    result = asyncio.run(session.submit_modify("보안 강화"))
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.API_ERROR
    assert session.current_spec == before
    assert not session.loading


def test_modify_failure_can_fall_back_to_parser():
    session = EditingSession(SETTINGS, client=FakeClient(error=TransientNetworkError("timed out")))
    session.select_template("simple-waf")

    result = asyncio.run(session.submit_modify("캐시 추가해줘", fallback_to_parse=True))
    assert not result.success
    assert session.current_spec.first_of_type("cache") is not None
    assert session.state.last_result.command_type == "add"


def test_modify_rejects_inconsistent_spec_from_server():
    broken = get_template("simple-waf")
    broken.connections[0].target = "ghost"
    session = EditingSession(SETTINGS, client=FakeClient(result=ModifyResult(success=True, spec=broken, reasoning="r")))
    session.select_template("simple-waf")

    result = asyncio.run(session.submit_modify("뭔가 바꿔줘"))
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.INVALID_RESPONSE
    assert result.reasoning == "r"
    assert session.current_spec == get_template("simple-waf")


def test_slow_modify_is_dropped_after_newer_prompt():
    async def main():
        gate = asyncio.Event()
        session = EditingSession(SETTINGS, client=FakeClient(result=_without_waf(), gate=gate))
        session.select_template("simple-waf")
        slow = asyncio.ensure_future(session.submit_modify("WAF 제거해줘"))
        await asyncio.sleep(0.01)
        newer = await session.submit_prompt("vpn")
        gate.set()
        return session, await slow, newer

    session, stale, newer = asyncio.run(main())
    assert stale is None
    assert newer.template_used == "vpn"
    assert session.current_spec.name == get_template("vpn").name
    assert session.state.last_modify is None


def test_cancel_drops_in_flight_modify():
    async def main():
        session = EditingSession(SETTINGS, client=FakeClient(result=_without_waf(), gate=asyncio.Event()))
        session.select_template("simple-waf")
        task = asyncio.ensure_future(session.submit_modify("WAF 제거해줘"))
        await asyncio.sleep(0.01)
        session.cancel()
        return session, await task

    session, result = asyncio.run(main())
    assert result is None
    assert session.current_spec.first_of_type("waf") is not None
    assert not session.loading


def test_select_unknown_template():
    session = EditingSession(SETTINGS)
    result = session.select_template("nope")
    assert not result.success
    assert result.confidence == 0
    assert result.command_type == "template"


def test_hook_failure_does_not_affect_state():
    def explode(spec, source, prompt):
        raise RuntimeError("analytics down")

    session = EditingSession(SETTINGS, on_generated=explode)
    result = session.select_template("3tier")
    assert result.success
    assert session.current_spec is not None


def test_hook_not_called_for_query():
    calls = []
    session = EditingSession(SETTINGS, on_generated=lambda spec, source, prompt: calls.append(source))

    async def main():
        await session.submit_prompt("3tier")
        await session.submit_prompt("이 구성은 뭐야?")

    asyncio.run(main())
    assert calls == ["parse"]


def test_load_spec_and_snapshot():
    session = EditingSession(SETTINGS)
    data = get_template("dr").model_dump(mode="json", by_alias=True)
    spec = session.load_spec(data)
    assert session.current_spec == spec
    snap = session.snapshot()
    snap.nodes.clear()
    assert session.current_spec.nodes


def test_load_spec_rejects_garbage():
    session = EditingSession(SETTINGS)
    with pytest.raises(InvalidInputError):
        session.load_spec("not a spec")


def test_sync_from_render_adopts_canvas():
    session = EditingSession(SETTINGS)
    session.select_template("simple-waf")
    nodes, edges = session.render()
    moved = [n.model_copy(update={"position": n.position.model_copy(update={"x": 999})}) if n.id == "waf" else n for n in nodes]
    spec = session.sync_from_render(moved, edges[1:])
    assert session.state.positions["waf"].x == 999
    assert len(spec.connections) == len(edges) - 1
    assert session.state.context.current_spec == spec


def test_canvas_sync_supersedes_in_flight_modify():
    async def main():
        gate = asyncio.Event()
        session = EditingSession(SETTINGS, client=FakeClient(result=_without_waf(), gate=gate))
        session.select_template("simple-waf")
        pending = asyncio.ensure_future(session.submit_modify("캐시 추가해줘"))
        await asyncio.sleep(0.01)
        nodes, edges = session.render()
        kept = [n for n in nodes if n.id != "lb"]
        session.sync_from_render(kept, [e for e in edges if "lb" not in (e.source, e.target)])
        gate.set()
        return session, await pending

    session, stale = asyncio.run(main())
    assert stale is None
    assert session.current_spec.find_node("lb") is None
    assert session.current_spec.find_node("waf") is not None
    assert not session.loading


def test_empty_modify_prompt_is_not_reported_as_bad_ai_reply():
    session = EditingSession(SETTINGS, client=FakeClient())
    session.select_template("simple-waf")
    result = asyncio.run(session.submit_modify("   "))
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.INVALID_OPERATION
    assert result.error == MSG_EMPTY_PROMPT


def test_server_timeout_code_survives_the_round_trip():
    detail = ModifyError.timeout().to_detail()
    body = ModifyResult(success=False, error=detail["user_message"], error_detail=detail)

    def handler(request):
        return httpx.Response(504, json=body.model_dump(mode="json", by_alias=True))

    async def main():
        client = ModifyClient("http://test", transport=httpx.MockTransport(handler))
        session = EditingSession(SETTINGS, client=client)
        session.select_template("simple-waf")
        try:
            return await session.submit_modify("보안 강화")
        finally:
            await session.aclose()

    result = asyncio.run(main())
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.API_TIMEOUT
    assert result.error == ModifyError.timeout().user_message
