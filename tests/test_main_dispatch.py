from __future__ import annotations

import asyncio
import json
from typing import Any

from fakes import DriverFactory, FakeAdapter, FakeClock, FakeConn, fake_target, make_config, make_registry

from lotl.controller.connection_manager import ConnectionManager
from lotl.controller.controller import SessionController
from lotl.controller.main import McpServer


def _server(adapter: FakeAdapter | None = None, **cfg: Any) -> tuple[McpServer, list[dict[str, Any]]]:
    out: list[dict[str, Any]] = []
    config = make_config(**cfg)
    registry = make_registry(adapter or FakeAdapter())
    connections = ConnectionManager(config, registry, driver_factory=DriverFactory(FakeConn(targets=[fake_target()])))
    controller = SessionController(config, registry=registry, connections=connections, clock=FakeClock(), settle_delay=0.0)
    return McpServer(config, controller=controller, write=out.append), out


def _payload(message: dict[str, Any]) -> dict[str, Any]:
    return json.loads(message["result"]["content"][0]["text"])


def test_initialize_list_and_ping() -> None:
    server, out = _server()

    async def _main() -> None:
        server.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2024-11-05"}})
        server.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"})
        server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        server.dispatch({"jsonrpc": "2.0", "id": 3, "method": "ping"})
        server.dispatch({"jsonrpc": "2.0", "id": 4, "method": "nope"})

    asyncio.run(_main())
    assert out[0]["result"]["protocolVersion"] == "2024-11-05"
    assert out[0]["result"]["serverInfo"]["name"] == "lotl-controller"
    assert [t["name"] for t in out[1]["result"]["tools"]] == ["chat", "ready", "close_session", "health"]
    assert out[2]["result"] == {"pong": True}
    assert out[3]["error"]["code"] == -32601


def test_chat_tool_returns_reply() -> None:
    server, out = _server()

    async def _main() -> None:
        task = server.dispatch(
            {"jsonrpc": "2.0", "id": 7, "method": "tools/call", "params": {"name": "chat", "arguments": {"platform": "fake", "prompt": "hi"}}}
        )
        await task

    asyncio.run(_main())
    assert out[0]["id"] == 7
    assert out[0]["result"]["isError"] is False
    payload = _payload(out[0])
    assert payload["text"] == "echo: hi"
    assert payload["platform"] == "fake"
    assert payload["requestId"].startswith("req_")


def test_controller_errors_become_tool_errors() -> None:
    adapter = FakeAdapter()
    adapter.submit_ok = False
    server, out = _server(adapter)

    async def _main() -> None:
        await server.dispatch(
            {"jsonrpc": "2.0", "id": 8, "method": "tools/call", "params": {"name": "chat", "arguments": {"platform": "fake", "prompt": "hi"}}}
        )
        await server.dispatch(
            {"jsonrpc": "2.0", "id": 9, "method": "tools/call", "params": {"name": "chat", "arguments": {"platform": "fake"}}}
        )

    asyncio.run(_main())
    assert out[0]["result"]["isError"] is True
    err = _payload(out[0])
    assert err["code"] == "submit_not_found"
    assert err["platform"] == "fake"
    assert err["details"]["requestId"].startswith("req_")
    assert _payload(out[1])["code"] == "invalid_arguments"


def test_health_tool() -> None:
    server, out = _server()

    async def _main() -> None:
        await server.dispatch({"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "health"}})

    asyncio.run(_main())
    payload = _payload(out[0])
    assert payload["status"] == "ok"
    assert payload["sessionMode"] == "persistent"
    assert payload["connection"] == "disconnected"


def test_close_session_tool_releases_the_session_tab() -> None:
    server, _ = _server(session_mode="multi")
    connections = server.controller.connections

    async def _main():
        await server.call_tool("chat", {"platform": "fake", "prompt": "hi", "sessionId": "s1"})
        before = connections.cached_keys()
        closed = await server.call_tool("close_session", {"platform": "fake", "sessionId": "s1"})
        again = await server.call_tool("close_session", {"platform": "fake", "sessionId": "s1"})
        missing = await server.call_tool("close_session", {"platform": "fake"})
        return before, closed, again, missing

    before, closed, again, missing = asyncio.run(_main())

    assert before == ["fake:s1"]
    assert json.loads(closed.content[0].text) == {"closed": True, "platform": "fake", "sessionId": "s1"}
    assert json.loads(again.content[0].text)["closed"] is False
    assert missing.is_error is True
    assert connections.cached_keys() == []


def test_close_session_is_a_no_op_outside_multi_mode() -> None:
    server, _ = _server()

    async def _main():
        await server.call_tool("chat", {"platform": "fake", "prompt": "hi", "sessionId": "s1"})
        return await server.call_tool("close_session", {"platform": "fake", "sessionId": "s1"})

    result = asyncio.run(_main())
    assert json.loads(result.content[0].text)["closed"] is False
    assert server.controller.connections.cached_keys() == ["fake"]
