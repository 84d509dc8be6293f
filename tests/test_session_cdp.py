from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from lotl.controller.session_cdp import CdpConnection, CdpDisconnected, CdpError


class FakeWs:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.queue: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def __aiter__(self) -> FakeWs:
        return self

    async def __anext__(self) -> str:
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        await self.queue.put(None)

    def reply(self, payload: dict[str, Any]) -> None:
        self.queue.put_nowait(json.dumps(payload))


def test_send_correlates_responses_and_routes_session_ids() -> None:
    async def _main() -> None:
        ws = FakeWs()
        conn = CdpConnection(ws, ws_url="ws://x")
        conn.start()
        t1 = asyncio.create_task(conn.send("Target.getTargets"))
        t2 = asyncio.create_task(conn.send("Runtime.evaluate", {"expression": "1"}, session_id="S1"))
        await asyncio.sleep(0)
        assert ws.sent[0] == {"id": 1, "method": "Target.getTargets"}
        assert ws.sent[1] == {"id": 2, "method": "Runtime.evaluate", "params": {"expression": "1"}, "sessionId": "S1"}
        ws.reply({"id": 2, "result": {"result": {"type": "number", "value": 1}}})
        ws.reply({"id": 1, "result": {"targetInfos": []}})
        assert await t1 == {"targetInfos": []}
        assert (await t2)["result"]["value"] == 1
        await conn.close()

    asyncio.run(_main())


def test_protocol_error_and_events() -> None:
    events: list[str] = []

    async def _main() -> None:
        ws = FakeWs()
        conn = CdpConnection(ws, ws_url="ws://x")
        conn.add_event_sink(lambda ev: events.append(ev["method"]))
        conn.start()
        task = asyncio.create_task(conn.send("DOM.requestNode", {"objectId": "o"}))
        await asyncio.sleep(0)
        ws.reply({"method": "Target.targetDestroyed", "params": {"targetId": "T1"}})
        ws.reply({"id": 1, "error": {"code": -32000, "message": "Could not find node"}})
        with pytest.raises(CdpError, match="Could not find node"):
            await task
        await conn.close()

    asyncio.run(_main())
    assert events == ["Target.targetDestroyed"]


def test_socket_close_fails_pending_and_notifies_once() -> None:
    fired: list[str] = []

    async def _main() -> None:
        ws = FakeWs()
        conn = CdpConnection(ws, ws_url="ws://x")
        conn.on_disconnect(lambda: fired.append("observer"))
        conn.start()
        task = asyncio.create_task(conn.send("Page.enable"))
        await asyncio.sleep(0)
        await ws.close()
        with pytest.raises(CdpDisconnected):
            await task
        assert conn.closed
        conn.on_disconnect(lambda: fired.append("late"))
        with pytest.raises(CdpDisconnected):
            await conn.send("Page.enable")
        await conn.close()

    asyncio.run(_main())
    assert fired == ["observer", "late"]


def test_response_timeout() -> None:
    async def _main() -> None:
        ws = FakeWs()
        conn = CdpConnection(ws, ws_url="ws://x", timeout=0.05)
        conn.start()
        with pytest.raises(CdpError, match="timed out"):
            await conn.send("Page.bringToFront")
        await conn.close()

    asyncio.run(_main())
