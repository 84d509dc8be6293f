from __future__ import annotations

import asyncio

import pytest
from fakes import FakeConn, fake_target

from lotl.controller.browser_session import BrowserSession, TabHandle
from lotl.controller.session_cdp import CdpDisconnected, CdpError


def _tab(conn: FakeConn) -> TabHandle:
    return TabHandle(platform="fake", target_id="T1", session_id="S1", url="", browser=BrowserSession(conn))


def test_evaluate_maps_undefined_and_null_to_none() -> None:
    conn = FakeConn()
    values = iter([{"result": {"type": "undefined"}}, {"result": {"type": "object", "subtype": "null"}}])
    conn.handlers["Runtime.evaluate"] = lambda params, session_id: next(values)
    tab = _tab(conn)
    assert asyncio.run(tab.evaluate("void 0")) is None
    assert asyncio.run(tab.evaluate("null")) is None
    _, params, session_id = conn.calls[0]
    assert params["returnByValue"] is True
    assert params["awaitPromise"] is True
    assert session_id == "S1"


def test_evaluate_raises_on_page_exception() -> None:
    conn = FakeConn()
    conn.handlers["Runtime.evaluate"] = lambda params, session_id: {
        "result": {"type": "object"},
        "exceptionDetails": {"text": "Uncaught", "exception": {"description": "ReferenceError: x is not defined"}},
    }
    with pytest.raises(CdpError, match="ReferenceError"):
        asyncio.run(_tab(conn).evaluate("x"))


def test_call_serialises_arguments() -> None:
    conn = FakeConn()
    asyncio.run(_tab(conn).call("(a, b) => a + b", "it's", [1, 2]))
    assert conn.calls[0][1]["expression"] == """((a, b) => a + b)("it's", [1, 2])"""


def test_disconnected_tab_refuses_commands() -> None:
    conn = FakeConn()
    conn.disconnect()
    tab = _tab(conn)
    assert not tab.usable
    with pytest.raises(CdpDisconnected):
        asyncio.run(tab.title())


def test_list_tabs_and_attach() -> None:
    conn = FakeConn(targets=[fake_target(), {"targetId": "W", "type": "service_worker", "url": "x"}])
    browser = BrowserSession(conn)

    async def _main():
        tabs = await browser.list_tabs()
        handle = await browser.attach("fake", tabs[0])
        return tabs, handle

    tabs, handle = asyncio.run(_main())
    assert [t.target_id for t in tabs] == ["T1"]
    assert handle.session_id == "S1"
    assert conn.methods()[-2:] == ["Runtime.enable", "Page.enable"]
    assert conn.calls[1][1] == {"targetId": "T1", "flatten": True}
