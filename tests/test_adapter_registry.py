from __future__ import annotations

import asyncio
import os

import pytest
from fakes import FakeClock, FakeConn

from lotl.controller.apps import default_registry
from lotl.controller.apps.aistudio import AiStudioAdapter
from lotl.controller.attachments import Attachment
from lotl.controller.browser_session import BrowserSession, TabHandle
from lotl.controller.errors import AttachmentError, AttachmentsUnsupported, UnknownPlatform
from lotl.controller.text_cleaning import CHROME_LINE_PATTERNS


def test_default_registry_and_aliases() -> None:
    registry = default_registry()
    assert registry.available() == ["aistudio", "chatgpt"]
    assert registry.require("Gemini").name == "aistudio"
    assert registry.require("gpt").name == "chatgpt"
    assert registry.require("aistudio").required_turn_delta == 2
    assert registry.require("chatgpt").required_turn_delta == 1
    with pytest.raises(UnknownPlatform) as excinfo:
        registry.require("claude")
    assert "aistudio, chatgpt" in excinfo.value.suggestion


def test_select_by_url() -> None:
    registry = default_registry()
    assert registry.select(url="https://aistudio.google.com/prompts/abc").name == "aistudio"
    assert registry.select(url="https://chatgpt.com/c/123").name == "chatgpt"
    assert registry.select(url="https://example.com") is None
    assert registry.select(url="") is None


def _tab(conn: FakeConn) -> TabHandle:
    return TabHandle(platform="aistudio", target_id="T1", session_id="S1", url="", browser=BrowserSession(conn))


def test_chatgpt_signals_missing_attachment_support() -> None:
    adapter = default_registry().require("chatgpt")
    with pytest.raises(AttachmentsUnsupported):
        asyncio.run(adapter.upload_attachment(_tab(FakeConn()), Attachment(data=b"x", mime_type="image/png")))


def test_aistudio_upload_uses_file_input_and_removes_temp_file() -> None:
    conn = FakeConn()
    seen: dict[str, str] = {}

    def evaluate(params, session_id):
        expr = params.get("expression", "")
        if params.get("returnByValue") is False:
            return {"result": {"type": "object", "objectId": "obj-1"}}
        if "ms-img-media" in expr:
            return {"result": {"type": "boolean", "value": True}}
        return {"result": {"type": "undefined"}}

    def set_files(params, session_id):
        seen["path"] = params["files"][0]
        seen["exists"] = str(os.path.exists(params["files"][0]))
        return {}

    conn.handlers["Runtime.evaluate"] = evaluate
    conn.handlers["DOM.requestNode"] = lambda params, session_id: {"nodeId": 42}
    conn.handlers["DOM.setFileInputFiles"] = set_files

    adapter = AiStudioAdapter()
    asyncio.run(adapter.upload_attachment(_tab(conn), Attachment(data=b"\x89PNG", mime_type="image/png")))

    assert seen["path"].endswith(".png")
    assert seen["exists"] == "True"
    assert not os.path.exists(seen["path"])
    assert "Runtime.releaseObject" in conn.methods()


def test_aistudio_upload_fails_when_no_strategy_works() -> None:
    conn = FakeConn()
    conn.handlers["Runtime.evaluate"] = lambda params, session_id: {"result": {"type": "object", "subtype": "null"}}
    adapter = AiStudioAdapter()
    with pytest.raises(AttachmentError):
        asyncio.run(adapter.upload_attachment(_tab(conn), Attachment(data=b"\x89PNG", mime_type="image/png")))


def test_aistudio_missing_preview_is_waited_out_on_the_injected_clock() -> None:
    conn = FakeConn()

    def evaluate(params, session_id):
        if params.get("returnByValue") is False:
            return {"result": {"type": "object", "objectId": "obj-1"}}
        return {"result": {"type": "boolean", "value": False}}

    conn.handlers["Runtime.evaluate"] = evaluate
    conn.handlers["DOM.requestNode"] = lambda params, session_id: {"nodeId": 42}
    clock = FakeClock()
    adapter = AiStudioAdapter(clock=clock)

    asyncio.run(adapter.upload_attachment(_tab(conn), Attachment(data=b"\x89PNG", mime_type="image/png")))

    assert "DOM.setFileInputFiles" in conn.methods()
    assert set(clock.sleeps) == {0.4}
    assert adapter.preview_timeout_s <= clock.now < adapter.preview_timeout_s + 0.5


def test_platform_chrome_lives_on_the_adapters() -> None:
    registry = default_registry()
    assert "help" not in CHROME_LINE_PATTERNS
    assert "help" in registry.require("aistudio").chrome_patterns
    assert "help" not in registry.require("chatgpt").chrome_patterns
