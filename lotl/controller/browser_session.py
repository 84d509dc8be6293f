"""Driver handle (BrowserSession) and per-tab handles.

BrowserSession wraps the browser-level CDP connection: tab discovery, tab
creation/closing and attaching to a tab. TabHandle is an immutable reference to
one attached tab; it is replaced wholesale when the tab goes stale.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import ControllerConfig
from .http_client import HttpClientError, http_get_json
from .session_cdp import CdpConnection, CdpDisconnected, CdpError

logger = logging.getLogger("lotl.controller.browser")


@dataclass(frozen=True)
class TabInfo:
    target_id: str
    url: str
    title: str = ""
    type: str = "page"


@dataclass(frozen=True)
class TabHandle:
    """Attached tab. Never mutated in place."""

    platform: str
    target_id: str
    session_id: str
    url: str
    browser: BrowserSession = field(compare=False, repr=False)
    disposable: bool = False

    @property
    def usable(self) -> bool:
        return not self.browser.closed

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        if self.browser.closed:
            raise CdpDisconnected(f"Tab {self.target_id} belongs to a disconnected browser session")
        return await self.browser.conn.send(method, params, session_id=self.session_id, timeout=timeout)

    async def evaluate(self, expression: str, *, timeout: float | None = None) -> Any:
        """Evaluate JavaScript in the tab and return the JSON value.

        `undefined` and `null` both map to None.
        """
        result = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout=timeout,
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            message = exc.get("description") or details.get("text") or "evaluation failed"
            raise CdpError(f"Runtime.evaluate: {message}")
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    async def call(self, function_source: str, *args: Any, timeout: float | None = None) -> Any:
        """Invoke a JS function source with JSON-serialised arguments."""
        encoded = ", ".join(json.dumps(a) for a in args)
        return await self.evaluate(f"({function_source})({encoded})", timeout=timeout)

    async def title(self, *, timeout: float | None = None) -> str:
        return str(await self.evaluate("document.title", timeout=timeout) or "")

    async def current_url(self) -> str:
        return str(await self.evaluate("window.location.href") or "")

    async def bring_to_front(self) -> None:
        await self.send("Page.bringToFront")

    async def scroll_to_bottom(self) -> None:
        await self.evaluate("window.scrollTo(0, document.body ? document.body.scrollHeight : 0)")


class BrowserSession:
    """Connected driver handle for one browser process."""

    def __init__(self, conn: CdpConnection, *, ws_url: str = "") -> None:
        self.conn = conn
        self.ws_url = ws_url or conn.ws_url

    @property
    def closed(self) -> bool:
        return self.conn.closed

    def on_disconnect(self, observer: Callable[[], None]) -> None:
        self.conn.on_disconnect(observer)

    async def list_tabs(self) -> list[TabInfo]:
        res = await self.conn.send("Target.getTargets")
        infos = res.get("targetInfos") if isinstance(res.get("targetInfos"), list) else []
        tabs: list[TabInfo] = []
        for it in infos:
            if not isinstance(it, dict) or it.get("type") != "page":
                continue
            tid = str(it.get("targetId") or "").strip()
            if not tid:
                continue
            tabs.append(TabInfo(target_id=tid, url=str(it.get("url") or ""), title=str(it.get("title") or "")))
        return tabs

    async def attach(self, platform: str, tab: TabInfo, *, disposable: bool = False) -> TabHandle:
        res = await self.conn.send("Target.attachToTarget", {"targetId": tab.target_id, "flatten": True})
        session_id = str(res.get("sessionId") or "")
        if not session_id:
            raise CdpError(f"Target.attachToTarget returned no sessionId for {tab.target_id}")
        handle = TabHandle(
            platform=platform,
            target_id=tab.target_id,
            session_id=session_id,
            url=tab.url,
            browser=self,
            disposable=disposable,
        )
        await handle.send("Runtime.enable")
        await handle.send("Page.enable")
        return handle

    async def create_tab(self, url: str) -> TabInfo:
        res = await self.conn.send("Target.createTarget", {"url": url})
        tid = str(res.get("targetId") or "")
        if not tid:
            raise CdpError("Failed to create browser tab")
        return TabInfo(target_id=tid, url=url)

    async def close_tab(self, target_id: str) -> None:
        await self.conn.send("Target.closeTarget", {"targetId": target_id})

    async def close(self) -> None:
        await self.conn.close()


def _fetch_browser_ws_url(config: ControllerConfig) -> str:
    version = http_get_json(f"{config.cdp_base_url}/json/version", timeout=config.connect_timeout)
    ws_url = version.get("webSocketDebuggerUrl") if isinstance(version, dict) else None
    if not ws_url:
        raise HttpClientError("CDP browser WebSocket URL not found in /json/version")
    return str(ws_url)


async def fetch_browser_version(config: ControllerConfig, *, timeout: float | None = None) -> dict[str, Any]:
    """Read `/json/version` without blocking the event loop."""
    url = f"{config.cdp_base_url}/json/version"
    data = await asyncio.to_thread(http_get_json, url, timeout if timeout is not None else config.ready_timeout)
    return data if isinstance(data, dict) else {}


async def connect_browser(config: ControllerConfig) -> BrowserSession:
    """Resolve the browser WebSocket endpoint and open the CDP connection."""
    ws_url = await asyncio.to_thread(_fetch_browser_ws_url, config)
    conn = await CdpConnection.connect(ws_url, timeout=config.connect_timeout, protocol_timeout=config.protocol_timeout)
    logger.info("cdp_connected url=%s", ws_url)
    return BrowserSession(conn, ws_url=ws_url)
