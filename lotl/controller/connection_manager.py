"""Connection subsystem.

ConnectionManager is the only owner of the browser driver handle and of the
cached tab handles. Everything goes through `ensure()`:

- the driver connection is established once, by a single shared task that
  concurrent callers await;
- a cached tab is liveness-checked (a title round-trip) before each use and
  re-resolved by URL pattern when the check fails;
- a disconnect observer registered on each BrowserSession clears every cached
  tab and the session itself, forcing a full reconnect on next use.

Session topologies (`ControllerConfig.session_mode`):
- persistent: one discovered tab per platform, reused;
- fresh: a new tab at the adapter's start URL per request, closed on release;
- multi: one dedicated tab per `platform:session_id`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum

from .apps.base import CapabilityAdapter
from .apps.registry import AdapterRegistry
from .browser_session import BrowserSession, TabHandle, TabInfo, connect_browser
from .config import ControllerConfig
from .detectors import Clock, SystemClock
from .errors import ConnectionFailure, ControllerError, TargetNotFound
from .http_client import HttpClientError

logger = logging.getLogger("lotl.controller.connection")

DriverFactory = Callable[[ControllerConfig], Awaitable[BrowserSession]]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    def __init__(
        self,
        config: ControllerConfig,
        registry: AdapterRegistry,
        *,
        driver_factory: DriverFactory = connect_browser,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self._driver_factory = driver_factory
        self.clock = clock or SystemClock()
        self._browser: BrowserSession | None = None
        self._connect_task: asyncio.Task | None = None
        self._tabs: dict[str, TabHandle] = {}
        self.state = SessionState.DISCONNECTED

    # ----- keys -----

    def key_for(self, platform: str, session_id: str | None = None) -> str:
        name = self.registry.canonical(platform)
        if self.config.session_mode == "multi" and session_id:
            return f"{name}:{session_id}"
        return name

    def cached_keys(self) -> list[str]:
        return sorted(self._tabs.keys())

    # ----- public API -----

    async def ensure(self, platform: str, *, session_id: str | None = None) -> TabHandle:
        """Return a live tab handle for the platform (and session, in multi mode)."""
        adapter = self.registry.require(platform)
        try:
            return await self._ensure(adapter, session_id)
        except ControllerError as exc:
            # Connect failures are shared by every waiter; name the platform that asked.
            if not exc.platform:
                exc.platform = adapter.name
            raise
        except (HttpClientError, OSError, asyncio.TimeoutError) as exc:
            raise ConnectionFailure(
                platform=adapter.name,
                reason=f"Browser connection failed: {exc}",
                suggestion=f"Start Chrome with --remote-debugging-port={self.config.cdp_port} and retry",
            ) from exc

    async def release(self, handle: TabHandle) -> None:
        """End-of-interaction hook: closes disposable tabs, keeps everything else."""
        if not handle.disposable:
            return
        if handle.browser.closed:
            return
        try:
            await handle.browser.close_tab(handle.target_id)
            logger.info("fresh_tab_closed platform=%s target=%s", handle.platform, handle.target_id)
        except HttpClientError as exc:
            logger.warning("fresh_tab_close_failed platform=%s target=%s error=%s", handle.platform, handle.target_id, exc)

    async def drop_session(self, platform: str, session_id: str) -> bool:
        """Close the dedicated tab of a multi-mode session."""
        if self.config.session_mode != "multi" or not session_id:
            return False
        key = self.key_for(platform, session_id)
        handle = self._tabs.pop(key, None)
        if handle is None:
            return False
        if not handle.browser.closed:
            with suppress(HttpClientError):
                await handle.browser.close_tab(handle.target_id)
        logger.info("session_dropped key=%s", key)
        return True

    async def close(self) -> None:
        browser = self._browser
        self._browser = None
        self._tabs.clear()
        self.state = SessionState.DISCONNECTED
        if browser is not None:
            await browser.close()

    # ----- internals -----

    async def _ensure(self, adapter: CapabilityAdapter, session_id: str | None) -> TabHandle:
        browser = await self._browser_session()
        mode = self.config.session_mode

        if mode == "fresh":
            return await self._open_tab(browser, adapter, disposable=True)

        key = self.key_for(adapter.name, session_id)
        cached = self._tabs.get(key)
        if cached is not None:
            if cached.browser is browser and await self._alive(cached):
                return cached
            logger.info("stale_tab key=%s target=%s; re-resolving", key, cached.target_id)
            self._tabs.pop(key, None)

        if mode == "multi" and session_id:
            handle = await self._open_tab(browser, adapter, disposable=False)
        else:
            handle = await self._discover(browser, adapter)
        self._tabs[key] = handle
        logger.info("tab_bound key=%s target=%s url=%s", key, handle.target_id, handle.url)
        return handle

    async def _browser_session(self) -> BrowserSession:
        browser = self._browser
        if browser is not None and not browser.closed:
            return browser
        task = self._connect_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._connect(), name="lotl-connect")
            self._connect_task = task
        # Shielded: a cancelled caller must not cancel the attempt others are awaiting.
        return await asyncio.shield(task)

    async def _connect(self) -> BrowserSession:
        self.state = SessionState.CONNECTING
        try:
            browser = await asyncio.wait_for(self._driver_factory(self.config), timeout=self.config.connect_timeout)
        except ControllerError:
            self.state = SessionState.DISCONNECTED
            raise
        except (HttpClientError, OSError, asyncio.TimeoutError, RuntimeError) as exc:
            self.state = SessionState.DISCONNECTED
            raise ConnectionFailure(
                platform="",
                reason=f"Cannot connect to Chrome at {self.config.cdp_base_url}: {exc}",
                suggestion=f"Start Chrome with --remote-debugging-port={self.config.cdp_port} and retry",
            ) from exc
        finally:
            self._connect_task = None

        browser.on_disconnect(lambda: self._on_disconnect(browser))
        self._browser = browser
        self.state = SessionState.CONNECTED
        logger.info("browser_connected url=%s", browser.ws_url)
        return browser

    def _on_disconnect(self, browser: BrowserSession) -> None:
        if self._browser is not browser:
            return
        dropped = len(self._tabs)
        self._browser = None
        self._tabs.clear()
        self.state = SessionState.DISCONNECTED
        logger.warning("browser_disconnected; invalidated %d cached tab(s)", dropped)

    async def _alive(self, handle: TabHandle) -> bool:
        if not handle.usable:
            return False
        try:
            await handle.title(timeout=self.config.ready_timeout)
        except HttpClientError as exc:
            logger.info("liveness_failed platform=%s target=%s error=%s", handle.platform, handle.target_id, exc)
            return False
        return True

    async def _discover(self, browser: BrowserSession, adapter: CapabilityAdapter) -> TabHandle:
        tabs = await browser.list_tabs()
        match: TabInfo | None = next((t for t in tabs if adapter.match(url=t.url)), None)
        if match is None:
            label = adapter.label or adapter.name
            raise TargetNotFound(
                platform=adapter.name,
                reason=f"{label} tab not found. Open {adapter.url_pattern} in Chrome first.",
                suggestion=f"Open {adapter.start_url} in the Chrome instance on port {self.config.cdp_port}",
                details={"openTabs": [t.url for t in tabs][:10]},
            )
        return await browser.attach(adapter.name, match)

    async def _open_tab(self, browser: BrowserSession, adapter: CapabilityAdapter, *, disposable: bool) -> TabHandle:
        info = await browser.create_tab(adapter.start_url)
        handle = await browser.attach(adapter.name, info, disposable=disposable)
        logger.info("tab_opened platform=%s target=%s disposable=%s", adapter.name, info.target_id, disposable)
        await self._wait_for_input(handle, adapter)
        return handle

    async def _wait_for_input(self, handle: TabHandle, adapter: CapabilityAdapter) -> bool:
        """Give a newly opened tab time to render its input surface."""
        deadline = self.clock.monotonic() + self.config.connect_timeout
        while self.clock.monotonic() < deadline:
            try:
                if await adapter.has_input(handle):
                    return True
            except HttpClientError as exc:
                logger.debug("tab_input_probe_failed target=%s error=%s", handle.target_id, exc)
            await self.clock.sleep(0.5)
        logger.warning("tab_input_not_ready platform=%s target=%s", adapter.name, handle.target_id)
        return False
