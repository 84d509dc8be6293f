from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .apps.base import CapabilityAdapter
from .apps.registry import AdapterRegistry
from .blockers import detect_block
from .browser_session import fetch_browser_version
from .config import ControllerConfig
from .connection_manager import ConnectionManager
from .errors import ControllerError, LockTimeout
from .http_client import HttpClientError
from .request_lock import RequestLock

logger = logging.getLogger("lotl.controller.readiness")


@dataclass
class PlatformReadiness:
    platform: str
    ok: bool = False
    reachable: bool = False
    has_input: bool = False
    url_ok: bool = False
    blocked: str | None = None
    busy: bool = False
    url: str = ""
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "reachable": self.reachable,
            "hasInput": self.has_input,
            "urlOk": self.url_ok,
            "activeUrl": self.url,
        }
        if self.blocked:
            out["blocked"] = self.blocked
        if self.busy:
            out["busy"] = True
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass
class ReadinessReport:
    ok: bool
    chrome: dict[str, Any] = field(default_factory=dict)
    checks: dict[str, PlatformReadiness] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "chrome": self.chrome,
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
        }


class ReadinessProbe:
    """Checks, per platform: CDP endpoint up, tab resolvable, input present, URL matches, no block.

    With a RequestLock the tab is only probed under the platform's key, so a
    readiness check never focuses or evaluates in a tab mid-interaction.
    """

    def __init__(
        self,
        config: ControllerConfig,
        registry: AdapterRegistry,
        connections: ConnectionManager,
        lock: RequestLock | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.connections = connections
        self.lock = lock

    async def chrome_status(self) -> dict[str, Any]:
        try:
            version = await fetch_browser_version(self.config, timeout=self.config.ready_timeout)
        except HttpClientError as exc:
            return {"ok": False, "port": self.config.cdp_port, "error": str(exc)}
        return {
            "ok": bool(version.get("webSocketDebuggerUrl")),
            "port": self.config.cdp_port,
            "browser": version.get("Browser", ""),
            "webSocketDebuggerUrl": "present" if version.get("webSocketDebuggerUrl") else "missing",
        }

    async def probe(self, platform: str) -> PlatformReadiness:
        adapter = self.registry.require(platform)
        if self.lock is None:
            return await self._probe(adapter)
        key = self.connections.key_for(adapter.name)
        if self.lock.is_busy(key):
            # A request is driving the tab right now; it was resolved and accepted input.
            return PlatformReadiness(
                platform=adapter.name, ok=True, reachable=True, busy=True, reason="Interaction in progress; tab not inspected"
            )
        try:
            return await self.lock.with_lock(
                key, self.config.ready_timeout, lambda: self._probe(adapter), label="readiness"
            )
        except LockTimeout:
            return PlatformReadiness(platform=adapter.name, busy=True, reason="Readiness check timed out waiting for the tab")

    async def _probe(self, adapter: CapabilityAdapter) -> PlatformReadiness:
        check = PlatformReadiness(platform=adapter.name)
        try:
            tab = await self.connections.ensure(adapter.name)
        except ControllerError as exc:
            check.reason = exc.reason
            return check
        check.reachable = True
        try:
            await tab.bring_to_front()
            check.url = await tab.current_url()
            check.url_ok = adapter.match(url=check.url)
            check.has_input = bool(await adapter.has_input(tab))
            block = await detect_block(tab)
        except HttpClientError as exc:
            check.reason = f"Probe failed: {exc}"
            return check
        finally:
            await self.connections.release(tab)
        if block is not None:
            check.blocked = block.kind
            check.reason = block.suggestion
        check.ok = check.url_ok and check.has_input and block is None
        if not check.ok and not check.reason:
            check.reason = "URL does not match" if not check.url_ok else "Input field not found"
        return check

    async def probe_all(self, platforms: list[str] | None = None) -> ReadinessReport:
        chrome = await self.chrome_status()
        names = platforms or self.config.platforms
        checks: dict[str, PlatformReadiness] = {}
        for name in names:
            if not chrome["ok"]:
                checks[name] = PlatformReadiness(platform=name, reason="Chrome debug endpoint unreachable")
                continue
            try:
                check = await self.probe(name)
            except ControllerError as exc:
                check = PlatformReadiness(platform=name, reason=exc.reason)
            checks[check.platform if check.platform else name] = check
        ok = bool(chrome["ok"]) and bool(checks) and all(c.ok for c in checks.values())
        logger.info("readiness ok=%s platforms=%s", ok, ",".join(checks))
        return ReadinessReport(ok=ok, chrome=chrome, checks=checks)
