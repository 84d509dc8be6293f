"""Async Chrome DevTools Protocol connection over a single WebSocket.

One connection is opened against the browser-level endpoint; page targets are
driven through flattened target sessions (`sessionId` on each message), so every
tab shares the same socket and one disconnect invalidates all of them.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from .http_client import HttpClientError

logger = logging.getLogger("lotl.controller.cdp")


class CdpError(HttpClientError):
    """CDP command failed (protocol error, timeout or transport error)."""


class CdpDisconnected(CdpError):
    """The browser WebSocket closed while commands were in flight."""


def _import_websockets():
    try:
        import websockets

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The controller requires the 'websockets' Python package (pip install websockets)."
        ) from exc


class CdpConnection:
    """Low-level CDP WebSocket connection (asyncio)."""

    def __init__(self, ws: Any, *, ws_url: str, timeout: float = 120.0) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.timeout = float(timeout)
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        self._event_sinks: list[Callable[[dict[str, Any]], None]] = []
        self._disconnect_observers: list[Callable[[], None]] = []
        self._reader: asyncio.Task | None = None
        self._closed = False

    @classmethod
    async def connect(cls, ws_url: str, *, timeout: float = 8.0, protocol_timeout: float = 120.0) -> CdpConnection:
        websockets = _import_websockets()
        try:
            ws = await asyncio.wait_for(
                websockets.connect(ws_url, max_size=None, ping_interval=None),
                timeout=max(0.1, float(timeout)),
            )
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"CDP connect failed ({ws_url}): {exc}") from exc
        conn = cls(ws, ws_url=ws_url, timeout=protocol_timeout)
        conn.start()
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop(), name="lotl-cdp-reader")

    def add_event_sink(self, sink: Callable[[dict[str, Any]], None]) -> None:
        """Register a callback for every CDP event (messages with `method` and no `id`)."""
        self._event_sinks.append(sink)

    def on_disconnect(self, observer: Callable[[], None]) -> None:
        """Register a callback fired exactly once when the socket is gone."""
        if self._closed:
            observer()
            return
        self._disconnect_observers.append(observer)

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for its response."""
        if self._closed:
            raise CdpDisconnected("CDP connection is closed")
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        if session_id:
            msg["sessionId"] = session_id

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            try:
                await self.ws.send(json.dumps(msg))
            except Exception as exc:  # noqa: BLE001
                raise CdpError(f"{method}: send failed: {exc}") from exc
            wait = self.timeout if timeout is None else float(timeout)
            try:
                return await asyncio.wait_for(fut, timeout=max(0.05, wait))
            except asyncio.TimeoutError as exc:
                raise CdpError(f"{method}: CDP response timed out after {wait:.1f}s") from exc
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    continue
                if isinstance(data, dict):
                    self._dispatch(data)
        except Exception as exc:  # noqa: BLE001
            logger.info("cdp_reader_stopped url=%s error=%s", self.ws_url, exc)
        finally:
            self._mark_closed()

    def _dispatch(self, data: dict[str, Any]) -> None:
        msg_id = data.get("id")
        if isinstance(msg_id, int):
            fut = self._pending.get(msg_id)
            if fut is None or fut.done():
                return
            if "error" in data:
                err = data.get("error")
                message = err.get("message") if isinstance(err, dict) else err
                fut.set_exception(CdpError(str(message or "CDP error")))
            else:
                result = data.get("result")
                fut.set_result(result if isinstance(result, dict) else {})
            return

        if isinstance(data.get("method"), str):
            for sink in list(self._event_sinks):
                try:
                    sink(data)
                except Exception:  # noqa: BLE001
                    logger.exception("cdp_event_sink_failed method=%s", data.get("method"))

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fut in list(self._pending.values()):
            if not fut.done():
                fut.set_exception(CdpDisconnected("Browser disconnected"))
        self._pending.clear()
        observers, self._disconnect_observers = self._disconnect_observers, []
        for observer in observers:
            try:
                observer()
            except Exception:  # noqa: BLE001
                logger.exception("cdp_disconnect_observer_failed")

    async def close(self) -> None:
        """Close the socket; disconnect observers fire from the reader task."""
        with contextlib.suppress(Exception):
            await self.ws.close()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await asyncio.wait_for(reader, timeout=2.0)
        self._mark_closed()
