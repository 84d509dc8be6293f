"""
Stdio JSON-RPC front for the controller.

Newline-delimited JSON-RPC on stdin/stdout; logs go to stderr so stdout stays a
clean protocol channel. Every `tools/call` runs as its own asyncio task so
concurrent calls reach the request lock instead of queueing behind the reader.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from collections.abc import Callable
from typing import Any

from .apps.registry import default_registry
from .config import ControllerConfig
from .connection_manager import ConnectionManager
from .controller import SessionController
from .errors import ControllerError
from .http_client import HttpClientError
from .models import InteractionRequest
from .readiness import ReadinessProbe
from .server.contract import initialize_result, select_protocol, tools_list
from .server.types import ToolResult

logger = logging.getLogger("lotl.controller")

__all__ = ["McpServer", "main"]


def _write_message(payload: dict[str, Any]) -> None:
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _decode_message(line: bytes) -> dict[str, Any] | None:
    line = line.strip()
    if not line:
        return None
    msg = json.loads(line.decode())
    return msg if isinstance(msg, dict) else None


class McpServer:
    def __init__(
        self,
        config: ControllerConfig | None = None,
        *,
        controller: SessionController | None = None,
        readiness: ReadinessProbe | None = None,
        write: Callable[[dict[str, Any]], None] = _write_message,
    ) -> None:
        self.config = config or ControllerConfig.from_env()
        registry = default_registry()
        connections = ConnectionManager(self.config, registry)
        self.controller = controller or SessionController(self.config, registry=registry, connections=connections)
        self.readiness = readiness or ReadinessProbe(
            self.config, self.controller.registry, self.controller.connections, self.controller.lock
        )
        self.started_at = time.time()
        self._write = write
        self._tasks: set[asyncio.Task] = set()

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        self._write({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(select_protocol(requested))})

    def handle_list_tools(self, request_id: Any) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        if name == "chat":
            request = InteractionRequest.from_args(arguments)
            if not request.platform or not request.prompt:
                return ToolResult.error("Missing 'platform' or 'prompt'", code="invalid_arguments")
            result = await self.controller.send(request)
            return ToolResult.json(result.to_dict())
        if name == "ready":
            platforms = arguments.get("platforms")
            report = await self.readiness.probe_all(list(platforms) if isinstance(platforms, list) else None)
            return ToolResult.json(report.to_dict())
        if name == "close_session":
            platform = str(arguments.get("platform") or "").strip()
            session_id = str(arguments.get("sessionId") or arguments.get("session_id") or "").strip()
            if not platform or not session_id:
                return ToolResult.error("Missing 'platform' or 'sessionId'", code="invalid_arguments")
            closed = await self.controller.close_session(platform, session_id)
            return ToolResult.json({"closed": closed, "platform": platform, "sessionId": session_id})
        if name == "health":
            return ToolResult.json(
                {
                    "status": "ok",
                    "platforms": self.controller.registry.available(),
                    "sessionMode": self.config.session_mode,
                    "connection": self.controller.connections.state.value,
                    "tabs": self.controller.connections.cached_keys(),
                    "uptimeSec": round(time.time() - self.started_at, 1),
                }
            )
        return ToolResult.error(f"Unknown tool: {name}", code="unknown_tool")

    async def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        logger.info("tool=%s args=%s", name, sorted(arguments.keys()))
        try:
            result = await self.call_tool(name, arguments)
        except ControllerError as e:
            logger.info("tool_error tool=%s code=%s reason=%s", name, e.code, e.reason)
            result = ToolResult.error(
                e.reason, code=e.code, platform=e.platform, suggestion=e.suggestion, details=e.details
            )
        except HttpClientError as e:
            logger.info("http_error %s", str(e))
            result = ToolResult.error(str(e), code="http_error")
        except Exception as exc:
            logger.exception("tool_call_failed")
            result = ToolResult.error(str(exc), code="internal_error")

        self._write(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> asyncio.Task | None:
        """Dispatch one JSON-RPC message; tool calls are scheduled and their task returned."""
        if not message:
            return None

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif method == "notifications/initialized":
            return None
        elif method in ("tools/list", "list_tools"):
            self.handle_list_tools(request_id)
        elif method in ("tools/call", "call_tool"):
            name = params.get("name")
            arguments = params.get("arguments") or params.get("args") or {}
            task = asyncio.get_running_loop().create_task(self.handle_call_tool(request_id, name or "", arguments))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return task
        elif method == "ping":
            self._write({"jsonrpc": "2.0", "id": request_id, "result": {"pong": True}})
        else:
            self._write(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )
        return None

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def serve(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.buffer.readline)
                if not line:
                    break
                try:
                    message = _decode_message(line)
                except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                    logger.warning("bad_message error=%s", exc)
                    self._write({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
                    continue
                if message is not None:
                    self.dispatch(message)
            await self.drain()
        finally:
            await self.controller.close()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    asyncio.run(McpServer().serve())


if __name__ == "__main__":
    main()
