"""Protocol and tool contract: protocol versions, server identity, tool list."""

from __future__ import annotations

from typing import Any

SERVER_INFO: dict[str, str] = {"name": "lotl-controller", "version": "0.1.0"}

SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]
DEFAULT_PROTOCOL_VERSION = LATEST_PROTOCOL_VERSION

CAPABILITIES: dict[str, Any] = {
    "logging": {},
    "tools": {"listChanged": False},
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "chat",
        "description": "Send a prompt to a chat platform open in Chrome and return the reply text.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "platform": {"type": "string", "description": "aistudio | chatgpt (aliases: gemini, gpt)"},
                "prompt": {"type": "string"},
                "attachments": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Images as data:image/<type>;base64,... URLs",
                },
                "sessionId": {"type": "string", "description": "Isolated tab key (multi session mode)"},
                "expectedExactReply": {"type": "string", "description": "Literal the reply must equal"},
            },
            "required": ["platform", "prompt"],
        },
    },
    {
        "name": "ready",
        "description": "Readiness probe: Chrome endpoint, tab, input control and block conditions per platform.",
        "inputSchema": {
            "type": "object",
            "properties": {"platforms": {"type": "array", "items": {"type": "string"}}},
        },
    },
    {
        "name": "close_session",
        "description": "Close the dedicated tab of a multi-mode session (waits for its in-flight request).",
        "inputSchema": {
            "type": "object",
            "properties": {
                "platform": {"type": "string"},
                "sessionId": {"type": "string"},
            },
            "required": ["platform", "sessionId"],
        },
    },
    {
        "name": "health",
        "description": "Liveness of the controller process and its configured session mode.",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


def select_protocol(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return DEFAULT_PROTOCOL_VERSION


def initialize_result(protocol: str) -> dict[str, Any]:
    return {
        "protocolVersion": protocol,
        "serverInfo": SERVER_INFO,
        "capabilities": CAPABILITIES,
        "instructions": "",
    }


def tools_list() -> list[dict[str, Any]]:
    return TOOL_DEFINITIONS
