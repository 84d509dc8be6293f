"""Result type returned by tool handlers and rendered into the JSON-RPC response."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ToolContent:
    type: str
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload; not part of the wire format.
    data: Any | None = None

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=json.dumps(data, ensure_ascii=False))], data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        code: str | None = None,
        platform: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        if code:
            payload["code"] = code
        if platform:
            payload["platform"] = platform
        if suggestion:
            payload["suggestion"] = suggestion
        if details:
            payload["details"] = details
        return cls(
            content=[ToolContent(type="text", text=json.dumps(payload, ensure_ascii=False))],
            is_error=True,
            data=payload,
        )

    def to_content_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.content]
