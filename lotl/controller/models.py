from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Any

from .errors import StreamingUnstable


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass(frozen=True)
class InteractionRequest:
    platform: str
    prompt: str
    # Raw `data:image/...;base64,...` URLs; decoded right before upload.
    attachments: tuple[str, ...] = ()
    session_id: str | None = None
    expected_reply: str | None = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> InteractionRequest:
        """Build a request from transport arguments (camelCase or snake_case keys)."""
        attachments = args.get("attachments") or args.get("images") or []
        if isinstance(attachments, str):
            attachments = [attachments]
        session_id = str(args.get("sessionId") or args.get("session_id") or "").strip()
        expected = args.get("expectedExactReply", args.get("expected_reply"))
        return cls(
            platform=str(args.get("platform") or "").strip(),
            prompt=str(args.get("prompt") if args.get("prompt") is not None else args.get("message") or ""),
            attachments=tuple(str(a) for a in attachments if a),
            session_id=session_id or None,
            expected_reply=str(expected) if expected not in (None, "") else None,
        )


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    strategy: str
    stale: bool = False
    exact_match: bool | None = None
    attempts: tuple[str, ...] = ()


@dataclass(frozen=True)
class InteractionResult:
    text: str
    platform: str
    request_id: str
    strategy: str = "primary"
    stale: bool = False
    exact_match: bool | None = None
    stable: bool = True
    elapsed: float = 0.0
    attempts: tuple[str, ...] = field(default=(), repr=False)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "text": self.text,
            "platform": self.platform,
            "requestId": self.request_id,
            "strategy": self.strategy,
            "stable": self.stable,
            "elapsedMs": int(self.elapsed * 1000),
        }
        if not self.stable:
            out["warning"] = StreamingUnstable.code
        if self.stale:
            out["stale"] = True
        if self.exact_match is not None:
            out["exactMatch"] = self.exact_match
        return out
