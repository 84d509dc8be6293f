"""
Failure taxonomy for browser-driven interactions.

Every failure carries the platform it happened on, a human-readable reason and a
suggestion, so the transport layer can surface it without guessing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass
class ControllerError(Exception):
    """Structured interaction failure."""

    platform: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    code: ClassVar[str] = "controller_error"

    def __str__(self) -> str:
        text = f"[{self.platform or '?'}] {self.reason}"
        if self.suggestion:
            text += f". Suggestion: {self.suggestion}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "platform": self.platform,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class ConnectionFailure(ControllerError):
    code = "connection_failure"


class TargetNotFound(ConnectionFailure):
    code = "target_not_found"


class UnknownPlatform(ControllerError):
    code = "unknown_platform"


class InputNotFound(ControllerError):
    code = "input_not_found"


class SubmitNotFound(ControllerError):
    code = "submit_not_found"


class ResponseTimeout(ControllerError):
    code = "response_timeout"


class StreamingUnstable(ControllerError):
    """Soft condition: never raised; results carry its code as `warning` with `stable: false`."""

    code = "streaming_unstable"


class ExtractionEmpty(ControllerError):
    code = "extraction_empty"


class ExpectationMismatch(ControllerError):
    code = "expectation_mismatch"


class LockTimeout(ControllerError):
    code = "lock_timeout"


class PlatformBlocked(ControllerError):
    code = "platform_blocked"


class AttachmentsUnsupported(ControllerError):
    code = "attachments_unsupported"


class AttachmentError(ControllerError):
    code = "attachment_error"


__all__ = [
    "AttachmentError",
    "AttachmentsUnsupported",
    "ConnectionFailure",
    "ControllerError",
    "ExpectationMismatch",
    "ExtractionEmpty",
    "InputNotFound",
    "LockTimeout",
    "PlatformBlocked",
    "ResponseTimeout",
    "StreamingUnstable",
    "SubmitNotFound",
    "TargetNotFound",
    "UnknownPlatform",
]
