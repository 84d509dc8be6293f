from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..errors import AttachmentsUnsupported

if TYPE_CHECKING:
    from ..attachments import Attachment
    from ..browser_session import TabHandle


class CapabilityAdapter(ABC):
    """Per-platform operations over one bound tab.

    Subclasses own the selectors and scraping heuristics; the controller only
    relies on the operations below and the class-level profile attributes.
    """

    name: str
    label: str = ""
    url_pattern: str = ""
    start_url: str = "about:blank"
    # Turns added by one request/reply pair (2 when the UI renders the prompt as its own turn).
    required_turn_delta: int = 2
    supports_attachments: bool = False
    # Accessibility roles of turn containers; empty disables the AX fallback tier.
    ax_turn_roles: frozenset[str] = frozenset()
    # Extra full-line UI chrome tokens (regex sources, matched case-insensitively).
    chrome_patterns: tuple[str, ...] = ()
    # Placeholder content that must never be returned as a reply.
    disqualify_patterns: tuple[str, ...] = ()

    def match(self, *, url: str) -> bool:
        return bool(self.url_pattern) and self.url_pattern in (url or "")

    @abstractmethod
    async def set_input(self, tab: TabHandle, text: str) -> bool:
        """Populate the input surface; True when it now holds `text`."""

    @abstractmethod
    async def trigger_submit(self, tab: TabHandle) -> bool:
        """Start generation; True when a plausible submit action happened."""

    @abstractmethod
    async def count_turns(self, tab: TabHandle) -> int:
        """Number of rendered conversational turns."""

    @abstractmethod
    async def is_busy(self, tab: TabHandle) -> bool:
        """True while a reply is being generated."""

    @abstractmethod
    async def extract_text(self, tab: TabHandle) -> str | None:
        """Best-effort text of the most recent reply, None when none is found."""

    @abstractmethod
    async def has_input(self, tab: TabHandle) -> bool:
        """True when the input surface is present (readiness)."""

    async def upload_attachment(self, tab: TabHandle, attachment: Attachment) -> None:  # noqa: ARG002
        raise AttachmentsUnsupported(
            platform=self.name,
            reason=f"{self.label or self.name} does not accept attachments",
            suggestion="Send a text-only request or use a platform that supports attachments",
        )

    def chrome_regexes(self) -> list[re.Pattern[str]]:
        return [re.compile(p, re.IGNORECASE) for p in self.chrome_patterns]

    def disqualify_regexes(self) -> list[re.Pattern[str]]:
        return [re.compile(p, re.IGNORECASE) for p in self.disqualify_patterns]
