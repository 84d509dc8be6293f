"""Detect pages that block interaction: sign-in walls, verification challenges, rate limits."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .browser_session import TabHandle

logger = logging.getLogger("lotl.controller.blockers")

_PAGE_SIGNALS_JS = """
(() => {
  const text = (el) => ((el && (el.innerText || el.textContent)) || '').trim();
  const dialogs = Array.from(document.querySelectorAll('[role="dialog"], [role="alertdialog"], dialog[open]'))
    .map(text).filter(Boolean).slice(0, 3);
  const frames = Array.from(document.querySelectorAll('iframe'))
    .map((f) => f.src || '').filter((src) => /captcha|challenge|turnstile|recaptcha/i.test(src));
  return {
    url: window.location.href,
    title: document.title || '',
    dialogs,
    body: text(document.body).slice(0, 2000),
    challengeFrames: frames.slice(0, 3),
  };
})()
"""

BLOCK_PATTERNS: dict[str, tuple[str, ...]] = {
    "auth_wall": (
        r"accounts\.google\.com",
        r"/auth/login",
        r"\bsign in to continue\b",
        r"\blog ?in to continue\b",
        r"\bwelcome back\b.*\blog ?in\b",
        r"\bsession (?:has )?expired\b",
    ),
    "verification": (
        r"\bverify (?:you are|you're) (?:a )?human\b",
        r"\bare you a robot\b",
        r"\bunusual (?:activity|traffic)\b",
        r"\bcaptcha\b",
        r"\bcloudflare\b.*\bchecking\b",
        r"\bjust a moment\b",
    ),
    "rate_limit": (
        r"\brate limit",
        r"\btoo many requests\b",
        r"\byou(?:'ve| have) reached (?:the|your) .*limit\b",
        r"\bquota exceeded\b",
        r"\btry again (?:later|in \d+)",
    ),
}

_COMPILED = {kind: [re.compile(p, re.IGNORECASE | re.DOTALL) for p in pats] for kind, pats in BLOCK_PATTERNS.items()}

SUGGESTIONS = {
    "auth_wall": "Sign in to the platform in the controlled Chrome window, then retry",
    "verification": "Complete the verification challenge in the Chrome window, then retry",
    "rate_limit": "Wait for the platform's rate limit to reset, then retry",
}


@dataclass(frozen=True)
class BlockCondition:
    kind: str
    evidence: str
    url: str = ""

    @property
    def suggestion(self) -> str:
        return SUGGESTIONS.get(self.kind, "")


def classify(signals: dict[str, Any]) -> BlockCondition | None:
    """Classify page signals; URL and dialogs are checked before the body text."""
    url = str(signals.get("url") or "")
    if signals.get("challengeFrames"):
        return BlockCondition(kind="verification", evidence=str(signals["challengeFrames"][0])[:200], url=url)
    sources = [url, str(signals.get("title") or ""), *[str(d) for d in signals.get("dialogs") or []]]
    sources.append(str(signals.get("body") or ""))
    for source in sources:
        if not source:
            continue
        for kind, patterns in _COMPILED.items():
            for pattern in patterns:
                m = pattern.search(source)
                if m:
                    return BlockCondition(kind=kind, evidence=m.group(0)[:200], url=url)
    return None


async def detect_block(tab: TabHandle) -> BlockCondition | None:
    signals = await tab.evaluate(_PAGE_SIGNALS_JS)
    if not isinstance(signals, dict):
        return None
    block = classify(signals)
    if block is not None:
        logger.warning("platform_blocked platform=%s kind=%s evidence=%r", tab.platform, block.kind, block.evidence)
    return block
