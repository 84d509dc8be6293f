"""
Text cleaning shared by every extraction tier.

The transform is applied until it reaches a fixed point, so cleaning
already-cleaned text is a no-op.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

# Full-line icon ligatures that leak into innerText on every Material-based UI.
# Word-like labels ("Edit", "Help", timings) are platform chrome and live on the adapters.
CHROME_LINE_PATTERNS: tuple[str, ...] = (
    r"more_vert",
    r"more_horiz",
    r"thumb_up",
    r"thumb_down",
    r"content_copy",
)

# Placeholder content that is never a reply on its own.
DISQUALIFY_PATTERNS: tuple[str, ...] = (
    r"^(?:thoughts?|thinking)(?:\s*\(experimental\))?$",
    r"^(?:thinking|reasoning|searching)(?: the web)?(?:\.\.\.|…)?$",
    r"^show thinking$",
)

_CITATION_RE = re.compile(r"[ \t]*(?<![\w)])\[\d+(?:,\s*\d+)*\]")
_INLINE_WS_RE = re.compile(r"[ \t\u00a0\u200b]+")
_ROLE_PREFIX_RE = re.compile(r"^(?:model|assistant|gemini|chatgpt)(?:\s+said)?\s*:\s*", re.IGNORECASE)

_DEFAULT_CHROME = [re.compile(rf"^(?:{p})$", re.IGNORECASE) for p in CHROME_LINE_PATTERNS]
_DEFAULT_DISQUALIFY = [re.compile(p, re.IGNORECASE) for p in DISQUALIFY_PATTERNS]


def _compile_lines(patterns: Iterable[re.Pattern[str]]) -> list[re.Pattern[str]]:
    return [re.compile(rf"^(?:{p.pattern})$", p.flags | re.IGNORECASE) for p in patterns]


def _clean_once(text: str, chrome: list[re.Pattern[str]]) -> str:
    text = _CITATION_RE.sub("", text)
    lines: list[str] = []
    dropped: list[str] = []
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = _INLINE_WS_RE.sub(" ", raw).strip()
        if not line:
            continue
        if any(p.match(line) for p in chrome):
            dropped.append(line)
            continue
        if lines and lines[-1] == line:
            continue
        lines.append(line)
    if not lines and len(dropped) == 1:
        # A one-line reply that happens to look like a label ("Help", "12:30") is still the reply.
        lines = dropped[:1]
    if lines:
        lines[0] = _ROLE_PREFIX_RE.sub("", lines[0], count=1).strip()
        if not lines[0]:
            lines.pop(0)
    return "\n".join(lines)


def clean_text(text: str | None, *, extra_chrome: Iterable[re.Pattern[str]] = ()) -> str:
    """Strip UI chrome, citation markers and role labels; collapse whitespace and repeats."""
    if not text:
        return ""
    chrome = _DEFAULT_CHROME + _compile_lines(extra_chrome)
    current = str(text)
    # Every pass only removes characters, so this terminates.
    while True:
        cleaned = _clean_once(current, chrome)
        if cleaned == current:
            return cleaned
        current = cleaned


def is_chrome_line(line: str, *, extra_chrome: Iterable[re.Pattern[str]] = ()) -> bool:
    value = _INLINE_WS_RE.sub(" ", line or "").strip()
    if not value:
        return False
    return any(p.match(value) for p in _DEFAULT_CHROME + _compile_lines(extra_chrome))


def is_disqualified(text: str, *, extra: Iterable[re.Pattern[str]] = ()) -> bool:
    """True when the whole text is placeholder content (e.g. a collapsed thoughts panel)."""
    value = " ".join((text or "").split())
    if not value:
        return False
    return any(p.search(value) for p in [*_DEFAULT_DISQUALIFY, *extra])


def normalize_for_match(text: str) -> str:
    return " ".join((text or "").split()).casefold()
