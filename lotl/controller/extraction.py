"""
Tiered reply extraction.

Each tier is a strategy object with one `try_extract(ctx)` operation returning a
tagged outcome. The pipeline folds over the tiers in order and stops at the first
`found` whose cleaned text survives the shared checks (disqualifying placeholder
content, texts the caller rejected as stale, exact-token isolation).

Tiers:
- primary: the adapter's own structural extraction.
- accessibility: `Accessibility.getFullAXTree`, only turn containers after the
  newest turn that matches the prompt, newest first.
- layout: `DOMSnapshot.captureSnapshot` text runs after the prompt just sent,
  bounded to a few groups. The requested literal is only looked for there too.

Both fallbacks report `not_found` when the prompt cannot be located, so they
never hand back text from an earlier exchange.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from .models import ExtractionResult
from .session_cdp import CdpDisconnected
from .text_cleaning import clean_text, is_chrome_line, is_disqualified, normalize_for_match

if TYPE_CHECKING:
    from .apps.base import CapabilityAdapter
    from .browser_session import TabHandle

logger = logging.getLogger("lotl.controller.extract")


class OutcomeKind(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    DISQUALIFIED = "disqualified"


@dataclass(frozen=True)
class ExtractionOutcome:
    kind: OutcomeKind
    text: str = ""
    reason: str = ""
    # Positioned after the prompt just sent, so it cannot predate this request.
    anchored: bool = False

    @classmethod
    def found(cls, text: str, *, anchored: bool = False) -> ExtractionOutcome:
        return cls(OutcomeKind.FOUND, text=text, anchored=anchored)

    @classmethod
    def not_found(cls, reason: str = "") -> ExtractionOutcome:
        return cls(OutcomeKind.NOT_FOUND, reason=reason)

    @classmethod
    def disqualified(cls, reason: str = "") -> ExtractionOutcome:
        return cls(OutcomeKind.DISQUALIFIED, reason=reason)

    def describe(self, strategy: str) -> str:
        text = f"{strategy}:{self.kind.value}"
        return f"{text}({self.reason})" if self.reason else text


@dataclass
class ExtractionContext:
    tab: TabHandle
    adapter: CapabilityAdapter
    prompt: str = ""
    # Exact-token mode: tiers only report the literal itself.
    token: str | None = None
    # Cleaned pre-submit texts; only unanchored tiers are held to it.
    reject: frozenset[str] = frozenset()
    platform: str = ""

    @property
    def chrome(self) -> list[re.Pattern[str]]:
        return self.adapter.chrome_regexes()


class ExtractionStrategy(Protocol):
    name: str

    def enabled(self, ctx: ExtractionContext) -> bool: ...

    async def try_extract(self, ctx: ExtractionContext) -> ExtractionOutcome: ...


def _word_re(token: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(token)}(?!\w)")


class PrimaryStrategy:
    name = "primary"

    def enabled(self, ctx: ExtractionContext) -> bool:
        return True

    async def try_extract(self, ctx: ExtractionContext) -> ExtractionOutcome:
        text = await ctx.adapter.extract_text(ctx.tab)
        if not text or not str(text).strip():
            return ExtractionOutcome.not_found("adapter returned nothing")
        return ExtractionOutcome.found(str(text))


class AccessibilityTreeStrategy:
    """Walk the turn containers that follow the prompt turn, newest first."""

    name = "accessibility"

    def enabled(self, ctx: ExtractionContext) -> bool:
        return bool(ctx.adapter.ax_turn_roles)

    async def try_extract(self, ctx: ExtractionContext) -> ExtractionOutcome:
        await ctx.tab.send("Accessibility.enable")
        res = await ctx.tab.send("Accessibility.getFullAXTree")
        nodes = res.get("nodes") if isinstance(res.get("nodes"), list) else []
        by_id = {str(n.get("nodeId")): n for n in nodes if isinstance(n, dict)}
        roles = ctx.adapter.ax_turn_roles
        turns = [n for n in by_id.values() if not n.get("ignored") and _ax_value(n, "role") in roles]
        if not turns:
            return ExtractionOutcome.not_found("no turn containers")

        prompt_key = normalize_for_match(clean_text(ctx.prompt, extra_chrome=ctx.chrome))
        texts = [list(_static_texts(turn, by_id)) for turn in turns]
        keys = [normalize_for_match(clean_text("\n".join(parts), extra_chrome=ctx.chrome)) for parts in texts]
        start = _prompt_turn_index(keys, prompt_key)
        if start is None:
            return ExtractionOutcome.not_found("prompt turn not found")

        # Turns before the prompt belong to earlier requests.
        for parts, key in zip(reversed(texts[start + 1 :]), reversed(keys[start + 1 :])):
            if ctx.token:
                if any(p.strip() == ctx.token.strip() for p in parts):
                    return ExtractionOutcome.found(ctx.token, anchored=True)
                continue
            if not key or key == prompt_key:
                continue
            return ExtractionOutcome.found(clean_text("\n".join(parts), extra_chrome=ctx.chrome), anchored=True)
        return ExtractionOutcome.not_found("token not after prompt" if ctx.token else "no reply turn after prompt")


def _prompt_turn_index(keys: list[str], prompt_key: str) -> int | None:
    """Newest turn equal to the prompt, else the newest one containing it."""
    if not prompt_key:
        return None
    for i in range(len(keys) - 1, -1, -1):
        if keys[i] == prompt_key:
            return i
    for i in range(len(keys) - 1, -1, -1):
        if prompt_key in keys[i]:
            return i
    return None


def _ax_value(node: dict[str, Any], key: str) -> str:
    prop = node.get(key)
    if isinstance(prop, dict):
        return str(prop.get("value") or "")
    return ""


def _static_texts(root: dict[str, Any], by_id: dict[str, dict[str, Any]]) -> Iterable[str]:
    stack = [root]
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        nid = str(node.get("nodeId"))
        if nid in seen:
            continue
        seen.add(nid)
        if _ax_value(node, "role") == "StaticText":
            name = _ax_value(node, "name")
            if name.strip():
                yield name
            continue
        children = [by_id[str(c)] for c in node.get("childIds") or [] if str(c) in by_id]
        # Reversed so the stack pops in document order.
        stack.extend(reversed(children))


class LayoutSnapshotStrategy:
    """Scan rendered text runs after the anchor line."""

    name = "layout"

    def __init__(self, *, max_groups: int = 3, max_lines: int = 400) -> None:
        self.max_groups = max_groups
        self.max_lines = max_lines

    def enabled(self, ctx: ExtractionContext) -> bool:
        return True

    async def try_extract(self, ctx: ExtractionContext) -> ExtractionOutcome:
        snap = await ctx.tab.send("DOMSnapshot.captureSnapshot", {"computedStyles": [], "includeDOMRects": False})
        lines = snapshot_lines(snap)
        if not lines:
            return ExtractionOutcome.not_found("empty snapshot")

        anchor = find_anchor(lines, ctx.prompt)
        if anchor is None:
            return ExtractionOutcome.not_found("prompt anchor not found")
        if ctx.token:
            return self._locate_token(lines, anchor, ctx)

        groups: list[list[str]] = [[]]
        taken = 0
        for line in lines[anchor + 1 :]:
            if is_chrome_line(line, extra_chrome=ctx.chrome):
                if groups[-1]:
                    if len(groups) >= self.max_groups:
                        break
                    groups.append([])
                continue
            groups[-1].append(line)
            taken += 1
            if taken >= self.max_lines:
                break
        text = "\n".join(line for group in groups for line in group)
        if not text.strip():
            return ExtractionOutcome.not_found("nothing after anchor")
        return ExtractionOutcome.found(text, anchored=True)

    def _locate_token(self, lines: list[str], anchor: int, ctx: ExtractionContext) -> ExtractionOutcome:
        token = (ctx.token or "").strip()
        prompt_lines = {normalize_for_match(p) for p in (ctx.prompt or "").splitlines() if p.strip()}
        scan = lines[anchor + 1 :]
        word = _word_re(token)
        # Newest first; an exact line beats a whole-word hit in the same line set.
        candidates = [ln for ln in reversed(scan) if normalize_for_match(ln) not in prompt_lines]
        if any(ln.strip() == token for ln in candidates):
            return ExtractionOutcome.found(token, anchored=True)
        if any(word.search(ln) for ln in candidates):
            return ExtractionOutcome.found(token, anchored=True)
        return ExtractionOutcome.not_found("token not after prompt")


def snapshot_lines(snapshot: dict[str, Any]) -> list[str]:
    """Flatten `DOMSnapshot.captureSnapshot` layout text into non-empty lines, in layout order."""
    strings = snapshot.get("strings") if isinstance(snapshot.get("strings"), list) else []
    lines: list[str] = []
    for doc in snapshot.get("documents") or []:
        layout = doc.get("layout") if isinstance(doc, dict) else None
        if not isinstance(layout, dict):
            continue
        for idx in layout.get("text") or []:
            if not isinstance(idx, int) or idx < 0 or idx >= len(strings):
                continue
            for part in str(strings[idx]).splitlines():
                part = " ".join(part.split())
                if part:
                    lines.append(part)
    return lines


def find_anchor(lines: list[str], prompt: str) -> int | None:
    """Index of the last line that matches the prompt's last line."""
    prompt_lines = [ln for ln in (prompt or "").splitlines() if ln.strip()]
    if not prompt_lines:
        return None
    needle = normalize_for_match(prompt_lines[-1])
    for i in range(len(lines) - 1, -1, -1):
        hay = normalize_for_match(lines[i])
        if hay == needle or (len(needle) >= 12 and needle in hay):
            return i
    return None


@dataclass
class ExtractionPipeline:
    strategies: list[ExtractionStrategy] = field(
        default_factory=lambda: [PrimaryStrategy(), AccessibilityTreeStrategy(), LayoutSnapshotStrategy()]
    )

    async def extract(self, ctx: ExtractionContext, *, include_primary: bool = True) -> ExtractionResult:
        """Fold over the tiers; an empty result (strategy "none") means every tier came up empty."""
        attempts: list[str] = []
        chrome = ctx.chrome
        disqualify = ctx.adapter.disqualify_regexes()

        for strategy in self.strategies:
            if not include_primary and strategy.name == PrimaryStrategy.name:
                continue
            if not strategy.enabled(ctx):
                continue
            try:
                outcome = await strategy.try_extract(ctx)
            except CdpDisconnected:
                raise
            except Exception as exc:  # noqa: BLE001
                outcome = ExtractionOutcome.not_found(f"error: {exc}")

            if outcome.kind is OutcomeKind.FOUND:
                outcome = self._check(outcome, ctx, chrome, disqualify)

            attempts.append(outcome.describe(strategy.name))
            logger.debug("extract_tier platform=%s %s", ctx.platform, attempts[-1])
            if outcome.kind is OutcomeKind.FOUND:
                if strategy.name != PrimaryStrategy.name:
                    logger.info("extract_fallback_used platform=%s strategy=%s", ctx.platform, strategy.name)
                return ExtractionResult(
                    text=outcome.text,
                    strategy=strategy.name,
                    exact_match=(outcome.text == ctx.token.strip()) if ctx.token else None,
                    attempts=tuple(attempts),
                )

        logger.info("extract_exhausted platform=%s attempts=%s", ctx.platform, attempts)
        return ExtractionResult(text="", strategy="none", attempts=tuple(attempts))

    @staticmethod
    def _check(
        outcome: ExtractionOutcome,
        ctx: ExtractionContext,
        chrome: list[re.Pattern[str]],
        disqualify: list[re.Pattern[str]],
    ) -> ExtractionOutcome:
        raw = outcome.text
        text = clean_text(raw, extra_chrome=chrome)
        if ctx.token:
            token = ctx.token.strip()
            # The literal is compared before and after cleaning; cleaning may drop a label-like token.
            if token and token in (text, " ".join(raw.split())):
                return ExtractionOutcome.found(token, anchored=outcome.anchored)
            return ExtractionOutcome.not_found("token not isolated")
        if not text:
            return ExtractionOutcome.not_found("empty after cleaning")
        if is_disqualified(text, extra=disqualify):
            return ExtractionOutcome.disqualified("placeholder content")
        if text in ctx.reject and not outcome.anchored:
            return ExtractionOutcome.not_found("stale")
        return ExtractionOutcome.found(text, anchored=outcome.anchored)
