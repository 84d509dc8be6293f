"""
ChatGPT adapter.

Only assistant messages are counted as turns here, so one request adds a single
turn. Attachments are not supported by this adapter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import CapabilityAdapter

if TYPE_CHECKING:
    from ..browser_session import TabHandle

_INPUT_SELECTORS = [
    "#prompt-textarea",
    'textarea[data-id="root"]',
    'div[contenteditable="true"][data-placeholder]',
    'div[contenteditable="true"]',
]

_SET_INPUT_JS = """
(txt, selectors) => {
  for (const sel of selectors) {
    const el = document.querySelector(sel);
    if (!el) continue;
    el.focus();
    if (el.tagName === 'TEXTAREA' || el.tagName === 'INPUT') {
      el.value = txt;
      el.dispatchEvent(new Event('input', { bubbles: true }));
      el.dispatchEvent(new Event('change', { bubbles: true }));
      return el.value === txt;
    }
    if (el.isContentEditable) {
      el.innerHTML = '';
      el.innerText = txt;
      el.dispatchEvent(new Event('input', { bubbles: true }));
      return (el.innerText || '').trim() === txt.trim();
    }
  }
  return false;
}
"""

_SUBMIT_JS = """
() => {
  const selectors = ['button[data-testid="send-button"]', 'button[aria-label*="Send"]', 'button[aria-label*="send"]'];
  for (const sel of selectors) {
    const btn = document.querySelector(sel);
    if (btn && !btn.disabled) { btn.click(); return true; }
  }
  return false;
}
"""

_COUNT_TURNS_JS = """
(() => {
  for (const sel of ['[data-message-author-role="assistant"]', '.agent-turn']) {
    const n = document.querySelectorAll(sel).length;
    if (n > 0) return n;
  }
  return 0;
})()
"""

_IS_BUSY_JS = """
(() => {
  const stop = document.querySelector('button[data-testid="stop-button"], button[aria-label*="Stop"]');
  if (stop && stop.offsetParent !== null) return true;
  if (document.querySelector('[class*="streaming"]')) return true;
  const send = document.querySelector('button[data-testid="send-button"]');
  return Boolean(send && send.disabled);
})()
"""

_EXTRACT_JS = """
(() => {
  let messages = [];
  for (const sel of ['[data-message-author-role="assistant"]', '.agent-turn .markdown', '[class*="assistant-message"]']) {
    const els = document.querySelectorAll(sel);
    if (els.length > 0) { messages = Array.from(els); break; }
  }
  if (messages.length === 0) return null;
  const clone = messages[messages.length - 1].cloneNode(true);
  clone.querySelectorAll('button, [class*="copy"], [class*="action"]').forEach((el) => el.remove());
  return (clone.innerText || clone.textContent || '').trim();
})()
"""

_HAS_INPUT_JS = """
((selectors) => selectors.some((sel) => document.querySelector(sel)))
"""


class ChatGptAdapter(CapabilityAdapter):
    name = "chatgpt"
    label = "ChatGPT"
    url_pattern = "chatgpt.com"
    start_url = "https://chatgpt.com/"
    required_turn_delta = 1
    supports_attachments = False
    chrome_patterns = (
        r"you said:?",
        r"chatgpt said:?",
        r"copy(?: code)?",
        r"edit",
        r"share",
        r"regenerate",
        r"sources?",
        r"chatgpt can make mistakes.*",
        r"(?:good|bad) response",
        r"read aloud",
    )

    async def set_input(self, tab: TabHandle, text: str) -> bool:
        return bool(await tab.call(_SET_INPUT_JS, text, _INPUT_SELECTORS))

    async def trigger_submit(self, tab: TabHandle) -> bool:
        return bool(await tab.call(_SUBMIT_JS))

    async def count_turns(self, tab: TabHandle) -> int:
        return int(await tab.evaluate(_COUNT_TURNS_JS) or 0)

    async def is_busy(self, tab: TabHandle) -> bool:
        return bool(await tab.evaluate(_IS_BUSY_JS))

    async def extract_text(self, tab: TabHandle) -> str | None:
        value = await tab.evaluate(_EXTRACT_JS)
        return str(value) if isinstance(value, str) else None

    async def has_input(self, tab: TabHandle) -> bool:
        return bool(await tab.call(_HAS_INPUT_JS.strip(), _INPUT_SELECTORS))
