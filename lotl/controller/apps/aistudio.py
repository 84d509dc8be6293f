"""
Google AI Studio (Gemini) adapter.

AI Studio renders both the prompt and the reply as `ms-chat-turn` elements, so a
request/reply pair adds two turns. The reply body of a turn lives in
`ms-chat-bubble`; the collapsed "thoughts" panel is exposed only through the
accessibility tree, which is why the AX fallback is enabled for this platform.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import time
from typing import TYPE_CHECKING

from ..detectors import Clock, SystemClock
from ..errors import AttachmentError
from .base import CapabilityAdapter

if TYPE_CHECKING:
    from ..attachments import Attachment
    from ..browser_session import TabHandle

logger = logging.getLogger("lotl.controller.apps.aistudio")

_SET_INPUT_JS = """
(txt) => {
  const ta = document.querySelector('footer textarea');
  if (!ta) return false;
  ta.focus();
  ta.value = '';
  ta.value = txt;
  ta.dispatchEvent(new Event('input', { bubbles: true }));
  ta.dispatchEvent(new Event('change', { bubbles: true }));
  return ta.value === txt;
}
"""

_SUBMIT_JS = """
() => {
  const btn = document.querySelector('button[aria-label*="Run"]');
  if (!btn || btn.disabled) return false;
  btn.click();
  return true;
}
"""

_COUNT_TURNS_JS = "document.querySelectorAll('ms-chat-turn').length"

_IS_BUSY_JS = """
(() => {
  const visible = (el) => Boolean(el && el.offsetParent !== null);
  const run = document.querySelector('button[aria-label*="Run"]');
  if (visible(run) && !run.disabled) return false;
  if (visible(document.querySelector('button[aria-label*="Stop"]'))) return true;
  for (const s of document.querySelectorAll('mat-progress-spinner, [class*="loading"], [class*="spinner"]')) {
    if (visible(s)) return true;
  }
  return false;
})()
"""

_EXTRACT_JS = """
(() => {
  const turns = document.querySelectorAll('ms-chat-turn');
  if (turns.length === 0) return null;
  let chosen = null;
  for (let i = turns.length - 1; i >= 0; i--) {
    const bubble = turns[i].querySelector('ms-chat-bubble');
    const txt = ((bubble ? bubble.innerText : turns[i].innerText) || '').trim();
    if (txt.length > 0) { chosen = turns[i]; break; }
  }
  const clone = (chosen || turns[turns.length - 1]).cloneNode(true);
  const junk = [
    'button', 'mat-icon', '[class*="icon"]', '[class*="action"]', '[class*="menu"]',
    '[class*="feedback"]', '[class*="rating"]', '[class*="copy"]', '[class*="grounding"]',
    '[class*="source"]', '.sources', '.citation', 'ms-feedback-buttons', 'ms-tooltip'
  ];
  for (const sel of junk) clone.querySelectorAll(sel).forEach((el) => el.remove());
  const bubble = clone.querySelector('ms-chat-bubble');
  return ((bubble ? bubble.innerText : clone.innerText) || '').trim();
})()
"""

_HAS_INPUT_JS = "Boolean(document.querySelector('footer textarea'))"

_FILE_INPUT_NODE_JS = "document.querySelector('input[type=\"file\"]')"

_DROP_JS = """
(b64, mime, name) => {
  const bytes = Uint8Array.from(atob(b64), (c) => c.charCodeAt(0));
  const file = new File([new Blob([bytes], { type: mime })], name, { type: mime });
  const dt = new DataTransfer();
  dt.items.add(file);
  const target = document.querySelector('ms-prompt-box')
    || document.querySelector('.prompt-box-container')
    || document.querySelector('footer');
  if (!target) return false;
  for (const type of ['dragenter', 'dragover', 'drop']) {
    target.dispatchEvent(new DragEvent(type, { bubbles: true, dataTransfer: dt }));
  }
  return true;
}
"""

_PREVIEW_JS = """
(() => [
  'ms-img-media', '[class*="media-chip"]', '[class*="file-chip"]',
  '.prompt-box-container img', 'img[src*="blob:"]', '[aria-label*="Remove"]'
].some((sel) => document.querySelector(sel)))()
"""


class AiStudioAdapter(CapabilityAdapter):
    name = "aistudio"
    label = "AI Studio (Gemini)"
    url_pattern = "aistudio.google.com"
    start_url = "https://aistudio.google.com/prompts/new_chat"
    required_turn_delta = 2
    supports_attachments = True
    ax_turn_roles = frozenset({"article", "region", "group"})
    chrome_patterns = (
        r"edit",
        r"share",
        r"copy(?: code)?",
        r"refresh",
        r"help",
        r"model",
        r"user",
        r"sources?",
        r"\d+(?:\.\d+)?s",
        r"\d{1,2}:\d{2}(?:\s?[ap]m)?",
        r"google search suggestions?.*",
        r"grounding with google search.*",
        r"learn more.*",
        r"run settings",
        r"token count.*",
        r"\d[\d,]* tokens?",
    )
    disqualify_patterns = (
        r"^(?:thoughts?|thinking)(?:\s*\(experimental\))?(?:\s+expand to view model thoughts)?$",
        r"^expand to view model thoughts$",
    )

    preview_timeout_s: float = 8.0

    def __init__(self, *, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()

    async def set_input(self, tab: TabHandle, text: str) -> bool:
        return bool(await tab.call(_SET_INPUT_JS, text))

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
        return bool(await tab.evaluate(_HAS_INPUT_JS))

    async def upload_attachment(self, tab: TabHandle, attachment: Attachment) -> None:
        """Attach one image: file input first, synthetic drop second.

        Raises AttachmentError when no strategy could dispatch the file. A missing
        preview after dispatch is only logged.
        """
        fd, path = tempfile.mkstemp(prefix=f"lotl_upload_{int(time.time() * 1000)}_", suffix=f".{attachment.extension}")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(attachment.data)
            logger.info("upload_start path=%s size_kb=%s", path, attachment.size_kb)

            uploaded = False
            try:
                uploaded = await self._upload_via_file_input(tab, path)
            except Exception as exc:  # noqa: BLE001
                logger.warning("upload_file_input_failed error=%s", exc)

            if not uploaded:
                try:
                    uploaded = bool(
                        await tab.call(_DROP_JS, attachment.to_base64(), attachment.mime_type, os.path.basename(path))
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.warning("upload_drop_failed error=%s", exc)

            if not uploaded:
                raise AttachmentError(
                    platform=self.name,
                    reason="Attachment upload failed (no file input and drop target found)",
                    suggestion="Make sure the AI Studio prompt box is visible, then retry",
                )

            if await self._wait_for_preview(tab):
                logger.info("upload_verified path=%s", path)
            else:
                logger.warning("upload_preview_missing path=%s", path)
        finally:
            with contextlib.suppress(OSError):
                os.unlink(path)

    async def _upload_via_file_input(self, tab: TabHandle, path: str) -> bool:
        res = await tab.send(
            "Runtime.evaluate", {"expression": _FILE_INPUT_NODE_JS, "returnByValue": False}
        )
        obj = res.get("result") if isinstance(res, dict) else None
        object_id = obj.get("objectId") if isinstance(obj, dict) else None
        if not isinstance(object_id, str) or not object_id:
            return False
        try:
            await tab.send("DOM.enable")
            node = await tab.send("DOM.requestNode", {"objectId": object_id})
        finally:
            with contextlib.suppress(Exception):
                await tab.send("Runtime.releaseObject", {"objectId": object_id})
        node_id = node.get("nodeId", 0) if isinstance(node, dict) else 0
        if not node_id:
            return False
        await tab.send("DOM.setFileInputFiles", {"nodeId": node_id, "files": [path]})
        return True

    async def _wait_for_preview(self, tab: TabHandle) -> bool:
        deadline = self.clock.monotonic() + self.preview_timeout_s
        while self.clock.monotonic() < deadline:
            if await tab.evaluate(_PREVIEW_JS):
                return True
            await self.clock.sleep(0.4)
        return False
