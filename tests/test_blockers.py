from __future__ import annotations

import asyncio

from fakes import FakeConn, default_signals

from lotl.controller.blockers import classify, detect_block
from lotl.controller.browser_session import BrowserSession, TabHandle


def _signals(**kw):
    data = default_signals()
    data.update(kw)
    return data


def test_clean_page_is_not_blocked() -> None:
    assert classify(_signals(body="Ask anything")) is None


def test_challenge_iframe_is_verification() -> None:
    block = classify(_signals(challengeFrames=["https://challenges.cloudflare.com/turnstile/v0"]))
    assert block is not None
    assert block.kind == "verification"


def test_sign_in_redirect_is_auth_wall() -> None:
    block = classify(_signals(url="https://accounts.google.com/v3/signin/identifier"))
    assert block is not None
    assert block.kind == "auth_wall"
    assert "Sign in" in block.suggestion


def test_dialog_text_rate_limit() -> None:
    block = classify(_signals(dialogs=["You've reached your message limit. Try again in 3 hours."]))
    assert block is not None
    assert block.kind == "rate_limit"


def test_detect_block_reads_page_signals() -> None:
    conn = FakeConn()
    conn.page_signals = _signals(body="Please verify you are human")
    tab = TabHandle(platform="chatgpt", target_id="T1", session_id="S1", url="", browser=BrowserSession(conn))
    block = asyncio.run(detect_block(tab))
    assert block is not None
    assert block.kind == "verification"
