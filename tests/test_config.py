from __future__ import annotations

import pytest

from lotl.controller.config import ControllerConfig, parse_platform_timeouts


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LOTL_CDP_PORT", "CHROME_PORT", "LOTL_SESSION_MODE", "LOTL_PLATFORMS", "LOTL_POLL_INTERVAL"):
        monkeypatch.delenv(name, raising=False)
    cfg = ControllerConfig.from_env()
    assert cfg.cdp_port == 9222
    assert cfg.cdp_base_url == "http://127.0.0.1:9222"
    assert cfg.session_mode == "persistent"
    assert cfg.platforms == ["aistudio"]
    assert cfg.max_polls(cfg.response_timeout) == 180
    assert cfg.max_polls(cfg.stability_timeout) == 60


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOTL_CDP_PORT", raising=False)
    monkeypatch.setenv("CHROME_PORT", "9333")
    monkeypatch.setenv("LOTL_SESSION_MODE", "per-request")
    monkeypatch.setenv("LOTL_PLATFORMS", "AIStudio, chatgpt ,")
    monkeypatch.setenv("LOTL_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("LOTL_RESPONSE_TIMEOUT", "not-a-number")
    monkeypatch.setenv("LOTL_LOCK_TIMEOUT_ATTACHMENTS_BY_PLATFORM", "aistudio=600, bad, chatgpt=x")
    cfg = ControllerConfig.from_env()
    assert cfg.cdp_port == 9333
    assert cfg.session_mode == "fresh"
    assert cfg.platforms == ["aistudio", "chatgpt"]
    assert cfg.response_timeout == 180.0
    assert cfg.max_polls(10.0) == 20
    assert cfg.attachment_lock_timeouts == {"aistudio": 600.0}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", "persistent"),
        ("reuse", "persistent"),
        ("Disposable", "fresh"),
        ("isolated", "multi"),
        ("sessions", "multi"),
    ],
)
def test_normalize_mode(raw: str, expected: str) -> None:
    assert ControllerConfig.normalize_mode(raw) == expected


def test_lock_timeout_depends_on_attachments_and_platform() -> None:
    cfg = ControllerConfig(
        lock_timeout_text=180.0,
        lock_timeout_attachments=480.0,
        attachment_lock_timeouts={"aistudio": 420.0},
    )
    assert cfg.lock_timeout_for("aistudio", False) == 180.0
    assert cfg.lock_timeout_for("aistudio", True) == 420.0
    assert cfg.lock_timeout_for("chatgpt", True) == 480.0


def test_parse_platform_timeouts_clamps() -> None:
    assert parse_platform_timeouts("A=0") == {"a": 1.0}
    assert parse_platform_timeouts(None) == {}
