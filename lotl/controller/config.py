from __future__ import annotations

import os
from dataclasses import dataclass, field

SESSION_MODES = ("persistent", "fresh", "multi")


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def parse_platform_timeouts(raw: str | None) -> dict[str, float]:
    """Parse `aistudio=480,chatgpt=300` into a {platform: seconds} map (bad items are skipped)."""
    out: dict[str, float] = {}
    for item in (raw or "").split(","):
        name, sep, value = item.partition("=")
        name = name.strip().lower()
        if not sep or not name:
            continue
        try:
            out[name] = max(1.0, float(value))
        except ValueError:
            continue
    return out


@dataclass
class ControllerConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    connect_timeout: float = 8.0
    protocol_timeout: float = 120.0
    ready_timeout: float = 5.0
    response_timeout: float = 180.0
    stability_timeout: float = 60.0
    stable_samples: int = 3
    poll_interval: float = 1.0
    lock_timeout_text: float = 180.0
    lock_timeout_attachments: float = 480.0
    attachment_lock_timeouts: dict[str, float] = field(default_factory=dict)
    session_mode: str = "persistent"
    platforms: list[str] = field(default_factory=lambda: ["aistudio"])

    @staticmethod
    def normalize_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"fresh", "disposable", "per-request", "per_request"}:
            return "fresh"
        if mode in {"multi", "isolated", "sessions", "multi-session"}:
            return "multi"
        return "persistent"

    @classmethod
    def from_env(cls) -> ControllerConfig:
        port_raw = os.environ.get("LOTL_CDP_PORT") or os.environ.get("CHROME_PORT") or "9222"
        try:
            port = int(port_raw)
        except ValueError:
            port = 9222
        platforms_raw = os.environ.get("LOTL_PLATFORMS", "aistudio")
        platforms = [p.strip().lower() for p in platforms_raw.split(",") if p.strip()]
        return cls(
            cdp_host=(os.environ.get("LOTL_CDP_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=port,
            connect_timeout=_env_float("LOTL_CONNECT_TIMEOUT", 8.0, minimum=0.5),
            protocol_timeout=_env_float("LOTL_PROTOCOL_TIMEOUT", 120.0, minimum=1.0),
            ready_timeout=_env_float("LOTL_READY_TIMEOUT", 5.0, minimum=0.5),
            response_timeout=_env_float("LOTL_RESPONSE_TIMEOUT", 180.0, minimum=1.0),
            stability_timeout=_env_float("LOTL_STABILITY_TIMEOUT", 60.0, minimum=1.0),
            stable_samples=_env_int("LOTL_STABLE_SAMPLES", 3),
            poll_interval=_env_float("LOTL_POLL_INTERVAL", 1.0, minimum=0.05),
            lock_timeout_text=_env_float("LOTL_LOCK_TIMEOUT_TEXT", 180.0, minimum=1.0),
            lock_timeout_attachments=_env_float("LOTL_LOCK_TIMEOUT_ATTACHMENTS", 480.0, minimum=1.0),
            attachment_lock_timeouts=parse_platform_timeouts(os.environ.get("LOTL_LOCK_TIMEOUT_ATTACHMENTS_BY_PLATFORM")),
            session_mode=cls.normalize_mode(os.environ.get("LOTL_SESSION_MODE")),
            platforms=platforms or ["aistudio"],
        )

    @property
    def cdp_base_url(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def lock_timeout_for(self, platform: str, has_attachments: bool) -> float:
        if not has_attachments:
            return self.lock_timeout_text
        return self.attachment_lock_timeouts.get((platform or "").lower(), self.lock_timeout_attachments)

    def max_polls(self, ceiling: float) -> int:
        """Number of poll iterations that fit into a wait ceiling."""
        interval = self.poll_interval if self.poll_interval > 0 else 1.0
        return max(1, int(round(ceiling / interval)))
