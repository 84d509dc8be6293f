from __future__ import annotations

from .base import CapabilityAdapter
from ..errors import UnknownPlatform

# Names accepted from older clients.
PLATFORM_ALIASES: dict[str, str] = {
    "gemini": "aistudio",
    "ai-studio": "aistudio",
    "gpt": "chatgpt",
    "openai": "chatgpt",
}


class AdapterRegistry:
    """Registry of capability adapters keyed by platform name."""

    def __init__(self) -> None:
        self._adapters: dict[str, CapabilityAdapter] = {}

    def register(self, adapter: CapabilityAdapter) -> None:
        self._adapters[str(adapter.name)] = adapter

    def available(self) -> list[str]:
        return sorted(self._adapters.keys())

    def canonical(self, platform: str) -> str:
        name = str(platform or "").strip().lower()
        return PLATFORM_ALIASES.get(name, name)

    def get(self, platform: str) -> CapabilityAdapter | None:
        return self._adapters.get(self.canonical(platform))

    def require(self, platform: str) -> CapabilityAdapter:
        adapter = self.get(platform)
        if adapter is None:
            raise UnknownPlatform(
                platform=str(platform or ""),
                reason=f"Unknown platform: {platform!r}",
                suggestion=f"Use one of: {', '.join(self.available()) or '(none registered)'}",
            )
        return adapter

    def select(self, *, url: str) -> CapabilityAdapter | None:
        u = str(url or "").strip()
        if not u:
            return None
        for adapter in self._adapters.values():
            if adapter.match(url=u):
                return adapter
        return None


def default_registry() -> AdapterRegistry:
    from .aistudio import AiStudioAdapter
    from .chatgpt import ChatGptAdapter

    registry = AdapterRegistry()
    registry.register(AiStudioAdapter())
    registry.register(ChatGptAdapter())
    return registry
