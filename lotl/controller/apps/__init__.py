"""
Capability adapters for conversational web UIs.

Each adapter knows one platform's markup (input surface, submit control, turn
containers, busy indicators) and exposes it through the CapabilityAdapter contract.
"""

from __future__ import annotations

from .base import CapabilityAdapter
from .registry import PLATFORM_ALIASES, AdapterRegistry, default_registry

__all__ = ["PLATFORM_ALIASES", "AdapterRegistry", "CapabilityAdapter", "default_registry"]
