"""Assemble the full tool registry from the per-provider modules."""

from __future__ import annotations

from src.tools import asana, fireflies, gmail, google_calendar
from src.tools.registry import ToolRegistry


def build_registry() -> ToolRegistry:
    """Register every tool and check that routing is total.

    Raises:
        RegistryError: a tool name has no handler or is registered twice.
    """
    registry = ToolRegistry()
    for module in (gmail, google_calendar, asana, fireflies):
        for definition, handler in module.TOOLS:
            registry.register(definition, handler)
    return registry.validate()
