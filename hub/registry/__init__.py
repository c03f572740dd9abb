"""Module / backend discovery from the modules directory."""

from .loader import (  # noqa: F401
    DiscoveredModule,
    clear_discovery_cache,
    discover,
    load_backends,
    load_modules,
)

__all__ = [
    "DiscoveredModule",
    "discover",
    "load_modules",
    "load_backends",
    "clear_discovery_cache",
]
