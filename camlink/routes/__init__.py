"""
Route Dependencies - Centralized dependency injection for route modules

This module provides a dependency injection pattern to avoid circular imports
and make route modules testable. All manager instances are injected at startup.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    # Type hints only - avoid runtime circular imports
    from camlink.config.defaults import AppDefaults
    from camlink.core.signaling import SessionRegistry, ConnectionHub, SignalingChannel


@dataclass
class RouteDependencies:
    """
    Container for all dependencies needed by route modules

    All manager instances are injected here at startup to avoid:
    - Circular imports between modules
    - Global variable access in route handlers
    - Tight coupling between routes and main.py

    Every signaling mount path sees the same instances, which is what keeps
    "one phone per session" true across paths.

    Usage in route modules:
        from camlink.routes import get_deps

        @router.get("/endpoint")
        async def handler():
            deps = get_deps()
            return deps.session_registry.get_stats()
    """

    settings: "AppDefaults"
    session_registry: "SessionRegistry"
    connection_hub: "ConnectionHub"
    signaling_channel: "SignalingChannel"


# Global dependencies instance (set once at startup)
_deps: Optional[RouteDependencies] = None


def set_dependencies(deps: Optional[RouteDependencies]) -> None:
    """
    Set global dependencies (called once at server startup, cleared on shutdown)

    Args:
        deps: RouteDependencies instance with all managers initialized
    """
    global _deps
    _deps = deps


def get_deps() -> RouteDependencies:
    """
    Get dependencies for route handlers

    Returns:
        RouteDependencies instance with all managers

    Raises:
        RuntimeError: If dependencies not initialized (call set_dependencies first)
    """
    if _deps is None:
        raise RuntimeError(
            "Dependencies not initialized. "
            "Call set_dependencies() in server startup before registering routes."
        )
    return _deps


# Export public API
__all__ = [
    "RouteDependencies",
    "set_dependencies",
    "get_deps",
]
