"""
Dependency injection for API routes.

The daemon state is set up during app initialization.
"""

from typing import Optional

from printbridge.daemon import BrowsedState

# Global instance (set during app init)
_state: Optional[BrowsedState] = None


def init_dependencies(state: BrowsedState):
    """Initialize global dependencies."""
    global _state
    _state = state


def get_state() -> BrowsedState:
    """Get daemon state instance."""
    if _state is None:
        raise RuntimeError("Daemon state not initialized")
    return _state
