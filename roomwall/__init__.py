"""
roomwall workspace engine package.

The package arranges live room windows across named spaces: grid packing,
a pinned floating overlay, stacking order, paginated discovery and
synchronisation between several clients sharing one persisted state.
"""

from __future__ import annotations

__all__ = [
    "RoomwallError",
    "WorkspaceConfig",
]


class RoomwallError(RuntimeError):
    """Base class for recoverable engine errors."""


from .config import WorkspaceConfig  # noqa: E402
