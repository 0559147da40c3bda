"""
Floating overlay of pinned discovery windows.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from .models import (
    DEFAULT_WINDOW_X,
    DEFAULT_WINDOW_Y,
    DISCOVERY_SPACE_ID,
    LayoutMode,
    PINNED_GEOMETRY_FIELDS,
    Window,
)
from .repository import SpaceRepository
from .stacking import StackOrderTracker

LOG = logging.getLogger(__name__)

_GEOMETRY_ALIASES = {
    "x": "pinnedX",
    "y": "pinnedY",
    "width": "pinnedWidth",
    "height": "pinnedHeight",
}


class PinnedOverlayManager:
    """
    Pin state and floating geometry for windows of the discovery space.

    Pinning flips a flag on the existing window record; the overlay reads
    ``pinned*`` geometry only, so floating moves never touch the grid
    coordinates of the same window.
    """

    def __init__(self, repository: SpaceRepository) -> None:
        self.repository = repository
        self._z_indexes: Dict[str, int] = {}

    def pinned_windows(self) -> List[Window]:
        space = self.repository.get_space(DISCOVERY_SPACE_ID)
        if space is None:
            return []
        return [window for window in space.windows if window.pinned]

    def pinned_ids(self) -> List[str]:
        return [window.id for window in self.pinned_windows()]

    def toggle_pin(self, window_id: str) -> bool:
        space = self.repository.get_space(DISCOVERY_SPACE_ID)
        window = space.find(window_id) if space is not None else None
        if window is None:
            return False

        if window.pinned:
            self._z_indexes.pop(window_id, None)
            LOG.debug("Unpinned window %s", window_id)
            return self.repository.update_window(DISCOVERY_SPACE_ID, window_id, {"pinned": False})

        fields: dict = {"pinned": True}
        if window.pinned_x is None:
            if space.layout_mode == LayoutMode.FREE:
                fields.update(pinnedX=window.x, pinnedY=window.y)
            else:
                fields.update(pinnedX=DEFAULT_WINDOW_X, pinnedY=DEFAULT_WINDOW_Y)
            fields.update(pinnedWidth=window.width, pinnedHeight=window.height)
        self._raise(window_id)
        LOG.debug("Pinned window %s", window_id)
        return self.repository.update_window(DISCOVERY_SPACE_ID, window_id, fields)

    def update_pinned_window(self, window_id: str, geometry: dict) -> bool:
        """
        Move or resize a floating window.

        Accepts either ``pinnedX``-style keys or plain ``x/y/width/height``;
        anything else is dropped.
        """

        window = self.repository.get_window(DISCOVERY_SPACE_ID, window_id)
        if window is None or not window.pinned:
            return False
        fields = {}
        for key, value in (geometry or {}).items():
            name = _GEOMETRY_ALIASES.get(key, key)
            if name in PINNED_GEOMETRY_FIELDS and value is not None:
                fields[name] = value
        self._raise(window_id)
        if not fields:
            return False
        return self.repository.update_window(DISCOVERY_SPACE_ID, window_id, fields)

    def bring_to_front(self, window_id: str) -> bool:
        if window_id not in self.pinned_ids():
            return False
        self._raise(window_id)
        return True

    def _prune(self, live: Set[str]) -> None:
        for key in [key for key in self._z_indexes if key not in live]:
            del self._z_indexes[key]

    def _raise(self, window_id: str) -> None:
        self._prune(set(self.pinned_ids()) | {window_id})
        current = self._z_indexes.get(window_id)
        top = StackOrderTracker.top(self._z_indexes)
        if current is None or current < top:
            self._z_indexes[window_id] = top + 1

    def overlay(self) -> List[dict]:
        """Render view of the floating layer, ordered bottom to top."""

        pinned = self.pinned_windows()
        self._prune({window.id for window in pinned})
        views = []
        for window in pinned:
            views.append(
                {
                    "id": window.id,
                    "room": window.room,
                    "x": window.pinned_x,
                    "y": window.pinned_y,
                    "width": window.pinned_width,
                    "height": window.pinned_height,
                    "zIndex": self._z_indexes.get(window.id, 0),
                    "isOnline": window.is_online,
                    "isMuted": window.is_muted,
                }
            )
        views.sort(key=lambda view: view["zIndex"])
        return views

    def create_space_from_pinned(self, name: str = "") -> Optional[str]:
        pinned = self.pinned_windows()
        if not pinned:
            return None
        copies = []
        for window in pinned:
            copy = window.clone()
            copy.pinned = False
            copies.append(copy)
        space_id = self.repository.add_space(name)
        self.repository.replace_windows(
            space_id,
            copies,
            z_indexes=StackOrderTracker.sequential(window.id for window in copies),
        )
        LOG.info("Created space %s from %d pinned windows", space_id, len(copies))
        return space_id
