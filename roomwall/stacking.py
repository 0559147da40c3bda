"""
Per-space stacking order.
"""

from __future__ import annotations

from typing import Dict, Iterable

from .models import Space


class StackOrderTracker:
    """
    Assign z-order values inside a space's ``z_indexes`` map.

    Values only ever grow for a given window: raising a window always hands
    out ``max(existing) + 1``.
    """

    @staticmethod
    def top(z_indexes: Dict[str, int]) -> int:
        return max([0, *z_indexes.values()])

    def bring_to_front(self, space: Space, window_id: str) -> bool:
        if not space.has(window_id):
            return False
        space.z_indexes[window_id] = self.top(space.z_indexes) + 1
        return True

    def assign(self, space: Space, window_id: str) -> int:
        """Give ``window_id`` a slot above everything else if it has none."""

        existing = space.z_indexes.get(window_id)
        if existing is not None:
            return existing
        value = self.top(space.z_indexes) + 1
        space.z_indexes[window_id] = value
        return value

    def forget(self, space: Space, window_id: str) -> None:
        space.z_indexes.pop(window_id, None)

    def prune(self, space: Space) -> None:
        live = set(space.window_ids())
        for key in [key for key in space.z_indexes if key not in live]:
            del space.z_indexes[key]

    def normalise(self, space: Space) -> None:
        """Drop stale keys and assign slots to windows that have none."""

        self.prune(space)
        for window in space.windows:
            self.assign(space, window.id)

    @staticmethod
    def sequential(window_ids: Iterable[str]) -> Dict[str, int]:
        return {window_id: index + 1 for index, window_id in enumerate(window_ids)}
