"""
Single owner of the workspace state.

Every space and window record lives inside one :class:`RootState` held by
:class:`SpaceRepository`. Other components keep ids only and go through the
repository's methods to read or write. Mutations are total: unknown ids are
ignored and reported by a ``False`` return value instead of an exception,
because the UI issues optimistic updates from asynchronous callbacks that
may have gone stale.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional

from .grid import (
    DEFAULT_TOOLBAR_OFFSET,
    PackItem,
    columns_for_spans,
    compute_uniform_cell_layout,
    pack_items,
    packing_order,
)
from .models import (
    DISCOVERY_SPACE_ID,
    RESERVED_SPACE_IDS,
    FilterMode,
    LayoutMode,
    RootState,
    Space,
    Window,
    clamp01,
)
from .stacking import StackOrderTracker

LOG = logging.getLogger(__name__)

StateObserver = Callable[[dict], None]

DEFAULT_VIEWPORT_WIDTH = 1280
DEFAULT_VIEWPORT_HEIGHT = 720


def _new_space_id() -> str:
    return uuid.uuid4().hex[:7]


class SpaceRepository:
    """
    In-memory arena of spaces and windows.

    Observers registered through :meth:`subscribe` receive a JSON-ready
    snapshot after every mutation that changed something.
    """

    def __init__(
        self,
        state: Optional[RootState] = None,
        *,
        viewport_width: float = DEFAULT_VIEWPORT_WIDTH,
        viewport_height: float = DEFAULT_VIEWPORT_HEIGHT,
        toolbar_offset: int = DEFAULT_TOOLBAR_OFFSET,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._state = state.clone() if state is not None else RootState()
        self.viewport_width = float(viewport_width)
        self.viewport_height = float(viewport_height)
        self.toolbar_offset = int(toolbar_offset)
        self.stacking = StackOrderTracker()
        self._id_factory = id_factory or _new_space_id

        self._observer_counter = 0
        self._observers: Dict[int, StateObserver] = {}

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: StateObserver) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.snapshot()
        for token, callback in list(self._observers.items()):
            try:
                callback(snapshot)
            except Exception:  # pragma: no cover
                LOG.exception("Repository observer %s failed.", token)

    def _commit(self, changed: bool) -> bool:
        if changed:
            self._notify()
        return changed

    # ------------------------------------------------------------------ reads

    def snapshot(self) -> dict:
        return self._state.to_dict()

    def state(self) -> RootState:
        return self._state.clone()

    @property
    def active_space_id(self) -> str:
        return self._state.active_space_id

    @property
    def filter_mode(self) -> FilterMode:
        return self._state.filter_mode

    @property
    def discovery_offset(self) -> int:
        return self._state.discovery_offset

    @property
    def discovery_limit(self) -> int:
        return self._state.discovery_limit

    @property
    def global_muted(self) -> bool:
        return self._state.global_muted

    def space_ids(self) -> List[str]:
        return [space.id for space in self._state.spaces]

    def get_space(self, space_id: str) -> Optional[Space]:
        space = self._state.space(space_id)
        return None if space is None else _clone_space(space)

    def get_window(self, space_id: str, window_id: str) -> Optional[Window]:
        space = self._state.space(space_id)
        if space is None:
            return None
        window = space.find(window_id)
        return None if window is None else window.clone()

    def find_space_of(self, window_id: str) -> Optional[str]:
        active = self._state.active_space
        if active is not None and active.has(window_id):
            return active.id
        for space in self._state.spaces:
            if space.has(window_id):
                return space.id
        return None

    def visible_windows(self, space_id: str) -> List[Window]:
        """
        Windows rendered in the grid layer of ``space_id``.

        Pinned windows live in the overlay and are left out; the filter mode
        applies to every space except discovery.
        """

        space = self._state.space(space_id)
        if space is None:
            return []
        return [window.clone() for window in self._layout_candidates(space)]

    # ------------------------------------------------------------------ spaces

    def add_space(self, name: str = "", *, layout_mode: LayoutMode = LayoutMode.GRID) -> str:
        space_id = self._unique_space_id()
        label = name.strip() if isinstance(name, str) else ""
        if not label:
            label = f"Space {len(self._state.spaces) + 1}"
        self._state.spaces.append(Space(id=space_id, name=label, layout_mode=layout_mode))
        self._state.active_space_id = space_id
        LOG.debug("Added space %s (%s)", space_id, label)
        self._commit(True)
        return space_id

    def remove_space(self, space_id: str) -> bool:
        if space_id in RESERVED_SPACE_IDS:
            LOG.debug("Refusing to remove reserved space '%s'", space_id)
            return False
        if self._state.space(space_id) is None:
            return False

        remaining = [space for space in self._state.spaces if space.id != space_id]
        if not remaining:
            remaining = [Space(id="default", name="Space 1")]
        self._state.spaces = remaining
        if self._state.space(self._state.active_space_id) is None:
            self._state.active_space_id = remaining[0].id
        return self._commit(True)

    def rename_space(self, space_id: str, name: str) -> bool:
        space = self._state.space(space_id)
        if space is None or space.name == name:
            return False
        space.name = name
        return self._commit(True)

    def switch_space(self, space_id: str) -> bool:
        space = self._state.space(space_id)
        if space is None:
            return False
        changed = self._state.active_space_id != space_id
        self._state.active_space_id = space_id
        if space.id != DISCOVERY_SPACE_ID and space.auto_arrange:
            changed = self._arrange_space(space) or changed
        return self._commit(changed)

    def toggle_auto_arrange(self, space_id: str) -> bool:
        space = self._state.space(space_id)
        if space is None:
            return False
        space.auto_arrange = not space.auto_arrange
        return self._commit(True)

    def set_layout_mode(self, space_id: str, mode: LayoutMode) -> bool:
        space = self._state.space(space_id)
        if space is None or space.layout_mode == mode:
            return False
        space.layout_mode = mode
        if space.auto_arrange:
            self._arrange_space(space)
        return self._commit(True)

    # ------------------------------------------------------------------ windows

    def add_window(self, space_id: str, room: str) -> bool:
        space = self._state.space(space_id)
        room = str(room or "").strip()
        if space is None or not room or space.has(room):
            return False
        window = Window.for_room(room)
        window.is_muted = window.is_muted or self._state.global_muted
        space.windows.append(window)
        self.stacking.assign(space, window.id)
        if space.auto_arrange:
            self._arrange_space(space)
        return self._commit(True)

    def update_window(self, space_id: str, window_id: str, fields: dict) -> bool:
        space = self._state.space(space_id)
        if space is None:
            return False
        window = space.find(window_id)
        if window is None:
            return False
        return self._commit(window.apply(fields or {}))

    def remove_window(self, space_id: str, window_id: str) -> bool:
        space = self._state.space(space_id)
        if space is None or not space.has(window_id):
            return False
        space.windows = [window for window in space.windows if window.id != window_id]
        self.stacking.forget(space, window_id)
        if space.auto_arrange:
            self._arrange_space(space)
        return self._commit(True)

    def bring_to_front(self, space_id: str, window_id: str) -> bool:
        space = self._state.space(space_id)
        if space is None:
            return False
        return self._commit(self.stacking.bring_to_front(space, window_id))

    def move_window_to_space(
        self, window_id: str, target_space_id: str, source_space_id: Optional[str] = None
    ) -> bool:
        return self._transfer(window_id, target_space_id, source_space_id, keep_source=False)

    def copy_window_to_space(
        self, window_id: str, target_space_id: str, source_space_id: Optional[str] = None
    ) -> bool:
        return self._transfer(window_id, target_space_id, source_space_id, keep_source=True)

    def _transfer(
        self,
        window_id: str,
        target_space_id: str,
        source_space_id: Optional[str],
        *,
        keep_source: bool,
    ) -> bool:
        if source_space_id is None:
            source_id = self.find_space_of(window_id)
        else:
            source = self._state.space(source_space_id)
            source_id = source.id if source is not None and source.has(window_id) else None
        target = self._state.space(target_space_id)
        if source_id is None or target is None or source_id == target.id:
            return False
        if target.has(window_id):
            return False
        source = self._state.space(source_id)
        window = source.find(window_id)

        copied = window.clone()
        copied.pinned = False
        copied.pinned_x = copied.pinned_y = None
        copied.pinned_width = copied.pinned_height = None
        target.windows.append(copied)
        target.z_indexes[window_id] = self.stacking.top(target.z_indexes) + 1
        if target.auto_arrange:
            self._arrange_space(target)

        if not keep_source:
            source.windows = [item for item in source.windows if item.id != window_id]
            self.stacking.forget(source, window_id)
        LOG.debug(
            "%s window %s from %s to %s",
            "Copied" if keep_source else "Moved",
            window_id,
            source_id,
            target.id,
        )
        return self._commit(True)

    def replace_windows(
        self,
        space_id: str,
        windows: Iterable[Window],
        *,
        z_indexes: Optional[Dict[str, int]] = None,
    ) -> bool:
        """
        Swap the window list of a space in one step.

        Surviving windows keep their stacking slot unless ``z_indexes`` says
        otherwise; newcomers are stacked above the current maximum in order.
        """

        space = self._state.space(space_id)
        if space is None:
            return False
        self._replace_windows(space, windows, z_indexes)
        return self._commit(True)

    def replace_discovery_page(
        self,
        windows: Iterable[Window],
        offset: int,
        *,
        limit: Optional[int] = None,
    ) -> bool:
        """Swap the discovery windows and move the cursor in one notification."""

        space = self._state.space(DISCOVERY_SPACE_ID)
        if space is None:
            return False
        self._replace_windows(space, windows, None)
        self._state.discovery_offset = max(0, int(offset))
        if limit is not None:
            self._state.discovery_limit = int(limit)
        return self._commit(True)

    def _replace_windows(
        self,
        space: Space,
        windows: Iterable[Window],
        z_indexes: Optional[Dict[str, int]],
    ) -> None:
        space.windows = [window.clone() for window in windows]
        if z_indexes is not None:
            space.z_indexes = {key: int(value) for key, value in z_indexes.items()}
        self.stacking.normalise(space)
        if space.auto_arrange:
            self._arrange_space(space)

    # ------------------------------------------------------------------ layout

    def arrange(self, space_id: Optional[str] = None) -> bool:
        space = self._state.space(space_id or self._state.active_space_id)
        if space is None:
            return False
        return self._commit(self._arrange_space(space))

    def arrange_filtered_windows(self) -> bool:
        return self.arrange(self._state.active_space_id)

    def set_filter_mode(self, mode: FilterMode) -> bool:
        mode = FilterMode(mode)
        if self._state.filter_mode == mode:
            return False
        self._state.filter_mode = mode
        active = self._state.active_space
        if active is not None and active.auto_arrange:
            self._arrange_space(active)
        return self._commit(True)

    def _layout_candidates(self, space: Space) -> List[Window]:
        candidates = [window for window in space.windows if not window.pinned]
        if space.id == DISCOVERY_SPACE_ID:
            return candidates
        mode = self._state.filter_mode
        if mode == FilterMode.ONLINE:
            return [window for window in candidates if window.is_online is True]
        if mode == FilterMode.OFFLINE:
            return [window for window in candidates if window.is_online is False]
        return candidates

    def _arrange_space(self, space: Space) -> bool:
        candidates = self._layout_candidates(space)
        if not candidates:
            return False
        if space.layout_mode == LayoutMode.FREE:
            return self._arrange_uniform(candidates)
        return self._arrange_packed(candidates)

    def _arrange_packed(self, windows: List[Window]) -> bool:
        by_id = {window.id: window for window in windows}
        order = packing_order([(window.id, window.x, window.y) for window in windows])
        cols = columns_for_spans([(window.w, window.h) for window in windows])
        placements = pack_items(
            (PackItem(id=window_id, w=by_id[window_id].w, h=by_id[window_id].h) for window_id in order),
            cols,
        )
        changed = False
        for window_id, (x, y) in placements.items():
            changed = by_id[window_id].apply({"x": x, "y": y}) or changed
        return changed

    def _arrange_uniform(self, windows: List[Window]) -> bool:
        content_height = max(0.0, self.viewport_height - self.toolbar_offset)
        rects = compute_uniform_cell_layout(
            len(windows),
            self.viewport_width,
            content_height,
            top_offset=self.toolbar_offset,
        )
        changed = False
        for window, rect in zip(windows, rects):
            payload = rect.to_dict()
            payload.update({"w": 1, "h": 1})
            changed = window.apply(payload) or changed
        return changed

    def set_viewport(self, width: float, height: float) -> bool:
        width, height = float(width), float(height)
        if (width, height) == (self.viewport_width, self.viewport_height):
            return False
        self.viewport_width, self.viewport_height = width, height
        active = self._state.active_space
        changed = False
        if active is not None and active.auto_arrange and active.layout_mode == LayoutMode.FREE:
            changed = self._arrange_space(active)
        return self._commit(changed)

    # ------------------------------------------------------------------ audio / display

    def set_window_volume(self, space_id: str, window_id: str, volume: float) -> bool:
        level = clamp01(volume)
        return self.update_window(space_id, window_id, {"volume": level, "isMuted": level == 0})

    def toggle_window_mute(self, space_id: str, window_id: str) -> bool:
        window = self.get_window(space_id, window_id)
        if window is None:
            return False
        return self.update_window(space_id, window_id, {"isMuted": not window.is_muted})

    def set_global_muted(self, muted: bool) -> bool:
        muted = bool(muted)
        changed = self._state.global_muted != muted
        self._state.global_muted = muted
        for space in self._state.spaces:
            for window in space.windows:
                changed = window.apply({"isMuted": muted}) or changed
        return self._commit(changed)

    def toggle_global_muted(self) -> bool:
        return self.set_global_muted(not self._state.global_muted)

    def set_window_maximized(self, window_id: str, maximized: bool) -> bool:
        changed = False
        for space in self._state.spaces:
            window = space.find(window_id)
            if window is not None:
                changed = window.apply({"maximized": bool(maximized)}) or changed
        return self._commit(changed)

    # ------------------------------------------------------------------ sync

    def replace_state(self, state: RootState) -> None:
        """Atomically swap the whole state for an already validated one."""

        self._state = state.clone()
        self._commit(True)

    # ------------------------------------------------------------------ helpers

    def _unique_space_id(self) -> str:
        taken = set(self.space_ids())
        while True:
            candidate = self._id_factory()
            if candidate not in taken:
                return candidate


def _clone_space(space: Space) -> Space:
    return Space(
        id=space.id,
        name=space.name,
        windows=[window.clone() for window in space.windows],
        z_indexes=dict(space.z_indexes),
        auto_arrange=space.auto_arrange,
        layout_mode=space.layout_mode,
    )
