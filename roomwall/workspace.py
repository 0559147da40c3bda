"""
Composition root wiring the workspace components together.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from .config import WorkspaceConfig
from .discovery import DiscoveryFeed, DiscoveryPaginator, HttpDiscoveryFeed
from .gestures import LayoutCommitter, MonotonicCallable
from .models import ALLOWED_LIMITS, DISCOVERY_SPACE_ID, FilterMode, RootState
from .pinned import PinnedOverlayManager
from .repository import SpaceRepository
from .status import HttpStatusClient, StatusClient, StatusPoller
from .sync import CrossTabSynchronizer, FileStorage, MemoryStorage

LOG = logging.getLogger(__name__)


class Workspace:
    """
    One client context: a repository plus everything that feeds or reads it.

    Collaborators are created from ``config`` unless passed in explicitly,
    which is how tests swap in fake feeds, clocks and shared storages.
    """

    def __init__(
        self,
        config: Optional[WorkspaceConfig] = None,
        *,
        repository: Optional[SpaceRepository] = None,
        feed: Optional[DiscoveryFeed] = None,
        status_client: Optional[StatusClient] = None,
        storage: Optional[MemoryStorage] = None,
        monotonic: Optional[MonotonicCallable] = None,
        context_id: Optional[str] = None,
    ) -> None:
        self.config = config or WorkspaceConfig()
        if repository is None:
            limit = self.config.default_limit
            state = RootState(discovery_limit=limit if limit in ALLOWED_LIMITS else RootState().discovery_limit)
            repository = SpaceRepository(
                state,
                viewport_width=self.config.viewport_width,
                viewport_height=self.config.viewport_height,
                toolbar_offset=self.config.toolbar_offset,
            )
        self.repository = repository
        self.overlay = PinnedOverlayManager(repository)

        self.feed = feed or HttpDiscoveryFeed(self.config.discovery_url, timeout=self.config.request_timeout)
        self.paginator = DiscoveryPaginator(repository, self.feed)
        self.status_client = status_client or HttpStatusClient(
            self.config.status_url, timeout=self.config.request_timeout
        )
        self.poller = StatusPoller(repository, self.status_client)

        if storage is None:
            storage = FileStorage(self.config.storage_path) if self.config.storage_path else MemoryStorage()
        self.storage = storage
        self.synchronizer = CrossTabSynchronizer(repository, storage, context_id=context_id)

        self.gestures = LayoutCommitter(
            self.commit_layout,
            current=self.current_layout,
            delay=self.config.debounce_seconds,
            monotonic=monotonic,
        )

    # ------------------------------------------------------------------ lifecycle

    def start(self) -> None:
        if self.synchronizer.restore():
            LOG.info("Restored persisted workspace state")
        self.synchronizer.start()

    async def aclose(self) -> None:
        self.gestures.flush()
        self.synchronizer.stop()
        for client in (self.feed, self.status_client):
            closer = getattr(client, "aclose", None)
            if closer is not None:
                await closer()

    # ------------------------------------------------------------------ triggers

    async def switch_space(self, space_id: str) -> bool:
        changed = self.repository.switch_space(space_id)
        if self.repository.active_space_id != space_id:
            return False
        if space_id == DISCOVERY_SPACE_ID:
            await self.load_discovery()
        return changed

    async def load_discovery(self, *, offset: Optional[int] = None, page: Optional[int] = None) -> bool:
        if page is not None:
            loaded = await self.paginator.go_to_page(page)
        elif offset is not None:
            loaded = await self.paginator.load_page(offset)
        else:
            loaded = await self.paginator.load()
        if loaded:
            self.poller.refresh_space(DISCOVERY_SPACE_ID)
        return loaded

    async def set_discovery_limit(self, limit: int) -> bool:
        loaded = await self.paginator.set_limit(limit)
        if loaded:
            self.poller.refresh_space(DISCOVERY_SPACE_ID)
        return loaded

    async def next_discovery_page(self) -> bool:
        loaded = await self.paginator.next_page()
        if loaded:
            self.poller.refresh_space(DISCOVERY_SPACE_ID)
        return loaded

    async def prev_discovery_page(self) -> bool:
        loaded = await self.paginator.prev_page()
        if loaded:
            self.poller.refresh_space(DISCOVERY_SPACE_ID)
        return loaded

    def set_filter_mode(self, mode: FilterMode) -> bool:
        return self.repository.set_filter_mode(FilterMode(mode))

    def add_window(self, space_id: str, room: str) -> bool:
        added = self.repository.add_window(space_id, room)
        if added:
            self._schedule_status(space_id, [str(room).strip()])
        return added

    def _schedule_status(self, space_id: str, window_ids: Iterable[str]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            LOG.debug("No running loop; status refresh for %s deferred", space_id)
            return
        for window_id in window_ids:
            self.poller.refresh(space_id, window_id)

    # ------------------------------------------------------------------ gestures

    def bring_to_front(self, space_id: str, window_id: str) -> bool:
        window = self.repository.get_window(space_id, window_id)
        if window is None:
            return False
        if window.pinned and space_id == DISCOVERY_SPACE_ID:
            return self.overlay.bring_to_front(window_id)
        return self.repository.bring_to_front(space_id, window_id)

    def begin_gesture(self, space_id: str, window_id: str) -> None:
        if self.repository.get_window(space_id, window_id) is None:
            return
        self.bring_to_front(space_id, window_id)
        self.gestures.begin(space_id, window_id)

    def current_layout(self, space_id: str, window_id: str) -> Optional[dict]:
        window = self.repository.get_window(space_id, window_id)
        if window is None:
            return None
        if window.pinned and space_id == DISCOVERY_SPACE_ID:
            return {
                "x": window.pinned_x,
                "y": window.pinned_y,
                "width": window.pinned_width,
                "height": window.pinned_height,
            }
        return window.layout()

    def commit_layout(self, space_id: str, window_id: str, fields: dict) -> bool:
        window = self.repository.get_window(space_id, window_id)
        if window is None:
            return False
        if window.pinned and space_id == DISCOVERY_SPACE_ID:
            return self.overlay.update_pinned_window(window_id, fields)
        return self.repository.update_window(space_id, window_id, fields)

    # ------------------------------------------------------------------ views

    def view(self, space_id: Optional[str] = None) -> dict:
        """Derived render state for one space plus the floating overlay."""

        target = space_id or self.repository.active_space_id
        space = self.repository.get_space(target)
        windows: List[dict] = []
        if space is not None:
            for window in self.repository.visible_windows(target):
                entry = window.to_dict()
                entry["zIndex"] = space.z_indexes.get(window.id, 0)
                entry["status"] = self.poller.status_of(window.room).status.value
                windows.append(entry)
        return {
            "spaceId": target,
            "windows": windows,
            "overlay": self.overlay.overlay(),
        }

    def describe(self) -> dict:
        return {
            "state": self.repository.snapshot(),
            "discovery": self.paginator.describe(),
            "view": self.view(),
        }
