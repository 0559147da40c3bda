"""
Paginated discovery feed and the paginator that merges it with pinned windows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

import httpx

from . import RoomwallError
from .models import ALLOWED_LIMITS, DISCOVERY_SPACE_ID, Window
from .repository import SpaceRepository

LOG = logging.getLogger(__name__)

USER_AGENT = "roomwall/0.1"


class FeedError(RoomwallError):
    """Raised when an upstream listing or status endpoint cannot be read."""


@dataclass(frozen=True)
class DiscoveryPage:
    rooms: List[str] = field(default_factory=list)
    total_count: int = 0


class DiscoveryFeed(Protocol):
    async def fetch(self, *, limit: int, offset: int) -> DiscoveryPage:
        ...


class HttpDiscoveryFeed:
    """
    Room listing backed by an HTTP endpoint.

    The endpoint answers ``GET <url>?limit=N&offset=M`` with
    ``{"rooms": [{"username": ...}, ...], "total_count": T}``.
    """

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def fetch(self, *, limit: int, offset: int) -> DiscoveryPage:
        params = {"limit": int(limit), "offset": int(offset)}
        try:
            response = await self._client.get(self.url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FeedError(f"discovery fetch failed: {exc}") from exc

        if not isinstance(data, dict):
            raise FeedError("discovery payload is not an object")
        rooms: List[str] = []
        for entry in data.get("rooms") or []:
            if isinstance(entry, dict):
                name = entry.get("username") or entry.get("room")
            else:
                name = entry
            if isinstance(name, str) and name.strip():
                rooms.append(name.strip())
        try:
            total = max(0, int(data.get("total_count") or 0))
        except (TypeError, ValueError):
            total = 0
        return DiscoveryPage(rooms=rooms, total_count=total)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class PaginatorPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"


class DiscoveryPaginator:
    """
    Load pages of the discovery feed into the reserved discovery space.

    Pinned windows reserve slots: a page of ``limit`` windows holds every
    pinned window first, followed by at most ``limit - pinned`` fresh rooms.
    Only one load runs at a time; calls made while a load is in flight return
    ``False`` without touching the feed.
    """

    def __init__(self, repository: SpaceRepository, feed: DiscoveryFeed) -> None:
        self.repository = repository
        self.feed = feed
        self.phase = PaginatorPhase.IDLE
        self.total_rooms = 0

    @property
    def is_loading(self) -> bool:
        return self.phase == PaginatorPhase.LOADING

    @property
    def limit(self) -> int:
        return self.repository.discovery_limit

    @property
    def offset(self) -> int:
        return self.repository.discovery_offset

    @property
    def current_page(self) -> int:
        return self.offset // max(1, self.limit) + 1

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_rooms / max(1, self.limit)))

    def describe(self) -> dict:
        return {
            "phase": self.phase.value,
            "offset": self.offset,
            "limit": self.limit,
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "totalRooms": self.total_rooms,
        }

    async def load(self) -> bool:
        return await self.load_page(self.offset)

    async def load_page(self, offset: int, *, limit: Optional[int] = None) -> bool:
        if self.is_loading:
            LOG.debug("Discovery load already in flight; ignoring offset %s", offset)
            return False
        self.phase = PaginatorPhase.LOADING
        try:
            return await self._load_page(max(0, int(offset)), limit or self.limit)
        finally:
            self.phase = PaginatorPhase.IDLE

    async def _load_page(self, offset: int, limit: int) -> bool:
        space = self.repository.get_space(DISCOVERY_SPACE_ID)
        if space is None:
            return False
        pinned = [window for window in space.windows if window.pinned]
        available = max(0, limit - len(pinned))

        if available == 0:
            self.repository.replace_discovery_page(pinned, 0, limit=limit)
            return True

        try:
            page = await self.feed.fetch(limit=available, offset=offset)
        except FeedError:
            LOG.warning("Discovery fetch failed at offset %s; showing an empty page", offset, exc_info=True)
            page = DiscoveryPage(rooms=[], total_count=self.total_rooms)

        # The state may have been replaced or re-pinned while the fetch was pending.
        space = self.repository.get_space(DISCOVERY_SPACE_ID)
        if space is None:
            return False
        pinned = [window for window in space.windows if window.pinned]
        available = max(0, limit - len(pinned))
        existing = {window.id: window for window in space.windows}
        pinned_ids = {window.id for window in pinned}

        fresh: List[Window] = []
        seen = set()
        for room in page.rooms:
            if len(fresh) >= available:
                break
            if room in pinned_ids or room in seen:
                continue
            seen.add(room)
            fresh.append(self._fresh_window(room, existing.get(room)))

        self.total_rooms = page.total_count
        self.repository.replace_discovery_page([*pinned, *fresh], offset, limit=limit)
        LOG.info(
            "Loaded discovery offset=%s: %d pinned, %d fresh (of %d requested)",
            offset,
            len(pinned),
            len(fresh),
            available,
        )
        return True

    def _fresh_window(self, room: str, previous: Optional[Window]) -> Window:
        window = Window.for_room(room)
        if previous is not None:
            window.is_online = previous.is_online
            window.is_muted = previous.is_muted
            window.volume = previous.volume
        if self.repository.global_muted:
            window.is_muted = True
        return window

    async def set_limit(self, limit: int) -> bool:
        if limit not in ALLOWED_LIMITS:
            LOG.warning("Ignoring unsupported discovery limit %r", limit)
            return False
        return await self.load_page(0, limit=limit)

    async def next_page(self) -> bool:
        target = self.offset + self.limit
        if self.total_rooms and target >= self.total_rooms:
            return False
        return await self.load_page(target)

    async def prev_page(self) -> bool:
        if self.offset == 0:
            return False
        return await self.load_page(max(0, self.offset - self.limit))

    async def go_to_page(self, page: int) -> bool:
        if page < 1:
            return False
        return await self.load_page((int(page) - 1) * self.limit)
