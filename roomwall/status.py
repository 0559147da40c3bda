"""
Room status polling.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol, Set

import httpx

from .discovery import USER_AGENT
from .repository import SpaceRepository

LOG = logging.getLogger(__name__)


class RoomStatus(str, Enum):
    ONLINE = "online"
    PRIVATE = "private"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass(frozen=True)
class RoomStatusResult:
    status: RoomStatus
    hls_url: Optional[str] = None

    @property
    def is_online(self) -> bool:
        return self.status == RoomStatus.ONLINE

    def to_dict(self) -> dict:
        return {"status": self.status.value, "hlsUrl": self.hls_url}


OFFLINE = RoomStatusResult(RoomStatus.OFFLINE)
ERROR = RoomStatusResult(RoomStatus.ERROR)


def parse_status_payload(data: object) -> RoomStatusResult:
    if not isinstance(data, dict):
        return ERROR
    source = data.get("hls_source")
    if isinstance(source, str) and source:
        return RoomStatusResult(RoomStatus.ONLINE, hls_url=source)
    if data.get("room_status") == "private":
        return RoomStatusResult(RoomStatus.PRIVATE)
    return OFFLINE


class StatusClient(Protocol):
    async def fetch(self, room: str) -> RoomStatusResult:
        ...


class HttpStatusClient:
    """Query ``GET <url>?room=<room>``; transport failures map to ``error``."""

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

    async def fetch(self, room: str) -> RoomStatusResult:
        try:
            response = await self._client.get(self.url, params={"room": room})
            response.raise_for_status()
            return parse_status_payload(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            LOG.warning("Status lookup for '%s' failed: %s", room, exc)
            return ERROR

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class StatusPoller:
    """
    Fire-and-forget status refreshes, one task per window.

    A result is written back only if its window still exists when the
    response arrives.
    """

    def __init__(self, repository: SpaceRepository, client: StatusClient) -> None:
        self.repository = repository
        self.client = client
        self.statuses: Dict[str, RoomStatusResult] = {}
        self._tasks: Set[asyncio.Task] = set()

    def refresh(self, space_id: str, window_id: str) -> Optional[asyncio.Task]:
        window = self.repository.get_window(space_id, window_id)
        if window is None:
            return None
        task = asyncio.create_task(self._poll(space_id, window_id, window.room))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def refresh_space(self, space_id: str) -> List[asyncio.Task]:
        space = self.repository.get_space(space_id)
        if space is None:
            return []
        tasks = [self.refresh(space_id, window.id) for window in space.windows]
        return [task for task in tasks if task is not None]

    async def _poll(self, space_id: str, window_id: str, room: str) -> RoomStatusResult:
        try:
            result = await self.client.fetch(room)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOG.exception("Status client crashed for room '%s'; assuming offline", room)
            result = ERROR

        self.statuses[room] = result
        if not self.repository.update_window(space_id, window_id, {"isOnline": result.is_online}):
            if self.repository.get_window(space_id, window_id) is None:
                LOG.debug("Discarding status for %s/%s; window is gone", space_id, window_id)
        return result

    def status_of(self, room: str) -> RoomStatusResult:
        return self.statuses.get(room, OFFLINE)

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
