import asyncio

import httpx

from roomwall.models import FAVORITE_SPACE_ID
from roomwall.repository import SpaceRepository
from roomwall.status import (
    ERROR,
    HttpStatusClient,
    RoomStatus,
    RoomStatusResult,
    StatusPoller,
    parse_status_payload,
)


class FakeStatusClient:
    def __init__(self, statuses) -> None:
        self.statuses = statuses
        self.calls = []

    async def fetch(self, room: str) -> RoomStatusResult:
        self.calls.append(room)
        result = self.statuses[room]
        if isinstance(result, Exception):
            raise result
        return result


def test_parse_status_payload() -> None:
    online = parse_status_payload({"hls_source": "https://cdn.test/a.m3u8", "room_status": "public"})
    assert online.status == RoomStatus.ONLINE
    assert online.is_online is True
    assert online.to_dict() == {"status": "online", "hlsUrl": "https://cdn.test/a.m3u8"}

    assert parse_status_payload({"room_status": "private"}).status == RoomStatus.PRIVATE
    assert parse_status_payload({"hls_source": ""}).status == RoomStatus.OFFLINE
    assert parse_status_payload(["nope"]) is ERROR


def test_poller_writes_online_flag() -> None:
    repo = SpaceRepository()
    repo.add_window(FAVORITE_SPACE_ID, "alice")
    repo.add_window(FAVORITE_SPACE_ID, "bob")
    client = FakeStatusClient(
        {
            "alice": RoomStatusResult(RoomStatus.ONLINE, hls_url="https://cdn.test/alice.m3u8"),
            "bob": RoomStatusResult(RoomStatus.PRIVATE),
        }
    )
    poller = StatusPoller(repo, client)

    async def scenario():
        tasks = poller.refresh_space(FAVORITE_SPACE_ID)
        await poller.wait()
        return tasks

    tasks = asyncio.run(scenario())
    assert len(tasks) == 2
    assert repo.get_window(FAVORITE_SPACE_ID, "alice").is_online is True
    assert repo.get_window(FAVORITE_SPACE_ID, "bob").is_online is False
    assert poller.status_of("alice").hls_url == "https://cdn.test/alice.m3u8"
    assert poller.status_of("unknown").status == RoomStatus.OFFLINE


def test_poller_discards_results_for_removed_windows() -> None:
    repo = SpaceRepository()
    repo.add_window(FAVORITE_SPACE_ID, "alice")

    class GatedClient:
        def __init__(self) -> None:
            self.gate = asyncio.Event()

        async def fetch(self, room: str) -> RoomStatusResult:
            await self.gate.wait()
            return RoomStatusResult(RoomStatus.ONLINE)

    async def scenario():
        client = GatedClient()
        poller = StatusPoller(repo, client)
        poller.refresh(FAVORITE_SPACE_ID, "alice")
        await asyncio.sleep(0)
        repo.remove_window(FAVORITE_SPACE_ID, "alice")
        client.gate.set()
        await poller.wait()

    asyncio.run(scenario())
    assert repo.get_window(FAVORITE_SPACE_ID, "alice") is None


def test_poller_maps_client_crash_to_error() -> None:
    repo = SpaceRepository()
    repo.add_window(FAVORITE_SPACE_ID, "alice")
    repo.update_window(FAVORITE_SPACE_ID, "alice", {"isOnline": True})
    poller = StatusPoller(repo, FakeStatusClient({"alice": RuntimeError("boom")}))

    async def scenario():
        poller.refresh(FAVORITE_SPACE_ID, "alice")
        await poller.wait()

    asyncio.run(scenario())
    assert poller.status_of("alice") is ERROR
    assert repo.get_window(FAVORITE_SPACE_ID, "alice").is_online is False


def test_refresh_unknown_window_returns_none() -> None:
    poller = StatusPoller(SpaceRepository(), FakeStatusClient({}))
    assert poller.refresh(FAVORITE_SPACE_ID, "ghost") is None
    assert poller.refresh_space("missing") == []


def test_http_status_client() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        room = request.url.params["room"]
        if room == "broken":
            return httpx.Response(500)
        return httpx.Response(200, json={"hls_source": f"https://cdn.test/{room}.m3u8"})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        status = HttpStatusClient("http://status.test/api/status", client=client)
        try:
            return await status.fetch("alice"), await status.fetch("broken")
        finally:
            await client.aclose()

    alice, broken = asyncio.run(scenario())
    assert alice.hls_url == "https://cdn.test/alice.m3u8"
    assert broken is ERROR
