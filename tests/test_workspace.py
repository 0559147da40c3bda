import asyncio

from roomwall.config import WorkspaceConfig
from roomwall.discovery import DiscoveryPage
from roomwall.models import DISCOVERY_SPACE_ID, FAVORITE_SPACE_ID
from roomwall.status import RoomStatus, RoomStatusResult
from roomwall.sync import MemoryStorage
from roomwall.workspace import Workspace


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def now(self) -> float:
        return self.value

    def advance(self, delta: float) -> None:
        self.value += float(delta)


class ListingFeed:
    def __init__(self, rooms) -> None:
        self.rooms = list(rooms)

    async def fetch(self, *, limit: int, offset: int) -> DiscoveryPage:
        return DiscoveryPage(rooms=self.rooms[offset : offset + limit], total_count=len(self.rooms))


class OnlineClient:
    async def fetch(self, room: str) -> RoomStatusResult:
        return RoomStatusResult(RoomStatus.ONLINE if room.endswith("1") else RoomStatus.OFFLINE)


def _workspace(storage=None, clock=None, context_id=None) -> Workspace:
    return Workspace(
        WorkspaceConfig(debounce_seconds=0.1),
        feed=ListingFeed(f"room{index}" for index in range(30)),
        status_client=OnlineClient(),
        storage=storage,
        monotonic=(clock or FakeClock()).now,
        context_id=context_id,
    )


def test_switching_to_discovery_loads_page_and_statuses() -> None:
    workspace = _workspace()

    async def scenario():
        await workspace.switch_space(DISCOVERY_SPACE_ID)
        await workspace.poller.wait()

    asyncio.run(scenario())
    view = workspace.view(DISCOVERY_SPACE_ID)
    assert len(view["windows"]) == 12
    by_id = {entry["id"]: entry for entry in view["windows"]}
    assert by_id["room1"]["isOnline"] is True
    assert by_id["room1"]["status"] == "online"
    assert by_id["room2"]["isOnline"] is False


def test_gesture_on_pinned_window_moves_overlay_only() -> None:
    clock = FakeClock()
    workspace = _workspace(clock=clock)
    asyncio.run(workspace.load_discovery())
    workspace.overlay.toggle_pin("room3")
    grid_before = workspace.repository.get_window(DISCOVERY_SPACE_ID, "room3").layout()

    workspace.begin_gesture(DISCOVERY_SPACE_ID, "room3")
    workspace.gestures.update(DISCOVERY_SPACE_ID, "room3", {"x": 410, "y": 90})
    clock.advance(0.2)
    assert workspace.gestures.poll() == 1

    window = workspace.repository.get_window(DISCOVERY_SPACE_ID, "room3")
    assert (window.pinned_x, window.pinned_y) == (410, 90)
    assert window.layout() == grid_before
    assert workspace.view()["overlay"][0]["id"] == "room3"


def test_gesture_in_grid_space_updates_window() -> None:
    clock = FakeClock()
    workspace = _workspace(clock=clock)
    space_id = workspace.repository.add_space("Mine")
    workspace.repository.add_window(space_id, "alice")
    workspace.repository.add_window(space_id, "bob")

    workspace.begin_gesture(space_id, "alice")
    for width in (900, 950, 1000):
        workspace.gestures.update(space_id, "alice", {"width": width})
    clock.advance(0.5)
    workspace.gestures.poll()

    space = workspace.repository.get_space(space_id)
    assert space.find("alice").width == 1000
    assert space.z_indexes["alice"] == max(space.z_indexes.values())
    assert workspace.gestures.writes == 1


def test_two_workspaces_share_state() -> None:
    storage = MemoryStorage()
    first = _workspace(storage=storage, context_id="first")
    second = _workspace(storage=storage, context_id="second")
    first.start()
    second.start()

    first.add_window(FAVORITE_SPACE_ID, "alice")
    assert second.repository.get_window(FAVORITE_SPACE_ID, "alice") is not None

    asyncio.run(first.aclose())
    asyncio.run(second.aclose())


def test_describe_reports_discovery_cursor() -> None:
    workspace = _workspace()
    asyncio.run(workspace.set_discovery_limit(6))
    asyncio.run(workspace.next_discovery_page())

    description = workspace.describe()
    assert description["discovery"]["offset"] == 6
    assert description["discovery"]["totalPages"] == 5
    assert description["state"]["discoveryLimit"] == 6
    assert asyncio.run(workspace.prev_discovery_page()) is True
