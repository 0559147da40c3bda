import json

from fastapi.testclient import TestClient

from roomwall.api.server import create_app
from roomwall.config import WorkspaceConfig
from roomwall.discovery import DiscoveryPage
from roomwall.models import DISCOVERY_SPACE_ID, FAVORITE_SPACE_ID
from roomwall.repository import SpaceRepository
from roomwall.status import RoomStatus, RoomStatusResult
from roomwall.sync import STORAGE_KEY, encode_snapshot
from roomwall.workspace import Workspace


class ListingFeed:
    async def fetch(self, *, limit: int, offset: int) -> DiscoveryPage:
        rooms = [f"room{index}" for index in range(offset, min(offset + limit, 40))]
        return DiscoveryPage(rooms=rooms, total_count=40)


class OfflineClient:
    async def fetch(self, room: str) -> RoomStatusResult:
        return RoomStatusResult(RoomStatus.OFFLINE)


def _client() -> TestClient:
    workspace = Workspace(
        WorkspaceConfig(debounce_seconds=0.0),
        feed=ListingFeed(),
        status_client=OfflineClient(),
        context_id="api",
    )
    return TestClient(create_app(workspace=workspace))


def test_health_and_state() -> None:
    with _client() as client:
        assert client.get("/healthz").json() == {"status": "ok", "profile": "default"}
        state = client.get("/api/state").json()
        assert state["state"]["activeSpaceId"] == DISCOVERY_SPACE_ID
        assert "default" in client.get("/profiles").json()["profiles"]


def test_space_crud() -> None:
    with _client() as client:
        created = client.post("/spaces", json={"name": "Evening", "layoutMode": "free"}).json()
        space_id = created["spaceId"]
        assert client.patch(f"/spaces/{space_id}", json={"name": "Night"}).json() == {"ok": True}

        state = client.get("/api/state").json()["state"]
        space = next(item for item in state["spaces"] if item["id"] == space_id)
        assert space["name"] == "Night"
        assert space["layoutMode"] == "free"

        assert client.delete(f"/spaces/{DISCOVERY_SPACE_ID}").json()["ok"] is False
        removed = client.delete(f"/spaces/{space_id}").json()
        assert removed == {"ok": True, "activeSpaceId": DISCOVERY_SPACE_ID}
        assert client.get(f"/spaces/{space_id}/view").status_code == 404


def test_window_endpoints() -> None:
    with _client() as client:
        assert client.post(f"/spaces/{FAVORITE_SPACE_ID}/windows", json={"room": "alice"}).json()["ok"] is True
        assert client.post(f"/spaces/{FAVORITE_SPACE_ID}/windows", json={"room": " "}).status_code == 422

        patched = client.patch(
            f"/spaces/{FAVORITE_SPACE_ID}/windows/alice",
            json={"volume": 0.7, "isMuted": False},
        )
        assert patched.json() == {"ok": True}

        view = client.get(f"/spaces/{FAVORITE_SPACE_ID}/view").json()
        window = view["windows"][0]
        assert (window["volume"], window["isMuted"]) == (0.7, False)

        moved = client.post(
            f"/spaces/{FAVORITE_SPACE_ID}/windows/alice/move",
            json={"targetSpaceId": DISCOVERY_SPACE_ID},
        )
        assert moved.json() == {"ok": True}
        assert client.delete(f"/spaces/{DISCOVERY_SPACE_ID}/windows/alice").json() == {"ok": True}


def test_layout_gesture_endpoint() -> None:
    with _client() as client:
        client.post(f"/spaces/{FAVORITE_SPACE_ID}/windows", json={"room": "alice"})
        url = f"/spaces/{FAVORITE_SPACE_ID}/windows/alice/layout"
        client.post(url, json={"phase": "begin", "width": 900})
        client.post(url, json={"phase": "update", "width": 950})
        ended = client.post(url, json={"phase": "end", "width": 1000}).json()

        assert ended == {"ok": True, "phase": "idle"}
        view = client.get(f"/spaces/{FAVORITE_SPACE_ID}/view").json()
        assert view["windows"][0]["width"] == 1000


def test_discovery_and_pinning() -> None:
    with _client() as client:
        loaded = client.post("/discovery/limit", json={"limit": 6}).json()
        assert loaded["ok"] is True
        assert loaded["discovery"]["totalPages"] == 7
        assert client.post("/discovery/limit", json={"limit": 5}).status_code == 400

        assert client.post("/pinned/room2/toggle").json() == {"ok": True}
        assert client.patch("/pinned/room2", json={"x": 333}).json() == {"ok": True}
        overlay = client.get("/pinned").json()["overlay"]
        assert overlay[0]["x"] == 333

        page = client.post("/discovery/next").json()
        assert page["discovery"]["offset"] == 6
        ids = [item["id"] for item in client.get(f"/spaces/{DISCOVERY_SPACE_ID}/view").json()["windows"]]
        assert ids == ["room6", "room7", "room8", "room9", "room10"]

        created = client.post("/pinned/space").json()
        assert created["ok"] is True
        assert client.post("/discovery/page", json={"page": 3}).json()["discovery"]["currentPage"] == 3


def test_filter_and_global_mute() -> None:
    with _client() as client:
        assert client.post("/filter", json={"mode": "online"}).json() == {"ok": True}
        assert client.post("/filter", json={"mode": "sideways"}).status_code == 422

        assert client.post("/audio/global-mute", json={"muted": True}).json()["globalMuted"] is True
        assert client.post("/audio/global-mute", json={}).json()["globalMuted"] is False


def test_storage_event_replaces_state() -> None:
    other = SpaceRepository()
    other.add_window(FAVORITE_SPACE_ID, "remote")
    payload = encode_snapshot(other.snapshot())

    with _client() as client:
        applied = client.post("/storage", json={"key": STORAGE_KEY, "newValue": payload, "source": "tab-2"})
        assert applied.json() == {"ok": True}
        view = client.get(f"/spaces/{FAVORITE_SPACE_ID}/view").json()
        assert [item["id"] for item in view["windows"]] == ["remote"]

        rejected = client.post("/storage", json={"key": STORAGE_KEY, "newValue": "{bad", "source": "tab-2"})
        assert rejected.json() == {"ok": False}


def test_realtime_pushes_state() -> None:
    with _client() as client:
        with client.websocket_connect("/realtime") as websocket:
            initial = websocket.receive_json()
            assert initial["type"] == "state"
            assert initial["payload"]["state"]["activeSpaceId"] == DISCOVERY_SPACE_ID

            websocket.send_text(json.dumps({"type": "ping"}))
            assert websocket.receive_json()["type"] == "pong"

            client.post(f"/spaces/{FAVORITE_SPACE_ID}/windows", json={"room": "alice"})
            update = websocket.receive_json()
            assert update["type"] == "state"


def test_move_uses_space_from_path() -> None:
    with _client() as client:
        target = client.post("/spaces", json={"name": "Target"}).json()["spaceId"]
        other = client.post("/spaces", json={"name": "Other"}).json()["spaceId"]
        for space_id in (FAVORITE_SPACE_ID, other):
            client.post(f"/spaces/{space_id}/windows", json={"room": "alice"})
        assert client.post(f"/spaces/{other}/activate").json()["activeSpaceId"] == other

        moved = client.post(
            f"/spaces/{FAVORITE_SPACE_ID}/windows/alice/move",
            json={"targetSpaceId": target},
        )
        assert moved.json() == {"ok": True}

        def ids(space_id):
            return [item["id"] for item in client.get(f"/spaces/{space_id}/view").json()["windows"]]

        assert ids(FAVORITE_SPACE_ID) == []
        assert ids(other) == ["alice"]
        assert ids(target) == ["alice"]

        missing = client.post(
            f"/spaces/{target}/windows/bob/copy",
            json={"targetSpaceId": FAVORITE_SPACE_ID},
        )
        assert missing.json() == {"ok": False}
