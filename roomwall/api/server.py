"""
FastAPI control surface for the roomwall workspace engine.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..config import WorkspaceConfig, read_profiles
from ..models import ALLOWED_LIMITS, FilterMode, LayoutMode
from ..sync import StorageEvent
from ..workspace import Workspace
from . import schemas

LOG = logging.getLogger(__name__)


class RealtimeManager:
    """Push state snapshots to WebSocket clients and drive the gesture tick."""

    def __init__(self, workspace: Workspace, *, tick_hz: float = 40.0) -> None:
        self.workspace = workspace
        self.tick_interval = 1.0 / max(1.0, float(tick_hz))
        self._sessions: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._tick_task: Optional[asyncio.Task] = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscription: Optional[int] = None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._subscription = self.workspace.repository.subscribe(self._handle_state_change)
        self._tick_task = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._tick_task:
            self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
            self._tick_task = None

        if self._subscription is not None:
            self.workspace.repository.unsubscribe(self._subscription)
            self._subscription = None

        self._loop = None

    def _handle_state_change(self, snapshot: Dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._schedule_broadcast)
        except RuntimeError:
            LOG.debug("State broadcast scheduling failed; loop is shutting down.", exc_info=True)

    def _schedule_broadcast(self) -> None:
        if not self._running or not self._sessions:
            return

        async def _broadcast() -> None:
            try:
                await self.broadcast({"type": "state", "payload": self.workspace.describe()})
            except Exception:  # pragma: no cover
                LOG.exception("Failed to broadcast state snapshot.")

        asyncio.create_task(_broadcast())

    async def _tick_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.tick_interval)
                if not self._running:
                    break
                try:
                    self.workspace.gestures.poll()
                except Exception:  # pragma: no cover
                    LOG.exception("Gesture poll failed.")
        except asyncio.CancelledError:
            pass
        finally:
            self._tick_task = None

    async def broadcast(self, payload: Dict[str, Any]) -> None:
        async with self._lock:
            sessions = list(self._sessions)
        stale = []
        for websocket in sessions:
            try:
                await websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError):
                stale.append(websocket)
        if stale:
            async with self._lock:
                for websocket in stale:
                    self._sessions.discard(websocket)

    async def run(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._sessions.add(websocket)
        try:
            await websocket.send_json({"type": "state", "payload": self.workspace.describe()})
            while True:
                message = await websocket.receive_json()
                reply = await self.handle_message(message)
                if reply is not None:
                    await websocket.send_json(reply)
        except WebSocketDisconnect:
            LOG.debug("WebSocket client disconnected")
        finally:
            async with self._lock:
                self._sessions.discard(websocket)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict):
            return {"type": "error", "detail": "message must be an object"}
        kind = str(message.get("type") or "").lower()
        if kind == "ping":
            return {"type": "pong", "ts": time.time()}
        if kind == "layout":
            space_id = str(message.get("spaceId") or "")
            window_id = str(message.get("windowId") or "")
            apply_gesture(self.workspace, space_id, window_id, message)
            return None
        if kind == "bring-to-front":
            self.workspace.bring_to_front(str(message.get("spaceId") or ""), str(message.get("windowId") or ""))
            return None
        return {"type": "error", "detail": f"unsupported message type '{kind}'"}


def apply_gesture(workspace: Workspace, space_id: str, window_id: str, payload: Dict[str, Any]) -> None:
    phase = str(payload.get("phase") or "update").lower()
    if phase == "begin":
        workspace.begin_gesture(space_id, window_id)
    layout = {key: payload.get(key) for key in ("x", "y", "w", "h", "width", "height")}
    workspace.gestures.update(space_id, window_id, layout)
    if phase == "end":
        workspace.gestures.end(space_id, window_id)


def create_app(
    *,
    workspace: Optional[Workspace] = None,
    config: Optional[WorkspaceConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
    profiles_path: Optional[str] = None,
) -> FastAPI:
    active = workspace or Workspace(config)
    realtime = RealtimeManager(active)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        active.start()
        await realtime.start()
        try:
            if lifespan is not None:
                async with lifespan(app):
                    yield
            else:
                yield
        finally:
            await realtime.stop()
            await active.aclose()

    app = FastAPI(title="roomwall workspace API", lifespan=app_lifespan)
    app.state.workspace = active
    app.state.realtime = realtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    repository = active.repository

    @app.websocket("/realtime")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await realtime.run(websocket)

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "profile": active.config.profile}

    @app.get("/profiles")
    async def list_profiles() -> dict:
        return {"profiles": read_profiles(profiles_path)}

    @app.get("/api/state")
    async def get_full_state() -> dict:
        return active.describe()

    @app.get("/spaces/{space_id}/view")
    async def get_view(space_id: str) -> dict:
        if repository.get_space(space_id) is None:
            raise HTTPException(status_code=404, detail=f"Space '{space_id}' not found")
        return active.view(space_id)

    # ---------------------------------------------------------------- spaces

    @app.post("/spaces")
    async def create_space(payload: schemas.CreateSpaceRequest) -> dict:
        space_id = repository.add_space(payload.name, layout_mode=LayoutMode(payload.layoutMode))
        return {"ok": True, "spaceId": space_id}

    @app.delete("/spaces/{space_id}")
    async def delete_space(space_id: str) -> dict:
        return {"ok": repository.remove_space(space_id), "activeSpaceId": repository.active_space_id}

    @app.patch("/spaces/{space_id}")
    async def rename_space(space_id: str, payload: schemas.RenameSpaceRequest) -> dict:
        return {"ok": repository.rename_space(space_id, payload.name)}

    @app.post("/spaces/{space_id}/activate")
    async def activate_space(space_id: str) -> dict:
        return {"ok": await active.switch_space(space_id), "activeSpaceId": repository.active_space_id}

    @app.post("/spaces/{space_id}/auto-arrange")
    async def toggle_auto_arrange(space_id: str) -> dict:
        return {"ok": repository.toggle_auto_arrange(space_id)}

    @app.post("/spaces/{space_id}/arrange")
    async def arrange_space(space_id: str) -> dict:
        return {"ok": repository.arrange(space_id)}

    # ---------------------------------------------------------------- windows

    @app.post("/spaces/{space_id}/windows")
    async def add_window(space_id: str, payload: schemas.AddWindowRequest) -> dict:
        return {"ok": active.add_window(space_id, payload.room)}

    @app.patch("/spaces/{space_id}/windows/{window_id}")
    async def update_window(space_id: str, window_id: str, payload: schemas.WindowUpdateRequest) -> dict:
        fields = payload.model_dump(exclude_unset=True)
        return {"ok": repository.update_window(space_id, window_id, fields)}

    @app.delete("/spaces/{space_id}/windows/{window_id}")
    async def remove_window(space_id: str, window_id: str) -> dict:
        removed = repository.remove_window(space_id, window_id)
        if removed:
            active.gestures.cancel(space_id, window_id)
        return {"ok": removed}

    @app.post("/spaces/{space_id}/windows/{window_id}/front")
    async def bring_to_front(space_id: str, window_id: str) -> dict:
        return {"ok": active.bring_to_front(space_id, window_id)}

    @app.post("/spaces/{space_id}/windows/{window_id}/move")
    async def move_window(space_id: str, window_id: str, payload: schemas.MoveWindowRequest) -> dict:
        return {"ok": repository.move_window_to_space(window_id, payload.targetSpaceId, space_id)}

    @app.post("/spaces/{space_id}/windows/{window_id}/copy")
    async def copy_window(space_id: str, window_id: str, payload: schemas.MoveWindowRequest) -> dict:
        return {"ok": repository.copy_window_to_space(window_id, payload.targetSpaceId, space_id)}

    @app.post("/spaces/{space_id}/windows/{window_id}/layout")
    async def update_layout(space_id: str, window_id: str, payload: schemas.LayoutUpdateRequest) -> dict:
        apply_gesture(active, space_id, window_id, payload.model_dump())
        return {"ok": True, "phase": active.gestures.phase(space_id, window_id).value}

    # ---------------------------------------------------------------- pinned overlay

    @app.get("/pinned")
    async def list_pinned() -> dict:
        return {"overlay": active.overlay.overlay()}

    @app.post("/pinned/{window_id}/toggle")
    async def toggle_pin(window_id: str) -> dict:
        return {"ok": active.overlay.toggle_pin(window_id)}

    @app.patch("/pinned/{window_id}")
    async def update_pinned(window_id: str, payload: schemas.PinnedGeometryRequest) -> dict:
        return {"ok": active.overlay.update_pinned_window(window_id, payload.model_dump(exclude_none=True))}

    @app.post("/pinned/space")
    async def space_from_pinned() -> dict:
        space_id = active.overlay.create_space_from_pinned()
        return {"ok": space_id is not None, "spaceId": space_id}

    # ---------------------------------------------------------------- discovery

    @app.get("/discovery")
    async def discovery_state() -> dict:
        return active.paginator.describe()

    @app.post("/discovery/page")
    async def discovery_page(payload: schemas.DiscoveryPageRequest) -> dict:
        loaded = await active.load_discovery(offset=payload.offset, page=payload.page)
        return {"ok": loaded, "discovery": active.paginator.describe()}

    @app.post("/discovery/limit")
    async def discovery_limit(payload: schemas.DiscoveryLimitRequest) -> dict:
        if payload.limit not in ALLOWED_LIMITS:
            raise HTTPException(status_code=400, detail=f"limit must be one of {list(ALLOWED_LIMITS)}")
        loaded = await active.set_discovery_limit(payload.limit)
        return {"ok": loaded, "discovery": active.paginator.describe()}

    @app.post("/discovery/next")
    async def discovery_next() -> dict:
        return {"ok": await active.next_discovery_page(), "discovery": active.paginator.describe()}

    @app.post("/discovery/prev")
    async def discovery_prev() -> dict:
        return {"ok": await active.prev_discovery_page(), "discovery": active.paginator.describe()}

    # ---------------------------------------------------------------- filter / audio / storage

    @app.post("/filter")
    async def set_filter(payload: schemas.FilterRequest) -> dict:
        return {"ok": active.set_filter_mode(FilterMode(payload.mode))}

    @app.post("/audio/global-mute")
    async def global_mute(payload: schemas.GlobalMuteRequest) -> dict:
        if payload.muted is None:
            changed = repository.toggle_global_muted()
        else:
            changed = repository.set_global_muted(payload.muted)
        return {"ok": changed, "globalMuted": repository.global_muted}

    @app.post("/storage")
    async def storage_event(payload: schemas.StorageEventRequest) -> dict:
        event = StorageEvent(key=payload.key, new_value=payload.newValue, source=payload.source)
        return {"ok": active.synchronizer.handle_event(event)}

    return app
