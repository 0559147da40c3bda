"""
Workspace data model.

Attributes are snake_case in Python and camelCase on the wire so snapshots
stay compatible with the persisted ``spaces-storage`` payload.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

DISCOVERY_SPACE_ID = "discovery"
FAVORITE_SPACE_ID = "favorite"
RESERVED_SPACE_IDS = frozenset({DISCOVERY_SPACE_ID, FAVORITE_SPACE_ID})

ALLOWED_LIMITS = (6, 12, 24)
DEFAULT_LIMIT = 12

DEFAULT_WINDOW_X = 50
DEFAULT_WINDOW_Y = 50
DEFAULT_WINDOW_WIDTH = 800
DEFAULT_WINDOW_HEIGHT = 600
DEFAULT_VOLUME = 0.5


class FilterMode(str, Enum):
    ALL = "all"
    ONLINE = "online"
    OFFLINE = "offline"


class LayoutMode(str, Enum):
    GRID = "grid"
    FREE = "free"


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _optional_bool(value) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _number(value, default: float) -> float:
    try:
        return float(value if value is not None else default)
    except (TypeError, ValueError):
        return float(default)


def _span(value) -> int:
    try:
        return max(1, int(value if value is not None else 1))
    except (TypeError, ValueError):
        return 1


# wire name -> attribute name
WINDOW_FIELDS = {
    "room": "room",
    "x": "x",
    "y": "y",
    "w": "w",
    "h": "h",
    "width": "width",
    "height": "height",
    "pinned": "pinned",
    "isOnline": "is_online",
    "isMuted": "is_muted",
    "volume": "volume",
    "maximized": "maximized",
    "pinnedX": "pinned_x",
    "pinnedY": "pinned_y",
    "pinnedWidth": "pinned_width",
    "pinnedHeight": "pinned_height",
}

LAYOUT_FIELDS = ("x", "y", "w", "h", "width", "height")
PINNED_GEOMETRY_FIELDS = ("pinnedX", "pinnedY", "pinnedWidth", "pinnedHeight")


@dataclass
class Window:
    id: str
    room: str
    x: float = DEFAULT_WINDOW_X
    y: float = DEFAULT_WINDOW_Y
    w: int = 1
    h: int = 1
    width: float = DEFAULT_WINDOW_WIDTH
    height: float = DEFAULT_WINDOW_HEIGHT
    pinned: bool = False
    is_online: Optional[bool] = None
    is_muted: bool = True
    volume: float = DEFAULT_VOLUME
    maximized: bool = False
    pinned_x: Optional[float] = None
    pinned_y: Optional[float] = None
    pinned_width: Optional[float] = None
    pinned_height: Optional[float] = None

    @classmethod
    def for_room(cls, room: str) -> "Window":
        return cls(id=room, room=room)

    def to_dict(self) -> dict:
        payload = {
            "id": self.id,
            "room": self.room,
            "x": self.x,
            "y": self.y,
            "w": int(self.w),
            "h": int(self.h),
            "width": self.width,
            "height": self.height,
            "pinned": bool(self.pinned),
            "isOnline": self.is_online,
            "isMuted": bool(self.is_muted),
            "volume": clamp01(self.volume),
            "maximized": bool(self.maximized),
        }
        if self.pinned_x is not None:
            payload["pinnedX"] = self.pinned_x
            payload["pinnedY"] = self.pinned_y
            payload["pinnedWidth"] = self.pinned_width
            payload["pinnedHeight"] = self.pinned_height
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "Window":
        window_id = str(payload["id"])
        window = cls(id=window_id, room=str(payload.get("room") or window_id))
        window.apply(payload)
        return window

    def apply(self, payload: dict) -> bool:
        """
        Merge camelCase ``payload`` fields into the window.

        Unknown keys are ignored and ``id`` is never rewritten. Returns True
        when any field changed.
        """

        changed = False
        for wire_name, attr in WINDOW_FIELDS.items():
            if wire_name not in payload:
                continue
            value = payload.get(wire_name)
            if attr in ("x", "y", "width", "height"):
                value = _number(value, getattr(self, attr))
            elif attr in ("w", "h"):
                value = _span(value)
            elif attr == "volume":
                value = clamp01(_number(value, self.volume))
            elif attr in ("pinned", "is_muted", "maximized"):
                value = bool(value)
            elif attr == "is_online":
                value = _optional_bool(value)
            elif attr.startswith("pinned_"):
                value = _optional_float(value)
            elif attr == "room":
                value = str(value or self.room)
            if getattr(self, attr) != value:
                setattr(self, attr, value)
                changed = True
        return changed

    def layout(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in LAYOUT_FIELDS}

    def clone(self) -> "Window":
        return copy.deepcopy(self)


@dataclass
class Space:
    id: str
    name: str
    windows: List[Window] = field(default_factory=list)
    z_indexes: Dict[str, int] = field(default_factory=dict)
    auto_arrange: bool = True
    layout_mode: LayoutMode = LayoutMode.GRID

    def find(self, window_id: str) -> Optional[Window]:
        for window in self.windows:
            if window.id == window_id:
                return window
        return None

    def has(self, window_id: str) -> bool:
        return self.find(window_id) is not None

    def window_ids(self) -> List[str]:
        return [window.id for window in self.windows]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "windows": [window.to_dict() for window in self.windows],
            "zIndexes": dict(self.z_indexes),
            "autoArrange": bool(self.auto_arrange),
            "layoutMode": self.layout_mode.value,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Space":
        mode = str(payload.get("layoutMode") or LayoutMode.GRID.value)
        try:
            layout_mode = LayoutMode(mode)
        except ValueError:
            layout_mode = LayoutMode.GRID
        z_indexes = payload.get("zIndexes") or {}
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            windows=[Window.from_dict(item) for item in payload.get("windows") or []],
            z_indexes={str(key): int(value) for key, value in z_indexes.items()},
            auto_arrange=bool(payload.get("autoArrange", True)),
            layout_mode=layout_mode,
        )


def default_spaces() -> List[Space]:
    return [
        Space(id=DISCOVERY_SPACE_ID, name="Discovery"),
        Space(id=FAVORITE_SPACE_ID, name="Favorites"),
    ]


@dataclass
class RootState:
    spaces: List[Space] = field(default_factory=default_spaces)
    active_space_id: str = DISCOVERY_SPACE_ID
    discovery_offset: int = 0
    discovery_limit: int = DEFAULT_LIMIT
    filter_mode: FilterMode = FilterMode.ALL
    global_muted: bool = False

    def space(self, space_id: str) -> Optional[Space]:
        for space in self.spaces:
            if space.id == space_id:
                return space
        return None

    @property
    def active_space(self) -> Optional[Space]:
        return self.space(self.active_space_id)

    def to_dict(self) -> dict:
        return {
            "spaces": [space.to_dict() for space in self.spaces],
            "activeSpaceId": self.active_space_id,
            "discoveryOffset": int(self.discovery_offset),
            "discoveryLimit": int(self.discovery_limit),
            "filterMode": self.filter_mode.value,
            "globalMuted": bool(self.global_muted),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "RootState":
        limit = int(payload.get("discoveryLimit") or DEFAULT_LIMIT)
        return cls(
            spaces=[Space.from_dict(item) for item in payload.get("spaces") or []],
            active_space_id=str(payload.get("activeSpaceId") or DISCOVERY_SPACE_ID),
            discovery_offset=max(0, int(payload.get("discoveryOffset") or 0)),
            discovery_limit=limit if limit in ALLOWED_LIMITS else DEFAULT_LIMIT,
            filter_mode=FilterMode(str(payload.get("filterMode") or FilterMode.ALL.value)),
            global_muted=bool(payload.get("globalMuted", False)),
        )

    def clone(self) -> "RootState":
        return copy.deepcopy(self)
