"""
Pydantic schemas for persisted snapshots and the REST/WS contract.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, validator

from ..models import ALLOWED_LIMITS, DEFAULT_LIMIT


def _clamp01(value: object) -> float:
    try:
        numeric = float(value if value is not None else 0.0)
    except (TypeError, ValueError):
        raise ValueError("volume must be a number") from None
    return max(0.0, min(1.0, numeric))


class WindowModel(BaseModel):
    id: str
    room: Optional[str] = None
    x: float = 50
    y: float = 50
    w: int = 1
    h: int = 1
    width: float = 800
    height: float = 600
    pinned: bool = False
    isOnline: Optional[bool] = None
    isMuted: bool = True
    volume: float = 0.5
    maximized: bool = False
    pinnedX: Optional[float] = None
    pinnedY: Optional[float] = None
    pinnedWidth: Optional[float] = None
    pinnedHeight: Optional[float] = None

    @validator("id")
    def _require_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("window id is required")
        return value

    @validator("volume", pre=True)
    def _clamp_volume(cls, value: object) -> float:
        return _clamp01(value)

    @validator("w", "h")
    def _min_span(cls, value: int) -> int:
        return max(1, int(value))


class SpaceModel(BaseModel):
    id: str
    name: str = ""
    windows: List[WindowModel] = Field(default_factory=list)
    zIndexes: Dict[str, int] = Field(default_factory=dict)
    autoArrange: bool = True
    layoutMode: Literal["grid", "free"] = "grid"

    @validator("windows")
    def _unique_window_ids(cls, value: List[WindowModel]) -> List[WindowModel]:
        ids = [window.id for window in value]
        if len(ids) != len(set(ids)):
            raise ValueError("window ids must be unique within a space")
        return value


class RootStateModel(BaseModel):
    spaces: List[SpaceModel] = Field(min_length=1)
    activeSpaceId: str = "discovery"
    discoveryOffset: int = Field(default=0, ge=0)
    discoveryLimit: int = DEFAULT_LIMIT
    filterMode: Literal["all", "online", "offline"] = "all"
    globalMuted: bool = False

    @validator("spaces")
    def _unique_space_ids(cls, value: List[SpaceModel]) -> List[SpaceModel]:
        ids = [space.id for space in value]
        if len(ids) != len(set(ids)):
            raise ValueError("space ids must be unique")
        if "discovery" not in ids:
            raise ValueError("the discovery space is missing")
        return value

    @validator("discoveryLimit")
    def _known_limit(cls, value: int) -> int:
        return value if value in ALLOWED_LIMITS else DEFAULT_LIMIT


class SnapshotEnvelope(BaseModel):
    state: RootStateModel


# ---------------------------------------------------------------- requests


class CreateSpaceRequest(BaseModel):
    name: str = ""
    layoutMode: Literal["grid", "free"] = "grid"


class RenameSpaceRequest(BaseModel):
    name: str


class AddWindowRequest(BaseModel):
    room: str

    @validator("room", pre=True)
    def _normalise_room(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("room is required")
        return result


class WindowUpdateRequest(BaseModel):
    """Partial window update; only the fields that were sent are applied."""

    x: Optional[float] = None
    y: Optional[float] = None
    w: Optional[int] = None
    h: Optional[int] = None
    width: Optional[float] = None
    height: Optional[float] = None
    isMuted: Optional[bool] = None
    volume: Optional[float] = None
    maximized: Optional[bool] = None
    isOnline: Optional[bool] = None

    model_config = ConfigDict(extra="ignore")

    @validator("volume", pre=True)
    def _clamp_volume(cls, value: object) -> Optional[float]:
        return None if value is None else _clamp01(value)


class LayoutUpdateRequest(BaseModel):
    phase: Literal["begin", "update", "end"] = "update"
    x: Optional[float] = None
    y: Optional[float] = None
    w: Optional[int] = None
    h: Optional[int] = None
    width: Optional[float] = None
    height: Optional[float] = None


class PinnedGeometryRequest(BaseModel):
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class MoveWindowRequest(BaseModel):
    targetSpaceId: str


class DiscoveryPageRequest(BaseModel):
    page: Optional[int] = Field(default=None, ge=1)
    offset: Optional[int] = Field(default=None, ge=0)


class DiscoveryLimitRequest(BaseModel):
    limit: int


class FilterRequest(BaseModel):
    mode: Literal["all", "online", "offline"]


class GlobalMuteRequest(BaseModel):
    muted: Optional[bool] = None


class StorageEventRequest(BaseModel):
    key: str
    newValue: Optional[str] = None
    source: Optional[str] = None
