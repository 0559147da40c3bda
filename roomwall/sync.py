"""
Persistence and cross-context synchronisation of the workspace state.

Every client context (browser tab, API worker, test harness) owns its own
:class:`SpaceRepository`. Contexts share a key/value storage: each one writes
full snapshots under :data:`STORAGE_KEY` and receives change notifications
for writes made by the others. An inbound snapshot replaces the local state
as a whole or is rejected as a whole.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from . import RoomwallError
from .api.schemas import SnapshotEnvelope
from .models import RootState
from .repository import SpaceRepository
from .stacking import StackOrderTracker

LOG = logging.getLogger(__name__)

STORAGE_KEY = "spaces-storage"


class SnapshotError(RoomwallError):
    """Raised when a persisted snapshot cannot be decoded or violates invariants."""


@dataclass(frozen=True)
class StorageEvent:
    key: str
    new_value: Optional[str]
    source: Optional[str] = None


StorageListener = Callable[[StorageEvent], None]


class MemoryStorage:
    """
    Key/value storage shared by several contexts of one process.

    Listeners are told about writes made by every context except their own.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._listener_counter = 0
        self._listeners: Dict[int, Tuple[Optional[str], StorageListener]] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str, *, source: Optional[str] = None) -> None:
        self._values[key] = value
        self._persist()
        self._dispatch(StorageEvent(key=key, new_value=value, source=source))

    def remove(self, key: str, *, source: Optional[str] = None) -> None:
        if self._values.pop(key, None) is None:
            return
        self._persist()
        self._dispatch(StorageEvent(key=key, new_value=None, source=source))

    def subscribe(self, callback: StorageListener, *, context_id: Optional[str] = None) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._listener_counter += 1
        token = self._listener_counter
        self._listeners[token] = (context_id, callback)
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def _dispatch(self, event: StorageEvent) -> None:
        for token, (context_id, callback) in list(self._listeners.items()):
            if event.source is not None and context_id == event.source:
                continue
            try:
                callback(event)
            except Exception:  # pragma: no cover
                LOG.exception("Storage listener %s failed.", token)

    def _persist(self) -> None:
        pass


class FileStorage(MemoryStorage):
    """:class:`MemoryStorage` mirrored to a JSON document on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path).expanduser()
        self._load()

    def _load(self) -> None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError:
            LOG.exception("Could not read storage file %s", self.path)
            return
        try:
            data = json.loads(raw)
        except ValueError:
            LOG.warning("Storage file %s is not valid JSON; starting empty", self.path)
            return
        if isinstance(data, dict):
            self._values = {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".storage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle)
            os.replace(tmp_name, self.path)
        except OSError:
            LOG.exception("Could not write storage file %s", self.path)
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)


def encode_snapshot(state: dict) -> str:
    return json.dumps({"state": state}, sort_keys=True, separators=(",", ":"))


def parse_snapshot(raw: Optional[str]) -> RootState:
    """
    Decode a ``{"state": ...}`` payload into a normalised :class:`RootState`.
    """

    if raw is None:
        raise SnapshotError("snapshot is empty")
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise SnapshotError(f"snapshot is not valid JSON: {exc}") from exc
    try:
        envelope = SnapshotEnvelope.model_validate(data)
    except ValidationError as exc:
        raise SnapshotError(f"snapshot failed validation: {exc.error_count()} error(s)") from exc

    state = RootState.from_dict(envelope.state.model_dump())
    stacking = StackOrderTracker()
    for space in state.spaces:
        stacking.normalise(space)
    if state.space(state.active_space_id) is None:
        state.active_space_id = state.spaces[0].id
    return state


class CrossTabSynchronizer:
    """
    Keep one repository in step with the shared storage.

    Outbound: every repository change is written under :data:`STORAGE_KEY`.
    Inbound: notifications from other contexts replace the local state;
    malformed payloads are logged and dropped.
    """

    def __init__(
        self,
        repository: SpaceRepository,
        storage: MemoryStorage,
        *,
        key: str = STORAGE_KEY,
        context_id: Optional[str] = None,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.key = key
        self.context_id = context_id or uuid.uuid4().hex
        self.applied = 0
        self.rejected = 0
        self._applying = False
        self._last_written: Optional[str] = None
        self._repository_token: Optional[int] = None
        self._storage_token: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._repository_token is not None

    def start(self) -> None:
        if self.is_running:
            return
        self._repository_token = self.repository.subscribe(self._on_state_change)
        self._storage_token = self.storage.subscribe(self.handle_event, context_id=self.context_id)

    def stop(self) -> None:
        if self._repository_token is not None:
            self.repository.unsubscribe(self._repository_token)
            self._repository_token = None
        if self._storage_token is not None:
            self.storage.unsubscribe(self._storage_token)
            self._storage_token = None

    def restore(self) -> bool:
        """Load the persisted snapshot, if any, into the repository."""

        raw = self.storage.get(self.key)
        if raw is None:
            return False
        return self._apply(raw)

    def handle_event(self, event: StorageEvent) -> bool:
        if event.key != self.key or event.new_value is None:
            return False
        if event.source is not None and event.source == self.context_id:
            return False
        return self._apply(event.new_value)

    def _apply(self, raw: str) -> bool:
        try:
            state = parse_snapshot(raw)
        except SnapshotError:
            self.rejected += 1
            LOG.exception("Discarding malformed '%s' snapshot", self.key)
            return False

        self._applying = True
        try:
            self.repository.replace_state(state)
        finally:
            self._applying = False
        self._last_written = encode_snapshot(self.repository.snapshot())
        self.applied += 1
        LOG.debug("Applied '%s' snapshot with %d spaces", self.key, len(state.spaces))
        return True

    def _on_state_change(self, snapshot: dict) -> None:
        if self._applying:
            return
        payload = encode_snapshot(snapshot)
        if payload == self._last_written:
            return
        self._last_written = payload
        self.storage.set(self.key, payload, source=self.context_id)
