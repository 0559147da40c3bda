"""
Debounced commit of drag/resize gestures.

A continuous gesture emits many intermediate layouts. Each window gets a
small state machine (``idle -> dragging -> committing -> idle``) that keeps
only the latest layout and writes it once the gesture has been quiet for
``delay`` seconds. A layout equal to the last committed one is never
written, which breaks layout-changed -> write -> layout-changed loops.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .models import LAYOUT_FIELDS

LOG = logging.getLogger(__name__)

MonotonicCallable = Callable[[], float]
CommitCallable = Callable[[str, str, dict], bool]
CurrentLayoutCallable = Callable[[str, str], Optional[dict]]

DEFAULT_DELAY = 0.1

GestureKey = Tuple[str, str]


class GesturePhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"


@dataclass
class Gesture:
    space_id: str
    window_id: str
    phase: GesturePhase = GesturePhase.IDLE
    pending: Dict[str, float] = field(default_factory=dict)
    deadline: Optional[float] = None
    events: int = 0


def _layout_fields(layout: dict) -> Dict[str, float]:
    return {name: layout[name] for name in LAYOUT_FIELDS if layout.get(name) is not None}


def layouts_equal(candidate: Dict[str, float], reference: Optional[dict]) -> bool:
    if reference is None:
        return False
    for name, value in candidate.items():
        if name not in reference:
            return False
        try:
            if abs(float(reference[name]) - float(value)) > 1e-6:
                return False
        except (TypeError, ValueError):
            return False
    return True


class LayoutCommitter:
    """
    Collapse bursts of layout events into single repository writes.

    Parameters
    ----------
    commit:
        ``commit(space_id, window_id, fields)`` performing the actual write.
    current:
        Optional lookup of a window's committed layout. Without it the
        baseline is whatever this instance committed last.
    delay:
        Quiet period in seconds before a gesture is committed.
    monotonic:
        Clock used for deadlines; injectable for tests.
    """

    def __init__(
        self,
        commit: CommitCallable,
        *,
        current: Optional[CurrentLayoutCallable] = None,
        delay: float = DEFAULT_DELAY,
        monotonic: Optional[MonotonicCallable] = None,
    ) -> None:
        self._commit = commit
        self._current = current
        self.delay = max(0.0, float(delay))
        self._monotonic: MonotonicCallable = monotonic if monotonic is not None else time.monotonic
        self._gestures: Dict[GestureKey, Gesture] = {}
        self._committed: Dict[GestureKey, Dict[str, float]] = {}
        self.writes = 0
        self.skipped = 0

    def phase(self, space_id: str, window_id: str) -> GesturePhase:
        gesture = self._gestures.get((space_id, window_id))
        return gesture.phase if gesture is not None else GesturePhase.IDLE

    def pending_count(self) -> int:
        return sum(1 for gesture in self._gestures.values() if gesture.phase == GesturePhase.DRAGGING)

    def begin(self, space_id: str, window_id: str) -> Gesture:
        key = (space_id, window_id)
        gesture = self._gestures.get(key)
        if gesture is None:
            gesture = Gesture(space_id=space_id, window_id=window_id)
            self._gestures[key] = gesture
        if gesture.phase == GesturePhase.IDLE:
            gesture.phase = GesturePhase.DRAGGING
            gesture.pending = {}
            gesture.events = 0
            gesture.deadline = None
        return gesture

    def update(self, space_id: str, window_id: str, layout: dict) -> None:
        fields = _layout_fields(layout or {})
        if not fields:
            return
        gesture = self.begin(space_id, window_id)
        gesture.pending.update(fields)
        gesture.events += 1
        gesture.deadline = self._monotonic() + self.delay

    def end(self, space_id: str, window_id: str) -> bool:
        """Finish a gesture immediately (drag stop / resize stop)."""

        gesture = self._gestures.get((space_id, window_id))
        if gesture is None or gesture.phase != GesturePhase.DRAGGING:
            return False
        return self._finish(gesture)

    def poll(self) -> int:
        """Commit every gesture whose quiet period elapsed; return the write count."""

        now = self._monotonic()
        due: List[Gesture] = [
            gesture
            for gesture in self._gestures.values()
            if gesture.phase == GesturePhase.DRAGGING
            and gesture.deadline is not None
            and gesture.deadline <= now
        ]
        return sum(1 for gesture in due if self._finish(gesture))

    def flush(self) -> int:
        pending = [gesture for gesture in self._gestures.values() if gesture.phase == GesturePhase.DRAGGING]
        return sum(1 for gesture in pending if self._finish(gesture))

    def cancel(self, space_id: str, window_id: str) -> None:
        """Drop the pending gesture and the cached layout of a window."""

        self._gestures.pop((space_id, window_id), None)
        self._committed.pop((space_id, window_id), None)

    def cached_count(self) -> int:
        return len(self._committed)

    def _finish(self, gesture: Gesture) -> bool:
        key = (gesture.space_id, gesture.window_id)
        gesture.phase = GesturePhase.COMMITTING
        fields = dict(gesture.pending)
        try:
            if not fields:
                return False
            # The live record wins over our cache: auto-arrange may have moved it since.
            if self._current is not None:
                reference = self._current(gesture.space_id, gesture.window_id)
            else:
                reference = self._committed.get(key)
            if layouts_equal(fields, reference):
                self.skipped += 1
                LOG.debug("Layout of %s/%s unchanged; skipping write", *key)
                return False
            self._commit(gesture.space_id, gesture.window_id, fields)
            if self._current is None:
                merged = dict(reference or {})
                merged.update(fields)
                self._committed[key] = merged
            self.writes += 1
            LOG.debug(
                "Committed layout of %s/%s after %d event(s)", gesture.space_id, gesture.window_id, gesture.events
            )
            return True
        finally:
            self._gestures.pop(key, None)
