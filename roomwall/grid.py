"""
Grid geometry helpers.

Two layout modes are supported:

* packed grid: windows carry a cell span (``w`` x ``h``) and are placed
  first-fit into a fixed number of columns without overlap;
* uniform cells: the container is split into equal pixel cells and every
  window is treated as 1x1.

Everything here is pure and free of repository state so it can be reused by
the API layer to preview layouts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

DEFAULT_TOOLBAR_OFFSET = 50


@dataclass(frozen=True, slots=True)
class GridShape:
    rows: int
    cols: int

    def to_dict(self) -> dict:
        return {"rows": int(self.rows), "cols": int(self.cols)}


@dataclass(frozen=True, slots=True)
class PackItem:
    id: str
    w: int = 1
    h: int = 1


@dataclass(frozen=True, slots=True)
class CellRect:
    x: int
    y: int
    width: int
    height: int

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def compute_grid_shape(n: int) -> GridShape:
    """
    Return the smallest wide-biased grid able to hold ``n`` items.

    ``rows <= cols`` and ``rows * cols >= n`` always hold.
    """

    count = max(0, int(n))
    if count == 0:
        return GridShape(rows=0, cols=0)
    cols = math.ceil(math.sqrt(count))
    rows = math.ceil(count / cols)
    if rows > cols:
        cols += 1
        rows = math.ceil(count / cols)
    return GridShape(rows=rows, cols=cols)


class _Occupancy:
    """Lazily grown boolean matrix of taken cells."""

    def __init__(self, cols: int) -> None:
        self.cols = cols
        self._rows: List[List[bool]] = []

    def _ensure(self, row_count: int) -> None:
        while len(self._rows) < row_count:
            self._rows.append([False] * self.cols)

    def fits(self, row: int, col: int, w: int, h: int) -> bool:
        if col + w > self.cols:
            return False
        self._ensure(row + h)
        for r in range(row, row + h):
            cells = self._rows[r]
            for c in range(col, col + w):
                if cells[c]:
                    return False
        return True

    def take(self, row: int, col: int, w: int, h: int) -> None:
        self._ensure(row + h)
        for r in range(row, row + h):
            for c in range(col, col + w):
                self._rows[r][c] = True


def pack_items(items: Iterable[PackItem], cols: int) -> Dict[str, Tuple[int, int]]:
    """
    First-fit top-left packing of ``items`` into ``cols`` columns.

    Items are placed in the order given; the caller owns ordering so the
    result is deterministic. Returns ``{id: (x, y)}`` in cell coordinates.
    """

    columns = max(1, int(cols))
    occupancy = _Occupancy(columns)
    placements: Dict[str, Tuple[int, int]] = {}

    for item in items:
        w = min(max(1, int(item.w)), columns)
        h = max(1, int(item.h))
        row = 0
        while True:
            placed = False
            for col in range(0, columns - w + 1):
                if occupancy.fits(row, col, w, h):
                    occupancy.take(row, col, w, h)
                    placements[item.id] = (col, row)
                    placed = True
                    break
            if placed:
                break
            row += 1

    return placements


def packing_order(entries: Sequence[Tuple[str, float, float]]) -> List[str]:
    """
    Order ``(id, x, y)`` entries by prior row, then column, then input position.
    """

    indexed = list(enumerate(entries))
    indexed.sort(key=lambda pair: (pair[1][2], pair[1][1], pair[0]))
    return [entry[0] for _, entry in indexed]


def columns_for_spans(spans: Sequence[Tuple[int, int]]) -> int:
    """
    Column count for a packed grid holding ``spans`` (``(w, h)`` pairs).

    Uses the wide-biased shape of the total cell area, widened to fit the
    widest item.
    """

    if not spans:
        return 0
    area = sum(max(1, int(w)) * max(1, int(h)) for w, h in spans)
    widest = max(max(1, int(w)) for w, _ in spans)
    return max(compute_grid_shape(area).cols, widest)


def compute_uniform_cell_layout(
    n: int,
    container_width: float,
    container_height: float,
    *,
    top_offset: int = DEFAULT_TOOLBAR_OFFSET,
) -> List[CellRect]:
    """
    Split the container into equal cells and assign ``n`` windows in order.
    """

    shape = compute_grid_shape(n)
    if shape.cols == 0:
        return []
    cell_width = int(math.floor(max(0.0, float(container_width)) / shape.cols))
    cell_height = int(math.floor(max(0.0, float(container_height)) / shape.rows))

    rects: List[CellRect] = []
    for index in range(max(0, int(n))):
        col = index % shape.cols
        row = index // shape.cols
        rects.append(
            CellRect(
                x=col * cell_width,
                y=row * cell_height + int(top_offset),
                width=cell_width,
                height=cell_height,
            )
        )
    return rects
