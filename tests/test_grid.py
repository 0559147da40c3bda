import pytest

from roomwall.grid import (
    GridShape,
    PackItem,
    columns_for_spans,
    compute_grid_shape,
    compute_uniform_cell_layout,
    pack_items,
    packing_order,
)


@pytest.mark.parametrize(
    "count, expected",
    [
        (0, GridShape(0, 0)),
        (1, GridShape(1, 1)),
        (2, GridShape(1, 2)),
        (3, GridShape(2, 2)),
        (4, GridShape(2, 2)),
        (5, GridShape(2, 3)),
        (7, GridShape(3, 3)),
        (10, GridShape(3, 4)),
    ],
)
def test_grid_shape_examples(count: int, expected: GridShape) -> None:
    assert compute_grid_shape(count) == expected


def test_grid_shape_is_wide_and_sufficient() -> None:
    for count in range(1, 60):
        shape = compute_grid_shape(count)
        assert shape.rows <= shape.cols
        assert shape.rows * shape.cols >= count


def _cells(placements, items):
    spans = {item.id: item for item in items}
    taken = []
    for item_id, (x, y) in placements.items():
        item = spans[item_id]
        for dy in range(item.h):
            for dx in range(item.w):
                taken.append((x + dx, y + dy))
    return taken


def test_pack_items_never_overlap() -> None:
    items = [
        PackItem("a", 2, 1),
        PackItem("b", 1, 2),
        PackItem("c", 1, 1),
        PackItem("d", 2, 2),
        PackItem("e", 1, 1),
    ]
    placements = pack_items(items, cols=3)

    assert set(placements) == {"a", "b", "c", "d", "e"}
    cells = _cells(placements, items)
    assert len(cells) == len(set(cells))
    assert all(0 <= x < 3 for x, _ in cells)


def test_pack_items_first_fit_top_left() -> None:
    items = [PackItem("a"), PackItem("b"), PackItem("c")]
    placements = pack_items(items, cols=2)
    assert placements == {"a": (0, 0), "b": (1, 0), "c": (0, 1)}


def test_pack_items_clamps_wide_items_to_columns() -> None:
    placements = pack_items([PackItem("wide", 5, 1), PackItem("next")], cols=2)
    assert placements["wide"] == (0, 0)
    assert placements["next"] == (0, 1)


def test_packing_is_idempotent() -> None:
    items = [PackItem("a"), PackItem("b", 2, 1), PackItem("c"), PackItem("d")]
    cols = columns_for_spans([(item.w, item.h) for item in items])
    first = pack_items(items, cols)

    entries = [(item.id, first[item.id][0], first[item.id][1]) for item in items]
    order = packing_order(entries)
    by_id = {item.id: item for item in items}
    second = pack_items([by_id[item_id] for item_id in order], cols)

    assert second == first


def test_packing_order_uses_row_then_column_then_position() -> None:
    entries = [("late", 0, 1), ("right", 1, 0), ("left", 0, 0), ("tie", 1, 0)]
    assert packing_order(entries) == ["left", "right", "tie", "late"]


def test_columns_for_spans_fits_widest_item() -> None:
    assert columns_for_spans([]) == 0
    assert columns_for_spans([(1, 1)] * 4) == 2
    assert columns_for_spans([(4, 1), (1, 1)]) == 4


def test_uniform_cell_layout() -> None:
    rects = compute_uniform_cell_layout(5, 1200, 600, top_offset=50)

    assert len(rects) == 5
    assert {(rect.width, rect.height) for rect in rects} == {(400, 300)}
    assert rects[0].to_dict() == {"x": 0, "y": 50, "width": 400, "height": 300}
    assert (rects[3].x, rects[3].y) == (0, 350)
    assert compute_uniform_cell_layout(0, 1200, 600) == []


def test_uniform_cell_layout_floors_fractional_cells() -> None:
    rects = compute_uniform_cell_layout(3, 1000, 500, top_offset=0)
    assert rects[0].width == 500
    assert rects[1].x == 500
    assert rects[2].height == 250
