"""Pure crop geometry: move, aspect-locked resize per handle, and wheel zoom.

No Qt here. Every function takes a start box plus a normalized delta and returns
a box that satisfies the NormalizedCropBox invariants.
"""

from __future__ import annotations

from enum import Enum

from .box import (
    MAX_NORMALIZED_ASPECT,
    MIN_NORMALIZED_ASPECT,
    NormalizedCropBox,
    _clamp,
    fit_box,
    max_width_for,
    min_width_for,
)

ZOOM_SHRINK = 0.95
ZOOM_GROW = 1.05


class DragMode(str, Enum):
    NONE = "none"
    MOVE = "move"
    NW = "nw"
    NE = "ne"
    SW = "sw"
    SE = "se"
    N = "n"
    S = "s"
    E = "e"
    W = "w"

    @property
    def is_resize(self) -> bool:
        return self in _HANDLES


# (x_dir, y_dir): +1 the right/bottom edge follows the pointer, -1 the left/top
# edge does, 0 the axis is re-centered instead of anchored.
_HANDLES: dict[DragMode, tuple[int, int]] = {
    DragMode.NW: (-1, -1),
    DragMode.NE: (1, -1),
    DragMode.SW: (-1, 1),
    DragMode.SE: (1, 1),
    DragMode.N: (0, -1),
    DragMode.S: (0, 1),
    DragMode.E: (1, 0),
    DragMode.W: (-1, 0),
}

_CURSORS: dict[DragMode, str] = {
    DragMode.MOVE: "move",
    DragMode.NW: "nwse-resize",
    DragMode.SE: "nwse-resize",
    DragMode.NE: "nesw-resize",
    DragMode.SW: "nesw-resize",
    DragMode.N: "ns-resize",
    DragMode.S: "ns-resize",
    DragMode.E: "ew-resize",
    DragMode.W: "ew-resize",
}


def cursor_for(mode: DragMode | str) -> str:
    try:
        return _CURSORS.get(DragMode(mode), "default")
    except ValueError:
        return "default"


def check_aspect(aspect: float) -> float:
    a = float(aspect)
    if not (MIN_NORMALIZED_ASPECT <= a <= MAX_NORMALIZED_ASPECT):
        raise ValueError(
            f"normalized aspect {a} outside [{MIN_NORMALIZED_ASPECT}, {MAX_NORMALIZED_ASPECT}]"
        )
    return a


def move_box(start: NormalizedCropBox, dx: float, dy: float) -> NormalizedCropBox:
    """Translate without resizing, clamped so the box stays inside [0, 1]."""
    x = _clamp(start.x + dx, 0.0, max(0.0, 1.0 - start.w))
    y = _clamp(start.y + dy, 0.0, max(0.0, 1.0 - start.h))
    return fit_box(x, y, start.w, start.h)


def _room(start_lo: float, start_hi: float, direction: int) -> float:
    """Space available along one axis for the moving edge."""
    if direction > 0:
        return 1.0 - start_lo
    if direction < 0:
        return start_hi
    # Re-centered axis: the box can be shifted, so the whole image is usable.
    return 1.0


def _place(start_lo: float, start_hi: float, center: float, size: float, direction: int) -> float:
    if direction > 0:
        return start_lo
    if direction < 0:
        return start_hi - size
    return center - size / 2.0


def resize_with_aspect(
    start: NormalizedCropBox,
    handle: DragMode,
    dx: float,
    dy: float,
    aspect: float,
) -> NormalizedCropBox:
    """Resize from `handle` by a pointer delta, keeping w/h == aspect.

    Corner handles keep the opposite corner fixed and follow whichever axis the
    pointer moved further along (in width units). Edge handles drive one
    dimension and re-center the box on the other axis. Growth past the image is
    capped to the remaining space with the paired side recomputed from the
    aspect; shrinking stops at the minimum size.
    """
    if handle not in _HANDLES:
        raise ValueError(f"not a resize handle: {handle!r}")
    a = check_aspect(aspect)
    x_dir, y_dir = _HANDLES[handle]

    grow_from_x = x_dir * dx
    grow_from_y = y_dir * dy * a
    if x_dir and y_dir:
        grow = grow_from_x if abs(grow_from_x) >= abs(grow_from_y) else grow_from_y
    elif x_dir:
        grow = grow_from_x
    else:
        grow = grow_from_y

    max_w = min(
        _room(start.x, start.x2, x_dir),
        _room(start.y, start.y2, y_dir) * a,
        max_width_for(a),
    )
    min_w = min_width_for(a)
    w = _clamp(start.w + grow, min_w, max(min_w, max_w))
    h = w / a

    x = _place(start.x, start.x2, start.cx, w, x_dir)
    y = _place(start.y, start.y2, start.cy, h, y_dir)
    return fit_box(x, y, w, h)


def zoom_box(box: NormalizedCropBox, wheel_delta: float, aspect: float) -> NormalizedCropBox | None:
    """Scale around the box center; wheel down (delta > 0) shrinks, up grows.

    Returns None when the zoom is rejected: zero delta, or growth that would
    exceed the image on either axis.
    """
    if not wheel_delta:
        return None
    a = check_aspect(aspect)
    factor = ZOOM_SHRINK if wheel_delta > 0 else ZOOM_GROW
    w = max(box.w * factor, min_width_for(a))
    h = w / a
    if w > 1.0 or h > 1.0:
        return None
    x = _clamp(box.cx - w / 2.0, 0.0, 1.0 - w)
    y = _clamp(box.cy - h / 2.0, 0.0, 1.0 - h)
    return fit_box(x, y, w, h)


def conform_box(box: NormalizedCropBox, aspect: float) -> NormalizedCropBox:
    """Snap an arbitrary box to the aspect around its center, inside the image."""
    a = check_aspect(aspect)
    w = box.w
    if w / a > box.h:
        w = box.h * a
    w = _clamp(w, min_width_for(a), max_width_for(a))
    h = w / a
    return fit_box(box.cx - w / 2.0, box.cy - h / 2.0, w, h)
