from __future__ import annotations

from PySide6.QtCore import Property, QObject, Signal

from catalog_images.logger import get_logger

from .box import NormalizedCropBox, _clamp, initial_crop_box, normalized_aspect
from .geometry import DragMode, check_aspect, conform_box, move_box, resize_with_aspect, zoom_box

_logger = get_logger("crop_engine")


class CropGeometryEngine(QObject):
    """Interactive crop state for one editor instance.

    Design:
    - The box is stored in normalized coordinates (0..1) relative to the full image.
    - The aspect is fixed for the lifetime of the editor (one derivative target).
    - `boxChanged` fires on every accepted change and is cheap to handle.
    - `settled` fires once per gesture end; preview regeneration hangs off this
      signal only, never off `boxChanged`.
    """

    boxChanged = Signal(object)
    settled = Signal(object)
    dragModeChanged = Signal(str)
    disabledChanged = Signal(bool)

    def __init__(
        self,
        target_aspect: float,
        image_width: int,
        image_height: int,
        initial: NormalizedCropBox | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._aspect = check_aspect(normalized_aspect(target_aspect, image_width, image_height))
        self._target_aspect = float(target_aspect)
        self._image_w = int(image_width)
        self._image_h = int(image_height)

        self._default = conform_box(initial_crop_box(image_width, image_height, target_aspect), self._aspect)
        self._box = conform_box(initial, self._aspect) if initial is not None else self._default

        self._mode = DragMode.NONE
        self._drag_start: tuple[float, float] = (0.0, 0.0)
        self._box_start = self._box
        self._disabled = False

    # ---- read-only state ----
    @property
    def box(self) -> NormalizedCropBox:
        return self._box

    @property
    def aspect(self) -> float:
        """Normalized aspect (w/h in fractional units) the box is locked to."""
        return self._aspect

    @property
    def target_aspect(self) -> float:
        return self._target_aspect

    @property
    def drag_mode(self) -> DragMode:
        return self._mode

    def _get_disabled(self) -> bool:
        return bool(self._disabled)

    def _set_disabled(self, value: bool) -> None:
        v = bool(value)
        if v == self._disabled:
            return
        self._disabled = v
        if v and self._mode is not DragMode.NONE:
            # Disabling mid-gesture settles what we have.
            self.end_drag()
        self.disabledChanged.emit(v)

    disabled = Property(bool, _get_disabled, _set_disabled, notify=disabledChanged)  # type: ignore[arg-type]

    # ---- gestures ----
    def begin_drag(self, pointer: tuple[float, float], mode: DragMode | str) -> bool:
        if self._disabled:
            _logger.debug("begin_drag rejected: disabled")
            return False
        drag_mode = DragMode(mode)
        if drag_mode is DragMode.NONE:
            return False
        self._drag_start = _pointer(pointer)
        self._box_start = self._box
        self._set_mode(drag_mode)
        return True

    def update_drag(self, pointer: tuple[float, float]) -> NormalizedCropBox | None:
        if self._mode is DragMode.NONE:
            return None
        px, py = _pointer(pointer)
        dx = px - self._drag_start[0]
        dy = py - self._drag_start[1]

        if self._mode is DragMode.MOVE:
            new_box = move_box(self._box_start, dx, dy)
        else:
            new_box = resize_with_aspect(self._box_start, self._mode, dx, dy, self._aspect)
        self._commit(new_box)
        return new_box

    def end_drag(self) -> NormalizedCropBox | None:
        if self._mode is DragMode.NONE:
            return None
        self._set_mode(DragMode.NONE)
        self.settled.emit(self._box)
        return self._box

    def zoom(self, wheel_delta: float) -> bool:
        if self._disabled or self._mode is not DragMode.NONE:
            return False
        new_box = zoom_box(self._box, wheel_delta, self._aspect)
        if new_box is None or new_box == self._box:
            return False
        self._commit(new_box)
        # A wheel notch is a complete gesture by itself.
        self.settled.emit(self._box)
        return True

    # ---- programmatic edits ----
    def set_box(self, box: NormalizedCropBox) -> NormalizedCropBox:
        """Apply a box from sliders or saved state, snapped to the aspect and bounds."""
        new_box = conform_box(box, self._aspect)
        self._commit(new_box)
        self.settled.emit(self._box)
        return new_box

    def reset(self) -> None:
        self._set_mode(DragMode.NONE)
        self._commit(self._default)
        self.settled.emit(self._box)

    # ---- internals ----
    def _set_mode(self, mode: DragMode) -> None:
        if mode is self._mode:
            return
        self._mode = mode
        self.dragModeChanged.emit(mode.value)

    def _commit(self, box: NormalizedCropBox) -> None:
        if box == self._box:
            return
        self._box = box
        self.boxChanged.emit(box)


def _pointer(pointer: tuple[float, float]) -> tuple[float, float]:
    x, y = pointer
    return _clamp(float(x), 0.0, 1.0), _clamp(float(y), 0.0, 1.0)


__all__ = ["CropGeometryEngine", "DragMode"]
