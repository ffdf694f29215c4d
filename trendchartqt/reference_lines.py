"""Draggable reference lines.

The overlay is a small pointer state machine that sits on top of a rendered
chart. It maps reference line values to pixels with the chart's resolved
scales, hit-tests pointer positions against an invisible band around each
line, and moves a line while it is dragged. The line value is written back
exactly once, when the drag ends, through the ``on_commit`` callback; moving
the pointer only asks for the line layer to be redrawn.

Labels can be dragged on their own. A label drag moves only the label and
commits the new ``label_offset`` through ``on_label_commit`` on release.

Per line state (the band is the line grab band or the label box)::

    idle --move over band--> hovered --down--> dragging --up/capture_lost--> hovered|idle
    hovered --move off band / leave--> idle

Typical usage:

    overlay = ReferenceLineOverlay(on_commit=editor.commit_reference_line)
    overlay.set_scales(scales)
    overlay.set_lines(config.reference_lines)
    update = overlay.handle(PointerEvent(PointerEventKind.DOWN, 120.0, 40.0))
    if update.redraw_lines:
        line_layer.redraw(overlay.layout())

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .errors import GeometryOutOfBounds
from .models import ChartConfig, DataSource, LineValue, Orientation, ReferenceLine, XAxisType
from .scales import ChartScales, LinearScale, TimeScale
from .settings import DEFAULT_SETTINGS, ChartSettings
from .utils import clamp, format_iso_seconds, new_id, round_to, to_epoch

logger = logging.getLogger(__name__)

CommitCallback = Callable[[str, LineValue], None]
LabelCommitCallback = Callable[[str, Tuple[float, float]], None]
LabelBox = Tuple[float, float, float, float]


class LineState(str, Enum):
    IDLE = "idle"
    HOVERED = "hovered"
    DRAGGING = "dragging"


class PointerEventKind(str, Enum):
    MOVE = "move"
    DOWN = "down"
    UP = "up"
    LEAVE = "leave"
    CAPTURE_LOST = "capture_lost"


class DragTarget(str, Enum):
    LINE = "line"
    LABEL = "label"


@dataclass(frozen=True)
class PointerEvent:
    """Pointer input in plot-area pixel coordinates."""

    kind: PointerEventKind
    x: Optional[float] = None
    y: Optional[float] = None
    pointer_id: int = 0


@dataclass(frozen=True)
class LineGeometry:
    """Pixel geometry of one visible reference line.

    Attributes:
        line_id: Reference line id.
        orientation: Vertical lines have an X ``position``, horizontal a Y one.
        position: Pixel coordinate across the line.
        hit_band: ``(low, high)`` pixel interval that grabs the line.
        label_pos: Anchor of the line label.
        state: Interaction state.
        label_box: ``(x0, y0, x1, y1)`` pixel box that grabs the label, or
            ``None`` for an unlabeled line.
        label_dragging: The label, not the line, is being dragged.
    """

    line_id: str
    orientation: Orientation
    position: float
    hit_band: Tuple[float, float]
    label_pos: Tuple[float, float]
    state: LineState = LineState.IDLE
    label_box: Optional[LabelBox] = None
    label_dragging: bool = False


@dataclass(frozen=True)
class OverlayUpdate:
    """Result of handling one pointer event.

    ``redraw_lines`` asks for the reference line layer only; the overlay
    never requests a full chart redraw. ``commit`` is ``(line_id, value)``
    when a line drag ended, ``label_commit`` is ``(line_id, label_offset)``
    when a label drag ended.
    """

    redraw_lines: bool = False
    commit: Optional[Tuple[str, LineValue]] = None
    label_commit: Optional[Tuple[str, Tuple[float, float]]] = None


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def denormalize_position(value: float, x_scale: LinearScale) -> float:
    """Data value of a 0-100 normalized position along a parameter X axis."""
    d0, d1 = x_scale.domain
    return d0 + float(value) / 100.0 * (d1 - d0)


def _y_scale(line: ReferenceLine, scales: ChartScales) -> Optional[LinearScale]:
    scale = scales.y_for(line.axis_no)
    if scale is None and scales.y:
        scale = scales.y[min(scales.y)]
    return scale


def _raw_position(line: ReferenceLine, scales: ChartScales) -> Optional[float]:
    if line.orientation == Orientation.HORIZONTAL:
        scale = _y_scale(line, scales)
        return None if scale is None else scale.map(float(line.value))

    if scales.x_axis_type == XAxisType.DATETIME:
        return scales.x.map(to_epoch(line.value))
    if scales.x_axis_type == XAxisType.PARAMETER:
        return float(line.value) / 100.0 * scales.width
    return scales.x.map(float(line.value))


def checked_position(line: ReferenceLine, scales: ChartScales) -> Optional[float]:
    """Pixel coordinate of a line inside the plot area.

    Returns:
        The pixel, or ``None`` when the line's axis has no scale.

    Raises:
        GeometryOutOfBounds: If the line maps outside the plot area.
        ValueError: If the line value cannot be read on this axis.
    """
    position = _raw_position(line, scales)
    if position is None:
        return None
    limit = scales.height if line.orientation == Orientation.HORIZONTAL else scales.width
    if not 0.0 <= position <= limit:
        raise GeometryOutOfBounds(f"line {line.id} at {position:.1f} px outside [0, {limit:g}]")
    return position


def line_position(line: ReferenceLine, scales: ChartScales) -> Optional[float]:
    """Pixel coordinate of a line, or ``None`` when it is not drawable.

    Lines with unparseable values or outside the plot area are skipped.
    """
    try:
        return checked_position(line, scales)
    except GeometryOutOfBounds as exc:
        logger.debug("Skipping reference line: %s", exc)
    except (TypeError, ValueError) as exc:
        logger.debug("Reference line %s has an unusable value %r: %s", line.id, line.value, exc)
    return None


def _label_pos(
    line: ReferenceLine,
    position: float,
    scales: ChartScales,
    offset: Optional[Tuple[float, float]] = None,
) -> Tuple[float, float]:
    dx, dy = line.label_offset if offset is None else offset
    if line.orientation == Orientation.VERTICAL:
        return position + 4.0 + dx, 4.0 + dy
    return scales.width - 4.0 + dx, position - 4.0 + dy


def label_box(
    line: ReferenceLine,
    label_pos: Tuple[float, float],
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> Optional[LabelBox]:
    """Pixel box of a line label, or ``None`` for an unlabeled line.

    Vertical line labels hang right of and below their anchor; horizontal
    line labels sit left of and above it, matching how the chart draws them.
    """
    if not line.label:
        return None
    x, y = label_pos
    width = len(line.label) * settings.legend_char_px
    height = settings.legend_row_height_px
    if line.orientation == Orientation.VERTICAL:
        return x, y, x + width, y + height
    return x - width, y - height, x, y


def _geometry(
    line: ReferenceLine,
    position: float,
    scales: ChartScales,
    settings: ChartSettings,
    state: LineState,
    offset: Optional[Tuple[float, float]] = None,
    label_dragging: bool = False,
) -> LineGeometry:
    tolerance = settings.hit_tolerance_px
    label_pos = _label_pos(line, position, scales, offset)
    return LineGeometry(
        line_id=line.id,
        orientation=line.orientation,
        position=position,
        hit_band=(position - tolerance, position + tolerance),
        label_pos=label_pos,
        state=state,
        label_box=label_box(line, label_pos, settings),
        label_dragging=label_dragging,
    )


def layout(
    lines: Sequence[ReferenceLine],
    scales: ChartScales,
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> List[LineGeometry]:
    """Geometry of every drawable line in the idle state."""
    geometries: List[LineGeometry] = []
    for line in lines:
        position = line_position(line, scales)
        if position is not None:
            geometries.append(_geometry(line, position, scales, settings, LineState.IDLE))
    return geometries


def commit_value(
    line: ReferenceLine,
    pixel: float,
    scales: ChartScales,
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> LineValue:
    """Convert a final drag pixel into the value stored on the line.

    Vertical lines on a datetime axis commit an ISO string with second
    precision, on an elapsed axis a number rounded to ``numeric_decimals``,
    and on a parameter axis a 0-100 normalized position. Horizontal lines
    commit the Y value rounded to ``horizontal_decimals``.
    """
    if line.orientation == Orientation.HORIZONTAL:
        scale = _y_scale(line, scales)
        if scale is None:
            raise ValueError(f"No Y scale for axis {line.axis_no}")
        pixel = clamp(pixel, 0.0, scales.height)
        return round_to(scale.invert(pixel), settings.horizontal_decimals)

    pixel = clamp(pixel, 0.0, scales.width)
    if scales.x_axis_type == XAxisType.DATETIME:
        if isinstance(scales.x, TimeScale):
            return scales.x.invert_iso(pixel)
        return format_iso_seconds(scales.x.invert(pixel))
    if scales.x_axis_type == XAxisType.PARAMETER:
        normalized = pixel / scales.width * 100.0 if scales.width else 0.0
        return round_to(clamp(normalized, 0.0, 100.0), settings.numeric_decimals)
    return round_to(scales.x.invert(pixel), settings.numeric_decimals)


# ---------------------------------------------------------------------------
# Interaction
# ---------------------------------------------------------------------------


@dataclass
class _Drag:
    line_id: str
    position: float
    target: DragTarget = DragTarget.LINE
    origin: Tuple[float, float] = (0.0, 0.0)
    pointer: Tuple[float, float] = (0.0, 0.0)
    start_offset: Tuple[float, float] = (0.0, 0.0)

    def label_offset(self) -> Tuple[float, float]:
        return (
            self.start_offset[0] + self.pointer[0] - self.origin[0],
            self.start_offset[1] + self.pointer[1] - self.origin[1],
        )


class ReferenceLineOverlay:
    """Hover, drag and commit for the reference lines of one chart.

    A press on a label box drags the label; a press on a line band drags the
    line. Labels are tested first since they are drawn on top.

    Args:
        on_commit: Called once per finished line drag with ``(line_id, value)``.
        settings: Hit tolerance, label metrics and rounding precision.
        on_label_commit: Called once per finished label drag with
            ``(line_id, label_offset)``.
    """

    def __init__(
        self,
        on_commit: Optional[CommitCallback] = None,
        settings: ChartSettings = DEFAULT_SETTINGS,
        on_label_commit: Optional[LabelCommitCallback] = None,
    ) -> None:
        self._on_commit = on_commit
        self._on_label_commit = on_label_commit
        self.settings = settings
        self._lines: Dict[str, ReferenceLine] = {}
        self._scales: Optional[ChartScales] = None
        self._last_scales: Optional[ChartScales] = None
        self._hovered: Optional[str] = None
        self._drags: Dict[int, _Drag] = {}

    # ----- inputs -----

    def set_lines(self, lines: Sequence[ReferenceLine]) -> None:
        """Replace the overlaid lines; drags of removed lines are dropped."""
        self._lines = {line.id: line for line in lines}
        for pointer_id, drag in list(self._drags.items()):
            if drag.line_id not in self._lines:
                del self._drags[pointer_id]
        if self._hovered not in self._lines:
            self._hovered = None

    def set_scales(self, scales: Optional[ChartScales]) -> None:
        """Replace the scales.

        Clearing the scales stops hit-testing, but drags already in progress
        keep moving and commit against the last scales they saw.
        """
        self._scales = scales
        if scales is not None:
            self._last_scales = scales
        elif not self._drags:
            self._last_scales = None

    def _drag_scales(self) -> Optional[ChartScales]:
        if self._scales is not None:
            return self._scales
        return self._last_scales if self._drags else None

    @property
    def lines(self) -> Tuple[ReferenceLine, ...]:
        return tuple(self._lines.values())

    # ----- queries -----

    def _drag_of(self, line_id: str) -> Optional[_Drag]:
        for drag in self._drags.values():
            if drag.line_id == line_id:
                return drag
        return None

    def state_of(self, line_id: str) -> LineState:
        if self._drag_of(line_id) is not None:
            return LineState.DRAGGING
        if self._hovered == line_id:
            return LineState.HOVERED
        return LineState.IDLE

    def active_line(self, pointer_id: int = 0) -> Optional[str]:
        drag = self._drags.get(pointer_id)
        return drag.line_id if drag is not None else None

    def active_target(self, pointer_id: int = 0) -> Optional[DragTarget]:
        """What the pointer is dragging, if anything."""
        drag = self._drags.get(pointer_id)
        return drag.target if drag is not None else None

    def drag_position(self, line_id: str) -> Optional[float]:
        """Pixel position of a line being dragged (label drags excluded)."""
        drag = self._drag_of(line_id)
        if drag is not None and drag.target == DragTarget.LINE:
            return drag.position
        return None

    def label_offset_of(self, line_id: str) -> Optional[Tuple[float, float]]:
        """Current label offset, following an active label drag."""
        drag = self._drag_of(line_id)
        if drag is not None and drag.target == DragTarget.LABEL:
            return drag.label_offset()
        line = self._lines.get(line_id)
        return line.label_offset if line is not None else None

    def position_of(self, line_id: str) -> Optional[float]:
        """Current pixel position, following an active drag."""
        dragged = self.drag_position(line_id)
        if dragged is not None:
            return dragged
        line = self._lines.get(line_id)
        scales = self._drag_scales()
        if line is None or scales is None:
            return None
        return line_position(line, scales)

    def _line_geometry(self, line: ReferenceLine, scales: ChartScales) -> Optional[LineGeometry]:
        position = self.position_of(line.id)
        if position is None:
            return None
        drag = self._drag_of(line.id)
        return _geometry(
            line,
            position,
            scales,
            self.settings,
            self.state_of(line.id),
            offset=self.label_offset_of(line.id),
            label_dragging=drag is not None and drag.target == DragTarget.LABEL,
        )

    def layout(self) -> List[LineGeometry]:
        """Geometry of the line layer, including in-progress drags."""
        scales = self._drag_scales()
        if scales is None:
            return []
        geometries: List[LineGeometry] = []
        for line in self._lines.values():
            geometry = self._line_geometry(line, scales)
            if geometry is not None:
                geometries.append(geometry)
        return geometries

    def _inside(self, x: Optional[float], y: Optional[float]) -> bool:
        if self._scales is None or x is None or y is None:
            return False
        return 0.0 <= x <= self._scales.width and 0.0 <= y <= self._scales.height

    def hit_test(self, x: Optional[float], y: Optional[float]) -> Optional[str]:
        """Id of the line whose band contains the point, nearest first."""
        if not self._inside(x, y):
            return None
        tolerance = self.settings.hit_tolerance_px
        best: Optional[Tuple[float, str]] = None
        for line in self._lines.values():
            position = self.position_of(line.id)
            if position is None:
                continue
            coord = y if line.orientation == Orientation.HORIZONTAL else x
            distance = abs(coord - position)
            if distance <= tolerance and (best is None or distance < best[0]):
                best = (distance, line.id)
        return best[1] if best is not None else None

    def hit_test_label(self, x: Optional[float], y: Optional[float]) -> Optional[str]:
        """Id of the line whose label box contains the point.

        Later lines are drawn over earlier ones, so they win.
        """
        if not self._inside(x, y):
            return None
        for line in reversed(list(self._lines.values())):
            geometry = self._line_geometry(line, self._scales)
            if geometry is None or geometry.label_box is None:
                continue
            x0, y0, x1, y1 = geometry.label_box
            if x0 <= x <= x1 and y0 <= y <= y1:
                return line.id
        return None

    # ----- events -----

    def handle(self, event: PointerEvent) -> OverlayUpdate:
        """Advance the state machine by one pointer event."""
        if event.kind == PointerEventKind.MOVE:
            return self._on_move(event)
        if event.kind == PointerEventKind.DOWN:
            return self._on_down(event)
        if event.kind in (PointerEventKind.UP, PointerEventKind.CAPTURE_LOST):
            return self._on_release(event)
        if event.kind == PointerEventKind.LEAVE:
            return self._on_leave(event)
        raise ValueError(f"Unknown pointer event kind: {event.kind!r}")

    def _on_move(self, event: PointerEvent) -> OverlayUpdate:
        drag = self._drags.get(event.pointer_id)
        if drag is None:
            return self._set_hovered(self.hit_test_label(event.x, event.y) or self.hit_test(event.x, event.y))

        if drag.target == DragTarget.LABEL:
            pointer = self._clamped_pointer(event)
            if pointer is None or pointer == drag.pointer:
                return OverlayUpdate()
            drag.pointer = pointer
            return OverlayUpdate(redraw_lines=True)

        position = self._clamped(drag.line_id, event)
        if position is None or position == drag.position:
            return OverlayUpdate()
        drag.position = position
        return OverlayUpdate(redraw_lines=True)

    def _on_down(self, event: PointerEvent) -> OverlayUpdate:
        if event.pointer_id in self._drags:
            return OverlayUpdate()

        label_id = self.hit_test_label(event.x, event.y)
        if label_id is not None and self.state_of(label_id) != LineState.DRAGGING:
            position = self.position_of(label_id)
            pointer = (float(event.x), float(event.y))
            self._drags[event.pointer_id] = _Drag(
                line_id=label_id,
                position=position,
                target=DragTarget.LABEL,
                origin=pointer,
                pointer=pointer,
                start_offset=tuple(self._lines[label_id].label_offset),
            )
            self._hovered = label_id
            logger.debug("Label drag start on line %s", label_id)
            return OverlayUpdate(redraw_lines=True)

        line_id = self.hit_test(event.x, event.y)
        if line_id is None or self.state_of(line_id) == LineState.DRAGGING:
            return OverlayUpdate()
        position = self._clamped(line_id, event)
        if position is None:
            return OverlayUpdate()
        self._drags[event.pointer_id] = _Drag(line_id=line_id, position=position)
        self._hovered = line_id
        logger.debug("Drag start on line %s at %.1f px", line_id, position)
        return OverlayUpdate(redraw_lines=True)

    def _on_release(self, event: PointerEvent) -> OverlayUpdate:
        drag = self._drags.get(event.pointer_id)
        if drag is None:
            return OverlayUpdate()
        if drag.target == DragTarget.LABEL:
            update = self._release_label(drag, event)
        else:
            update = self._release_line(drag, event)
        del self._drags[event.pointer_id]
        if self._scales is None and not self._drags:
            self._last_scales = None
        return update

    def _release_line(self, drag: _Drag, event: PointerEvent) -> OverlayUpdate:
        if event.kind == PointerEventKind.UP:
            final = self._clamped(drag.line_id, event)
            if final is not None:
                drag.position = final

        line = self._lines[drag.line_id]
        value = commit_value(line, drag.position, self._drag_scales(), self.settings)
        self._lines[line.id] = replace(line, value=value)
        logger.info("Reference line %s committed at %r", line.id, value)
        self._update_hover_after_release(line.id, event)

        if self._on_commit is not None:
            self._on_commit(line.id, value)
        return OverlayUpdate(redraw_lines=True, commit=(line.id, value))

    def _release_label(self, drag: _Drag, event: PointerEvent) -> OverlayUpdate:
        if event.kind == PointerEventKind.UP:
            final = self._clamped_pointer(event)
            if final is not None:
                drag.pointer = final

        line = self._lines[drag.line_id]
        dx, dy = drag.label_offset()
        offset = (round_to(dx, 1), round_to(dy, 1))
        self._lines[line.id] = replace(line, label_offset=offset)
        logger.info("Reference line %s label moved to offset %r", line.id, offset)
        self._update_hover_after_release(line.id, event)

        if self._on_label_commit is not None:
            self._on_label_commit(line.id, offset)
        return OverlayUpdate(redraw_lines=True, label_commit=(line.id, offset))

    def _update_hover_after_release(self, line_id: str, event: PointerEvent) -> None:
        still_over = event.kind == PointerEventKind.UP and line_id in (
            self.hit_test_label(event.x, event.y),
            self.hit_test(event.x, event.y),
        )
        self._hovered = line_id if still_over else None

    def _on_leave(self, event: PointerEvent) -> OverlayUpdate:
        if event.pointer_id in self._drags:
            return OverlayUpdate()
        return self._set_hovered(None)

    def _set_hovered(self, line_id: Optional[str]) -> OverlayUpdate:
        if line_id == self._hovered:
            return OverlayUpdate()
        self._hovered = line_id
        return OverlayUpdate(redraw_lines=True)

    def _clamped(self, line_id: str, event: PointerEvent) -> Optional[float]:
        scales = self._drag_scales()
        if scales is None:
            return None
        line = self._lines[line_id]
        if line.orientation == Orientation.HORIZONTAL:
            if event.y is None:
                return None
            return clamp(event.y, 0.0, scales.height)
        if event.x is None:
            return None
        return clamp(event.x, 0.0, scales.width)

    def _clamped_pointer(self, event: PointerEvent) -> Optional[Tuple[float, float]]:
        scales = self._drag_scales()
        if scales is None or event.x is None or event.y is None:
            return None
        return clamp(event.x, 0.0, scales.width), clamp(event.y, 0.0, scales.height)


# ---------------------------------------------------------------------------
# Config operations
# ---------------------------------------------------------------------------


def default_line_value(
    orientation: Orientation,
    x_axis_type: XAxisType,
    sources: Sequence[DataSource] = (),
    now: Optional[datetime] = None,
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> LineValue:
    """Starting value of a new line.

    Horizontal lines start at 50. Vertical lines start at the middle of the
    selected periods (datetime), at 15 (elapsed) or at 50% (parameter).
    """
    if orientation == Orientation.HORIZONTAL:
        return 50.0
    if x_axis_type == XAxisType.ELAPSED_TIME:
        return 15.0
    if x_axis_type == XAxisType.PARAMETER:
        return 50.0

    if sources:
        start = min(to_epoch(s.start) for s in sources)
        end = max(to_epoch(s.end) for s in sources)
    else:
        end = to_epoch(now if now is not None else datetime.now(timezone.utc))
        start = end - settings.datetime_lookback_s
    return format_iso_seconds((start + end) / 2.0)


def add_reference_line(
    config: ChartConfig,
    orientation: Orientation,
    value: Optional[LineValue] = None,
    sources: Sequence[DataSource] = (),
    now: Optional[datetime] = None,
    settings: ChartSettings = DEFAULT_SETTINGS,
    **attributes,
) -> Tuple[ChartConfig, ReferenceLine]:
    """Append a reference line; ``value`` defaults by axis type.

    Extra keyword arguments (``label``, ``color``, ``line_style``,
    ``axis_no``, ``label_offset``) are passed to :class:`ReferenceLine`.
    """
    if value is None:
        value = default_line_value(orientation, config.x_axis.axis_type, sources, now, settings)
    line = ReferenceLine(id=new_id("line"), orientation=Orientation(orientation), value=value, **attributes)
    return replace(config, reference_lines=config.reference_lines + (line,)), line


def update_reference_line(config: ChartConfig, line_id: str, **changes) -> ChartConfig:
    """Patch one reference line.

    Raises:
        KeyError: If the chart has no line with ``line_id``.
    """
    if not any(line.id == line_id for line in config.reference_lines):
        raise KeyError(line_id)
    return replace(
        config,
        reference_lines=tuple(
            replace(line, **changes) if line.id == line_id else line for line in config.reference_lines
        ),
    )


def remove_reference_line(config: ChartConfig, line_id: str) -> ChartConfig:
    return replace(config, reference_lines=tuple(line for line in config.reference_lines if line.id != line_id))
