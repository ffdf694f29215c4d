"""Interlock threshold curves: table editing, interpolation and rendering.

An interlock definition holds several named thresholds that share one X
parameter. In the editor they are shown as a table whose rows are the union
of all X values and whose columns are thresholds, so removing a row removes
that X from every threshold at once.

Curves are drawn with the chart's interpolation mode. Step modes follow the
usual piecewise-constant conventions: ``stepAfter`` holds each value until the
next point, ``stepBefore`` jumps at the previous point, and ``step`` switches
halfway between points.

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .models import InterlockDefinition, InterlockThreshold, Interpolation, ThresholdPoint
from .scales import LinearScale
from .settings import DEFAULT_SETTINGS, DEFAULT_THRESHOLD_COLORS, ChartSettings
from .utils import new_id

logger = logging.getLogger(__name__)

X_TOLERANCE = 1e-4


def next_threshold_color(
    thresholds: Sequence[InterlockThreshold],
    palette: Sequence[str] = DEFAULT_THRESHOLD_COLORS,
) -> str:
    """First palette color not used yet; wraps by count once all are taken."""
    used = {t.color.upper() for t in thresholds}
    for color in palette:
        if color.upper() not in used:
            return color
    return palette[len(thresholds) % len(palette)]


def sort_points(points: Iterable[ThresholdPoint]) -> Tuple[ThresholdPoint, ...]:
    return tuple(sorted(points, key=lambda p: p.x))


def unique_x_values(thresholds: Sequence[InterlockThreshold]) -> List[float]:
    """Sorted union of the X values of all thresholds (table rows)."""
    return sorted({point.x for threshold in thresholds for point in threshold.points})


def value_grid(thresholds: Sequence[InterlockThreshold]) -> Dict[float, Dict[str, float]]:
    """Table cells: ``{x: {threshold_id: y}}`` with one entry per row."""
    grid: Dict[float, Dict[str, float]] = {x: {} for x in unique_x_values(thresholds)}
    for threshold in thresholds:
        for point in threshold.points:
            grid[point.x][threshold.id] = point.y
    return grid


class InterlockTable:
    """Mutable draft of an interlock definition, edited as a table.

    The draft never touches the definition it was created from; call
    :meth:`definition` to get the edited copy.
    """

    def __init__(self, definition: InterlockDefinition, settings: ChartSettings = DEFAULT_SETTINGS) -> None:
        self._base = definition
        self._thresholds: List[InterlockThreshold] = [
            replace(t, points=sort_points(t.points)) for t in definition.thresholds
        ]
        self.settings = settings

    @property
    def thresholds(self) -> Tuple[InterlockThreshold, ...]:
        return tuple(self._thresholds)

    @property
    def x_values(self) -> List[float]:
        return unique_x_values(self._thresholds)

    def definition(self) -> InterlockDefinition:
        return replace(self._base, thresholds=tuple(self._thresholds))

    def _index(self, threshold_id: str) -> int:
        for i, threshold in enumerate(self._thresholds):
            if threshold.id == threshold_id:
                return i
        raise KeyError(threshold_id)

    def _set_points(self, index: int, points: Iterable[ThresholdPoint]) -> None:
        self._thresholds[index] = replace(self._thresholds[index], points=sort_points(points))

    # ----- cells -----

    def set_point(self, threshold_id: str, x: float, y: float) -> None:
        """Insert or update the point of one threshold at ``x``."""
        index = self._index(threshold_id)
        x, y = float(x), float(y)
        points = [p for p in self._thresholds[index].points if p.x != x]
        points.append(ThresholdPoint(x, y))
        self._set_points(index, points)

    def clear_point(self, threshold_id: str, x: float) -> None:
        index = self._index(threshold_id)
        self._set_points(index, (p for p in self._thresholds[index].points if p.x != x))

    def set_cell(self, threshold_id: str, x: float, text: str) -> bool:
        """Apply a typed cell value; empty text clears the cell.

        Returns:
            False when the text is not a number (nothing changes).
        """
        if not text.strip():
            self.clear_point(threshold_id, x)
            return True
        try:
            y = float(text)
        except ValueError:
            return False
        self.set_point(threshold_id, x, y)
        return True

    # ----- rows -----

    def remove_point(self, x: float) -> None:
        """Remove the row at ``x`` from every threshold."""
        for i, threshold in enumerate(self._thresholds):
            self._set_points(i, (p for p in threshold.points if abs(p.x - x) > X_TOLERANCE))

    def change_x(self, old_x: float, new_x: float) -> bool:
        """Move a row to a new X value.

        Returns:
            False, leaving the table unchanged, if another row already uses
            ``new_x``.
        """
        new_x = float(new_x)
        if new_x == old_x:
            return True
        if any(abs(x - new_x) <= X_TOLERANCE for x in self.x_values if x != old_x):
            logger.debug("Row x=%s already exists", new_x)
            return False
        for i, threshold in enumerate(self._thresholds):
            self._set_points(
                i, (ThresholdPoint(new_x, p.y) if p.x == old_x else p for p in threshold.points)
            )
        return True

    def add_row(self) -> float:
        """Append a row 10 past the largest X.

        The first threshold gets a point repeating its last value; the other
        thresholds leave the new cell empty.
        """
        new_x = max(self.x_values + [0.0]) + 10.0
        if self._thresholds:
            first = self._thresholds[0]
            y = first.points[-1].y if first.points else 0.0
            self._set_points(0, first.points + (ThresholdPoint(new_x, y),))
        return new_x

    # ----- columns -----

    def add_threshold(self, name: Optional[str] = None) -> InterlockThreshold:
        """Add a threshold seeded with ``y=0`` at every existing row.

        Raises:
            ValueError: If a threshold named exactly ``name`` already exists;
                the table is left unchanged.
        """
        names = {t.name for t in self._thresholds}
        if name is not None and name in names:
            raise ValueError(f"Threshold name {name!r} already used")
        if name is None:
            number = len(self._thresholds) + 1
            while f"Threshold {number}" in names:
                number += 1
            name = f"Threshold {number}"
        threshold = InterlockThreshold(
            id=new_id("threshold"),
            name=name,
            color=next_threshold_color(self._thresholds, self.settings.threshold_colors),
            points=tuple(ThresholdPoint(x, 0.0) for x in self.x_values),
        )
        self._thresholds.append(threshold)
        return threshold

    def remove_threshold(self, threshold_id: str) -> None:
        del self._thresholds[self._index(threshold_id)]

    def rename_threshold(self, threshold_id: str, name: str) -> bool:
        """Rename a threshold.

        Returns:
            False, leaving every name unchanged, when a sibling already uses
            exactly ``name``.
        """
        index = self._index(threshold_id)
        if any(t.name == name for t in self._thresholds if t.id != threshold_id):
            logger.debug("Threshold name %r already used", name)
            return False
        self._thresholds[index] = replace(self._thresholds[index], name=name)
        return True

    def set_color(self, threshold_id: str, color: str) -> None:
        index = self._index(threshold_id)
        self._thresholds[index] = replace(self._thresholds[index], color=color)


# ---------------------------------------------------------------------------
# Interpolation
# ---------------------------------------------------------------------------

_STEP_T = {
    Interpolation.STEP: 0.5,
    Interpolation.STEP_BEFORE: 0.0,
    Interpolation.STEP_AFTER: 1.0,
}


def curve_arrays(
    xs: Sequence[float], ys: Sequence[float], mode: Interpolation = Interpolation.LINEAR
) -> Tuple[np.ndarray, np.ndarray]:
    """Polyline vertices through ``(xs, ys)`` in the given order."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    mode = Interpolation(mode)
    if mode == Interpolation.LINEAR or xs.size < 2:
        return xs.copy(), ys.copy()

    t = _STEP_T[mode]
    prev_x, next_x = xs[:-1], xs[1:]
    prev_y, next_y = ys[:-1], ys[1:]
    if t <= 0:
        first_x, first_y, second_x = prev_x, next_y, next_x
    else:
        first_x = prev_x * (1 - t) + next_x * t
        first_y, second_x = prev_y, first_x

    vx = np.empty(2 * (xs.size - 1))
    vy = np.empty(2 * (xs.size - 1))
    vx[0::2], vy[0::2] = first_x, first_y
    vx[1::2], vy[1::2] = second_x, next_y

    head_x, head_y = xs[:1], ys[:1]
    if 0 < t < 1:
        return np.concatenate((head_x, vx, xs[-1:])), np.concatenate((head_y, vy, ys[-1:]))
    return np.concatenate((head_x, vx)), np.concatenate((head_y, vy))


def interpolate(points: Sequence[ThresholdPoint], mode: Interpolation = Interpolation.LINEAR) -> List[Tuple[float, float]]:
    """Vertices of the curve drawn through ``points``, sorted by X (ties keep order)."""
    ordered = sort_points(points)
    vx, vy = curve_arrays([p.x for p in ordered], [p.y for p in ordered], mode)
    return list(zip(vx.tolist(), vy.tolist()))


def value_at(
    points: Sequence[ThresholdPoint], x: float, mode: Interpolation = Interpolation.LINEAR
) -> Optional[float]:
    """Threshold value at ``x``; ``None`` outside the curve's X extent."""
    ordered = sort_points(points)
    if not ordered or x < ordered[0].x or x > ordered[-1].x:
        return None
    if x == ordered[0].x:
        return ordered[0].y
    mode = Interpolation(mode)
    for prev, point in zip(ordered, ordered[1:]):
        if not prev.x <= x <= point.x:
            continue
        if mode == Interpolation.LINEAR:
            if point.x == prev.x:
                return point.y
            return prev.y + (x - prev.x) / (point.x - prev.x) * (point.y - prev.y)
        if mode == Interpolation.STEP_AFTER:
            return point.y if x == point.x else prev.y
        if mode == Interpolation.STEP_BEFORE:
            return point.y
        return point.y if x >= (prev.x + point.x) / 2.0 else prev.y
    return ordered[-1].y


def active_thresholds(
    definition: InterlockDefinition, selected: Optional[Sequence[str]] = None
) -> Tuple[InterlockThreshold, ...]:
    """Thresholds to draw; no selection means all of them."""
    if not selected:
        return definition.thresholds
    wanted = set(selected)
    return tuple(t for t in definition.thresholds if t.id in wanted)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LegendEntry:
    label: str
    color: str
    x: float
    y: float
    width: float
    row: int


@dataclass(frozen=True)
class ThresholdCurve:
    """One threshold in pixel space; ``pixels`` has shape ``(n, 2)``."""

    threshold_id: str
    name: str
    color: str
    pixels: np.ndarray


@dataclass(frozen=True)
class InterlockRender:
    curves: Tuple[ThresholdCurve, ...]
    legend: Tuple[LegendEntry, ...]
    legend_rows: int = 0


def layout_legend(
    entries: Sequence[Tuple[str, str]],
    plot_width: float,
    measure: Optional[Callable[[str], float]] = None,
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> List[LegendEntry]:
    """Place ``(label, color)`` legend entries, wrapping onto new rows.

    An entry moves to the next row when it would overflow ``plot_width``;
    an entry wider than the plot still gets a row of its own.
    """
    if measure is None:
        measure = lambda text: len(text) * settings.legend_char_px  # noqa: E731

    placed: List[LegendEntry] = []
    x = 0.0
    row = 0
    for label, color in entries:
        width = settings.legend_swatch_px + 4.0 + measure(label)
        if x > 0.0 and x + width > plot_width:
            row += 1
            x = 0.0
        placed.append(
            LegendEntry(label=label, color=color, x=x, y=row * settings.legend_row_height_px, width=width, row=row)
        )
        x += width + settings.legend_padding_px
    return placed


def render(
    definition: InterlockDefinition,
    interpolation: Interpolation,
    x_scale: LinearScale,
    y_scale: LinearScale,
    selected: Optional[Sequence[str]] = None,
    measure: Optional[Callable[[str], float]] = None,
    settings: ChartSettings = DEFAULT_SETTINGS,
) -> InterlockRender:
    """Project the selected threshold curves and their legend to pixels."""
    curves: List[ThresholdCurve] = []
    for threshold in active_thresholds(definition, selected):
        vertices = interpolate(threshold.points, interpolation)
        if vertices:
            data = np.asarray(vertices, dtype=float)
            pixels = np.column_stack((x_scale.map_array(data[:, 0]), y_scale.map_array(data[:, 1])))
        else:
            pixels = np.empty((0, 2))
        curves.append(ThresholdCurve(threshold.id, threshold.name, threshold.color, pixels))

    plot_width = abs(x_scale.range[1] - x_scale.range[0])
    legend = layout_legend([(c.name, c.color) for c in curves], plot_width, measure, settings)
    rows = legend[-1].row + 1 if legend else 0
    return InterlockRender(curves=tuple(curves), legend=tuple(legend), legend_rows=rows)
