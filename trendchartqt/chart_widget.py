"""PyQtGraph trend chart with a draggable reference line layer.

The view box is laid out in plot pixels (``[0, width] x [0, height]`` with Y
pointing down) and every item is placed through the engine's own scales, so
series, interlock curves and reference lines share one coordinate space and
the widget needs no pyqtgraph auto-ranging.

Two layers are kept apart:

  - the series layer (data series, interlock curves, axis ticks), rebuilt
    only when scales or plotted configuration change;
  - the reference line layer, rebuilt on hover and on every drag move.

A reference line commit changes only the line's value, which is not part of
the scale signature, so it redraws the line layer alone.

Typical usage:

    editor = ChartEditor(config, sources=periods)
    chart = TrendChartWidget(editor)
    chart.lineCommitted.connect(lambda line_id, value: print(line_id, value))
    chart.show()

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import numpy as np
import pyqtgraph as pg
from PySide6 import QtCore
from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import QVBoxLayout, QWidget

from .editor import ChartEditor
from .interlock import curve_arrays, render as render_interlock
from .models import ChartConfig, LineStyle, Orientation, ParameterType, XAxisType
from .reference_lines import (
    DragTarget,
    LineGeometry,
    LineState,
    OverlayUpdate,
    PointerEvent,
    PointerEventKind,
    ReferenceLineOverlay,
)
from .scales import ChartScales, LinearScale, series_for_parameter, x_values
from .settings import DEFAULT_SETTINGS, ChartSettings

logger = logging.getLogger(__name__)

DEFAULT_PLOT_SIZE: Tuple[float, float] = (640.0, 400.0)

_PEN_STYLES = {
    "solid": QtCore.Qt.SolidLine,
    "dash": QtCore.Qt.DashLine,
    "dashed": QtCore.Qt.DashLine,
    "dot": QtCore.Qt.DotLine,
    "dotted": QtCore.Qt.DotLine,
    "dashdot": QtCore.Qt.DashDotLine,
}


def make_pen(color: str, width: float = 1.0, line_style: str = "solid") -> pg.mkPen:
    return pg.mkPen(color=color, width=width, style=_PEN_STYLES.get(line_style, QtCore.Qt.SolidLine))


def style_pen(style: LineStyle) -> pg.mkPen:
    return make_pen(style.color, style.width, style.line_style)


def tick_labels(scale: LinearScale, axis_type: Optional[XAxisType] = None, count: int = 8) -> List[Tuple[float, str]]:
    """``(pixel, text)`` ticks for a pyqtgraph ``AxisItem.setTicks`` call."""
    ticks = []
    for value in scale.ticks(count):
        if axis_type == XAxisType.DATETIME:
            text = datetime.fromtimestamp(value, tz=timezone.utc).strftime("%m-%d %H:%M")
        else:
            text = f"{value:g}"
        ticks.append((scale.map(value), text))
    return ticks


class TrendChartWidget(QWidget):
    """Multi-axis trend chart bound to a :class:`ChartEditor`.

    Attributes:
        configChanged: Emitted with every new chart record.
        lineCommitted: Emitted with ``(line_id, value)`` after a line drag.
        labelCommitted: Emitted with ``(line_id, label_offset)`` after a
            label drag.
        series_redraws: Number of series layer rebuilds.
        line_redraws: Number of reference line layer rebuilds.
    """

    configChanged = Signal(object)
    lineCommitted = Signal(str, object)
    labelCommitted = Signal(str, object)

    def __init__(
        self,
        editor: ChartEditor,
        parent: Optional[QWidget] = None,
        settings: ChartSettings = DEFAULT_SETTINGS,
    ) -> None:
        super().__init__(parent)
        self._editor = editor
        self.settings = settings
        self._overlay = ReferenceLineOverlay(
            on_commit=self._on_line_commit, settings=settings, on_label_commit=self._on_label_commit
        )
        self._scales: Optional[ChartScales] = None
        self._plotted_config: Optional[ChartConfig] = None
        self._plot_size: Optional[Tuple[float, float]] = None
        self._last_pointer: Tuple[Optional[float], Optional[float]] = (None, None)

        self._series_items: List[pg.GraphicsObject] = []
        self._line_items: List[pg.GraphicsObject] = []
        self.series_redraws = 0
        self.line_redraws = 0

        self._build_ui()
        editor.subscribe(self._on_config_changed)
        self.refresh()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self.plot_widget = pg.PlotWidget()
        self.plot_widget.setBackground("w")
        self.plot_widget.showGrid(x=True, y=True, alpha=0.3)
        layout.addWidget(self.plot_widget)

        self.plot_item = self.plot_widget.getPlotItem()
        self.plot_item.hideButtons()
        self.plot_item.showAxis("right")

        vb = self.plot_item.vb
        vb.setMouseEnabled(x=False, y=False)
        vb.setMenuEnabled(False)
        vb.disableAutoRange()
        vb.invertY(True)
        vb.sigResized.connect(self._on_view_resized)

        self._original_mousePressEvent = vb.mousePressEvent
        self._original_mouseMoveEvent = vb.mouseMoveEvent
        self._original_mouseReleaseEvent = vb.mouseReleaseEvent

        vb.mousePressEvent = self._custom_mousePressEvent
        vb.mouseMoveEvent = self._custom_mouseMoveEvent
        vb.mouseReleaseEvent = self._custom_mouseReleaseEvent
        vb.ungrabMouseEvent = self._custom_ungrabMouseEvent

        self.plot_widget.scene().sigMouseMoved.connect(self._on_scene_mouse_moved)

    # ----- state -----

    @property
    def editor(self) -> ChartEditor:
        return self._editor

    @property
    def overlay(self) -> ReferenceLineOverlay:
        return self._overlay

    @property
    def scales(self) -> Optional[ChartScales]:
        return self._scales

    def plot_size(self) -> Tuple[float, float]:
        """Plot area in pixels; a default size until the view is laid out."""
        if self._plot_size is not None:
            return self._plot_size
        rect = self.plot_item.vb.boundingRect()
        if rect.width() >= 1 and rect.height() >= 1:
            return float(rect.width()), float(rect.height())
        return DEFAULT_PLOT_SIZE

    def set_plot_size(self, width: float, height: float) -> None:
        """Pin the plot size (used when rendering off screen)."""
        self._plot_size = (float(width), float(height))
        self.refresh()

    # ----- rendering -----

    def refresh(self, force: bool = False) -> None:
        """Bring both layers up to date with the editor.

        The series layer is rebuilt only when the scales or the plotted part
        of the configuration changed.
        """
        config = self._editor.config
        width, height = self.plot_size()
        scales = self._editor.scales(width, height)

        self._overlay.set_scales(scales)
        self._overlay.set_lines(config.reference_lines)

        plotted = replace(config, reference_lines=())
        if force or scales is not self._scales or plotted != self._plotted_config:
            self._scales = scales
            self._plotted_config = plotted
            self._redraw_series()
        self._redraw_lines()

    def _clear_items(self, items: List[pg.GraphicsObject]) -> None:
        for item in items:
            self.plot_item.removeItem(item)
        items.clear()

    def _add_series_item(self, item: pg.GraphicsObject) -> None:
        self.plot_item.addItem(item)
        self._series_items.append(item)

    def _redraw_series(self) -> None:
        scales = self._scales
        config = self._editor.config
        self._clear_items(self._series_items)
        self.plot_item.vb.setRange(
            xRange=(0.0, scales.width), yRange=(0.0, scales.height), padding=0.0
        )

        for parameter in config.parameters:
            y_scale = scales.y_for(parameter.axis_no) or scales.y[min(scales.y)]
            if parameter.parameter_type == ParameterType.INTERLOCK:
                self._draw_interlock(parameter, y_scale)
                continue
            pen = style_pen(parameter.style)
            for source in self._editor.sources:
                ys = series_for_parameter(parameter, source, self._editor.conversions)
                if ys.size == 0:
                    continue
                xs = x_values(config.x_axis, source, ys.size)
                n = min(xs.size, ys.size)
                vx, vy = curve_arrays(scales.x.map_array(xs[:n]), y_scale.map_array(ys[:n]), config.interpolation)
                self._add_series_item(pg.PlotCurveItem(x=vx, y=vy, pen=pen, connect="finite"))

        self._update_axes()
        self.series_redraws += 1
        logger.debug("Series layer redrawn (%d items)", len(self._series_items))

    def _draw_interlock(self, parameter, y_scale: LinearScale) -> None:
        reference = parameter.interlock
        if reference is None:
            return
        result = render_interlock(
            reference.definition,
            self._editor.config.interpolation,
            self._scales.x,
            y_scale,
            selected=reference.selected_thresholds,
            settings=self.settings,
        )
        for curve in result.curves:
            if len(curve.pixels) == 0:
                continue
            self._add_series_item(
                pg.PlotCurveItem(x=curve.pixels[:, 0], y=curve.pixels[:, 1], pen=make_pen(curve.color, 2.0))
            )
        for entry in result.legend:
            text = pg.TextItem(entry.label, color=entry.color, anchor=(0, 0))
            text.setPos(entry.x + self.settings.legend_swatch_px + 4.0, entry.y)
            self._add_series_item(text)

    def _update_axes(self) -> None:
        scales = self._scales
        groups = self._editor.axis_groups
        self.plot_item.getAxis("bottom").setTicks([tick_labels(scales.x, scales.x_axis_type)])
        self.plot_item.setLabel("bottom", self._editor.config.x_axis.label or scales.x_axis_type.value)

        sides = ("left", "right")
        for side in sides:
            self.plot_item.getAxis(side).setTicks([[]])
            self.plot_item.setLabel(side, "")
        for side, group in zip(sides, groups):
            scale = scales.y_for(group.axis_no)
            if scale is None:
                continue
            self.plot_item.getAxis(side).setTicks([tick_labels(scale)])
            self.plot_item.setLabel(side, group.label)

    def _redraw_lines(self) -> None:
        self._clear_items(self._line_items)
        if self._scales is None:
            return
        lines = {line.id: line for line in self._overlay.lines}
        for geometry in self._overlay.layout():
            line = lines[geometry.line_id]
            self._draw_line(geometry, line.color, line.line_style, line.label)
        self.line_redraws += 1

    def _draw_line(self, geometry: LineGeometry, color: str, line_style: str, label: str) -> None:
        width = 1.5 if geometry.state == LineState.IDLE else 3.0
        p = geometry.position
        if geometry.orientation == Orientation.VERTICAL:
            xs, ys = [p, p], [0.0, self._scales.height]
        else:
            xs, ys = [0.0, self._scales.width], [p, p]
        item = pg.PlotCurveItem(x=np.array(xs), y=np.array(ys), pen=make_pen(color, width, line_style))
        item.setZValue(10)
        self.plot_item.addItem(item)
        self._line_items.append(item)
        if label:
            anchor = (0, 0) if geometry.orientation == Orientation.VERTICAL else (1, 1)
            text = pg.TextItem(label, color=color, anchor=anchor)
            text.setPos(*geometry.label_pos)
            text.setZValue(11)
            self.plot_item.addItem(text)
            self._line_items.append(text)

    # ----- interaction -----

    def handle_pointer(self, event: PointerEvent) -> OverlayUpdate:
        """Feed one pointer event (plot pixels) to the reference line overlay."""
        if event.x is not None and event.y is not None:
            self._last_pointer = (event.x, event.y)
        update = self._overlay.handle(event)
        # A commit goes through the editor, whose update redraws the lines.
        if update.redraw_lines and update.commit is None and update.label_commit is None:
            self._redraw_lines()
        self._update_cursor()
        return update

    def _update_cursor(self) -> None:
        active = self._overlay.active_line() or next(
            (line.id for line in self._overlay.lines if self._overlay.state_of(line.id) == LineState.HOVERED),
            None,
        )
        if active is None:
            self.plot_widget.unsetCursor()
            return
        on_label = self._overlay.active_target() == DragTarget.LABEL or (
            self._overlay.active_line() is None and self._overlay.hit_test_label(*self._last_pointer) == active
        )
        if on_label:
            self.plot_widget.setCursor(Qt.SizeAllCursor)
            return
        line = next(line for line in self._overlay.lines if line.id == active)
        cursor = Qt.SizeHorCursor if line.orientation == Orientation.VERTICAL else Qt.SizeVerCursor
        self.plot_widget.setCursor(cursor)

    def _view_pos(self, scene_pos) -> Tuple[float, float]:
        point = self.plot_item.vb.mapSceneToView(scene_pos)
        return point.x(), point.y()

    def _custom_mousePressEvent(self, ev):
        """Grab a reference line on left press; otherwise default handling."""
        if ev.button() == QtCore.Qt.LeftButton:
            x, y = self._view_pos(ev.scenePos())
            self.handle_pointer(PointerEvent(PointerEventKind.DOWN, x, y))
            if self._overlay.active_line() is not None:
                ev.accept()
                return
        self._original_mousePressEvent(ev)

    def _custom_mouseMoveEvent(self, ev):
        if self._overlay.active_line() is not None:
            x, y = self._view_pos(ev.scenePos())
            self.handle_pointer(PointerEvent(PointerEventKind.MOVE, x, y))
            ev.accept()
        else:
            self._original_mouseMoveEvent(ev)

    def _custom_mouseReleaseEvent(self, ev):
        if self._overlay.active_line() is not None:
            x, y = self._view_pos(ev.scenePos())
            self.handle_pointer(PointerEvent(PointerEventKind.UP, x, y))
            ev.accept()
        else:
            self._original_mouseReleaseEvent(ev)

    def _custom_ungrabMouseEvent(self, ev):
        if self._overlay.active_line() is not None:
            self.handle_pointer(PointerEvent(PointerEventKind.CAPTURE_LOST))

    def _on_scene_mouse_moved(self, scene_pos) -> None:
        if self._overlay.active_line() is None:
            x, y = self._view_pos(scene_pos)
            self.handle_pointer(PointerEvent(PointerEventKind.MOVE, x, y))

    def leaveEvent(self, event) -> None:
        self.handle_pointer(PointerEvent(PointerEventKind.LEAVE))
        super().leaveEvent(event)

    # ----- callbacks -----

    def _on_line_commit(self, line_id: str, value) -> None:
        self._editor.commit_reference_line(line_id, value)
        self.lineCommitted.emit(line_id, value)

    def _on_label_commit(self, line_id: str, label_offset) -> None:
        self._editor.commit_label_offset(line_id, label_offset)
        self.labelCommitted.emit(line_id, label_offset)

    def _on_config_changed(self, config: ChartConfig) -> None:
        self.refresh()
        self.configChanged.emit(config)

    def _on_view_resized(self, *_args) -> None:
        if self._plot_size is None:
            self.refresh()
