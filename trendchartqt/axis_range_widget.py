"""Axis range editor: an auto toggle plus dual min/max sliders.

Emits range patches in the shape :meth:`ChartEditor.update_axis_range`
accepts. Unchecking *Auto* emits ``{"auto": False}`` with no bounds, so the
editor keeps the bounds the axis is currently drawn with instead of resetting
them.

Supports numeric axes and datetime axes. In datetime mode the sliders step
through a sorted list of ISO8601 timestamps and bounds are emitted as strings.

Typical usage:

    widget = AxisRangeWidget(axis_no=1, min_val=0, max_val=200, step=0.5)
    widget.rangePatched.connect(lambda axis_no, patch: editor.update_axis_range(axis_no, **patch))
    widget.set_axis_range(editor.axis_groups[0].range)

Google-style docstrings + PEP8.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import QCheckBox, QHBoxLayout, QLabel, QSlider, QVBoxLayout, QWidget

from .models import AxisRange
from .utils import to_epoch


class AxisRangeWidget(QWidget):
    """Auto/manual range control for one axis.

    Signals:
        rangePatched(int, object): ``(axis_no, patch)`` where ``patch`` is a
            dict with ``auto`` and, for slider moves, ``min`` and ``max``.
    """

    rangePatched = Signal(int, object)

    def __init__(
        self,
        parent: Optional[QWidget] = None,
        *,
        axis_no: int = 1,
        min_val: Optional[float] = None,
        max_val: Optional[float] = None,
        step: float = 1.0,
        values: Optional[List[str]] = None,
        label: str = "Range",
    ) -> None:
        """Initialize the range editor.

        Args:
            parent: Parent widget.
            axis_no: Axis the emitted patches apply to.
            min_val: Lowest selectable bound (numeric mode).
            max_val: Highest selectable bound (numeric mode).
            step: Slider resolution (numeric mode).
            values: ISO8601 timestamps to choose from; enables datetime mode.
            label: Caption shown above the controls.
        """
        super().__init__(parent)
        self.axis_no = axis_no

        self._is_iso8601 = values is not None
        self._iso_values: List[str] = []
        if self._is_iso8601:
            self._iso_values = sorted(values, key=to_epoch)
            self._min_numeric = 0.0
            self._max_numeric = float(max(len(self._iso_values) - 1, 0))
            self._step = 1.0
        else:
            self._min_numeric = float(min_val) if min_val is not None else 0.0
            self._max_numeric = float(max_val) if max_val is not None else 100.0
            self._step = float(step) if step > 0 else 1.0

        self._slider_max = int(round((self._max_numeric - self._min_numeric) / self._step))
        self._syncing = False

        self._setup_ui(label)
        self._syncing = True
        self._min_slider.setValue(0)
        self._max_slider.setValue(self._slider_max)
        self._syncing = False
        self._update_labels()
        self._update_enabled()

    def _setup_ui(self, label: str) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(5, 5, 5, 5)

        header = QHBoxLayout()
        self._label = QLabel(label)
        header.addWidget(self._label)
        header.addStretch()
        self._auto_check = QCheckBox("Auto")
        self._auto_check.setChecked(True)
        self._auto_check.toggled.connect(self._on_auto_toggled)
        header.addWidget(self._auto_check)
        layout.addLayout(header)

        self._min_slider, self._min_label = self._add_slider_row(layout, "Min:", self._on_min_changed)
        self._max_slider, self._max_label = self._add_slider_row(layout, "Max:", self._on_max_changed)

    def _add_slider_row(self, layout: QVBoxLayout, caption: str, slot) -> Tuple[QSlider, QLabel]:
        row = QHBoxLayout()
        row.addWidget(QLabel(caption))
        slider = QSlider(Qt.Horizontal)
        slider.setMinimum(0)
        slider.setMaximum(self._slider_max)
        slider.valueChanged.connect(slot)
        row.addWidget(slider, 1)
        value_label = QLabel()
        value_label.setMinimumWidth(120)
        row.addWidget(value_label)
        layout.addLayout(row)
        return slider, value_label

    # ----- conversions -----

    def _slider_to_value(self, slider_val: int) -> float:
        return self._min_numeric + slider_val * self._step

    def _value_to_slider(self, value: float) -> int:
        position = int(round((value - self._min_numeric) / self._step))
        return max(0, min(self._slider_max, position))

    def _format_value(self, numeric_value: float) -> str:
        if self._is_iso8601:
            idx = int(numeric_value)
            if 0 <= idx < len(self._iso_values):
                return self._iso_values[idx]
            return ""
        if self._step >= 1.0:
            return str(int(numeric_value))
        return f"{numeric_value:.2f}"

    def _bound(self, slider: QSlider) -> Union[float, str]:
        value = self._slider_to_value(slider.value())
        return self._format_value(value) if self._is_iso8601 else value

    def _iso_index(self, value: Union[float, str]) -> int:
        target = to_epoch(value)
        epochs = [to_epoch(v) for v in self._iso_values]
        return min(range(len(epochs)), key=lambda i: abs(epochs[i] - target)) if epochs else 0

    # ----- slots -----

    def _on_auto_toggled(self, checked: bool) -> None:
        self._update_enabled()
        if not self._syncing:
            self.rangePatched.emit(self.axis_no, {"auto": bool(checked)})

    def _on_min_changed(self, slider_val: int) -> None:
        if slider_val > self._max_slider.value():
            self._min_slider.setValue(self._max_slider.value())
            return
        self._update_labels()
        self._emit_bounds()

    def _on_max_changed(self, slider_val: int) -> None:
        if slider_val < self._min_slider.value():
            self._max_slider.setValue(self._min_slider.value())
            return
        self._update_labels()
        self._emit_bounds()

    def _emit_bounds(self) -> None:
        if self._syncing or self._auto_check.isChecked():
            return
        min_val, max_val = self.get_range()
        self.rangePatched.emit(self.axis_no, {"auto": False, "min": min_val, "max": max_val})

    def _update_labels(self) -> None:
        self._min_label.setText(self._format_value(self._slider_to_value(self._min_slider.value())))
        self._max_label.setText(self._format_value(self._slider_to_value(self._max_slider.value())))

    def _update_enabled(self) -> None:
        manual = not self._auto_check.isChecked()
        self._min_slider.setEnabled(manual)
        self._max_slider.setEnabled(manual)

    # ----- public API -----

    def is_auto(self) -> bool:
        return self._auto_check.isChecked()

    def get_range(self) -> Tuple[Any, Any]:
        """Current slider bounds (strings in datetime mode)."""
        return self._bound(self._min_slider), self._bound(self._max_slider)

    def set_axis_range(self, axis_range: AxisRange) -> None:
        """Show an axis range without emitting a patch."""
        self._syncing = True
        try:
            self._auto_check.setChecked(axis_range.auto)
            if axis_range.min is not None and axis_range.max is not None:
                if self._is_iso8601:
                    lo, hi = self._iso_index(axis_range.min), self._iso_index(axis_range.max)
                else:
                    lo = self._value_to_slider(float(axis_range.min))
                    hi = self._value_to_slider(float(axis_range.max))
                self._min_slider.setValue(0)
                self._max_slider.setValue(max(lo, hi))
                self._min_slider.setValue(min(lo, hi))
        finally:
            self._syncing = False
        self._update_labels()
        self._update_enabled()

    def patch(self) -> Dict[str, Any]:
        """Patch describing the widget's current state."""
        if self.is_auto():
            return {"auto": True}
        min_val, max_val = self.get_range()
        return {"auto": False, "min": min_val, "max": max_val}
