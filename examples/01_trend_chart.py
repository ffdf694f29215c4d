"""Example 01: Multi-axis trend chart with draggable reference lines.

This example demonstrates:
- Two data periods plotted on a datetime X axis
- Two Y axes, one of them mixing °C and °F (with a unit warning)
- A formula parameter on a third axis
- Horizontal and vertical reference lines that can be dragged
- An axis range control switching between auto and manual

Drag a reference line and watch the status bar: the new value is written
back to the chart record once, when the mouse is released.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta

import numpy as np
from PySide6 import QtWidgets
from PySide6.QtWidgets import QHBoxLayout, QMainWindow, QVBoxLayout, QWidget

from trendchartqt import (
    ChartConfig,
    ChartEditor,
    DataSource,
    Orientation,
    Parameter,
)
from trendchartqt.axis_range_widget import AxisRangeWidget
from trendchartqt.chart_widget import TrendChartWidget
from trendchartqt.formula import definition_from_expression


def make_source(source_id: str, start: datetime, days: int, seed: int, n: int = 500) -> DataSource:
    """Synthetic temperature and pressure series for one period."""
    rng = np.random.default_rng(seed)
    t = np.linspace(0, 4 * np.pi, n)
    temp_c = 60.0 + 15.0 * np.sin(t) + rng.normal(0, 1.5, n)
    return DataSource(
        id=source_id,
        label=source_id,
        start=start.isoformat(),
        end=(start + timedelta(days=days)).isoformat(),
        series={
            "Oil Temp|°C": temp_c.tolist(),
            "Coolant Temp|°F": (temp_c * 9 / 5 + 32 - 20).tolist(),
            "Pressure|kPa": (300.0 + 40.0 * np.cos(t) + rng.normal(0, 4, n)).tolist(),
        },
    )


class TrendChartExample(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Trend chart")
        self.resize(1200, 700)

        base = datetime(2024, 1, 1)
        config = ChartConfig(
            id="demo",
            title="Oil system",
            parameters=(
                Parameter(id="oil", source_ref="Oil Temp|°C", axis_no=1),
                Parameter(id="coolant", source_ref="Coolant Temp|°F", axis_no=1),
                Parameter(id="pressure", source_ref="Pressure|kPa", axis_no=2),
            ),
        )
        self.editor = ChartEditor(
            config,
            sources=[
                make_source("run-1", base, 2, seed=1),
                make_source("run-2", base + timedelta(days=3), 2, seed=2),
            ],
        )
        self.editor.attach_formula(
            definition_from_expression("Pressure (bar)", "Pressure|kPa / 100", unit="bar"), axis_no=3
        )
        self.editor.add_reference_line(Orientation.HORIZONTAL, value=75.0, label="High temp")
        self.editor.add_reference_line(Orientation.VERTICAL, label="Event")

        self._setup_ui()
        self._show_issues()

    def _setup_ui(self):
        widget = QWidget()
        self.setCentralWidget(widget)
        layout = QHBoxLayout(widget)

        self.chart = TrendChartWidget(self.editor)
        self.chart.lineCommitted.connect(self._on_line_committed)
        layout.addWidget(self.chart, 4)

        controls = QVBoxLayout()
        for group in self.editor.axis_groups:
            scale = self.editor.scales(*self.chart.plot_size()).y_for(group.axis_no)
            lo, hi = scale.domain if scale is not None else (0.0, 100.0)
            range_widget = AxisRangeWidget(
                axis_no=group.axis_no, min_val=lo, max_val=hi, step=(hi - lo) / 100, label=group.label
            )
            range_widget.set_axis_range(group.range)
            range_widget.rangePatched.connect(
                lambda axis_no, patch: self.editor.update_axis_range(axis_no, **patch)
            )
            controls.addWidget(range_widget)

        unify = QtWidgets.QPushButton("Unify axis 1 units")
        unify.clicked.connect(self._on_unify)
        controls.addWidget(unify)
        controls.addStretch()
        layout.addLayout(controls, 1)

    def _show_issues(self):
        issues = self.editor.issues
        text = "; ".join(i.message for i in issues) if issues else "No warnings"
        self.statusBar().showMessage(text)

    def _on_unify(self):
        self.editor.unify_axis_units(1)
        self._show_issues()

    def _on_line_committed(self, line_id, value):
        self.statusBar().showMessage(f"Line {line_id} moved to {value}")


def main():
    app = QtWidgets.QApplication(sys.argv)
    window = TrendChartExample()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
