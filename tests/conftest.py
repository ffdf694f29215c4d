"""Shared fixtures for the chart engine tests.

Qt widget tests run against the real PySide6 and pyqtgraph on the offscreen
platform; they are skipped when those packages are not installed.
"""

import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from trendchartqt.models import (  # noqa: E402
    AxisRange,
    ChartConfig,
    DataSource,
    InterlockDefinition,
    InterlockThreshold,
    Parameter,
    ThresholdPoint,
    XAxisConfig,
    XAxisType,
)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    """A clock returning a fixed instant."""
    return lambda: FIXED_NOW


@pytest.fixture
def temp_params():
    """Three parameters: two on axis 1 (°C and °F), one on axis 2 (kPa)."""
    return (
        Parameter(id="p1", source_ref="Temp A|°C", axis_no=1),
        Parameter(id="p2", source_ref="Temp B|°F", axis_no=1),
        Parameter(id="p3", source_ref="Pressure|kPa", axis_no=2),
    )


@pytest.fixture
def sources():
    """Two data periods of one day each with aligned series."""
    return (
        DataSource(
            id="s1",
            start="2024-01-01T00:00:00",
            end="2024-01-02T00:00:00",
            series={
                "Temp A|°C": [10.0, 20.0, 30.0, 40.0],
                "Temp B|°F": [50.0, 68.0, 86.0, 104.0],
                "Pressure|kPa": [100.0, 101.0, 102.0, 103.0],
                "Speed|rpm": [0.0, 50.0, 100.0, 150.0],
            },
        ),
        DataSource(
            id="s2",
            start="2024-01-03T00:00:00",
            end="2024-01-05T00:00:00",
            series={
                "Temp A|°C": [5.0, 15.0],
                "Pressure|kPa": [99.0, 104.0],
                "Speed|rpm": [20.0, 80.0],
            },
        ),
    )


@pytest.fixture
def chart_config(temp_params):
    return ChartConfig(id="chart1", title="Trend", parameters=temp_params)


@pytest.fixture
def parameter_axis_config():
    return ChartConfig(
        id="chart2",
        x_axis=XAxisConfig(axis_type=XAxisType.PARAMETER, parameter="Speed|rpm", range=AxisRange()),
        parameters=(Parameter(id="p1", source_ref="Temp A|°C"),),
    )


@pytest.fixture
def interlock_definition():
    """Two thresholds over a shared X axis, with a row only one of them uses."""
    return InterlockDefinition(
        id="il1",
        name="Pump interlock",
        x_parameter="Speed|rpm",
        x_unit="rpm",
        y_unit="°C",
        thresholds=(
            InterlockThreshold(
                id="warn",
                name="Warning",
                color="#FFA500",
                points=(ThresholdPoint(0.0, 50.0), ThresholdPoint(50.0, 60.0), ThresholdPoint(100.0, 70.0)),
            ),
            InterlockThreshold(
                id="trip",
                name="Trip",
                color="#FF6B6B",
                points=(ThresholdPoint(0.0, 80.0), ThresholdPoint(100.0, 90.0)),
            ),
        ),
    )


@pytest.fixture(scope="session")
def qapp():
    """The QApplication used by widget tests."""
    QtWidgets = pytest.importorskip("PySide6.QtWidgets")
    pytest.importorskip("pyqtgraph")
    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication([])
    yield app
