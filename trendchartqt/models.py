"""Data models for chart configuration.

Provides frozen dataclasses for parameters, axes, reference lines, interlock
thresholds and formulas. Collections are tuples so a configuration can be
shared between the editor, the scale resolver and the renderers without any
of them mutating it; every edit produces a patched copy via
``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

Bound = Union[float, str, None]  # numeric bound or ISO8601 string
LineValue = Union[float, str]  # numeric value or ISO8601 string


class ParameterType(str, Enum):
    RAW = "Raw"
    FORMULA = "Formula"
    INTERLOCK = "Interlock"


class XAxisType(str, Enum):
    DATETIME = "datetime"
    ELAPSED_TIME = "elapsedTime"
    PARAMETER = "parameter"


class ElapsedUnit(str, Enum):
    SEC = "sec"
    MIN = "min"
    HR = "hr"

    @property
    def seconds(self) -> float:
        return {"sec": 1.0, "min": 60.0, "hr": 3600.0}[self.value]


class Orientation(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class Interpolation(str, Enum):
    LINEAR = "linear"
    STEP = "step"
    STEP_BEFORE = "stepBefore"
    STEP_AFTER = "stepAfter"


class ElementType(str, Enum):
    PARAMETER = "parameter"
    OPERATOR = "operator"
    CONSTANT = "constant"
    NUMBER = "number"


@dataclass(frozen=True)
class AxisRange:
    """Range policy of an axis.

    When ``auto`` is set the bounds are computed from the loaded series and
    ``min``/``max`` only remember the last manual values. Otherwise the bounds
    are authoritative regardless of data.
    """

    auto: bool = True
    min: Bound = None
    max: Bound = None


@dataclass(frozen=True)
class LineStyle:
    """Style of a plotted series."""

    color: str = "#1f77b4"  # Default matplotlib blue
    width: float = 2.0
    line_style: str = "solid"  # 'solid', 'dashed', 'dotted'
    show_points: bool = False


@dataclass(frozen=True)
class ThresholdPoint:
    x: float
    y: float


@dataclass(frozen=True)
class InterlockThreshold:
    """A named piecewise curve. ``points`` are kept sorted by ``x``."""

    id: str
    name: str
    color: str
    points: Tuple[ThresholdPoint, ...] = ()


@dataclass(frozen=True)
class InterlockDefinition:
    """A set of threshold curves sharing one X parameter."""

    id: str
    name: str
    x_parameter: str = ""
    x_unit: str = ""
    y_unit: str = ""
    thresholds: Tuple[InterlockThreshold, ...] = ()

    def threshold(self, threshold_id: str) -> Optional[InterlockThreshold]:
        for threshold in self.thresholds:
            if threshold.id == threshold_id:
                return threshold
        return None


@dataclass(frozen=True)
class InterlockReference:
    """Link from an Interlock parameter to its (locally copied) definition.

    Attributes:
        source: ``"master"`` when drafted from the interlock library,
            ``"custom"`` when created inline.
        interlock_id: Id of the master entry, if any.
        definition: Independent copy of the definition.
        selected_thresholds: Ids of the thresholds to draw; empty means all.
    """

    source: str
    definition: InterlockDefinition
    interlock_id: Optional[str] = None
    selected_thresholds: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FormulaElement:
    """One token of a formula as composed in the builder."""

    id: str
    type: ElementType
    value: str
    display_name: str = ""


@dataclass(frozen=True)
class FormulaDefinition:
    """A derived parameter defined by an ordered element sequence."""

    id: str
    name: str
    elements: Tuple[FormulaElement, ...] = ()
    unit: str = ""
    description: str = ""

    @property
    def expression(self) -> str:
        return " ".join(element.value for element in self.elements)

    @property
    def parameters(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for element in self.elements:
            if element.type == ElementType.PARAMETER:
                seen.setdefault(element.value, None)
        return tuple(seen)


@dataclass(frozen=True)
class Parameter:
    """A Y axis entry.

    Attributes:
        id: Unique id within the chart.
        parameter_type: Raw, Formula or Interlock.
        source_ref: Series key (``"name|unit"`` for raw parameters).
        axis_no: Y axis group, 1-based.
        unit: Explicit unit; empty means "use the source's default unit".
        range: Range policy shared with the other members of the axis.
        style: Plot style.
        display_name: Optional label; defaults to the name part of the key.
        formula: Definition for Formula parameters.
        interlock: Reference for Interlock parameters.
    """

    id: str
    parameter_type: ParameterType = ParameterType.RAW
    source_ref: str = ""
    axis_no: int = 1
    unit: str = ""
    range: AxisRange = AxisRange()
    style: LineStyle = LineStyle()
    display_name: str = ""
    formula: Optional[FormulaDefinition] = None
    interlock: Optional[InterlockReference] = None

    @property
    def name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.parameter_type == ParameterType.FORMULA and self.formula is not None:
            return self.formula.name
        if self.parameter_type == ParameterType.INTERLOCK and self.interlock is not None:
            return self.interlock.definition.name
        return parse_parameter_key(self.source_ref)[0]


@dataclass(frozen=True)
class ReferenceLine:
    """A draggable reference line owned by a chart.

    ``value`` is an ISO string for vertical lines on a datetime X axis, a
    0-100 normalized position for vertical lines on a parameter X axis, and a
    plain number otherwise.
    """

    id: str
    orientation: Orientation
    value: LineValue
    label: str = ""
    color: str = "#ff0000"
    line_style: str = "solid"
    label_offset: Tuple[float, float] = (0.0, 0.0)
    axis_no: int = 1


@dataclass(frozen=True)
class XAxisConfig:
    """X axis semantics and range policy."""

    axis_type: XAxisType = XAxisType.DATETIME
    parameter: str = ""  # series key for a parameter axis
    range: AxisRange = AxisRange()
    unit: ElapsedUnit = ElapsedUnit.MIN
    label: str = ""


@dataclass(frozen=True)
class ChartConfig:
    """The chart record exchanged with the surrounding application."""

    id: str
    title: str = ""
    x_axis: XAxisConfig = XAxisConfig()
    parameters: Tuple[Parameter, ...] = ()
    axis_labels: Mapping[int, str] = field(default_factory=dict)  # pinned labels
    reference_lines: Tuple[ReferenceLine, ...] = ()
    interpolation: Interpolation = Interpolation.LINEAR


@dataclass(frozen=True)
class DataSource:
    """A selected data period with its loaded series.

    Attributes:
        id: Source id.
        label: Display label.
        start: Period start (ISO8601).
        end: Period end (ISO8601).
        series: Numeric series keyed by parameter source ref.
        timestamps: Optional per-row timestamps (ISO8601 or epoch seconds)
            aligned with ``series``.
    """

    id: str
    start: str
    end: str
    label: str = ""
    series: Mapping[str, Sequence[float]] = field(default_factory=dict)
    timestamps: Sequence[Union[str, float]] = ()


def parse_parameter_key(key: str) -> Tuple[str, str]:
    """Split a ``"name|unit"`` source key into ``(name, unit)``."""
    if not key:
        return "", ""
    name, _, rest = key.partition("|")
    unit = rest.split("|", 1)[0] if rest else ""
    return name.strip(), unit.strip()
