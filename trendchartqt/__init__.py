from .models import (
    AxisRange,
    ChartConfig,
    DataSource,
    ElapsedUnit,
    ElementType,
    FormulaDefinition,
    FormulaElement,
    InterlockDefinition,
    InterlockReference,
    InterlockThreshold,
    Interpolation,
    LineStyle,
    Orientation,
    Parameter,
    ParameterType,
    ReferenceLine,
    ThresholdPoint,
    XAxisConfig,
    XAxisType,
)
from .errors import (
    EvaluationError,
    GeometryOutOfBounds,
    MasterNotFoundError,
    RangeDegenerateWarning,
    TrendChartError,
    ValidationError,
    ValidationIssue,
)
from .settings import ChartSettings, DEFAULT_SETTINGS
from .axis_model import AxisGroup, UnitValidation, axis_groups, group_by_axis, validate_units
from .units import ConversionRegistry, UnitConversion
from .scales import ChartScales, LinearScale, ScaleCache, ScaleResolver, TimeScale
from .reference_lines import (
    DragTarget,
    LineState,
    OverlayUpdate,
    PointerEvent,
    PointerEventKind,
    ReferenceLineOverlay,
)
from .interlock import InterlockTable
from .formula import FormulaBuilder, evaluate, validate
from .masters import FormulaLibrary, InterlockLibrary, MasterLibrary
from .editor import ChartEditor

__all__ = [
    # Data model
    "AxisRange",
    "ChartConfig",
    "DataSource",
    "ElapsedUnit",
    "ElementType",
    "FormulaDefinition",
    "FormulaElement",
    "InterlockDefinition",
    "InterlockReference",
    "InterlockThreshold",
    "Interpolation",
    "LineStyle",
    "Orientation",
    "Parameter",
    "ParameterType",
    "ReferenceLine",
    "ThresholdPoint",
    "XAxisConfig",
    "XAxisType",
    # Errors
    "EvaluationError",
    "GeometryOutOfBounds",
    "MasterNotFoundError",
    "RangeDegenerateWarning",
    "TrendChartError",
    "ValidationError",
    "ValidationIssue",
    # Settings
    "ChartSettings",
    "DEFAULT_SETTINGS",
    # Engine
    "AxisGroup",
    "UnitValidation",
    "axis_groups",
    "group_by_axis",
    "validate_units",
    "ConversionRegistry",
    "UnitConversion",
    "ChartScales",
    "LinearScale",
    "ScaleCache",
    "ScaleResolver",
    "TimeScale",
    "DragTarget",
    "LineState",
    "OverlayUpdate",
    "PointerEvent",
    "PointerEventKind",
    "ReferenceLineOverlay",
    "InterlockTable",
    "FormulaBuilder",
    "evaluate",
    "validate",
    "FormulaLibrary",
    "InterlockLibrary",
    "MasterLibrary",
    "ChartEditor",
]
