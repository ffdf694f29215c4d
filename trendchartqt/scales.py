"""Data-to-pixel scales for the X axis and every Y axis group.

The resolver turns a :class:`ChartConfig` plus the loaded data sources into
one X scale and one Y scale per axis group. Overlays (reference lines,
interlock curves) never resolve scales themselves; they consume the
:class:`ChartScales` produced here so every layer maps data to pixels with the
same functions.

Pixel space has its origin at the top-left of the plot area: X grows to the
right over ``[0, width]`` and Y grows downwards, so Y scales map their domain
onto ``[height, 0]``.

Typical usage:

    resolver = ScaleResolver()
    scales = resolver.resolve(config, sources, width=800, height=400)
    px = scales.x.map("2024-01-01T12:00:00")
    value = scales.y[1].invert(120.0)

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from .axis_model import effective_axis_no, group_by_axis, resolve_unit
from .errors import RangeDegenerateWarning
from .formula import evaluate_series
from .models import (
    AxisRange,
    ChartConfig,
    DataSource,
    Parameter,
    ParameterType,
    XAxisConfig,
    XAxisType,
    parse_parameter_key,
)
from .settings import DEFAULT_SETTINGS, ChartSettings
from .units import DEFAULT_REGISTRY, ConversionRegistry
from .utils import TimeLike, format_iso_seconds, to_epoch

logger = logging.getLogger(__name__)

Domain = Tuple[float, float]

# d3-array tick thresholds
_E10 = math.sqrt(50)
_E5 = math.sqrt(10)
_E2 = math.sqrt(2)

# Candidate tick steps for datetime axes, in seconds.
_TIME_STEPS: Tuple[float, ...] = (
    1, 5, 15, 30,
    60, 5 * 60, 15 * 60, 30 * 60,
    3600, 3 * 3600, 6 * 3600, 12 * 3600,
    86400, 2 * 86400, 7 * 86400, 30 * 86400, 90 * 86400, 365 * 86400,
)


def tick_increment(start: float, stop: float, count: int) -> float:
    """Step between ticks as in d3-array.

    Returns a positive step for steps >= 1 and the negative inverse of the
    step (e.g. ``-10`` for ``0.1``) below that, which keeps tick values exact.
    """
    if count <= 0 or stop == start:
        return 0.0
    step = (stop - start) / count
    power = math.floor(math.log10(step))
    error = step / 10 ** power
    if error >= _E10:
        factor = 10
    elif error >= _E5:
        factor = 5
    elif error >= _E2:
        factor = 2
    else:
        factor = 1
    if power >= 0:
        return float(factor * 10 ** power)
    return -float(10 ** -power) / factor


def nice_domain(lo: float, hi: float, count: int = 10) -> Domain:
    """Extend ``[lo, hi]`` outward to round tick values."""
    reverse = hi < lo
    start, stop = (hi, lo) if reverse else (lo, hi)
    previous = None
    for _ in range(10):
        step = tick_increment(start, stop, count)
        if step == previous:
            break
        if step > 0:
            start = math.floor(start / step) * step
            stop = math.ceil(stop / step) * step
        elif step < 0:
            start = math.ceil(start * step) / step
            stop = math.floor(stop * step) / step
        else:
            break
        previous = step
    return (stop, start) if reverse else (start, stop)


def widen_domain(lo: float, hi: float, min_span: float) -> Domain:
    """Repair a degenerate domain.

    Inverted bounds are swapped and a zero span is widened symmetrically to
    ``min_span``. Each correction is logged at debug level and warned as
    :class:`RangeDegenerateWarning`, which is ignored unless a caller opts in.
    """
    lo, hi = float(lo), float(hi)
    if lo > hi:
        logger.debug("Swapping inverted domain [%s, %s]", lo, hi)
        warnings.warn(f"Inverted domain [{lo}, {hi}] swapped", RangeDegenerateWarning, stacklevel=2)
        lo, hi = hi, lo
    if hi == lo:
        logger.debug("Widening zero span at %s by %s", lo, min_span)
        warnings.warn(f"Zero span at {lo} widened by {min_span}", RangeDegenerateWarning, stacklevel=2)
        half = min_span / 2.0
        lo, hi = lo - half, hi + half
    return lo, hi


class LinearScale:
    """Affine map between a data domain and a pixel range."""

    def __init__(self, domain: Domain, range_: Domain) -> None:
        self.domain: Domain = (float(domain[0]), float(domain[1]))
        self.range: Domain = (float(range_[0]), float(range_[1]))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(domain={self.domain}, range={self.range})"

    def __eq__(self, other: object) -> bool:
        return (
            type(other) is type(self)
            and self.domain == other.domain  # type: ignore[attr-defined]
            and self.range == other.range  # type: ignore[attr-defined]
        )

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.domain, self.range))

    @property
    def span(self) -> float:
        return self.domain[1] - self.domain[0]

    def map(self, value: float) -> float:
        d0, d1 = self.domain
        r0, r1 = self.range
        if d1 == d0:
            return (r0 + r1) / 2.0
        return r0 + (float(value) - d0) / (d1 - d0) * (r1 - r0)

    def map_array(self, values: Sequence[float]) -> np.ndarray:
        d0, d1 = self.domain
        r0, r1 = self.range
        data = np.asarray(values, dtype=float)
        if d1 == d0:
            return np.full(data.shape, (r0 + r1) / 2.0)
        return r0 + (data - d0) / (d1 - d0) * (r1 - r0)

    def invert(self, pixel: float) -> float:
        """Inverse of :meth:`map`; exact at both ends of the range."""
        d0, d1 = self.domain
        r0, r1 = self.range
        pixel = float(pixel)
        if pixel == r0:
            return d0
        if pixel == r1:
            return d1
        if r1 == r0:
            return d0
        return d0 + (pixel - r0) / (r1 - r0) * (d1 - d0)

    def nice(self, count: int = 10) -> "LinearScale":
        return type(self)(nice_domain(self.domain[0], self.domain[1], count), self.range)

    def ticks(self, count: int = 10) -> np.ndarray:
        lo, hi = sorted(self.domain)
        if lo == hi:
            return np.array([lo])
        step = tick_increment(lo, hi, count)
        if step > 0:
            first, last = math.ceil(lo / step), math.floor(hi / step)
            return np.arange(first, last + 1, dtype=float) * step
        if step < 0:
            inc = -step
            first, last = math.ceil(lo * inc), math.floor(hi * inc)
            return np.arange(first, last + 1, dtype=float) / inc
        return np.array([], dtype=float)

    def contains_pixel(self, pixel: float) -> bool:
        lo, hi = sorted(self.range)
        return lo <= pixel <= hi


class TimeScale(LinearScale):
    """Linear scale over epoch seconds that also accepts datetimes and ISO strings."""

    def map(self, value: TimeLike) -> float:  # type: ignore[override]
        return super().map(to_epoch(value))

    def invert_datetime(self, pixel: float) -> datetime:
        return datetime.fromtimestamp(self.invert(pixel), tz=timezone.utc)

    def invert_iso(self, pixel: float) -> str:
        """ISO8601 value at ``pixel``, truncated to whole seconds."""
        return format_iso_seconds(self.invert(pixel))

    def nice(self, count: int = 10) -> "TimeScale":
        return self

    def ticks(self, count: int = 10) -> np.ndarray:
        lo, hi = sorted(self.domain)
        if lo == hi:
            return np.array([lo])
        target = (hi - lo) / max(count, 1)
        step = next((s for s in _TIME_STEPS if s >= target), _TIME_STEPS[-1])
        first, last = math.ceil(lo / step), math.floor(hi / step)
        return np.arange(first, last + 1, dtype=float) * step


@dataclass(frozen=True)
class ChartScales:
    """Resolved scales for one chart size and configuration.

    Attributes:
        x: X scale (a :class:`TimeScale` for a datetime axis).
        y: Y scale per axis number.
        x_axis_type: Semantics of the X domain.
        width: Plot area width in pixels.
        height: Plot area height in pixels.
        signature: Inputs the scales were computed from.
    """

    x: LinearScale
    y: Dict[int, LinearScale]
    x_axis_type: XAxisType
    width: float
    height: float
    signature: Hashable = None

    def y_for(self, axis_no: int) -> Optional[LinearScale]:
        return self.y.get(axis_no)


# ---------------------------------------------------------------------------
# Series access
# ---------------------------------------------------------------------------


def series_for_parameter(
    parameter: Parameter,
    source: DataSource,
    conversions: Optional[ConversionRegistry] = None,
) -> np.ndarray:
    """Values a parameter renders for one data source.

    Raw series are converted to the parameter's explicit unit when a
    conversion is known; formula parameters are evaluated row by row.
    Interlock parameters have no time series.
    """
    if parameter.parameter_type == ParameterType.FORMULA:
        if parameter.formula is None:
            return np.array([], dtype=float)
        return evaluate_series(parameter.formula, source.series)
    if parameter.parameter_type == ParameterType.INTERLOCK:
        return np.array([], dtype=float)

    raw = source.series.get(parameter.source_ref)
    if raw is None:
        return np.array([], dtype=float)
    values = np.asarray(raw, dtype=float)

    source_unit = parse_parameter_key(parameter.source_ref)[1]
    target_unit = resolve_unit(parameter)
    if source_unit and target_unit and source_unit != target_unit:
        registry = conversions if conversions is not None else DEFAULT_REGISTRY
        if registry.has_conversion(source_unit, target_unit):
            return registry.convert_array(values, source_unit, target_unit)
        logger.debug("No conversion %s -> %s for %s", source_unit, target_unit, parameter.id)
    return values


def x_values(x_axis: XAxisConfig, source: DataSource, count: int) -> np.ndarray:
    """X coordinates (in X domain units) of the ``count`` rows of a source.

    Rows without timestamps are spread evenly over the source period.
    """
    if x_axis.axis_type == XAxisType.PARAMETER:
        raw = source.series.get(x_axis.parameter)
        if raw is None:
            return np.full(count, np.nan)
        return np.asarray(raw, dtype=float)[:count]

    if source.timestamps:
        epochs = np.array([to_epoch(t) for t in source.timestamps[:count]], dtype=float)
    else:
        epochs = np.linspace(to_epoch(source.start), to_epoch(source.end), count)

    if x_axis.axis_type == XAxisType.ELAPSED_TIME:
        return (epochs - to_epoch(source.start)) / x_axis.unit.seconds
    return epochs


def interlock_values(parameter: Parameter) -> np.ndarray:
    """Y values of the selected threshold points of an Interlock parameter."""
    if parameter.interlock is None:
        return np.array([], dtype=float)
    selected = set(parameter.interlock.selected_thresholds)
    values = [
        point.y
        for threshold in parameter.interlock.definition.thresholds
        if not selected or threshold.id in selected
        for point in threshold.points
    ]
    return np.asarray(values, dtype=float)


def _finite_extent(arrays: Sequence[np.ndarray]) -> Optional[Domain]:
    finite = [a[np.isfinite(a)] for a in arrays if a.size]
    finite = [a for a in finite if a.size]
    if not finite:
        return None
    return float(min(a.min() for a in finite)), float(max(a.max() for a in finite))


def _numeric_bound(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        bound = float(value)
    except (TypeError, ValueError):
        return None
    return bound if math.isfinite(bound) else None


def _time_bound(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return to_epoch(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable datetime bound %r", value)
        return None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ScaleResolver:
    """Compute X and Y scales from configuration and data.

    Args:
        settings: Placeholder domains, degenerate spans and nice tick count.
        clock: Returns "now" for the datetime placeholder window.
        conversions: Unit conversions applied to raw series.
    """

    def __init__(
        self,
        settings: ChartSettings = DEFAULT_SETTINGS,
        clock: Optional[Callable[[], datetime]] = None,
        conversions: Optional[ConversionRegistry] = None,
    ) -> None:
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._conversions = conversions if conversions is not None else DEFAULT_REGISTRY

    def now(self) -> float:
        return to_epoch(self._clock())

    # ----- X -----

    def x_domain(self, x_axis: XAxisConfig, sources: Sequence[DataSource]) -> Domain:
        settings = self.settings
        kind = x_axis.axis_type

        if kind == XAxisType.DATETIME:
            auto = self._datetime_extent(sources)
            lo, hi = auto
            if not x_axis.range.auto:
                lo = _coalesce(_time_bound(x_axis.range.min), lo)
                hi = _coalesce(_time_bound(x_axis.range.max), hi)
            return widen_domain(lo, hi, settings.min_datetime_span_s)

        if kind == XAxisType.ELAPSED_TIME:
            durations = [to_epoch(s.end) - to_epoch(s.start) for s in sources]
            if durations and max(durations) > 0:
                auto = (0.0, max(durations) / x_axis.unit.seconds)
            else:
                auto = settings.elapsed_placeholder
        else:
            arrays = [np.asarray(s.series.get(x_axis.parameter, ()), dtype=float) for s in sources]
            auto = _finite_extent(arrays) or settings.parameter_placeholder

        lo, hi = auto
        if not x_axis.range.auto:
            lo = _coalesce(_numeric_bound(x_axis.range.min), lo)
            hi = _coalesce(_numeric_bound(x_axis.range.max), hi)
        return widen_domain(lo, hi, settings.min_numeric_span)

    def _datetime_extent(self, sources: Sequence[DataSource]) -> Domain:
        if sources:
            return (
                min(to_epoch(s.start) for s in sources),
                max(to_epoch(s.end) for s in sources),
            )
        now = self.now()
        return now - self.settings.datetime_lookback_s, now

    def resolve_x(self, x_axis: XAxisConfig, sources: Sequence[DataSource], width: float) -> LinearScale:
        domain = self.x_domain(x_axis, sources)
        if x_axis.axis_type == XAxisType.DATETIME:
            return TimeScale(domain, (0.0, width))
        return LinearScale(domain, (0.0, width))

    # ----- Y -----

    def y_domain(self, members: Sequence[Parameter], sources: Sequence[DataSource]) -> Domain:
        """Domain of one axis group.

        Manual bounds are used as given (after degenerate repair); auto
        domains come from the rendered data, widened then niced.
        """
        settings = self.settings
        axis_range: AxisRange = members[0].range if members else AxisRange()

        extent = _finite_extent(self._group_arrays(members, sources))
        if extent is None:
            auto: Domain = settings.y_placeholder
        else:
            auto = nice_domain(*widen_domain(*extent, settings.min_numeric_span), count=settings.nice_ticks)

        if axis_range.auto:
            return auto
        lo = _coalesce(_numeric_bound(axis_range.min), auto[0])
        hi = _coalesce(_numeric_bound(axis_range.max), auto[1])
        return widen_domain(lo, hi, settings.min_numeric_span)

    def _group_arrays(self, members: Sequence[Parameter], sources: Sequence[DataSource]) -> List[np.ndarray]:
        arrays: List[np.ndarray] = []
        for parameter in members:
            if parameter.parameter_type == ParameterType.INTERLOCK:
                arrays.append(interlock_values(parameter))
                continue
            for source in sources:
                arrays.append(series_for_parameter(parameter, source, self._conversions))
        return arrays

    def resolve_y(
        self, members: Sequence[Parameter], sources: Sequence[DataSource], height: float
    ) -> LinearScale:
        return LinearScale(self.y_domain(members, sources), (height, 0.0))

    # ----- all -----

    def resolve(
        self,
        config: ChartConfig,
        sources: Sequence[DataSource],
        width: float,
        height: float,
        data_revision: int = 0,
    ) -> ChartScales:
        """Resolve every scale of a chart.

        Axes without members still get a placeholder scale for axis 1 so
        horizontal reference lines always have a Y scale to map through.
        """
        x = self.resolve_x(config.x_axis, sources, width)
        y: Dict[int, LinearScale] = {}
        for axis_no, indices in group_by_axis(config.parameters).items():
            members = [config.parameters[i] for i in indices]
            y[axis_no] = self.resolve_y(members, sources, height)
        if not y:
            y[1] = LinearScale(self.settings.y_placeholder, (height, 0.0))
        return ChartScales(
            x=x,
            y=y,
            x_axis_type=config.x_axis.axis_type,
            width=float(width),
            height=float(height),
            signature=scale_signature(config, width, height, data_revision),
        )


def _coalesce(value: Optional[float], fallback: float) -> float:
    return fallback if value is None else value


def _parameter_key(parameter: Parameter) -> Hashable:
    return (
        effective_axis_no(parameter),
        parameter.parameter_type,
        parameter.source_ref,
        parameter.unit,
        parameter.range,
        parameter.formula.elements if parameter.formula is not None else None,
        parameter.interlock,
    )


def scale_signature(config: ChartConfig, width: float, height: float, data_revision: int = 0) -> Hashable:
    """Hashable key of everything that affects scales.

    Reference lines, styles and labels are excluded, so editing or dragging a
    reference line never invalidates the scales.
    """
    x_axis = config.x_axis
    return (
        (x_axis.axis_type, x_axis.parameter, x_axis.range, x_axis.unit),
        tuple(_parameter_key(p) for p in config.parameters),
        float(width),
        float(height),
        data_revision,
    )


@dataclass
class ScaleCache:
    """Memoizes the last resolved scales by signature."""

    resolver: ScaleResolver = field(default_factory=ScaleResolver)
    hits: int = 0
    misses: int = 0
    _scales: Optional[ChartScales] = field(default=None, repr=False)

    @property
    def current(self) -> Optional[ChartScales]:
        return self._scales

    def get(
        self,
        config: ChartConfig,
        sources: Sequence[DataSource],
        width: float,
        height: float,
        data_revision: int = 0,
    ) -> ChartScales:
        signature = scale_signature(config, width, height, data_revision)
        if self._scales is not None and self._scales.signature == signature:
            self.hits += 1
            logger.debug("Scale cache hit")
            return self._scales
        self.misses += 1
        logger.debug("Scale cache miss; resolving scales for %s", config.id)
        self._scales = self.resolver.resolve(config, sources, width, height, data_revision)
        return self._scales

    def invalidate(self) -> None:
        self._scales = None
