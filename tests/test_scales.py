"""Tests for scale resolution and caching."""

from dataclasses import replace

import numpy as np
import pytest

from trendchartqt.errors import RangeDegenerateWarning
from trendchartqt.models import (
    AxisRange,
    ChartConfig,
    ElapsedUnit,
    InterlockReference,
    Orientation,
    Parameter,
    ParameterType,
    ReferenceLine,
    XAxisConfig,
    XAxisType,
)
from trendchartqt.scales import (
    LinearScale,
    ScaleCache,
    ScaleResolver,
    TimeScale,
    nice_domain,
    scale_signature,
    series_for_parameter,
    tick_increment,
    widen_domain,
    x_values,
)
from trendchartqt.utils import to_epoch


class TestLinearScale:
    """Affine mapping between domain and pixels."""

    @pytest.mark.parametrize(
        "domain, range_",
        [
            ((0.0, 110.0), (400.0, 0.0)),
            ((0.0, 110.0), (0.0, 800.0)),
            ((-50.0, -10.0), (300.0, 20.0)),
            ((1.0, 1.000001), (400.0, 0.0)),
            ((1704067200.0, 1704412800.0), (0.0, 800.0)),
        ],
    )
    def test_map_and_invert(self, domain, range_):
        """invert(map(v)) returns v across flipped, tiny and epoch sized domains."""
        scale = LinearScale(domain, range_)
        d0, d1 = domain
        for fraction in (0.0, 0.125, 0.5, 0.9, 1.0):
            value = d0 + fraction * (d1 - d0)
            assert scale.invert(scale.map(value)) == pytest.approx(value, rel=1e-12, abs=1e-9 * (d1 - d0))

    def test_y_scale_is_flipped(self):
        """The domain minimum maps to the bottom of the plot."""
        scale = LinearScale((0.0, 100.0), (400.0, 0.0))
        assert scale.map(0.0) == 400.0
        assert scale.map(100.0) == 0.0
        assert scale.map(25.0) == pytest.approx(300.0)

    def test_invert_is_exact_at_endpoints(self):
        """Range endpoints invert to the exact domain endpoints."""
        scale = LinearScale((0.1, 0.7), (0.0, 3.0))
        assert scale.invert(0.0) == 0.1
        assert scale.invert(3.0) == 0.7

    def test_map_array(self):
        """Arrays map element-wise."""
        scale = LinearScale((0.0, 10.0), (0.0, 100.0))
        assert scale.map_array([0, 5, 10]).tolist() == [0.0, 50.0, 100.0]

    def test_ticks(self):
        """Ticks land on round values."""
        assert LinearScale((0.0, 100.0), (0.0, 1.0)).ticks(10).tolist() == list(range(0, 101, 10))
        assert LinearScale((0.0, 1.0), (0.0, 1.0)).ticks(10).tolist() == pytest.approx(
            [i / 10 for i in range(11)]
        )

    def test_equality(self):
        """Scales compare by domain and range."""
        assert LinearScale((0, 1), (0, 10)) == LinearScale((0.0, 1.0), (0.0, 10.0))
        assert LinearScale((0, 1), (0, 10)) != TimeScale((0, 1), (0, 10))

    def test_contains_pixel(self):
        """Both orientations of the range are handled."""
        scale = LinearScale((0, 1), (400.0, 0.0))
        assert scale.contains_pixel(0.0)
        assert scale.contains_pixel(400.0)
        assert not scale.contains_pixel(-0.5)


class TestTimeScale:
    """Datetime axes work in epoch seconds."""

    def test_map_iso_and_invert_iso(self):
        """ISO strings map to pixels and back, truncated to seconds."""
        start, end = to_epoch("2024-01-01T00:00:00"), to_epoch("2024-01-02T00:00:00")
        scale = TimeScale((start, end), (0.0, 800.0))
        assert scale.map("2024-01-01T12:00:00") == pytest.approx(400.0)
        assert scale.invert_iso(400.0) == "2024-01-01T12:00:00"
        assert scale.invert_iso(800.0) == "2024-01-02T00:00:00"

    def test_nice_keeps_domain(self):
        """Datetime domains are not rounded."""
        scale = TimeScale((1.5, 86400.5), (0.0, 100.0))
        assert scale.nice() is scale

    def test_ticks_use_calendar_steps(self):
        """A one day span ticks every few hours."""
        start = to_epoch("2024-01-01T00:00:00")
        ticks = TimeScale((start, start + 86400), (0.0, 1.0)).ticks(10)
        assert np.all(np.diff(ticks) == 3 * 3600)


class TestDomainHelpers:
    """Tick increments, nicing and degenerate repair."""

    def test_tick_increment(self):
        """Steps follow the 1-2-5 progression."""
        assert tick_increment(0, 100, 10) == 10
        assert tick_increment(0, 1, 10) == -10
        assert tick_increment(0, 99, 10) == 10
        assert tick_increment(0, 35, 10) == 5

    def test_nice_domain(self):
        """Domains extend outward to round values."""
        assert nice_domain(5.0, 104.0) == (0.0, 110.0)
        assert nice_domain(0.13, 0.96) == pytest.approx((0.1, 1.0))

    def test_nice_domain_reversed(self):
        """A reversed domain stays reversed."""
        assert nice_domain(104.0, 5.0) == (110.0, 0.0)

    def test_widen_zero_span(self):
        """A zero span is widened symmetrically and warned about."""
        with pytest.warns(RangeDegenerateWarning, match="Zero span"):
            assert widen_domain(5.0, 5.0, 1.0) == (4.5, 5.5)

    def test_widen_inverted(self):
        """Inverted bounds are swapped and warned about."""
        with pytest.warns(RangeDegenerateWarning, match="Inverted"):
            assert widen_domain(10.0, 0.0, 1.0) == (0.0, 10.0)


class TestScaleResolver:
    """Resolving scales from configuration and data."""

    def test_datetime_x_domain(self, chart_config, sources):
        """The X domain covers all selected periods."""
        scales = ScaleResolver().resolve(chart_config, sources, 800, 400)
        assert isinstance(scales.x, TimeScale)
        assert scales.x.domain == (to_epoch("2024-01-01T00:00:00"), to_epoch("2024-01-05T00:00:00"))
        assert scales.x.range == (0.0, 800.0)

    def test_y_domains_per_axis(self, chart_config, sources):
        """Each axis group gets its own niced domain."""
        scales = ScaleResolver().resolve(chart_config, sources, 800, 400)
        assert set(scales.y) == {1, 2}
        assert scales.y[1].domain == (0.0, 110.0)
        assert scales.y[2].domain == (99.0, 104.0)
        assert scales.y[1].range == (400.0, 0.0)

    def test_unified_unit_converts_series(self, chart_config, sources):
        """Plotting °F data in °C changes the axis extent."""
        params = tuple(
            replace(p, unit="°C") if p.axis_no == 1 else p for p in chart_config.parameters
        )
        scales = ScaleResolver().resolve(replace(chart_config, parameters=params), sources, 800, 400)
        assert scales.y[1].domain == (5.0, 40.0)

    def test_manual_y_bounds(self, chart_config, sources):
        """Manual bounds are used as given."""
        params = tuple(
            replace(p, range=AxisRange(auto=False, min=0, max=200)) if p.axis_no == 1 else p
            for p in chart_config.parameters
        )
        scales = ScaleResolver().resolve(replace(chart_config, parameters=params), sources, 800, 400)
        assert scales.y[1].domain == (0.0, 200.0)

    def test_manual_y_bounds_inverted_are_repaired(self, temp_params, sources):
        """Inverted manual bounds are swapped."""
        members = [replace(temp_params[0], range=AxisRange(auto=False, min=50, max=10))]
        assert ScaleResolver().y_domain(members, sources) == (10.0, 50.0)

    def test_placeholders_without_data(self, fixed_now):
        """Empty charts get placeholder domains."""
        resolver = ScaleResolver(clock=fixed_now)
        scales = resolver.resolve(ChartConfig(id="empty"), (), 800, 400)
        now = fixed_now().timestamp()
        assert scales.x.domain == (now - 30 * 24 * 3600, now)
        assert scales.y[1].domain == (0.0, 100.0)

    def test_y_placeholder_for_parameters_without_data(self, temp_params):
        """An axis whose members have no data uses the Y placeholder."""
        assert ScaleResolver().y_domain(list(temp_params[:1]), ()) == (0.0, 100.0)

    def test_constant_series_is_widened(self, sources):
        """A flat series produces a usable span."""
        members = [Parameter(id="c", source_ref="Const|bar")]
        flat = [replace(sources[0], series={"Const|bar": [5.0, 5.0]})]
        lo, hi = ScaleResolver().y_domain(members, flat)
        assert lo < 5.0 < hi

    def test_elapsed_x_domain(self, chart_config, sources):
        """Elapsed axes span the longest period in the chosen unit."""
        config = replace(chart_config, x_axis=XAxisConfig(axis_type=XAxisType.ELAPSED_TIME, unit=ElapsedUnit.MIN))
        scales = ScaleResolver().resolve(config, sources, 800, 400)
        assert scales.x.domain == (0.0, 2880.0)
        assert not isinstance(scales.x, TimeScale)

    def test_elapsed_placeholder(self):
        """An elapsed axis without data spans the placeholder."""
        x_axis = XAxisConfig(axis_type=XAxisType.ELAPSED_TIME)
        assert ScaleResolver().x_domain(x_axis, ()) == (0.0, 30.0)

    def test_parameter_x_domain(self, parameter_axis_config, sources):
        """A parameter axis spans the X parameter's values."""
        scales = ScaleResolver().resolve(parameter_axis_config, sources, 800, 400)
        assert scales.x.domain == (0.0, 150.0)

    def test_parameter_x_placeholder(self, parameter_axis_config):
        """A parameter axis without data spans 0-100."""
        assert ScaleResolver().x_domain(parameter_axis_config.x_axis, ()) == (0.0, 100.0)

    def test_manual_datetime_bounds(self, chart_config, sources):
        """Manual ISO bounds override the data extent."""
        x_axis = XAxisConfig(range=AxisRange(auto=False, min="2024-01-02T00:00:00", max=None))
        domain = ScaleResolver().x_domain(x_axis, sources)
        assert domain == (to_epoch("2024-01-02T00:00:00"), to_epoch("2024-01-05T00:00:00"))

    def test_interlock_values_contribute_to_y(self, interlock_definition):
        """Interlock thresholds set the extent of their axis."""
        param = Parameter(
            id="il",
            parameter_type=ParameterType.INTERLOCK,
            interlock=InterlockReference(source="custom", definition=interlock_definition),
        )
        assert ScaleResolver().y_domain([param], ()) == (50.0, 90.0)


class TestSeriesAccess:
    """Series values per parameter and source."""

    def test_raw_series(self, temp_params, sources):
        """Raw series are read by source key."""
        assert series_for_parameter(temp_params[0], sources[0]).tolist() == [10.0, 20.0, 30.0, 40.0]

    def test_missing_series(self, temp_params, sources):
        """A source without the key yields no values."""
        assert series_for_parameter(temp_params[1], sources[1]).size == 0

    def test_explicit_unit_converts(self, temp_params, sources):
        """Raw values convert to an explicit unit."""
        param = replace(temp_params[1], unit="°C")
        assert series_for_parameter(param, sources[0]).tolist() == pytest.approx([10.0, 20.0, 30.0, 40.0])

    def test_x_values_elapsed(self, sources):
        """Rows without timestamps spread over the period."""
        x_axis = XAxisConfig(axis_type=XAxisType.ELAPSED_TIME, unit=ElapsedUnit.MIN)
        assert x_values(x_axis, sources[0], 4).tolist() == pytest.approx([0.0, 480.0, 960.0, 1440.0])


class TestScaleCache:
    """Scales are recomputed only when their inputs change."""

    def test_hit_returns_same_object(self, chart_config, sources):
        """A repeated request returns the cached scales."""
        cache = ScaleCache()
        first = cache.get(chart_config, sources, 800, 400)
        second = cache.get(chart_config, sources, 800, 400)
        assert second is first
        assert cache.hits == 1
        assert cache.misses == 1

    def test_reference_lines_do_not_invalidate(self, chart_config, sources):
        """Adding or moving a reference line keeps the scales."""
        cache = ScaleCache()
        first = cache.get(chart_config, sources, 800, 400)
        line = ReferenceLine(id="l1", orientation=Orientation.HORIZONTAL, value=42.0)
        with_line = replace(chart_config, reference_lines=(line,))
        assert cache.get(with_line, sources, 800, 400) is first
        assert scale_signature(with_line, 800, 400) == scale_signature(chart_config, 800, 400)

    def test_size_change_invalidates(self, chart_config, sources):
        """A resize recomputes the scales."""
        cache = ScaleCache()
        first = cache.get(chart_config, sources, 800, 400)
        second = cache.get(chart_config, sources, 640, 400)
        assert second is not first
        assert second.x.range == (0.0, 640.0)

    def test_data_revision_invalidates(self, chart_config, sources):
        """New data recomputes the scales."""
        cache = ScaleCache()
        first = cache.get(chart_config, sources, 800, 400, data_revision=0)
        assert cache.get(chart_config, sources, 800, 400, data_revision=1) is not first

    def test_invalidate(self, chart_config, sources):
        """An explicit invalidation drops the cached scales."""
        cache = ScaleCache()
        cache.get(chart_config, sources, 800, 400)
        cache.invalidate()
        assert cache.current is None
