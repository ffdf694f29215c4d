"""Tests for the reference line overlay state machine and line operations."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from trendchartqt.errors import GeometryOutOfBounds
from trendchartqt.models import ChartConfig, Orientation, ReferenceLine, XAxisType
from trendchartqt.reference_lines import (
    DragTarget,
    LineState,
    PointerEvent,
    PointerEventKind,
    ReferenceLineOverlay,
    add_reference_line,
    checked_position,
    commit_value,
    default_line_value,
    label_box,
    layout,
    line_position,
    remove_reference_line,
    update_reference_line,
)
from trendchartqt.scales import ChartScales, LinearScale, TimeScale
from trendchartqt.utils import to_epoch

MOVE = PointerEventKind.MOVE
DOWN = PointerEventKind.DOWN
UP = PointerEventKind.UP


@pytest.fixture
def datetime_scales():
    """800x400 plot over 2024-01-01..2024-01-05 with one Y axis of 0-110."""
    x = TimeScale((to_epoch("2024-01-01T00:00:00"), to_epoch("2024-01-05T00:00:00")), (0.0, 800.0))
    return ChartScales(
        x=x,
        y={1: LinearScale((0.0, 110.0), (400.0, 0.0))},
        x_axis_type=XAxisType.DATETIME,
        width=800.0,
        height=400.0,
    )


@pytest.fixture
def parameter_scales():
    return ChartScales(
        x=LinearScale((0.0, 150.0), (0.0, 800.0)),
        y={1: LinearScale((0.0, 100.0), (400.0, 0.0))},
        x_axis_type=XAxisType.PARAMETER,
        width=800.0,
        height=400.0,
    )


@pytest.fixture
def elapsed_scales():
    return ChartScales(
        x=LinearScale((0.0, 2880.0), (0.0, 800.0)),
        y={1: LinearScale((0.0, 100.0), (400.0, 0.0))},
        x_axis_type=XAxisType.ELAPSED_TIME,
        width=800.0,
        height=400.0,
    )


def vertical(line_id="v1", value="2024-01-03T00:00:00"):
    return ReferenceLine(id=line_id, orientation=Orientation.VERTICAL, value=value)


def horizontal(line_id="h1", value=55.0, axis_no=1):
    return ReferenceLine(id=line_id, orientation=Orientation.HORIZONTAL, value=value, axis_no=axis_no)


def labeled_vertical():
    return replace(vertical(), label="Event")


def labeled_horizontal():
    return replace(horizontal(), label="Limit")


def make_overlay(scales, *lines):
    commits = []
    overlay = ReferenceLineOverlay(on_commit=lambda line_id, value: commits.append((line_id, value)))
    overlay.set_scales(scales)
    overlay.set_lines(lines)
    return overlay, commits


class TestGeometry:
    """Mapping line values to pixels."""

    def test_vertical_datetime_position(self, datetime_scales):
        """An ISO value maps through the time scale."""
        assert line_position(vertical(), datetime_scales) == pytest.approx(400.0)

    def test_horizontal_position(self, datetime_scales):
        """A horizontal value maps through its axis's Y scale."""
        assert line_position(horizontal(), datetime_scales) == pytest.approx(200.0)

    def test_horizontal_unknown_axis_uses_first(self, datetime_scales):
        """A line on a missing axis falls back to the lowest axis."""
        assert line_position(horizontal(axis_no=5), datetime_scales) == pytest.approx(200.0)

    def test_parameter_axis_is_normalized(self, parameter_scales):
        """Parameter axis lines are stored as 0-100 of the width."""
        assert line_position(vertical(value=25.0), parameter_scales) == pytest.approx(200.0)

    def test_elapsed_position(self, elapsed_scales):
        """Elapsed lines map their numeric value."""
        assert line_position(vertical(value=1440.0), elapsed_scales) == pytest.approx(400.0)

    def test_out_of_bounds_is_skipped(self, datetime_scales):
        """Lines outside the plot area are not drawn."""
        assert line_position(horizontal(value=500.0), datetime_scales) is None
        assert line_position(vertical(value="2023-06-01T00:00:00"), datetime_scales) is None
        assert layout([horizontal(value=500.0), vertical()], datetime_scales)[0].line_id == "v1"

    def test_checked_position_raises_out_of_bounds(self, datetime_scales):
        """The strict variant reports lines outside the plot area."""
        with pytest.raises(GeometryOutOfBounds):
            checked_position(horizontal(value=500.0), datetime_scales)
        assert checked_position(horizontal(), datetime_scales) == pytest.approx(200.0)

    def test_unparseable_value_is_skipped(self, datetime_scales):
        """A garbage value is skipped instead of raising."""
        assert line_position(vertical(value="not a date"), datetime_scales) is None

    def test_hit_band(self, datetime_scales):
        """The grab band extends the tolerance on both sides."""
        geometry = layout([vertical()], datetime_scales)[0]
        assert geometry.hit_band == pytest.approx((395.0, 405.0))
        assert geometry.state == LineState.IDLE


class TestCommitValue:
    """Converting a pixel into the stored value."""

    def test_horizontal_rounds_to_one_decimal(self, datetime_scales):
        """Horizontal values keep one decimal."""
        assert commit_value(horizontal(), 123.0, datetime_scales) == 76.2

    def test_datetime_truncates_to_seconds(self, datetime_scales):
        """Datetime values are ISO strings with second precision."""
        assert commit_value(vertical(), 0.001, datetime_scales) == "2024-01-01T00:00:00"

    def test_parameter_is_normalized(self, parameter_scales):
        """Parameter axis values are a percentage of the width."""
        assert commit_value(vertical(value=25.0), 300.0, parameter_scales) == 37.5
        assert commit_value(vertical(value=25.0), 900.0, parameter_scales) == 100.0

    def test_elapsed_rounds_to_three_decimals(self, elapsed_scales):
        """Elapsed values keep three decimals."""
        assert commit_value(vertical(value=0.0), 100.0, elapsed_scales) == 360.0
        assert commit_value(vertical(value=0.0), 1.0, elapsed_scales) == 3.6


class TestOverlay:
    """Hover, drag and commit."""

    def test_hover_within_band(self, datetime_scales):
        """Entering the band hovers; leaving it returns to idle."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        update = overlay.handle(PointerEvent(MOVE, 405.0, 100.0))
        assert update.redraw_lines
        assert overlay.state_of("v1") == LineState.HOVERED
        overlay.handle(PointerEvent(MOVE, 406.0, 100.0))
        assert overlay.state_of("v1") == LineState.IDLE

    def test_hover_unchanged_needs_no_redraw(self, datetime_scales):
        """Moving within the band does not redraw again."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(MOVE, 401.0, 100.0))
        assert not overlay.handle(PointerEvent(MOVE, 402.0, 100.0)).redraw_lines

    def test_drag_to_domain_end_commits_end(self, datetime_scales):
        """Dragging past the right edge commits the domain end."""
        overlay, commits = make_overlay(datetime_scales, vertical())
        assert overlay.handle(PointerEvent(DOWN, 402.0, 100.0)).redraw_lines
        assert overlay.state_of("v1") == LineState.DRAGGING
        overlay.handle(PointerEvent(MOVE, 900.0, 100.0))
        assert overlay.position_of("v1") == 800.0
        update = overlay.handle(PointerEvent(UP, 900.0, 100.0))
        assert update.commit == ("v1", "2024-01-05T00:00:00")
        assert commits == [("v1", "2024-01-05T00:00:00")]
        assert overlay.lines[0].value == "2024-01-05T00:00:00"
        assert overlay.state_of("v1") == LineState.IDLE

    def test_moves_do_not_commit(self, datetime_scales):
        """Only the end of a drag writes the value back."""
        overlay, commits = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0))
        for x in (420.0, 440.0, 460.0):
            update = overlay.handle(PointerEvent(MOVE, x, 100.0))
            assert update.redraw_lines
            assert update.commit is None
        assert commits == []

    def test_capture_lost_commits_once(self, datetime_scales):
        """Losing capture commits the last position exactly once."""
        overlay, commits = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0))
        overlay.handle(PointerEvent(MOVE, 500.0, 100.0))
        update = overlay.handle(PointerEvent(PointerEventKind.CAPTURE_LOST))
        assert update.commit == ("v1", "2024-01-03T12:00:00")
        assert not overlay.handle(PointerEvent(UP, 500.0, 100.0)).commit
        assert len(commits) == 1

    def test_release_over_line_stays_hovered(self, datetime_scales):
        """Releasing on the line leaves it hovered."""
        overlay, _ = make_overlay(datetime_scales, horizontal())
        overlay.handle(PointerEvent(DOWN, 100.0, 200.0))
        overlay.handle(PointerEvent(MOVE, 100.0, 123.0))
        update = overlay.handle(PointerEvent(UP, 100.0, 123.0))
        assert update.commit == ("h1", 76.2)
        assert overlay.state_of("h1") == LineState.HOVERED

    def test_down_outside_band_does_nothing(self, datetime_scales):
        """Pressing away from every line starts no drag."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        assert not overlay.handle(PointerEvent(DOWN, 300.0, 100.0)).redraw_lines
        assert overlay.active_line() is None

    def test_nearest_line_wins(self, datetime_scales):
        """Overlapping bands pick the closest line."""
        overlay, _ = make_overlay(
            datetime_scales,
            vertical("a", "2024-01-03T00:00:00"),
            vertical("b", "2024-01-03T00:45:00"),
        )
        # 45 minutes is 6.25 px on this scale.
        assert overlay.hit_test(404.0, 100.0) == "b"
        assert overlay.hit_test(402.0, 100.0) == "a"

    def test_hit_test_outside_plot(self, datetime_scales):
        """Points outside the plot area never hit."""
        overlay, _ = make_overlay(datetime_scales, horizontal(value=0.0))
        assert overlay.hit_test(100.0, 402.0) is None

    def test_leave_clears_hover_but_not_drag(self, datetime_scales):
        """Leaving the chart keeps an active drag."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(MOVE, 400.0, 100.0))
        overlay.handle(PointerEvent(PointerEventKind.LEAVE))
        assert overlay.state_of("v1") == LineState.IDLE
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0))
        overlay.handle(PointerEvent(PointerEventKind.LEAVE))
        assert overlay.state_of("v1") == LineState.DRAGGING

    def test_one_drag_per_line(self, datetime_scales):
        """A second pointer cannot grab a line that is being dragged."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0, pointer_id=1))
        assert not overlay.handle(PointerEvent(DOWN, 400.0, 100.0, pointer_id=2)).redraw_lines
        assert overlay.active_line(1) == "v1"
        assert overlay.active_line(2) is None

    def test_removing_line_drops_drag(self, datetime_scales):
        """A line removed mid-drag is never committed."""
        overlay, commits = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0))
        overlay.set_lines(())
        assert not overlay.handle(PointerEvent(UP, 500.0, 100.0)).commit
        assert commits == []

    def test_drag_shows_in_layout(self, datetime_scales):
        """The layout follows the dragged position."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 400.0, 100.0))
        overlay.handle(PointerEvent(MOVE, 250.0, 100.0))
        geometry = overlay.layout()[0]
        assert geometry.position == 250.0
        assert geometry.state == LineState.DRAGGING

    def test_unknown_event_kind(self, datetime_scales):
        """Unknown events are rejected."""
        overlay, _ = make_overlay(datetime_scales, vertical())
        with pytest.raises(ValueError):
            overlay.handle(PointerEvent("wheel", 1.0, 1.0))

    def test_scales_cleared_mid_drag_still_commit(self, datetime_scales):
        """A drag in progress finishes against the scales it started with."""
        overlay, commits = make_overlay(datetime_scales, vertical())
        overlay.handle(PointerEvent(DOWN, 402.0, 100.0))
        overlay.set_scales(None)
        assert overlay.handle(PointerEvent(MOVE, 550.0, 100.0)).redraw_lines
        update = overlay.handle(PointerEvent(UP, 600.0, 100.0))
        assert update.commit == ("v1", "2024-01-04T00:00:00")
        assert commits == [("v1", "2024-01-04T00:00:00")]
        assert overlay.state_of("v1") == LineState.IDLE
        assert overlay.layout() == []
        assert not overlay.handle(PointerEvent(DOWN, 600.0, 100.0)).redraw_lines

    def test_scales_cleared_mid_drag_capture_lost(self, datetime_scales):
        """Losing capture after the scales are cleared commits the last position."""
        overlay, commits = make_overlay(datetime_scales, horizontal())
        overlay.handle(PointerEvent(DOWN, 100.0, 200.0))
        overlay.handle(PointerEvent(MOVE, 100.0, 500.0))
        overlay.set_scales(None)
        update = overlay.handle(PointerEvent(PointerEventKind.CAPTURE_LOST))
        assert update.commit == ("h1", 0.0)
        assert len(commits) == 1


class TestLabelDrag:
    """Dragging a line label commits its offset."""

    @staticmethod
    def make(scales, *lines):
        label_commits = []
        overlay = ReferenceLineOverlay(
            on_label_commit=lambda line_id, offset: label_commits.append((line_id, offset))
        )
        overlay.set_scales(scales)
        overlay.set_lines(lines)
        return overlay, label_commits

    def test_label_box(self, datetime_scales):
        """Vertical labels hang right of the line; horizontal ones sit above it."""
        geometries = layout([labeled_vertical(), labeled_horizontal()], datetime_scales)
        assert geometries[0].label_box == pytest.approx((404.0, 4.0, 439.0, 22.0))
        assert geometries[1].label_box == pytest.approx((761.0, 178.0, 796.0, 196.0))
        assert label_box(vertical(), (0.0, 0.0)) is None

    def test_drag_vertical_label(self, datetime_scales):
        """The offset grows by the pointer travel and the line value is kept."""
        overlay, label_commits = self.make(datetime_scales, labeled_vertical())
        assert overlay.handle(PointerEvent(DOWN, 410.0, 10.0)).redraw_lines
        assert overlay.active_target() == DragTarget.LABEL
        overlay.handle(PointerEvent(MOVE, 430.0, 30.0))
        geometry = overlay.layout()[0]
        assert geometry.label_dragging
        assert geometry.position == pytest.approx(400.0)
        assert geometry.label_pos == pytest.approx((424.0, 24.0))

        update = overlay.handle(PointerEvent(UP, 450.0, 60.0))
        assert update.commit is None
        assert update.label_commit == ("v1", (40.0, 50.0))
        assert label_commits == [("v1", (40.0, 50.0))]
        assert overlay.lines[0].label_offset == (40.0, 50.0)
        assert overlay.lines[0].value == "2024-01-03T00:00:00"
        assert overlay.layout()[0].label_pos == pytest.approx((444.0, 54.0))

    def test_label_wins_over_line_band(self, datetime_scales):
        """A press where the label overlaps the grab band takes the label."""
        overlay, _ = self.make(datetime_scales, labeled_vertical())
        overlay.handle(PointerEvent(DOWN, 404.0, 10.0))
        assert overlay.active_target() == DragTarget.LABEL
        assert overlay.drag_position("v1") is None

    def test_horizontal_label_is_clamped_to_plot(self, datetime_scales):
        """The pointer is clamped to the plot area while dragging a label."""
        overlay, label_commits = self.make(datetime_scales, labeled_horizontal())
        overlay.handle(PointerEvent(DOWN, 780.0, 190.0))
        overlay.handle(PointerEvent(MOVE, -50.0, 500.0))
        update = overlay.handle(PointerEvent(PointerEventKind.CAPTURE_LOST))
        assert update.label_commit == ("h1", (-780.0, 210.0))
        assert len(label_commits) == 1

    def test_hovering_label_hovers_line(self, datetime_scales):
        """The label box counts as part of the line for hover."""
        overlay, _ = self.make(datetime_scales, labeled_vertical())
        overlay.handle(PointerEvent(MOVE, 430.0, 15.0))
        assert overlay.state_of("v1") == LineState.HOVERED

    def test_starts_from_stored_offset(self, datetime_scales):
        """A second drag adds to the committed offset."""
        line = replace(labeled_vertical(), label_offset=(10.0, 20.0))
        overlay, label_commits = self.make(datetime_scales, line)
        overlay.handle(PointerEvent(DOWN, 420.0, 30.0))
        overlay.handle(PointerEvent(UP, 425.0, 25.0))
        assert label_commits == [("v1", (15.0, 15.0))]


class TestLineOperations:
    """Adding, updating and removing lines on a chart."""

    def test_default_values(self, sources):
        """New lines start at a sensible position per axis type."""
        assert default_line_value(Orientation.HORIZONTAL, XAxisType.DATETIME) == 50.0
        assert default_line_value(Orientation.VERTICAL, XAxisType.ELAPSED_TIME) == 15.0
        assert default_line_value(Orientation.VERTICAL, XAxisType.PARAMETER) == 50.0
        assert default_line_value(Orientation.VERTICAL, XAxisType.DATETIME, sources) == "2024-01-03T00:00:00"

    def test_default_datetime_without_sources(self):
        """Without data a vertical line starts mid lookback window."""
        now = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        value = default_line_value(Orientation.VERTICAL, XAxisType.DATETIME, now=now)
        assert value == "2024-02-15T12:00:00"

    def test_add_update_remove(self):
        """Lines are added with an id, patched and removed."""
        config, line = add_reference_line(ChartConfig(id="c"), Orientation.HORIZONTAL, label="Limit")
        assert line.id.startswith("line_")
        assert line.value == 50.0
        assert config.reference_lines == (line,)
        config = update_reference_line(config, line.id, value=75.0, color="#00ff00")
        assert config.reference_lines[0].value == 75.0
        assert config.reference_lines[0].label == "Limit"
        config = remove_reference_line(config, line.id)
        assert config.reference_lines == ()

    def test_update_missing_line(self):
        """Patching an unknown line raises KeyError."""
        with pytest.raises(KeyError):
            update_reference_line(ChartConfig(id="c"), "nope", value=1.0)
