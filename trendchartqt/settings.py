"""Tunable constants for scale resolution, overlays and legends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

DEFAULT_THRESHOLD_COLORS: Tuple[str, ...] = (
    "#FFA500",  # Orange
    "#FF6B6B",  # Light red
    "#FF0000",  # Red
    "#8B0000",  # Dark red
    "#800080",  # Purple
    "#008080",  # Teal
    "#808000",  # Olive
    "#FF1493",  # Deep pink
)


@dataclass(frozen=True)
class ChartSettings:
    """Engine-wide configuration.

    Attributes:
        hit_tolerance_px: Half width of the invisible grab band around a
            reference line.
        datetime_lookback_s: Placeholder window for an empty datetime axis.
        elapsed_placeholder: Placeholder domain for an empty elapsed axis.
        parameter_placeholder: Placeholder domain for an empty parameter axis.
        y_placeholder: Placeholder domain for an empty Y axis.
        min_numeric_span: Minimum span of a numeric domain.
        min_datetime_span_s: Minimum span of a datetime domain, in seconds.
        nice_ticks: Tick count used when rounding auto domains.
        horizontal_decimals: Rounding of committed horizontal line values.
        numeric_decimals: Rounding of committed numeric vertical line values.
        legend_swatch_px: Width of the color swatch in a legend entry.
        legend_padding_px: Gap between legend entries.
        legend_row_height_px: Height of one legend row.
        legend_char_px: Approximate glyph width used to measure labels.
        threshold_colors: Palette for new interlock thresholds.
    """

    hit_tolerance_px: float = 5.0
    datetime_lookback_s: float = 30 * 24 * 60 * 60
    elapsed_placeholder: Tuple[float, float] = (0.0, 30.0)
    parameter_placeholder: Tuple[float, float] = (0.0, 100.0)
    y_placeholder: Tuple[float, float] = (0.0, 100.0)
    min_numeric_span: float = 1.0
    min_datetime_span_s: float = 24 * 60 * 60
    nice_ticks: int = 10
    horizontal_decimals: int = 1
    numeric_decimals: int = 3
    legend_swatch_px: float = 16.0
    legend_padding_px: float = 12.0
    legend_row_height_px: float = 18.0
    legend_char_px: float = 7.0
    threshold_colors: Tuple[str, ...] = DEFAULT_THRESHOLD_COLORS


DEFAULT_SETTINGS = ChartSettings()
