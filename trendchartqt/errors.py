"""Error taxonomy for the chart engine.

Nothing in the engine is fatal. Structural problems with user input are
reported as :class:`ValidationIssue` records that the UI can show next to the
offending field, formula evaluation failures are captured in the evaluation
result, and degenerate ranges are corrected with a
:class:`RangeDegenerateWarning` that is ignored unless the application opts in.

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional


class TrendChartError(Exception):
    """Base class for engine errors."""


class ValidationError(TrendChartError):
    """Non-fatal validation failure (unit mismatch, malformed formula).

    Attributes:
        code: Machine readable error code.
    """

    def __init__(self, message: str, code: str = "ValidationError") -> None:
        super().__init__(message)
        self.code = code


class EvaluationError(TrendChartError):
    """Formula evaluation failure for one sample calculation."""


class MasterNotFoundError(KeyError):
    """Raised when a master library has no entry for the requested id."""


class GeometryOutOfBounds(TrendChartError):
    """A computed pixel position falls outside the plot area.

    Raised by the pixel geometry helpers and caught by their callers, which
    skip drawing the item.
    """


class RangeDegenerateWarning(UserWarning):
    """A zero or inverted span was widened before building a scale."""


# Degenerate ranges are corrected silently unless the application opts in.
warnings.filterwarnings("ignore", category=RangeDegenerateWarning, append=True)


@dataclass(frozen=True)
class ValidationIssue:
    """A warning surfaced inline by the editing UI.

    Attributes:
        code: Error code, e.g. ``"UnitMismatch"`` or ``"MissingOperator"``.
        message: Human readable description.
        axis_no: Y axis the issue belongs to, if any.
        remediation: Optional suggested fix (e.g. the unit to convert to).
    """

    code: str
    message: str
    axis_no: Optional[int] = None
    remediation: Optional[str] = None
