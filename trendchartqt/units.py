"""Unit conversion lookup used by axis unit validation.

The registry answers "is there a known conversion between these two units"
for the axis model, and converts values using the conversion's formula text.
Formula text is evaluated with the restricted formula engine, with ``x`` as
the input value.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import EvaluationError
from .formula import compile_formula, parse_expression

logger = logging.getLogger(__name__)

SI_BASE_UNITS: Tuple[str, ...] = ("m", "kg", "s", "A", "K", "mol", "cd", "Pa", "N", "J", "W", "Hz")


@dataclass(frozen=True)
class UnitDefinition:
    primary_symbol: str
    name: str = ""
    aliases: Tuple[str, ...] = ()

    def matches(self, unit: str) -> bool:
        return unit == self.primary_symbol or unit in self.aliases


@dataclass(frozen=True)
class UnitConversion:
    """A conversion formula between two units.

    Attributes:
        id: Registry id.
        name: Display name, e.g. ``"Celsius to Fahrenheit"``.
        category: Grouping such as ``"temperature"``.
        from_unit: Source unit.
        to_unit: Target unit.
        formula: Expression in ``x`` converting from -> to.
        reverse_formula: Expression in ``x`` converting to -> from.
        bidirectional: Whether ``reverse_formula`` may be used.
    """

    id: str
    name: str
    category: str
    from_unit: UnitDefinition
    to_unit: UnitDefinition
    formula: str
    reverse_formula: str = ""
    bidirectional: bool = True


def _unit(symbol: str, name: str, *aliases: str) -> UnitDefinition:
    return UnitDefinition(primary_symbol=symbol, name=name, aliases=tuple(aliases))


CELSIUS = _unit("°C", "Celsius", "℃", "C", "celsius")
FAHRENHEIT = _unit("°F", "Fahrenheit", "℉", "F", "fahrenheit")
KELVIN = _unit("K", "Kelvin", "kelvin")
PASCAL = _unit("Pa", "Pascal", "pascal")
KILOPASCAL = _unit("kPa", "Kilopascal", "kpa")
MEGAPASCAL = _unit("MPa", "Megapascal", "mpa")
BAR = _unit("bar", "Bar")
MILLIMETER = _unit("mm", "Millimeter")
METER = _unit("m", "Meter")
CUBIC_M_PER_H = _unit("m3/h", "Cubic meters per hour", "m³/h")
LITER_PER_MIN = _unit("L/min", "Liters per minute", "l/min")
SECOND = _unit("s", "Second", "sec")
MINUTE = _unit("min", "Minute")

PREDEFINED_CONVERSIONS: Tuple[UnitConversion, ...] = (
    UnitConversion("c_to_f", "Celsius to Fahrenheit", "temperature", CELSIUS, FAHRENHEIT,
                   "x * 9 / 5 + 32", "(x - 32) * 5 / 9"),
    UnitConversion("c_to_k", "Celsius to Kelvin", "temperature", CELSIUS, KELVIN,
                   "x + 273.15", "x - 273.15"),
    UnitConversion("f_to_k", "Fahrenheit to Kelvin", "temperature", FAHRENHEIT, KELVIN,
                   "(x - 32) * 5 / 9 + 273.15", "(x - 273.15) * 9 / 5 + 32"),
    UnitConversion("pa_to_kpa", "Pascal to Kilopascal", "pressure", PASCAL, KILOPASCAL,
                   "x / 1000", "x * 1000"),
    UnitConversion("kpa_to_mpa", "Kilopascal to Megapascal", "pressure", KILOPASCAL, MEGAPASCAL,
                   "x / 1000", "x * 1000"),
    UnitConversion("bar_to_kpa", "Bar to Kilopascal", "pressure", BAR, KILOPASCAL,
                   "x * 100", "x / 100"),
    UnitConversion("mm_to_m", "Millimeter to Meter", "length", MILLIMETER, METER,
                   "x / 1000", "x * 1000"),
    UnitConversion("m3h_to_lmin", "m3/h to L/min", "flow", CUBIC_M_PER_H, LITER_PER_MIN,
                   "x * 1000 / 60", "x * 60 / 1000"),
    UnitConversion("s_to_min", "Second to Minute", "time", SECOND, MINUTE,
                   "x / 60", "x * 60"),
)


class ConversionRegistry:
    """Read-only lookup of unit conversions."""

    def __init__(self, conversions: Iterable[UnitConversion] = PREDEFINED_CONVERSIONS) -> None:
        self._conversions: Tuple[UnitConversion, ...] = tuple(conversions)

    def __len__(self) -> int:
        return len(self._conversions)

    def conversions(self) -> Tuple[UnitConversion, ...]:
        return self._conversions

    def find(self, from_unit: str, to_unit: str) -> Optional[Tuple[UnitConversion, bool]]:
        """Find a conversion between two units.

        Returns:
            ``(conversion, reversed)`` or ``None``. ``reversed`` is True when
            the conversion must be applied with its reverse formula.
        """
        for conversion in self._conversions:
            if conversion.from_unit.matches(from_unit) and conversion.to_unit.matches(to_unit):
                return conversion, False
        for conversion in self._conversions:
            if (
                conversion.bidirectional
                and conversion.reverse_formula
                and conversion.from_unit.matches(to_unit)
                and conversion.to_unit.matches(from_unit)
            ):
                return conversion, True
        return None

    def has_conversion(self, unit_a: str, unit_b: str) -> bool:
        if unit_a == unit_b:
            return True
        return self.find(unit_a, unit_b) is not None

    def all_convertible(self, units: Sequence[str]) -> bool:
        """True iff every pair of distinct units has a known conversion."""
        distinct = list(dict.fromkeys(u for u in units if u))
        if len(distinct) < 2:
            return False
        for i in range(len(distinct) - 1):
            for j in range(i + 1, len(distinct)):
                if not self.has_conversion(distinct[i], distinct[j]):
                    return False
        return True

    def convert(self, value: float, from_unit: str, to_unit: str) -> float:
        """Convert a value between units.

        Raises:
            KeyError: If no conversion is known.
            EvaluationError: If the conversion formula cannot be evaluated.
        """
        if from_unit == to_unit:
            return float(value)
        found = self.find(from_unit, to_unit)
        if found is None:
            raise KeyError(f"No conversion from {from_unit!r} to {to_unit!r}")
        conversion, reverse = found
        text = conversion.reverse_formula if reverse else conversion.formula
        logger.debug("Converting %s -> %s with %r", from_unit, to_unit, text)
        compiled = compile_formula(parse_expression(text))
        result = float(compiled.evaluate({"x": float(value)}))
        if not math.isfinite(result):
            raise EvaluationError(f"Conversion {conversion.name} produced a non-finite value")
        return result

    def convert_array(self, values: Sequence[float], from_unit: str, to_unit: str) -> np.ndarray:
        """Convert a whole series; non-finite results become NaN.

        Raises:
            KeyError: If no conversion is known.
        """
        data = np.asarray(values, dtype=float)
        if from_unit == to_unit:
            return data.copy()
        found = self.find(from_unit, to_unit)
        if found is None:
            raise KeyError(f"No conversion from {from_unit!r} to {to_unit!r}")
        conversion, reverse = found
        text = conversion.reverse_formula if reverse else conversion.formula
        compiled = compile_formula(parse_expression(text))
        with np.errstate(all="ignore"):
            result = np.broadcast_to(np.asarray(compiled.evaluate({"x": data}), dtype=float), data.shape).copy()
        result[~np.isfinite(result)] = np.nan
        return result


def suggest_unit(units: Sequence[str]) -> Optional[str]:
    """Pick the unit to propose when an axis mixes units.

    The most frequent unit wins; when every unit appears once an SI base unit
    is preferred, otherwise the first one.
    """
    present: List[str] = [u for u in units if u]
    if not present:
        return None
    counts = Counter(present)
    best, freq = counts.most_common(1)[0]
    if freq == 1 and len(present) > 1:
        for unit in present:
            if unit in SI_BASE_UNITS:
                return unit
        return present[0]
    return best


DEFAULT_REGISTRY = ConversionRegistry()
