"""Y axis grouping, range policy and unit validation.

Parameters carry an ``axis_no``; parameters sharing a number form one
independently scaled Y axis. Axis groups are never stored: they are derived
from the flat parameter list after every edit by :func:`axis_groups`, together
with the auto label and the unit validation of each group.

All editing functions are pure. They take a :class:`ChartConfig` (or a tuple
of parameters) and return a patched copy.

Typical usage:

    groups = axis_groups(config)
    for group in groups:
        if group.unit_validation.mismatch:
            show_warning(group.axis_no, group.unit_validation.suggested_unit)

    config = replace(
        config,
        parameters=update_axis_range(config.parameters, 1, {"auto": False},
                                     last_bounds=scales.y[1].domain),
    )

Google-style docstrings + PEP8.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationIssue
from .models import AxisRange, ChartConfig, Parameter, ParameterType, parse_parameter_key
from .units import DEFAULT_REGISTRY, ConversionRegistry, suggest_unit
from .utils import new_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitValidation:
    """Unit consistency of one axis group.

    Attributes:
        mismatch: More than one distinct non-empty unit is present.
        units: Distinct non-empty units in order of first appearance.
        convertible: A known conversion exists between every pair of units.
        suggested_unit: Unit proposed by the remediation action.
        parameter_indices: Indices of the validated parameters.
    """

    mismatch: bool
    units: Tuple[str, ...]
    convertible: bool
    suggested_unit: Optional[str] = None
    parameter_indices: Tuple[int, ...] = ()


@dataclass(frozen=True)
class AxisGroup:
    """Derived view of one Y axis."""

    axis_no: int
    label: str
    label_pinned: bool
    range: AxisRange
    members: Tuple[Parameter, ...]
    member_indices: Tuple[int, ...]
    unit_validation: UnitValidation


def effective_axis_no(parameter: Parameter) -> int:
    return parameter.axis_no if parameter.axis_no and parameter.axis_no >= 1 else 1


def group_by_axis(parameters: Sequence[Parameter]) -> Dict[int, List[int]]:
    """Group parameter indices by axis number.

    Keys are in ascending axis order; indices keep the original parameter
    order within each group.
    """
    groups: Dict[int, List[int]] = {}
    for index, parameter in enumerate(parameters):
        groups.setdefault(effective_axis_no(parameter), []).append(index)
    return {axis_no: groups[axis_no] for axis_no in sorted(groups)}


def resolve_unit(parameter: Parameter) -> str:
    """Unit a parameter is plotted in."""
    if parameter.unit:
        return parameter.unit
    if parameter.parameter_type == ParameterType.FORMULA:
        return parameter.formula.unit if parameter.formula is not None else ""
    if parameter.parameter_type == ParameterType.INTERLOCK:
        return parameter.interlock.definition.y_unit if parameter.interlock is not None else ""
    return parse_parameter_key(parameter.source_ref)[1]


def validate_units(
    indices: Sequence[int],
    parameters: Sequence[Parameter],
    conversions: Optional[ConversionRegistry] = None,
) -> UnitValidation:
    """Check that all parameters of a group share one unit.

    Args:
        indices: Parameter indices of the group.
        parameters: The full parameter list.
        conversions: Conversion lookup; defaults to the predefined registry.

    Returns:
        UnitValidation for the group.
    """
    registry = conversions if conversions is not None else DEFAULT_REGISTRY
    units = [resolve_unit(parameters[i]) for i in indices if 0 <= i < len(parameters)]
    distinct = tuple(dict.fromkeys(u for u in units if u))

    if len(distinct) <= 1:
        return UnitValidation(
            mismatch=False,
            units=distinct,
            convertible=False,
            parameter_indices=tuple(indices),
        )

    return UnitValidation(
        mismatch=True,
        units=distinct,
        convertible=registry.all_convertible(distinct),
        suggested_unit=suggest_unit([u for u in units if u]),
        parameter_indices=tuple(indices),
    )


def compute_auto_label(members: Sequence[Parameter]) -> str:
    """Default axis label: the first member's display name."""
    for member in members:
        if member.name:
            return member.name
    return ""


def compute_unit_validation(
    axis_no: int,
    parameters: Sequence[Parameter],
    conversions: Optional[ConversionRegistry] = None,
) -> UnitValidation:
    indices = group_by_axis(parameters).get(axis_no, [])
    return validate_units(indices, parameters, conversions)


def axis_groups(
    config: ChartConfig, conversions: Optional[ConversionRegistry] = None
) -> List[AxisGroup]:
    """Derive the axis groups of a chart.

    Labels follow the first member unless the user pinned one in
    ``config.axis_labels``.
    """
    groups: List[AxisGroup] = []
    parameters = config.parameters
    for axis_no, indices in group_by_axis(parameters).items():
        members = tuple(parameters[i] for i in indices)
        pinned = config.axis_labels.get(axis_no, "")
        groups.append(
            AxisGroup(
                axis_no=axis_no,
                label=pinned or compute_auto_label(members),
                label_pinned=bool(pinned),
                range=members[0].range,
                members=members,
                member_indices=tuple(indices),
                unit_validation=validate_units(indices, parameters, conversions),
            )
        )
    return groups


def unit_issues(
    config: ChartConfig, conversions: Optional[ConversionRegistry] = None
) -> List[ValidationIssue]:
    """Warnings for every axis that mixes units."""
    issues: List[ValidationIssue] = []
    for group in axis_groups(config, conversions):
        check = group.unit_validation
        if not check.mismatch:
            continue
        hint = "convertible" if check.convertible else "no known conversion"
        logger.warning("Axis %d mixes units %s (%s)", group.axis_no, ", ".join(check.units), hint)
        issues.append(
            ValidationIssue(
                code="UnitMismatch",
                message=f"Axis {group.axis_no} mixes units: {', '.join(check.units)} ({hint})",
                axis_no=group.axis_no,
                remediation=check.suggested_unit,
            )
        )
    return issues


def next_axis_number(parameters: Sequence[Parameter]) -> int:
    """Axis number for a new group: ``max(existing, 0) + 1``."""
    return max([effective_axis_no(p) for p in parameters] + [0]) + 1


def update_axis_range(
    parameters: Sequence[Parameter],
    axis_no: int,
    patch: Mapping[str, object],
    last_bounds: Optional[Tuple[float, float]] = None,
) -> Tuple[Parameter, ...]:
    """Apply a range patch to every parameter on an axis.

    When ``auto`` is switched off without explicit bounds, the new manual
    bounds are the last computed auto bounds (``last_bounds``), falling back
    to the previously stored bounds. Bounds are never reset to a default.

    Args:
        parameters: Current parameters.
        axis_no: Axis to update.
        patch: Any of ``auto``, ``min``, ``max``.
        last_bounds: Domain the axis was last rendered with.

    Returns:
        New parameter tuple.
    """
    updated: List[Parameter] = []
    for parameter in parameters:
        if effective_axis_no(parameter) != axis_no:
            updated.append(parameter)
            continue

        current = parameter.range
        auto = bool(patch["auto"]) if patch.get("auto") is not None else current.auto
        leaving_auto = current.auto and not auto

        new_min = patch.get("min")
        new_max = patch.get("max")
        if new_min is None:
            new_min = _fallback_bound(current.min, last_bounds, 0, leaving_auto)
        if new_max is None:
            new_max = _fallback_bound(current.max, last_bounds, 1, leaving_auto)

        updated.append(replace(parameter, range=AxisRange(auto=auto, min=new_min, max=new_max)))
    return tuple(updated)


def _fallback_bound(stored, last_bounds, index: int, leaving_auto: bool):
    if last_bounds is not None and (leaving_auto or stored is None):
        return float(last_bounds[index])
    return stored


def axis_range_of(parameters: Sequence[Parameter], axis_no: int) -> AxisRange:
    for parameter in parameters:
        if effective_axis_no(parameter) == axis_no:
            return parameter.range
    return AxisRange()


def add_axis_group(config: ChartConfig, parameter: Optional[Parameter] = None) -> Tuple[ChartConfig, int]:
    """Append a new axis group holding ``parameter`` (or an empty raw entry)."""
    axis_no = next_axis_number(config.parameters)
    if parameter is None:
        parameter = Parameter(id=new_id("param"))
    parameter = replace(parameter, axis_no=axis_no)
    return replace(config, parameters=config.parameters + (parameter,)), axis_no


def remove_axis_group(config: ChartConfig, axis_no: int) -> ChartConfig:
    """Remove an axis and all its parameters, forgetting its pinned label."""
    labels = {k: v for k, v in config.axis_labels.items() if k != axis_no}
    return replace(
        config,
        parameters=tuple(p for p in config.parameters if effective_axis_no(p) != axis_no),
        axis_labels=labels,
    )


def add_parameter_to_axis(config: ChartConfig, axis_no: int, parameter: Parameter) -> ChartConfig:
    """Add a parameter to an axis; it adopts the axis's current range."""
    parameter = replace(
        parameter, axis_no=axis_no, range=axis_range_of(config.parameters, axis_no)
    )
    return replace(config, parameters=config.parameters + (parameter,))


def move_parameter_to_axis(config: ChartConfig, parameter_id: str, axis_no: int) -> ChartConfig:
    target_range = axis_range_of(config.parameters, axis_no)
    moved = tuple(
        replace(p, axis_no=axis_no, range=target_range) if p.id == parameter_id else p
        for p in config.parameters
    )
    return replace(config, parameters=moved)


def remove_parameter(config: ChartConfig, parameter_id: str) -> ChartConfig:
    return replace(config, parameters=tuple(p for p in config.parameters if p.id != parameter_id))


def set_axis_label(config: ChartConfig, axis_no: int, label: str) -> ChartConfig:
    """Pin a custom axis label; an empty label returns to the auto label."""
    labels = dict(config.axis_labels)
    if label.strip():
        labels[axis_no] = label
    else:
        labels.pop(axis_no, None)
    return replace(config, axis_labels=labels)


def unify_axis_units(config: ChartConfig, axis_no: int, unit: str) -> ChartConfig:
    """Remediation for a unit mismatch: plot every member of the axis in ``unit``."""
    return replace(
        config,
        parameters=tuple(
            replace(p, unit=unit) if effective_axis_no(p) == axis_no else p
            for p in config.parameters
        ),
    )
