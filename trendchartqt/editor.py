"""Chart configuration owner.

:class:`ChartEditor` holds the chart record as the single source of truth.
Every operation builds a patched copy, recomputes the derived state (axis
groups, unit validation, warnings) and hands the new record to one
``on_update`` callback. Nothing is mutated in place, so the surrounding
application can keep earlier records (undo, dirty tracking) safely.

Typical usage:

    editor = ChartEditor(config, on_update=store.save, sources=periods)
    axis_no = editor.add_axis_group(Parameter(id="p1", source_ref="Temp|°C"))
    editor.update_axis_range(axis_no, auto=False)
    line = editor.add_reference_line(Orientation.HORIZONTAL, value=80.0)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from . import axis_model, reference_lines
from .axis_model import AxisGroup
from .errors import ValidationIssue
from .interlock import InterlockTable
from .masters import FormulaLibrary, InterlockLibrary
from .models import (
    ChartConfig,
    DataSource,
    FormulaDefinition,
    InterlockDefinition,
    InterlockReference,
    Interpolation,
    LineValue,
    Orientation,
    Parameter,
    ParameterType,
    ReferenceLine,
)
from .scales import ChartScales, ScaleCache, ScaleResolver
from .settings import DEFAULT_SETTINGS, ChartSettings
from .units import DEFAULT_REGISTRY, ConversionRegistry
from .utils import new_id

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[ChartConfig], None]


class ChartEditor:
    """Apply edits to a chart record and publish the patched copies.

    Args:
        config: Initial chart record.
        on_update: Receives every new record.
        sources: Selected data periods used for auto ranges and defaults.
        interlocks: Interlock master lookup.
        formulas: Formula master lookup.
        settings: Engine settings.
        conversions: Unit conversion lookup.
        clock: "Now" for placeholder windows and default line values.
    """

    def __init__(
        self,
        config: ChartConfig,
        on_update: Optional[UpdateCallback] = None,
        sources: Sequence[DataSource] = (),
        interlocks: Optional[InterlockLibrary] = None,
        formulas: Optional[FormulaLibrary] = None,
        settings: ChartSettings = DEFAULT_SETTINGS,
        conversions: Optional[ConversionRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._on_update = on_update
        self._listeners: List[UpdateCallback] = []
        self._sources: Tuple[DataSource, ...] = tuple(sources)
        self._data_revision = 0
        self.interlocks = interlocks if interlocks is not None else InterlockLibrary()
        self.formulas = formulas if formulas is not None else FormulaLibrary()
        self.settings = settings
        self.conversions = conversions if conversions is not None else DEFAULT_REGISTRY
        self._clock = clock
        self._cache = ScaleCache(ScaleResolver(settings, clock, self.conversions))
        self._groups: List[AxisGroup] = []
        self._issues: List[ValidationIssue] = []
        self._refresh()

    # ----- state -----

    @property
    def config(self) -> ChartConfig:
        return self._config

    @property
    def sources(self) -> Tuple[DataSource, ...]:
        return self._sources

    @property
    def axis_groups(self) -> List[AxisGroup]:
        return list(self._groups)

    @property
    def issues(self) -> List[ValidationIssue]:
        return list(self._issues)

    @property
    def data_revision(self) -> int:
        return self._data_revision

    @property
    def last_scales(self) -> Optional[ChartScales]:
        return self._cache.current

    def subscribe(self, listener: UpdateCallback) -> None:
        """Also call ``listener`` after every update (used by views)."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: UpdateCallback) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_sources(self, sources: Sequence[DataSource]) -> None:
        """Replace the selected data periods; scales recompute on next use."""
        self._sources = tuple(sources)
        self._data_revision += 1

    def scales(self, width: float, height: float) -> ChartScales:
        """Scales for the current record, reused while their inputs are unchanged."""
        return self._cache.get(self._config, self._sources, width, height, self._data_revision)

    def _refresh(self) -> None:
        self._groups = axis_model.axis_groups(self._config, self.conversions)
        self._issues = axis_model.unit_issues(self._config, self.conversions)

    def _apply(self, config: ChartConfig) -> ChartConfig:
        self._config = config
        self._refresh()
        if self._on_update is not None:
            self._on_update(config)
        for listener in list(self._listeners):
            listener(config)
        return config

    def _now(self) -> Optional[datetime]:
        return self._clock() if self._clock is not None else None

    # ----- axes -----

    def add_axis_group(self, parameter: Optional[Parameter] = None) -> int:
        config, axis_no = axis_model.add_axis_group(self._config, parameter)
        self._apply(config)
        return axis_no

    def remove_axis_group(self, axis_no: int) -> None:
        self._apply(axis_model.remove_axis_group(self._config, axis_no))

    def update_axis_range(self, axis_no: int, **patch) -> None:
        """Apply ``auto``/``min``/``max`` to every member of an axis.

        Switching to manual keeps the bounds the axis is currently shown
        with. They come from the last resolved scales, or are resolved now
        when the chart was never drawn.
        """
        self._apply(
            replace(
                self._config,
                parameters=axis_model.update_axis_range(
                    self._config.parameters, axis_no, patch, self._current_y_domain(axis_no)
                ),
            )
        )

    def _current_y_domain(self, axis_no: int) -> Optional[Tuple[float, float]]:
        scales = self._cache.current
        if scales is not None:
            scale = scales.y_for(axis_no)
            if scale is not None:
                return scale.domain
        members = [p for p in self._config.parameters if axis_model.effective_axis_no(p) == axis_no]
        if not members:
            return None
        return self._cache.resolver.y_domain(members, self._sources)

    def set_axis_label(self, axis_no: int, label: str) -> None:
        self._apply(axis_model.set_axis_label(self._config, axis_no, label))

    def unify_axis_units(self, axis_no: int, unit: Optional[str] = None) -> None:
        """Remediation for a mismatch; defaults to the suggested unit."""
        if unit is None:
            check = axis_model.compute_unit_validation(axis_no, self._config.parameters, self.conversions)
            unit = check.suggested_unit
            if unit is None:
                return
        self._apply(axis_model.unify_axis_units(self._config, axis_no, unit))

    def update_x_axis(self, **changes) -> None:
        self._apply(replace(self._config, x_axis=replace(self._config.x_axis, **changes)))

    def set_interpolation(self, interpolation: Interpolation) -> None:
        self._apply(replace(self._config, interpolation=Interpolation(interpolation)))

    def set_title(self, title: str) -> None:
        self._apply(replace(self._config, title=title))

    # ----- parameters -----

    def add_parameter(self, parameter: Parameter, axis_no: Optional[int] = None) -> Parameter:
        """Add a parameter to ``axis_no`` (default: the parameter's own axis)."""
        target = axis_no if axis_no is not None else axis_model.effective_axis_no(parameter)
        config = axis_model.add_parameter_to_axis(self._config, target, parameter)
        self._apply(config)
        return config.parameters[-1]

    def remove_parameter(self, parameter_id: str) -> None:
        self._apply(axis_model.remove_parameter(self._config, parameter_id))

    def move_parameter(self, parameter_id: str, axis_no: int) -> None:
        self._apply(axis_model.move_parameter_to_axis(self._config, parameter_id, axis_no))

    def update_parameter(self, parameter_id: str, **changes) -> None:
        if not any(p.id == parameter_id for p in self._config.parameters):
            raise KeyError(parameter_id)
        self._apply(
            replace(
                self._config,
                parameters=tuple(
                    replace(p, **changes) if p.id == parameter_id else p for p in self._config.parameters
                ),
            )
        )

    def parameter(self, parameter_id: str) -> Parameter:
        for parameter in self._config.parameters:
            if parameter.id == parameter_id:
                return parameter
        raise KeyError(parameter_id)

    # ----- interlocks -----

    def attach_interlock(
        self, interlock_id: str, axis_no: Optional[int] = None, selected: Sequence[str] = ()
    ) -> Parameter:
        """Add an Interlock parameter backed by a draft of a master entry."""
        reference = self.interlocks.reference(interlock_id, selected)
        return self._add_interlock(reference, axis_no)

    def attach_custom_interlock(
        self, definition: InterlockDefinition, axis_no: Optional[int] = None
    ) -> Parameter:
        reference = InterlockReference(source="custom", definition=definition)
        return self._add_interlock(reference, axis_no)

    def _add_interlock(self, reference: InterlockReference, axis_no: Optional[int]) -> Parameter:
        definition = reference.definition
        parameter = Parameter(
            id=new_id("param"),
            parameter_type=ParameterType.INTERLOCK,
            source_ref=definition.x_parameter,
            unit=definition.y_unit,
            interlock=reference,
        )
        return self.add_parameter(parameter, axis_no if axis_no is not None else 1)

    def interlock_table(self, parameter_id: str) -> InterlockTable:
        """Table editor over the parameter's own copy of its definition."""
        parameter = self.parameter(parameter_id)
        if parameter.interlock is None:
            raise ValueError(f"Parameter {parameter_id} is not an interlock")
        return InterlockTable(parameter.interlock.definition, self.settings)

    def update_interlock_definition(self, parameter_id: str, definition: InterlockDefinition) -> None:
        reference = self.parameter(parameter_id).interlock
        if reference is None:
            raise ValueError(f"Parameter {parameter_id} is not an interlock")
        self.update_parameter(parameter_id, interlock=replace(reference, definition=definition))

    def select_thresholds(self, parameter_id: str, threshold_ids: Sequence[str]) -> None:
        reference = self.parameter(parameter_id).interlock
        if reference is None:
            raise ValueError(f"Parameter {parameter_id} is not an interlock")
        self.update_parameter(parameter_id, interlock=replace(reference, selected_thresholds=tuple(threshold_ids)))

    # ----- formulas -----

    def attach_formula(self, definition: FormulaDefinition, axis_no: Optional[int] = None) -> Parameter:
        parameter = Parameter(
            id=new_id("param"),
            parameter_type=ParameterType.FORMULA,
            source_ref=definition.id,
            unit=definition.unit,
            formula=definition,
        )
        return self.add_parameter(parameter, axis_no if axis_no is not None else 1)

    def attach_master_formula(self, formula_id: str, axis_no: Optional[int] = None) -> Parameter:
        return self.attach_formula(self.formulas.load_as_draft(formula_id), axis_no)

    def update_formula(self, parameter_id: str, definition: FormulaDefinition) -> None:
        self.update_parameter(parameter_id, formula=definition, unit=definition.unit)

    # ----- reference lines -----

    def add_reference_line(
        self, orientation: Orientation, value: Optional[LineValue] = None, **attributes
    ) -> ReferenceLine:
        config, line = reference_lines.add_reference_line(
            self._config,
            orientation,
            value=value,
            sources=self._sources,
            now=self._now(),
            settings=self.settings,
            **attributes,
        )
        self._apply(config)
        return line

    def update_reference_line(self, line_id: str, **changes) -> None:
        self._apply(reference_lines.update_reference_line(self._config, line_id, **changes))

    def remove_reference_line(self, line_id: str) -> None:
        self._apply(reference_lines.remove_reference_line(self._config, line_id))

    def commit_reference_line(self, line_id: str, value: LineValue) -> None:
        """Drag commit target for :class:`ReferenceLineOverlay`."""
        logger.debug("Committing reference line %s = %r", line_id, value)
        self.update_reference_line(line_id, value=value)

    def commit_label_offset(self, line_id: str, label_offset: Tuple[float, float]) -> None:
        """Label drag commit target; the scales stay cached."""
        logger.debug("Committing label offset of line %s = %r", line_id, label_offset)
        self.update_reference_line(line_id, label_offset=(float(label_offset[0]), float(label_offset[1])))
