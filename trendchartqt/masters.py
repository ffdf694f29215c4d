"""Read-only lookups into the shared interlock and formula masters.

Charts never hold live references to master entries. Every edit or duplicate
flow goes through :meth:`MasterLibrary.load_as_draft` or
:meth:`MasterLibrary.duplicate`, which hand out independent deep copies, so
changing a chart's copy can never change the master.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Dict, Generic, Iterable, Iterator, List, Optional, Sequence, TypeVar

from .errors import MasterNotFoundError
from .formula import FormulaBuilder
from .models import FormulaDefinition, InterlockDefinition, InterlockReference
from .utils import new_id

logger = logging.getLogger(__name__)

T = TypeVar("T", InterlockDefinition, FormulaDefinition)


class MasterLibrary(Generic[T]):
    """Id-addressed collection of master definitions.

    Args:
        entries: Definitions with unique ``id`` attributes.
        kind: Name used in log and error messages.
    """

    def __init__(self, entries: Iterable[T] = (), kind: str = "master") -> None:
        self.kind = kind
        self._entries: Dict[str, T] = {}
        for entry in entries:
            if entry.id in self._entries:
                raise ValueError(f"Duplicate {kind} id: {entry.id}")
            self._entries[entry.id] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def __iter__(self) -> Iterator[T]:
        return iter(self._entries.values())

    def ids(self) -> List[str]:
        return list(self._entries)

    def get(self, entry_id: str) -> T:
        """Return the master entry itself (treat it as read-only).

        Raises:
            MasterNotFoundError: If ``entry_id`` is unknown.
        """
        try:
            return self._entries[entry_id]
        except KeyError:
            raise MasterNotFoundError(f"No {self.kind} with id {entry_id!r}") from None

    def load_as_draft(self, entry_id: str) -> T:
        """Independent deep copy of a master entry, keeping its id."""
        draft = copy.deepcopy(self.get(entry_id))
        logger.info("Loaded %s %s as draft", self.kind, entry_id)
        return draft

    def duplicate(self, entry_id: str, name_suffix: str = " (Copy)") -> T:
        """Deep copy of a master entry under a new id and name."""
        draft = copy.deepcopy(self.get(entry_id))
        return replace(draft, id=new_id(self.kind), name=f"{draft.name}{name_suffix}")


class InterlockLibrary(MasterLibrary[InterlockDefinition]):
    def __init__(self, entries: Iterable[InterlockDefinition] = ()) -> None:
        super().__init__(entries, kind="interlock")

    def reference(self, interlock_id: str, selected: Sequence[str] = ()) -> InterlockReference:
        """Reference for an Interlock parameter, backed by a draft copy."""
        return InterlockReference(
            source="master",
            interlock_id=interlock_id,
            definition=self.load_as_draft(interlock_id),
            selected_thresholds=tuple(selected),
        )


class FormulaLibrary(MasterLibrary[FormulaDefinition]):
    def __init__(self, entries: Iterable[FormulaDefinition] = ()) -> None:
        super().__init__(entries, kind="formula")

    def builder(self, formula_id: str) -> FormulaBuilder:
        """Builder pre-filled with a draft of the master formula."""
        return FormulaBuilder.from_definition(self.load_as_draft(formula_id))

    def find_by_name(self, name: str) -> Optional[FormulaDefinition]:
        for entry in self:
            if entry.name == name:
                return entry
        return None
