"""Cell-type hierarchy: parent populations and their child types."""

from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional
import logging

import yaml

from ...errors import InvalidHierarchy

logger = logging.getLogger(__name__)


class TypeStatus(Enum):
    """How a cell type is covered by a hierarchy."""

    ASSIGNED = "assigned"  # child of at least one parent
    UNASSIGNED = "unassigned"  # known, not yet placed under a parent
    EXCLUDED = "excluded"  # deliberately left out of contextual tests


class CellTypeHierarchy:
    """Immutable parent -> children mapping with explicit catch-all sets.

    Parameters
    ----------
    parents : Mapping[str, Iterable[str]]
        Parent population name -> child cell types
    unassigned : Iterable[str], optional
        Types known to the analysis but not under any parent
    excluded : Iterable[str], optional
        Types deliberately excluded from contextual tests

    Example
    -------
    >>> h = CellTypeHierarchy({"tumour": ["Tumour_A", "Tumour_B"]})
    >>> h = h.complete(["Tumour_A", "Tumour_B", "CD8"])
    >>> h.status("CD8")
    <TypeStatus.UNASSIGNED: 'unassigned'>
    """

    # Keys of the dict form that are metadata, not parents
    UNASSIGNED_KEY = "_unassigned"
    EXCLUDED_KEY = "_excluded"

    def __init__(
        self,
        parents: Mapping[str, Iterable[str]],
        unassigned: Optional[Iterable[str]] = None,
        excluded: Optional[Iterable[str]] = None,
    ):
        frozen: Dict[str, FrozenSet[str]] = {}
        for parent, children in parents.items():
            if isinstance(children, str):
                children = [children]
            members = frozenset(str(c) for c in children)
            if not members:
                raise InvalidHierarchy(f"Parent '{parent}' has no child types")
            frozen[str(parent)] = members

        self._parents = MappingProxyType(dict(sorted(frozen.items())))
        self._unassigned = frozenset(str(c) for c in (unassigned or []))
        self._excluded = frozenset(str(c) for c in (excluded or []))

        assigned = self.assigned_types
        overlap = assigned & self._excluded
        if overlap:
            raise InvalidHierarchy(
                f"Types both excluded and assigned to a parent: {sorted(overlap)}"
            )
        overlap = assigned & self._unassigned
        if overlap:
            raise InvalidHierarchy(
                f"Types both unassigned and assigned to a parent: {sorted(overlap)}"
            )
        overlap = self._unassigned & self._excluded
        if overlap:
            raise InvalidHierarchy(
                f"Types both unassigned and excluded: {sorted(overlap)}"
            )

    @property
    def parents(self) -> Mapping[str, FrozenSet[str]]:
        return self._parents

    @property
    def unassigned(self) -> FrozenSet[str]:
        return self._unassigned

    @property
    def excluded(self) -> FrozenSet[str]:
        return self._excluded

    @property
    def assigned_types(self) -> FrozenSet[str]:
        result: FrozenSet[str] = frozenset()
        for children in self._parents.values():
            result = result | children
        return result

    @property
    def all_types(self) -> FrozenSet[str]:
        return self.assigned_types | self._unassigned | self._excluded

    def parent_types(self, parent: str) -> FrozenSet[str]:
        """Child types of a parent population. Raises InvalidHierarchy if unknown."""
        if parent not in self._parents:
            raise InvalidHierarchy(f"Unknown parent population: {parent}")
        return self._parents[parent]

    def parents_of(self, cell_type: str) -> List[str]:
        """Parents whose population contains ``cell_type``."""
        return [p for p, children in self._parents.items() if cell_type in children]

    def status(self, cell_type: str) -> TypeStatus:
        """Coverage of a type; raises InvalidHierarchy for a type found nowhere."""
        if cell_type in self._excluded:
            return TypeStatus.EXCLUDED
        if cell_type in self._unassigned:
            return TypeStatus.UNASSIGNED
        if any(cell_type in children for children in self._parents.values()):
            return TypeStatus.ASSIGNED
        raise InvalidHierarchy(
            f"Cell type '{cell_type}' is neither in the hierarchy nor unassigned"
        )

    def unmapped(self, cell_types: Iterable[str]) -> List[str]:
        """Types absent from every parent and from both catch-all sets."""
        known = self.all_types
        return sorted({str(c) for c in cell_types} - known)

    def complete(self, all_types: Iterable[str]) -> "CellTypeHierarchy":
        """Copy where every unmapped type in ``all_types`` becomes unassigned."""
        missing = self.unmapped(all_types)
        if missing:
            logger.debug(f"Marking {len(missing)} types as unassigned: {missing}")
        return CellTypeHierarchy(
            self._parents,
            unassigned=self._unassigned | frozenset(missing),
            excluded=self._excluded,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CellTypeHierarchy":
        """Build from a flat, structured or nested mapping.

        Accepted forms:

        * flat: ``{"tumour": ["A", "B"], "_unassigned": ["C"]}``
        * structured: ``{"parents": {...}, "unassigned": [...], "excluded": [...]}``
        * nested marker-map style:
          ``{"Immune": {"children": {"T cells": {"children": {"CD4": {}}}}}}``
          where every internal node becomes a parent of all its descendants.
        """
        if "parents" in data and isinstance(data["parents"], dict):
            parents_data = data["parents"]
            unassigned = list(data.get("unassigned", []))
            excluded = list(data.get("excluded", []))
        else:
            parents_data = {
                k: v for k, v in data.items() if not str(k).startswith("_")
            }
            unassigned = list(data.get(cls.UNASSIGNED_KEY, []))
            excluded = list(data.get(cls.EXCLUDED_KEY, []))

        parents: Dict[str, List[str]] = {}
        for name, value in parents_data.items():
            if isinstance(value, dict):
                _collect_nested(str(name), value, parents)
            elif isinstance(value, (list, tuple, set, frozenset, str)):
                parents[str(name)] = [value] if isinstance(value, str) else list(value)
            else:
                raise InvalidHierarchy(
                    f"Children of '{name}' must be a list or mapping, got {type(value).__name__}"
                )

        return cls(parents, unassigned=unassigned, excluded=excluded)

    @classmethod
    def from_yaml(cls, path: Path) -> "CellTypeHierarchy":
        """Load a hierarchy from a YAML file (any form accepted by from_dict)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Hierarchy file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        hierarchy = cls.from_dict(data)
        logger.info(f"Loaded hierarchy with {len(hierarchy.parents)} parents from {path}")
        return hierarchy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parents": {p: sorted(c) for p, c in self._parents.items()},
            "unassigned": sorted(self._unassigned),
            "excluded": sorted(self._excluded),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CellTypeHierarchy):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"CellTypeHierarchy(parents={len(self._parents)}, "
            f"assigned={len(self.assigned_types)}, "
            f"unassigned={len(self._unassigned)}, excluded={len(self._excluded)})"
        )


def _collect_nested(name: str, data: Dict[str, Any], parents: Dict[str, List[str]]) -> List[str]:
    """Register ``name`` as a parent of all its descendants; return its subtree labels."""
    children = data.get("children", data.get("subtypes", {})) or {}
    descendants: List[str] = []
    if isinstance(children, dict):
        for child_name, child_data in children.items():
            child_data = child_data if isinstance(child_data, dict) else {}
            descendants.extend(_collect_nested(str(child_name), child_data, parents))
    else:
        descendants.extend(str(c) for c in children)

    if descendants:
        parents[name] = descendants
    return [name] + descendants
