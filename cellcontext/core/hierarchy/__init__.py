"""Cell-type hierarchies for contextual spatial tests.

A hierarchy maps parent populations (e.g. "tumour", "immune") to the
cell types they contain. It can be written by hand, loaded from YAML, or
derived from marker-expression similarity:

    >>> from cellcontext.core.hierarchy import CellTypeHierarchy, build_hierarchy
    >>> h = CellTypeHierarchy.from_yaml("hierarchy.yaml")
    >>> h = build_hierarchy(mean_marker_profiles(cells, markers), n_parents=3)
"""

from .tree import (
    CellTypeHierarchy,
    TypeStatus,
)

from .builder import (
    mean_marker_profiles,
    build_hierarchy,
    dendrogram_parents,
)

__all__ = [
    "CellTypeHierarchy",
    "TypeStatus",
    "mean_marker_profiles",
    "build_hierarchy",
    "dendrogram_parents",
]
