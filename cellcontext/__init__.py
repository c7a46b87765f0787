"""CellContext: context-aware spatial co-localisation for multiplexed imaging.

This package provides tools for:
- Cross-type L-function statistics with edge and inhomogeneity correction
- Kontextual statistics relative to a parent cell population
- Image x test association tables with count-based image weights
- Outcome association with linear, mixed-effects and Cox models
- Cell-type hierarchies, hand-written or derived from marker profiles

Example usage:
    >>> from cellcontext.core.spatial import ContextEngine
    >>> from cellcontext.core.hierarchy import CellTypeHierarchy
    >>>
    >>> engine = ContextEngine()
    >>> result = engine.execute(cells, hierarchy=CellTypeHierarchy.from_yaml("h.yaml"))
    >>> outcomes = engine.associate(result, clinical["subtype"])
"""

__version__ = "0.1.0"
