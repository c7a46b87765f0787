"""Spatial context module for cell-type co-localisation.

This module provides:
- Cross-type L-function statistic with Ripley's isotropic edge correction
  and an optional inhomogeneous (kernel intensity) null
- Kontextual statistic relative to a parent population
- Batch engine over images with joblib workers and per-image failure records
- Association tables, weighting and outcome models via the engine

Example Usage
-------------
Single image:

    >>> from cellcontext.core.spatial import point_pattern_statistic, kontextual
    >>> point_pattern_statistic(cells, "Tumour", "CD8", radii=[20, 50, 100])
    >>> kontextual(cells, "CD8", "Tumour_A", ["Tumour_A", "Tumour_B"], radii=50)

Whole cohort:

    >>> from cellcontext.core.spatial import ContextEngine, SpatialConfig
    >>> config = SpatialConfig.from_yaml("spatial.yaml")
    >>> engine = ContextEngine(config)
    >>> result = engine.execute(cells, hierarchy=hierarchy)
    >>> engine.associate(result, outcome)
"""

__version__ = "0.1.0"

# Configuration
from .config import (
    SpatialConfig,
    ColumnConfig,
    PointPatternConfig,
    ParallelConfig,
    WeightConfig,
    ModelConfig,
)

# Cells and point-pattern statistic
from .cells import ImageCells, NeighbourPairs, bounding_window
from .edge import edge_weights, isotropic_inside_fraction
from .density import gaussian_intensity
from .lfunction import evaluate, point_pattern_statistic, summarise_radii

# Kontextual
from .kontextual import (
    OTHER_PARENT,
    kontextual,
    kontext_curve,
    kontextual_image,
    parent_combinations,
    relabel_parent,
)

# Aggregation
from .aggregate import (
    make_test_name,
    aggregate,
    count_table,
    prep_matrix,
    cell_proportions,
)

# Parallel execution
from .parallel import ImageInput, ImageOutput, process_image, process_images

# Engine
from .engine import (
    ContextEngine,
    ContextResult,
    build_association_table,
    summarise_kontextual,
)

# Export
from .export import (
    export_result,
    create_provenance,
    export_provenance,
    export_all,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "SpatialConfig",
    "ColumnConfig",
    "PointPatternConfig",
    "ParallelConfig",
    "WeightConfig",
    "ModelConfig",
    # Point pattern
    "ImageCells",
    "NeighbourPairs",
    "bounding_window",
    "edge_weights",
    "isotropic_inside_fraction",
    "gaussian_intensity",
    "evaluate",
    "point_pattern_statistic",
    "summarise_radii",
    # Kontextual
    "OTHER_PARENT",
    "kontextual",
    "kontext_curve",
    "kontextual_image",
    "parent_combinations",
    "relabel_parent",
    # Aggregation
    "make_test_name",
    "aggregate",
    "count_table",
    "prep_matrix",
    "cell_proportions",
    # Parallel
    "ImageInput",
    "ImageOutput",
    "process_image",
    "process_images",
    # Engine
    "ContextEngine",
    "ContextResult",
    "build_association_table",
    "summarise_kontextual",
    # Export
    "export_result",
    "create_provenance",
    "export_provenance",
    "export_all",
]
