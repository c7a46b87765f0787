"""Utility functions for CellContext.

Provides statistical helpers shared across modules.
"""

from .stats import (
    compute_percentiles,
    apply_fdr_correction,
)

__all__ = [
    "compute_percentiles",
    "apply_fdr_correction",
]
