"""Test fixtures for CellContext.

Provides synthetic point-pattern generators and test utilities.
"""

from .point_patterns import (
    poisson_image,
    planted_image,
    inhibited_image,
    separated_image,
    clustered_image,
    parent_strip_image,
    density_gradient_image,
    cohort,
)

__all__ = [
    "poisson_image",
    "planted_image",
    "inhibited_image",
    "separated_image",
    "clustered_image",
    "parent_strip_image",
    "density_gradient_image",
    "cohort",
]
