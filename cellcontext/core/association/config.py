"""Configuration for image weighting and outcome models.

Provides dataclasses for configuring:
- Image weighting model
- Outcome models and multiple testing correction
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CORRECTION_METHODS = ("fdr_bh", "bonferroni", "holm", "none")


@dataclass
class WeightConfig:
    """Configuration for the image weighting model.

    Attributes
    ----------
    enabled : bool
        Whether to weight images in outcome models
    per_pair : bool
        Fit one monotone curve per test instead of one pooled curve
    min_variance : float
        Floor on the fitted variance before inversion
    """

    enabled: bool = True
    per_pair: bool = False
    min_variance: float = 1e-6

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeightConfig":
        """Create WeightConfig from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            per_pair=data.get("per_pair", False),
            min_variance=data.get("min_variance", 1e-6),
        )


@dataclass
class ModelConfig:
    """Configuration for outcome association models.

    Attributes
    ----------
    reference : str, optional
        Reference level for categorical outcomes (default: first level)
    min_observations : int
        Minimum complete images required to fit a column
    correction : str
        Multiple testing correction: "fdr_bh", "bonferroni", "holm", "none"
    alpha : float
        Significance threshold
    covariates : List[str]
        Extra columns of the outcome frame added to every model
    """

    reference: Optional[str] = None
    min_observations: int = 3
    correction: str = "fdr_bh"
    alpha: float = 0.05
    covariates: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        """Create ModelConfig from dictionary."""
        return cls(
            reference=data.get("reference", None),
            min_observations=data.get("min_observations", 3),
            correction=data.get("correction", "fdr_bh"),
            alpha=data.get("alpha", 0.05),
            covariates=list(data.get("covariates", [])),
        )

