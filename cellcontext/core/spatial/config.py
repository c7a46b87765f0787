"""Configuration for spatial context analysis.

Provides dataclasses for configuring:
- Column mappings of the input cell table
- Point-pattern settings (radii, inhomogeneity bandwidth, edge correction)
- Parallel execution over images

and combines them with the weighting and outcome model settings into
the top-level ``SpatialConfig``.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import yaml

from ..association.config import CORRECTION_METHODS, ModelConfig, WeightConfig

logger = logging.getLogger(__name__)

EDGE_CORRECTIONS = ("isotropic", "none")


@dataclass
class ColumnConfig:
    """Column names of the cell table.

    Attributes
    ----------
    image_id : str
        Column identifying the image each cell belongs to
    cell_type : str
        Column with cell type labels
    x, y : str
        Columns with spatial coordinates
    subject_id : str
        Column with subject/patient ids (optional in the data)
    cell_id : str
        Column with cell ids, unique within an image (optional in the data)
    """

    image_id: str = "image_id"
    cell_type: str = "cell_type"
    x: str = "x"
    y: str = "y"
    subject_id: str = "subject_id"
    cell_id: str = "cell_id"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnConfig":
        """Create ColumnConfig from dictionary."""
        return cls(
            image_id=data.get("image_id", "image_id"),
            cell_type=data.get("cell_type", "cell_type"),
            x=data.get("x", "x"),
            y=data.get("y", "y"),
            subject_id=data.get("subject_id", "subject_id"),
            cell_id=data.get("cell_id", "cell_id"),
        )

    @property
    def required(self) -> List[str]:
        return [self.image_id, self.cell_type, self.x, self.y]


@dataclass
class PointPatternConfig:
    """Configuration for the L-function statistic.

    Attributes
    ----------
    radii : List[float]
        Radii at which L(r) - r is evaluated; table values average over them
    sigma : float, optional
        Gaussian kernel bandwidth for the inhomogeneous null. None uses
        the homogeneous Poisson null.
    edge_correction : str
        "isotropic" (Ripley) or "none"
    min_cells_per_type : int
        Images with fewer cells of either type yield a missing statistic
    """

    radii: List[float] = field(default_factory=lambda: [20.0, 50.0, 100.0])
    sigma: Optional[float] = None
    edge_correction: str = "isotropic"
    min_cells_per_type: int = 5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointPatternConfig":
        """Create PointPatternConfig from dictionary."""
        radii = data.get("radii", [20.0, 50.0, 100.0])
        if isinstance(radii, (int, float)):
            radii = [radii]
        return cls(
            radii=[float(r) for r in radii],
            sigma=data.get("sigma", None),
            edge_correction=data.get("edge_correction", "isotropic"),
            min_cells_per_type=data.get("min_cells_per_type", 5),
        )


@dataclass
class ParallelConfig:
    """Configuration for parallel execution over images.

    Attributes
    ----------
    n_jobs : int
        Number of joblib workers (1 = sequential, -1 = all cores)
    batch_size : int or "auto"
        Batch size for joblib dispatch
    """

    n_jobs: int = 1
    batch_size: Union[int, str] = "auto"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParallelConfig":
        """Create ParallelConfig from dictionary."""
        return cls(
            n_jobs=data.get("n_jobs", 1),
            batch_size=data.get("batch_size", "auto"),
        )


@dataclass
class SpatialConfig:
    """Main configuration for spatial context analysis.

    Attributes
    ----------
    version : str
        Configuration version
    description : str
        Optional description
    columns : ColumnConfig
        Cell table column mapping
    point_pattern : PointPatternConfig
        L-function settings
    parallel : ParallelConfig
        Worker settings for the batch engine
    weights : WeightConfig
        Image weighting settings
    model : ModelConfig
        Outcome model settings
    """

    version: str = "1.0"
    description: str = ""

    columns: ColumnConfig = field(default_factory=ColumnConfig)
    point_pattern: PointPatternConfig = field(default_factory=PointPatternConfig)
    parallel: ParallelConfig = field(default_factory=ParallelConfig)
    weights: WeightConfig = field(default_factory=WeightConfig)
    model: ModelConfig = field(default_factory=ModelConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpatialConfig":
        """Create SpatialConfig from a (possibly partial) dictionary."""
        data = data or {}
        config = cls(
            version=str(data.get("version", "1.0")),
            description=data.get("description", ""),
            columns=ColumnConfig.from_dict(data.get("columns", {})),
            point_pattern=PointPatternConfig.from_dict(data.get("point_pattern", {})),
            parallel=ParallelConfig.from_dict(data.get("parallel", {})),
            weights=WeightConfig.from_dict(data.get("weights", {})),
            model=ModelConfig.from_dict(data.get("model", {})),
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "SpatialConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded config from {path}")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "SpatialConfig":
        """Return default configuration."""
        return cls()

    def validate(self) -> None:
        """Raise ValueError for settings that would break a whole run."""
        pp = self.point_pattern
        if not pp.radii:
            raise ValueError("point_pattern.radii must not be empty")
        if any(r <= 0 for r in pp.radii):
            raise ValueError(f"Radii must be positive, got {pp.radii}")
        if pp.sigma is not None and pp.sigma <= 0:
            raise ValueError(f"sigma must be positive, got {pp.sigma}")
        if pp.edge_correction not in EDGE_CORRECTIONS:
            raise ValueError(
                f"Unknown edge correction '{pp.edge_correction}', "
                f"expected one of {EDGE_CORRECTIONS}"
            )
        if pp.min_cells_per_type < 1:
            raise ValueError("min_cells_per_type must be at least 1")
        if self.parallel.n_jobs == 0:
            raise ValueError("parallel.n_jobs must be non-zero")
        if self.model.correction not in CORRECTION_METHODS:
            raise ValueError(f"Unknown correction method: {self.model.correction}")
        if self.model.min_observations < 2:
            raise ValueError("model.min_observations must be at least 2")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "version": self.version,
            "description": self.description,
            "columns": {
                "image_id": self.columns.image_id,
                "cell_type": self.columns.cell_type,
                "x": self.columns.x,
                "y": self.columns.y,
                "subject_id": self.columns.subject_id,
                "cell_id": self.columns.cell_id,
            },
            "point_pattern": {
                "radii": list(self.point_pattern.radii),
                "sigma": self.point_pattern.sigma,
                "edge_correction": self.point_pattern.edge_correction,
                "min_cells_per_type": self.point_pattern.min_cells_per_type,
            },
            "parallel": {
                "n_jobs": self.parallel.n_jobs,
                "batch_size": self.parallel.batch_size,
            },
            "weights": {
                "enabled": self.weights.enabled,
                "per_pair": self.weights.per_pair,
                "min_variance": self.weights.min_variance,
            },
            "model": {
                "reference": self.model.reference,
                "min_observations": self.model.min_observations,
                "correction": self.model.correction,
                "alpha": self.model.alpha,
                "covariates": list(self.model.covariates),
            },
        }
