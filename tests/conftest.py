"""Pytest configuration and shared fixtures for CellContext tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import synthetic data generators
from tests.fixtures import (
    poisson_image,
    separated_image,
    clustered_image,
    inhibited_image,
    cohort,
)


# ============================================================================
# Cell Table Fixtures
# ============================================================================


@pytest.fixture
def three_image_cells() -> pd.DataFrame:
    """Dispersed, localised and random A/B images (img1, img2, img3).

    img1: B kept 35 units away from every A; img2: A and B sharing two
    tight clusters; img3: independent Poisson patterns.
    """
    return cohort([
        inhibited_image(n_from=100, n_to=100, min_separation=35.0, seed=1, image_id="img1"),
        clustered_image(n_clusters=2, per_cluster=50, seed=2, image_id="img2"),
        poisson_image({"A": 100, "B": 100}, seed=3, image_id="img3"),
    ])


@pytest.fixture
def replicated_cells() -> pd.DataFrame:
    """Three replicates of each scenario, nine images in total."""
    frames = []
    for k in range(3):
        frames.append(separated_image(n=100, seed=10 + k, image_id=f"dispersed_{k}"))
        frames.append(poisson_image({"A": 100, "B": 100}, seed=20 + k, image_id=f"random_{k}"))
        frames.append(clustered_image(seed=30 + k, image_id=f"localised_{k}"))
    return cohort(frames)


@pytest.fixture
def replicated_outcome(replicated_cells) -> pd.Series:
    """1 for the localised images, 0 otherwise."""
    images = sorted(replicated_cells["image_id"].unique())
    return pd.Series(
        [1 if i.startswith("localised") else 0 for i in images],
        index=images,
        name="response",
    )


@pytest.fixture
def small_cells() -> pd.DataFrame:
    """Two small Poisson images with three cell types."""
    return cohort([
        poisson_image({"A": 30, "B": 30, "C": 30}, size=300.0, seed=5, image_id="s1"),
        poisson_image({"A": 30, "B": 30, "C": 30}, size=300.0, seed=6, image_id="s2"),
    ])


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Hierarchy Fixtures
# ============================================================================


@pytest.fixture
def simple_hierarchy_dict() -> dict:
    """Parent 'tumour' with children B and C; A unassigned."""
    return {"tumour": ["B", "C"], "_unassigned": ["A"]}


@pytest.fixture
def hierarchy_yaml(tmp_path, simple_hierarchy_dict) -> Path:
    """Write the simple hierarchy to YAML."""
    import yaml

    path = tmp_path / "hierarchy.yaml"
    with open(path, "w") as f:
        yaml.dump(simple_hierarchy_dict, f)
    return path


# ============================================================================
# Association Table Fixtures
# ============================================================================


@pytest.fixture
def grouped_table() -> tuple:
    """Images x tests table with a group effect in 'X__Y' only.

    Returns (table, outcome) where outcome is 'ctrl'/'case' per image.
    """
    rng = np.random.default_rng(7)
    images = [f"im{i:02d}" for i in range(30)]
    outcome = pd.Series(["ctrl"] * 15 + ["case"] * 15, index=images, name="condition")
    effect = (outcome == "case").astype(float).to_numpy()
    table = pd.DataFrame(
        {
            "X__Y": effect + rng.normal(0, 0.1, 30),
            "noise": rng.normal(0, 1, 30),
        },
        index=pd.Index(images, name="image_id"),
    )
    return table, outcome


@pytest.fixture
def sample_spatial_config(tmp_path) -> Path:
    """Create sample spatial configuration file."""
    import yaml

    config = {
        "version": "1.0",
        "description": "test",
        "point_pattern": {
            "radii": [25, 50],
            "min_cells_per_type": 3,
        },
        "parallel": {"n_jobs": 1},
        "weights": {"per_pair": True},
        "model": {"correction": "bonferroni", "reference": "ctrl"},
    }

    path = tmp_path / "spatial.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
