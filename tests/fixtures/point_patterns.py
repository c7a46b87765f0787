"""Synthetic point-pattern generators for testing.

Every generator returns a cell table (one row per cell) with
``image_id``, ``cell_id``, ``cell_type``, ``x`` and ``y`` columns in a
``size`` x ``size`` window, seeded for reproducibility.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


def _frame(image_id: str, coords: List[np.ndarray], labels: List[str]) -> pd.DataFrame:
    xy = np.vstack(coords)
    cell_types = np.concatenate([[label] * len(c) for c, label in zip(coords, labels)])
    return pd.DataFrame({
        "image_id": image_id,
        "cell_id": [f"{image_id}_c{i}" for i in range(len(xy))],
        "cell_type": cell_types,
        "x": xy[:, 0],
        "y": xy[:, 1],
    })


def _uniform(rng, n: int, xlim: Tuple[float, float], ylim: Tuple[float, float]) -> np.ndarray:
    return np.column_stack([rng.uniform(*xlim, n), rng.uniform(*ylim, n)])


def _corners(size: float) -> np.ndarray:
    """Fixes the bounding box to the full window."""
    return np.array([[0.0, 0.0], [size, size]])


def poisson_image(
    counts: Dict[str, int],
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """Independent homogeneous Poisson patterns, one per cell type."""
    rng = np.random.default_rng(seed)
    labels = list(counts)
    coords = [_uniform(rng, counts[label], (0, size), (0, size)) for label in labels]
    return _frame(image_id, coords, labels)


def planted_image(
    n_from: int = 100,
    n_per_from: int = 2,
    plant_radius: float = 10.0,
    n_background: int = 0,
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """``B`` cells planted uniformly in a disc of ``plant_radius`` around each ``A``."""
    rng = np.random.default_rng(seed)
    margin = plant_radius + 1.0
    a = _uniform(rng, n_from, (margin, size - margin), (margin, size - margin))
    centres = np.repeat(a, n_per_from, axis=0)
    radius = plant_radius * np.sqrt(rng.uniform(0, 1, len(centres)))
    angle = rng.uniform(0, 2 * np.pi, len(centres))
    b = centres + np.column_stack([radius * np.cos(angle), radius * np.sin(angle)])
    if n_background:
        b = np.vstack([b, _uniform(rng, n_background, (0, size), (0, size))])
    return _frame(image_id, [a, b, _corners(size)], ["A", "B", "Z"])


def inhibited_image(
    n_from: int = 100,
    n_to: int = 200,
    min_separation: float = 30.0,
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """``B`` cells uniformly placed but never within ``min_separation`` of an ``A``."""
    rng = np.random.default_rng(seed)
    a = _uniform(rng, n_from, (0, size), (0, size))
    accepted = []
    while len(accepted) < n_to:
        candidate = _uniform(rng, 1, (0, size), (0, size))[0]
        if np.min(np.hypot(*(a - candidate).T)) > min_separation:
            accepted.append(candidate)
    return _frame(image_id, [a, np.array(accepted), _corners(size)], ["A", "B", "Z"])


def separated_image(
    n: int = 100,
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """``A`` in the left half, ``B`` in the right half."""
    rng = np.random.default_rng(seed)
    a = _uniform(rng, n, (0, size / 2), (0, size))
    b = _uniform(rng, n, (size / 2, size), (0, size))
    return _frame(image_id, [a, b, _corners(size)], ["A", "B", "Z"])


def clustered_image(
    n_clusters: int = 10,
    per_cluster: int = 10,
    cluster_radius: float = 20.0,
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """``A`` and ``B`` interleaved inside the same small clusters."""
    rng = np.random.default_rng(seed)
    margin = cluster_radius + 1.0
    centres = _uniform(rng, n_clusters, (margin, size - margin), (margin, size - margin))

    def around(k):
        radius = cluster_radius * np.sqrt(rng.uniform(0, 1, k))
        angle = rng.uniform(0, 2 * np.pi, k)
        return np.column_stack([radius * np.cos(angle), radius * np.sin(angle)])

    a = np.vstack([c + around(per_cluster) for c in centres])
    b = np.vstack([c + around(per_cluster) for c in centres])
    return _frame(image_id, [a, b, _corners(size)], ["A", "B", "Z"])


def parent_strip_image(
    n_from: int = 200,
    n_to: int = 100,
    n_sibling: int = 900,
    size: float = 1000.0,
    strip: Tuple[float, float] = (500.0, 560.0),
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """Globally dispersed but contextually attracted configuration.

    ``A`` fills the left half. The parent population (``B`` and ``C``)
    fills the right half, with ``B`` confined to the strip that borders
    ``A``. Relative to the whole window ``B`` avoids ``A``; relative to
    the parent population ``B`` is the member closest to ``A``.
    """
    rng = np.random.default_rng(seed)
    a = _uniform(rng, n_from, (0, strip[0]), (0, size))
    b = _uniform(rng, n_to, strip, (0, size))
    c = _uniform(rng, n_sibling, (strip[1], size), (0, size))
    return _frame(image_id, [a, b, c], ["A", "B", "C"])


def density_gradient_image(
    n: int = 500,
    scale: float = 250.0,
    size: float = 1000.0,
    seed: int = 0,
    image_id: str = "img",
) -> pd.DataFrame:
    """``A`` and ``B`` independent, sharing an exponential decay in x."""
    rng = np.random.default_rng(seed)
    coords = []
    for _ in ("A", "B"):
        u = rng.uniform(0, 1, n)
        x = -scale * np.log(1.0 - u * (1.0 - np.exp(-size / scale)))
        coords.append(np.column_stack([x, rng.uniform(0, size, n)]))
    return _frame(image_id, coords + [_corners(size)], ["A", "B", "Z"])


def cohort(
    frames: List[pd.DataFrame],
    subjects: Optional[List[str]] = None,
) -> pd.DataFrame:
    """Concatenate single-image tables, optionally adding subject ids."""
    tables = []
    for k, frame in enumerate(frames):
        frame = frame.copy()
        if subjects is not None:
            frame["subject_id"] = subjects[k]
        tables.append(frame)
    return pd.concat(tables, ignore_index=True)
