"""Gaussian kernel intensity estimates for the inhomogeneous null."""

from typing import Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree
from scipy.stats import norm

Window = Tuple[float, float, float, float]

# Kernel contributions beyond this many bandwidths are ignored
KERNEL_CUTOFF = 4.0

# Intensities are floored at this fraction of the population's mean intensity
MIN_RELATIVE_INTENSITY = 0.01


def kernel_edge_mass(points: np.ndarray, sigma: float, window: Window) -> np.ndarray:
    """Mass of an isotropic Gaussian kernel at each point that falls in the window."""
    xmin, xmax, ymin, ymax = window
    x = points[:, 0]
    y = points[:, 1]
    mass_x = norm.cdf((xmax - x) / sigma) - norm.cdf((xmin - x) / sigma)
    mass_y = norm.cdf((ymax - y) / sigma) - norm.cdf((ymin - y) / sigma)
    return np.maximum(mass_x * mass_y, 1e-12)


def gaussian_intensity(
    eval_points: np.ndarray,
    source_points: np.ndarray,
    sigma: float,
    window: Window,
    self_index: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Estimate the intensity of ``source_points`` at ``eval_points``.

    Parameters
    ----------
    eval_points : np.ndarray
        Locations to evaluate at, shape (n, 2)
    source_points : np.ndarray
        Points of the population whose intensity is estimated, shape (m, 2)
    sigma : float
        Kernel bandwidth
    window : Tuple[float, float, float, float]
        (xmin, xmax, ymin, ymax)
    self_index : np.ndarray, optional
        For each evaluation point, the index of the same cell within
        ``source_points`` (-1 if it is not a member). Those contributions
        are left out.

    Returns
    -------
    np.ndarray
        Intensity (cells per unit area) at each evaluation point
    """
    n_eval = len(eval_points)
    intensity = np.zeros(n_eval, dtype=float)
    if n_eval == 0 or len(source_points) == 0:
        return intensity

    xmin, xmax, ymin, ymax = window
    area = (xmax - xmin) * (ymax - ymin)

    tree = cKDTree(source_points)
    hits = tree.query_ball_point(eval_points, r=KERNEL_CUTOFF * sigma)
    lengths = np.fromiter((len(h) for h in hits), dtype=np.int64, count=n_eval)
    if lengths.sum() > 0:
        rows = np.repeat(np.arange(n_eval), lengths)
        cols = np.concatenate([np.asarray(h, dtype=np.int64) for h in hits])
        if self_index is not None:
            keep = cols != np.asarray(self_index)[rows]
            rows, cols = rows[keep], cols[keep]
        sq_dist = np.sum((eval_points[rows] - source_points[cols]) ** 2, axis=1)
        kernel = np.exp(-sq_dist / (2.0 * sigma**2)) / (2.0 * np.pi * sigma**2)
        intensity = np.bincount(rows, weights=kernel, minlength=n_eval)

    intensity = intensity / kernel_edge_mass(eval_points, sigma, window)

    floor = MIN_RELATIVE_INTENSITY * len(source_points) / area
    return np.maximum(intensity, floor)
