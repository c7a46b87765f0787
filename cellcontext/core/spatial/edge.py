"""Ripley's isotropic edge correction for rectangular windows.

A cell close to the window boundary has part of its search disc outside
the observed region, so its neighbour counts are truncated. Each pair
(i, j) at distance d is up-weighted by the inverse of the fraction of the
circle of radius d centred at i that lies inside the window.
"""

from typing import Tuple

import numpy as np

Window = Tuple[float, float, float, float]

# Lower bound on the fraction of the circle inside the window
MIN_INSIDE_FRACTION = 0.01

# Keeps corner geometry defined for cells lying exactly on an edge
_EDGE_EPS = 1e-9


def isotropic_inside_fraction(
    points: np.ndarray,
    distances: np.ndarray,
    window: Window,
) -> np.ndarray:
    """Fraction of each circle's circumference lying inside the window.

    Parameters
    ----------
    points : np.ndarray
        Circle centres, shape (m, 2)
    distances : np.ndarray
        Circle radii, shape (m,)
    window : Tuple[float, float, float, float]
        (xmin, xmax, ymin, ymax)

    Returns
    -------
    np.ndarray
        Fractions in [MIN_INSIDE_FRACTION, 1]
    """
    xmin, xmax, ymin, ymax = window
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    d = np.asarray(distances, dtype=float)

    d_left = np.maximum(points[:, 0] - xmin, _EDGE_EPS)
    d_right = np.maximum(xmax - points[:, 0], _EDGE_EPS)
    d_down = np.maximum(points[:, 1] - ymin, _EDGE_EPS)
    d_up = np.maximum(ymax - points[:, 1], _EDGE_EPS)

    fraction = np.ones_like(d)
    positive = d > 0
    if not positive.any():
        return fraction

    dp = d[positive]
    dl, dr, dd, du = (
        d_left[positive], d_right[positive], d_down[positive], d_up[positive]
    )

    # Half-angle of the arc cut off by each (infinitely extended) edge
    a_left = np.arccos(np.minimum(dl / dp, 1.0))
    a_right = np.arccos(np.minimum(dr / dp, 1.0))
    a_down = np.arccos(np.minimum(dd / dp, 1.0))
    a_up = np.arccos(np.minimum(du / dp, 1.0))

    # Each half-arc stops at the direction of the adjacent corner, so arcs
    # of neighbouring edges never overlap
    exterior = (
        np.minimum(a_left, np.arctan2(du, dl))
        + np.minimum(a_left, np.arctan2(dd, dl))
        + np.minimum(a_right, np.arctan2(du, dr))
        + np.minimum(a_right, np.arctan2(dd, dr))
        + np.minimum(a_up, np.arctan2(dl, du))
        + np.minimum(a_up, np.arctan2(dr, du))
        + np.minimum(a_down, np.arctan2(dl, dd))
        + np.minimum(a_down, np.arctan2(dr, dd))
    )

    fraction[positive] = 1.0 - exterior / (2.0 * np.pi)
    return np.clip(fraction, MIN_INSIDE_FRACTION, 1.0)


def edge_weights(
    points: np.ndarray,
    distances: np.ndarray,
    window: Window,
    correction: str = "isotropic",
) -> np.ndarray:
    """Per-pair edge correction weights.

    Parameters
    ----------
    points : np.ndarray
        Location of the centre cell of each pair, shape (m, 2)
    distances : np.ndarray
        Pair distances, shape (m,)
    window : Tuple[float, float, float, float]
        (xmin, xmax, ymin, ymax)
    correction : str
        "isotropic" or "none"

    Returns
    -------
    np.ndarray
        Weights >= 1 (all ones for "none")
    """
    if correction == "none":
        return np.ones(len(distances), dtype=float)
    if correction == "isotropic":
        return 1.0 / isotropic_inside_fraction(points, distances, window)
    raise ValueError(f"Unknown edge correction: {correction}")
