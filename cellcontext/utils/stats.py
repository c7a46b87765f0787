"""Statistical utilities for CellContext.

Provides multiple testing correction and NaN-tolerant summaries used by
the spatial and association modules.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

import numpy as np

ArrayLike = Union[Iterable[float], np.ndarray]


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to clean numpy array, removing non-finite values.

    Parameters
    ----------
    values : ArrayLike
        Input values (list, iterable, or array).

    Returns
    -------
    np.ndarray
        Clean array with only finite values.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def compute_percentiles(values: ArrayLike, percentiles: Sequence[float]) -> np.ndarray:
    """Compute percentile values ignoring NaNs.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    percentiles : Sequence[float]
        Percentiles to compute (0-100).

    Returns
    -------
    np.ndarray
        Computed percentile values. Returns NaN array if input is empty.
    """
    arr = _to_clean_array(values)
    if arr.size == 0:
        return np.full(len(percentiles), np.nan)
    return np.percentile(arr, percentiles)


def apply_fdr_correction(
    p_values: ArrayLike,
    method: str = "fdr_bh",
) -> np.ndarray:
    """Apply multiple testing correction to p-values.

    Non-finite p-values (non-estimable tests) are left as NaN and do not
    count towards the number of tests.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values
    method : str
        Correction method: "fdr_bh", "bonferroni", "holm", "none"

    Returns
    -------
    np.ndarray
        Corrected p-values, same shape as input
    """
    p_values = np.asarray(p_values, dtype=float)
    original_shape = p_values.shape
    flat = p_values.ravel()

    if method == "none":
        return p_values.copy()

    finite = np.isfinite(flat)
    flat_pvals = flat[finite]
    n_tests = len(flat_pvals)

    result = np.full(flat.shape, np.nan)
    if n_tests == 0:
        if method not in ("fdr_bh", "bonferroni", "holm"):
            raise ValueError(f"Unknown correction method: {method}")
        return result.reshape(original_shape)

    if method == "bonferroni":
        adjusted = np.clip(flat_pvals * n_tests, 0, 1)

    elif method == "fdr_bh":
        sorted_idx = np.argsort(flat_pvals, kind="mergesort")
        sorted_pvals = flat_pvals[sorted_idx]

        ranks = np.arange(1, n_tests + 1)
        adjusted_sorted = sorted_pvals * n_tests / ranks

        adjusted_sorted = np.minimum.accumulate(adjusted_sorted[::-1])[::-1]
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)

        adjusted = np.empty(n_tests)
        adjusted[sorted_idx] = adjusted_sorted

    elif method == "holm":
        sorted_idx = np.argsort(flat_pvals, kind="mergesort")
        sorted_pvals = flat_pvals[sorted_idx]

        adjusted_sorted = sorted_pvals * (n_tests - np.arange(n_tests))

        adjusted_sorted = np.maximum.accumulate(adjusted_sorted)
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)

        adjusted = np.empty(n_tests)
        adjusted[sorted_idx] = adjusted_sorted

    else:
        raise ValueError(f"Unknown correction method: {method}")

    result[finite] = adjusted
    return result.reshape(original_shape)
