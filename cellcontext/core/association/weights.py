"""Image weights from the cell-count / variance relationship.

Statistics from images with few cells of the tested types are noisier. The
squared deviation of each value from its column mean is regressed on
log(1 + cell count) with a monotone decreasing isotonic fit; the inverse of
the fitted variance is used as the image weight in the outcome models.
"""

import logging

import numpy as np
import pandas as pd
from sklearn.isotonic import IsotonicRegression

logger = logging.getLogger(__name__)


def _column_means(values: np.ndarray, present: np.ndarray) -> np.ndarray:
    """Column means over present entries, NaN for empty columns."""
    sums = np.where(present, values, 0.0).sum(axis=0)
    n = present.sum(axis=0)
    return np.divide(sums, n, out=np.full(sums.shape, np.nan), where=n > 0)


def _fit_inverse_variance(
    deviation: np.ndarray,
    log_counts: np.ndarray,
    min_variance: float,
) -> np.ndarray:
    """Inverse of the isotonic (decreasing) variance fit at each point."""
    if len(deviation) < 2 or np.unique(log_counts).size < 2:
        variance = np.full(len(deviation), float(np.mean(deviation)))
    else:
        iso = IsotonicRegression(increasing=False, out_of_bounds="clip")
        variance = iso.fit_transform(log_counts, deviation)
    return 1.0 / np.maximum(variance, min_variance)


def fit_weights(
    table: pd.DataFrame,
    cell_counts: pd.DataFrame,
    per_pair: bool = False,
    min_variance: float = 1e-6,
) -> pd.DataFrame:
    """Per-image weights aligned with an association table.

    Parameters
    ----------
    table : pd.DataFrame
        Images x tests statistic table (NaN where missing)
    cell_counts : pd.DataFrame
        Images x tests min(n_from, n_to) table
    per_pair : bool
        Fit one curve per test; otherwise a single curve pooled over tests
    min_variance : float
        Floor on the fitted variance

    Returns
    -------
    pd.DataFrame
        Weights with the same shape as ``table``, mean 1 within each
        column, NaN where the statistic is missing
    """
    counts = cell_counts.reindex(index=table.index, columns=table.columns).fillna(0)
    values = table.to_numpy(dtype=float)
    present = np.isfinite(values)

    deviation = (values - _column_means(values, present)[np.newaxis, :]) ** 2
    log_counts = np.log1p(counts.to_numpy(dtype=float))

    weights = np.full(values.shape, np.nan)
    if per_pair:
        for k in range(values.shape[1]):
            rows = present[:, k]
            if rows.any():
                weights[rows, k] = _fit_inverse_variance(
                    deviation[rows, k], log_counts[rows, k], min_variance
                )
    elif present.any():
        weights[present] = _fit_inverse_variance(
            deviation[present], log_counts[present], min_variance
        )

    # Each column's weights average to 1
    scale = _column_means(weights, present)
    weights = weights / np.where(np.isfinite(scale) & (scale > 0), scale, 1.0)

    logger.info(
        f"Fitted {'per-test' if per_pair else 'pooled'} weights on "
        f"{int(present.sum())} values ({table.shape[0]} images x {table.shape[1]} tests)"
    )
    return pd.DataFrame(weights, index=table.index, columns=table.columns)
