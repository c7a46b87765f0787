"""Aggregation of per-image results into image x test tables.

Long results (one row per image, test and radius) are pivoted into the wide
association table used by the outcome models. Missing statistics stay NaN
so that they propagate instead of being mistaken for "no association".
"""

from typing import Iterable, Optional
import logging

import numpy as np
import pandas as pd

from .config import ColumnConfig

logger = logging.getLogger(__name__)

TEST_SEPARATOR = "__"


def make_test_name(from_type: str, to_type: str, parent: Optional[str] = None) -> str:
    """Column name of a test: ``from__to`` or ``from__to__parent``."""
    parts = [str(from_type), str(to_type)]
    if parent is not None and not (isinstance(parent, float) and np.isnan(parent)):
        parts.append(str(parent))
    return TEST_SEPARATOR.join(parts)


def _with_test_column(results: pd.DataFrame) -> pd.DataFrame:
    if "test" in results.columns:
        return results
    results = results.copy()
    parents = results["parent"] if "parent" in results.columns else [None] * len(results)
    results["test"] = [
        make_test_name(f, t, p)
        for f, t, p in zip(results["from_type"], results["to_type"], parents)
    ]
    return results


def _wide(
    values: pd.Series,
    images: Optional[Iterable[str]],
) -> pd.DataFrame:
    table = values.unstack("test")
    rows = set(table.index.astype(str))
    if images is not None:
        rows |= {str(i) for i in images}
    table.index = table.index.astype(str)
    table = table.reindex(index=sorted(rows), columns=sorted(table.columns))
    table.index.name = "image_id"
    table.columns.name = None
    return table


def aggregate(
    results: pd.DataFrame,
    value: str = "statistic",
    images: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """Pivot long per-radius results into the wide association table.

    Parameters
    ----------
    results : pd.DataFrame
        Long results with ``image_id``, ``from_type``, ``to_type``,
        optional ``parent`` and the value column
    value : str
        Column to tabulate; averaged over radii
    images : iterable of str, optional
        Image ids that must appear as rows even without results

    Returns
    -------
    pd.DataFrame
        Images x tests, rows and columns sorted, NaN where missing
    """
    if results.empty:
        index = pd.Index(sorted(str(i) for i in (images or [])), name="image_id")
        return pd.DataFrame(index=index, dtype=float)

    results = _with_test_column(results)
    values = results.groupby(["image_id", "test"], sort=True)[value].mean()
    table = _wide(values, images)
    logger.debug(f"Aggregated {value}: {table.shape[0]} images x {table.shape[1]} tests")
    return table


def count_table(
    results: pd.DataFrame,
    images: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """min(n_from, n_to) per image and test, aligned with ``aggregate``."""
    if results.empty:
        index = pd.Index(sorted(str(i) for i in (images or [])), name="image_id")
        return pd.DataFrame(index=index, dtype=int)

    results = _with_test_column(results)
    results = results.assign(n_min=results[["n_from", "n_to"]].min(axis=1))
    counts = results.groupby(["image_id", "test"], sort=True)["n_min"].max()
    return _wide(counts, images).fillna(0).astype(int)


def prep_matrix(table: pd.DataFrame, replace_na: Optional[float] = None) -> pd.DataFrame:
    """Copy of a table with missing values replaced, for display only."""
    result = table.copy()
    if replace_na is not None:
        result = result.fillna(replace_na)
    return result


def cell_proportions(
    cells: pd.DataFrame,
    columns: Optional[ColumnConfig] = None,
) -> pd.DataFrame:
    """Proportion of each cell type per image.

    Returns
    -------
    pd.DataFrame
        Images x cell types, rows summing to 1
    """
    columns = columns or ColumnConfig()
    counts = pd.crosstab(
        cells[columns.image_id].astype(str),
        cells[columns.cell_type].astype(str),
    )
    proportions = counts.div(counts.sum(axis=1), axis=0)
    proportions = proportions.sort_index().sort_index(axis=1)
    proportions.index.name = "image_id"
    proportions.columns.name = None
    return proportions
