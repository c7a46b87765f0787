"""Data-driven hierarchy from marker-expression similarity.

Cell types are clustered on their mean marker profiles with agglomerative
clustering; the dendrogram is then read off as parent populations so it can
stand in for a hand-authored ``CellTypeHierarchy``.
"""

from typing import Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import fcluster, linkage, to_tree

from .tree import CellTypeHierarchy

logger = logging.getLogger(__name__)

# Default cut height as a fraction of the tallest merge (scipy's dendrogram colour threshold)
DEFAULT_CUT_FRACTION = 0.7


def mean_marker_profiles(
    cells: pd.DataFrame,
    markers: Sequence[str],
    cell_type_col: str = "cell_type",
    scale: bool = True,
) -> pd.DataFrame:
    """Mean marker intensity per cell type.

    Parameters
    ----------
    cells : pd.DataFrame
        Cell table with marker intensity columns
    markers : Sequence[str]
        Marker columns to use
    cell_type_col : str
        Column with cell type labels
    scale : bool
        Z-score each marker across cell types

    Returns
    -------
    pd.DataFrame
        Cell types x markers, rows sorted by type
    """
    missing = [m for m in markers if m not in cells.columns]
    if missing:
        raise ValueError(f"Markers not found in cell table: {missing}")
    if cell_type_col not in cells.columns:
        raise ValueError(f"Cell type column '{cell_type_col}' not found")

    profiles = (
        cells.dropna(subset=[cell_type_col])
        .groupby(cell_type_col, observed=True)[list(markers)]
        .mean()
        .sort_index()
    )
    profiles.index = profiles.index.astype(str)

    if scale:
        std = profiles.std(axis=0, ddof=0).replace(0, 1.0)
        profiles = (profiles - profiles.mean(axis=0)) / std

    return profiles


def _linkage(profiles: pd.DataFrame, method: str, metric: str) -> np.ndarray:
    if len(profiles) < 2:
        raise ValueError("At least two cell types are needed to build a hierarchy")
    values = profiles.to_numpy(dtype=float)
    if not np.isfinite(values).all():
        raise ValueError("Marker profiles contain missing values")
    return linkage(values, method=method, metric=metric)


def build_hierarchy(
    profiles: pd.DataFrame,
    n_parents: Optional[int] = None,
    height: Optional[float] = None,
    method: str = "average",
    metric: str = "euclidean",
) -> CellTypeHierarchy:
    """Cut a dendrogram of cell-type profiles into parent populations.

    Parameters
    ----------
    profiles : pd.DataFrame
        Cell types x markers (see ``mean_marker_profiles``)
    n_parents : int, optional
        Number of flat clusters to cut into
    height : float, optional
        Cut height; used when ``n_parents`` is not given. Defaults to 0.7 of
        the tallest merge.
    method : str
        Linkage method passed to scipy (e.g. "average", "complete", "ward")
    metric : str
        Distance metric passed to scipy

    Returns
    -------
    CellTypeHierarchy
        Clusters with two or more types become parents ``parent_1``,
        ``parent_2``, ...; singleton types are unassigned.
    """
    z = _linkage(profiles, method, metric)
    types = profiles.index.astype(str).tolist()

    if n_parents is not None:
        if n_parents < 1:
            raise ValueError("n_parents must be at least 1")
        labels = fcluster(z, t=n_parents, criterion="maxclust")
    else:
        if height is None:
            height = DEFAULT_CUT_FRACTION * float(z[:, 2].max())
        labels = fcluster(z, t=height, criterion="distance")

    clusters: Dict[int, List[str]] = {}
    for cell_type, label in zip(types, labels):
        clusters.setdefault(int(label), []).append(cell_type)

    groups = sorted((sorted(members) for members in clusters.values()), key=lambda m: m[0])
    parents = {}
    unassigned = []
    for members in groups:
        if len(members) >= 2:
            parents[f"parent_{len(parents) + 1}"] = members
        else:
            unassigned.extend(members)

    logger.info(
        f"Built hierarchy: {len(parents)} parents, {len(unassigned)} unassigned types"
    )
    return CellTypeHierarchy(parents, unassigned=unassigned)


def dendrogram_parents(
    profiles: pd.DataFrame,
    method: str = "average",
    metric: str = "euclidean",
    include_root: bool = False,
) -> CellTypeHierarchy:
    """Expose every internal dendrogram node as a parent population.

    Nodes are named ``node_<id>`` with scipy's merge ids, so the nested
    tree (e.g. T cells inside lymphocytes inside immune cells) is available
    to contextual tests at every level.
    """
    z = _linkage(profiles, method, metric)
    types = profiles.index.astype(str).tolist()
    root = to_tree(z)

    parents: Dict[str, List[str]] = {}
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_leaf():
            continue
        if include_root or node is not root:
            parents[f"node_{node.get_id()}"] = sorted(types[i] for i in node.pre_order())
        stack.extend([node.get_left(), node.get_right()])

    assigned = {t for members in parents.values() for t in members}
    unassigned = sorted(set(types) - assigned)

    return CellTypeHierarchy(parents, unassigned=unassigned)
