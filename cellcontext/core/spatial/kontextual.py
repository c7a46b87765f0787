"""Kontextual: co-localisation relative to a parent population.

The plain L-function asks whether ``to`` cells sit closer to ``from`` cells
than a uniformly random pattern would place them. When ``to`` is one
subtype of a larger population (e.g. one tumour subclone among all tumour
cells) that question mostly reflects where the population lives. Kontextual
instead asks whether ``to`` is closer to ``from`` than a random member of
its parent population would be:

    p      = n_to / n_parent
    K_ctx  = pi r^2 * sum_i sum_{j in to} e_ij / (p * sum_i sum_{j in parent} e_ij)
    stat   = sqrt(K_ctx / pi) - r

summing over ``from`` cells i and neighbours j within r. Members of the
parent that are not ``to`` are treated as a single "other parent" label.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from ...errors import InvalidHierarchy, UnitFailure
from ...utils.stats import compute_percentiles
from ..hierarchy import CellTypeHierarchy, TypeStatus
from .aggregate import make_test_name
from .cells import ImageCells
from .config import ColumnConfig
from .lfunction import _as_radii, evaluate

logger = logging.getLogger(__name__)

# Label given to parent members that are not the ``to`` type
OTHER_PARENT = "__other_parent__"

# Percentiles of the permutation envelope
ENVELOPE_PERCENTILES = (2.5, 97.5)

KONTEXTUAL_COLUMNS = [
    "image_id", "from_type", "to_type", "parent", "r",
    "original", "kontextual", "n_from", "n_to", "n_parent",
]


def _parent_set(parent_types: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(parent_types, str):
        parent_types = [parent_types]
    return sorted({str(t) for t in parent_types})


def relabel_parent(
    cell_types: np.ndarray,
    to_type: str,
    parent_types: Sequence[str],
) -> np.ndarray:
    """Collapse parent members other than ``to_type`` into ``OTHER_PARENT``."""
    labels = np.asarray(cell_types, dtype=object).copy()
    other = np.isin(labels, list(parent_types)) & (labels != to_type)
    labels[other] = OTHER_PARENT
    return labels


def _contextual_values(
    image: ImageCells,
    from_mask: np.ndarray,
    to_mask: np.ndarray,
    parent_mask: np.ndarray,
    radii: np.ndarray,
    edge_correction: str,
    parent_weight: Optional[np.ndarray],
) -> np.ndarray:
    """Kontextual statistic at each radius for fixed type masks."""
    n_to = int(to_mask.sum())
    n_parent = int(parent_mask.sum())
    p = n_to / n_parent

    pairs = image.neighbours(radii.max(), edge_correction)
    centre = from_mask[pairs.i]
    d = pairs.d[centre]
    w = pairs.w[centre]
    if parent_weight is not None:
        w = w * parent_weight[pairs.j[centre]]
    hits_to = to_mask[pairs.j[centre]]
    hits_parent = parent_mask[pairs.j[centre]]

    values = np.full(len(radii), np.nan)
    for k, r in enumerate(radii):
        inside = d <= r
        denominator = w[inside & hits_parent].sum()
        if denominator <= 0:
            continue
        numerator = w[inside & hits_to].sum()
        values[k] = r * np.sqrt(numerator / (p * denominator)) - r
    return values


def kontextual(
    cells: Union[ImageCells, pd.DataFrame],
    from_type: str,
    to_type: str,
    parent_types: Union[str, Iterable[str]],
    radii: Union[float, Sequence[float]],
    sigma: Optional[float] = None,
    edge_correction: str = "isotropic",
    min_cells: int = 5,
    columns: Optional[ColumnConfig] = None,
) -> pd.DataFrame:
    """Plain and parent-relative L statistic for one (from, to, parent) triple.

    Parameters
    ----------
    cells : ImageCells or pd.DataFrame
        Cells of one image
    from_type : str
        Cell type at the centre of the search discs
    to_type : str
        Cell type whose position is tested; must belong to the parent
    parent_types : str or iterable of str
        Cell types forming the parent population
    radii : float or sequence of float
        Radii to evaluate
    sigma : float, optional
        Kernel bandwidth; neighbours are weighted by the inverse intensity
        of the parent population and the plain statistic uses the
        inhomogeneous null
    edge_correction : str
        "isotropic" or "none"
    min_cells : int
        Minimum count of ``from`` and ``to`` cells

    Returns
    -------
    pd.DataFrame
        Columns ``r``, ``original``, ``kontextual``; one row per radius

    Raises
    ------
    InvalidHierarchy
        If ``to_type`` is not a member of ``parent_types``
    """
    if not isinstance(cells, ImageCells):
        cells = ImageCells.from_frame(cells, columns=columns)
    radii = _as_radii(radii)
    parent = _parent_set(parent_types)

    if to_type not in parent:
        raise InvalidHierarchy(
            f"'{to_type}' is not a member of the parent population {parent}",
            image_id=cells.image_id,
            test=make_test_name(from_type, to_type),
        )

    original = evaluate(
        cells,
        from_type,
        to_type,
        radii,
        sigma=sigma,
        edge_correction=edge_correction,
        min_cells=min_cells,
    ).to_numpy()

    # from cells keep their identity even when they belong to the parent
    from_mask = cells.mask(from_type)
    labels = relabel_parent(cells.cell_types, to_type, parent)
    to_mask = labels == to_type
    parent_mask = to_mask | (labels == OTHER_PARENT)

    if from_mask.sum() < min_cells or to_mask.sum() < min_cells:
        contextual = np.full(len(radii), np.nan)
    else:
        parent_weight = None
        if sigma is not None:
            parent_weight = 1.0 / cells.intensity(parent, sigma)
        contextual = _contextual_values(
            cells, from_mask, to_mask, parent_mask, radii, edge_correction, parent_weight
        )

    return pd.DataFrame({"r": radii, "original": original, "kontextual": contextual})


def kontext_curve(
    cells: Union[ImageCells, pd.DataFrame],
    from_type: str,
    to_type: str,
    parent_types: Union[str, Iterable[str]],
    radii: Union[float, Sequence[float]],
    sigma: Optional[float] = None,
    edge_correction: str = "isotropic",
    min_cells: int = 5,
    se: bool = False,
    n_sim: int = 20,
    seed: Optional[int] = 42,
    columns: Optional[ColumnConfig] = None,
) -> pd.DataFrame:
    """Kontextual over a range of radii with optional permutation envelopes.

    With ``se=True`` the cell type labels within the parent population are
    shuffled ``n_sim`` times; the spread of the statistics recomputed on the
    shuffled images gives ``original_se``/``kontextual_se`` and 95%
    envelopes ``*_lower``/``*_upper``.

    Example
    -------
    >>> curve = kontext_curve(cells, "CD8", "Tumour_A", ["Tumour_A", "Tumour_B"],
    ...                       radii=np.arange(10, 110, 10), se=True)
    """
    if not isinstance(cells, ImageCells):
        cells = ImageCells.from_frame(cells, columns=columns)

    curve = kontextual(
        cells, from_type, to_type, parent_types, radii,
        sigma=sigma, edge_correction=edge_correction, min_cells=min_cells,
    )
    if not se:
        return curve

    parent = _parent_set(parent_types)
    parent_idx = np.flatnonzero(cells.mask(parent))
    rng = np.random.default_rng(seed)

    simulated = {"original": [], "kontextual": []}
    for _ in range(n_sim):
        labels = cells.cell_types.copy()
        labels[parent_idx] = labels[rng.permutation(parent_idx)]
        shuffled = kontextual(
            cells.with_labels(labels), from_type, to_type, parent, radii,
            sigma=sigma, edge_correction=edge_correction, min_cells=min_cells,
        )
        simulated["original"].append(shuffled["original"].to_numpy())
        simulated["kontextual"].append(shuffled["kontextual"].to_numpy())

    for name, runs in simulated.items():
        runs = np.vstack(runs)
        curve[f"{name}_se"] = [_nanstd(runs[:, k]) for k in range(runs.shape[1])]
        bounds = np.array([
            compute_percentiles(runs[:, k], ENVELOPE_PERCENTILES)
            for k in range(runs.shape[1])
        ])
        curve[f"{name}_lower"] = bounds[:, 0]
        curve[f"{name}_upper"] = bounds[:, 1]

    return curve


def _nanstd(values: np.ndarray) -> float:
    finite = values[np.isfinite(values)]
    if len(finite) < 2:
        return float("nan")
    return float(np.std(finite, ddof=1))


def parent_combinations(
    all_types: Iterable[str],
    hierarchy: CellTypeHierarchy,
) -> pd.DataFrame:
    """All (from, to, parent) triples a hierarchy defines over observed types.

    Parameters
    ----------
    all_types : iterable of str
        Cell types present in the data
    hierarchy : CellTypeHierarchy
        Parent populations

    Returns
    -------
    pd.DataFrame
        Columns ``from``, ``to``, ``parent``, ``parent_types``, ``test``;
        ``to`` is always a child of ``parent`` and differs from ``from``

    Raises
    ------
    InvalidHierarchy
        If a type in ``all_types`` has no status in the hierarchy
    """
    types = sorted({str(t) for t in all_types})
    usable = [t for t in types if hierarchy.status(t) != TypeStatus.EXCLUDED]

    rows: List[Dict[str, Any]] = []
    for parent, children in hierarchy.parents.items():
        members = sorted(children)
        for to_type in members:
            if to_type not in usable:
                continue
            for from_type in usable:
                if from_type == to_type:
                    continue
                rows.append({
                    "from": from_type,
                    "to": to_type,
                    "parent": parent,
                    "parent_types": members,
                    "test": make_test_name(from_type, to_type, parent),
                })

    combinations = pd.DataFrame(rows, columns=["from", "to", "parent", "parent_types", "test"])
    if not combinations.empty:
        combinations = combinations.sort_values("test", kind="mergesort").reset_index(drop=True)
    return combinations


def kontextual_image(
    image: ImageCells,
    combinations: pd.DataFrame,
    radii: Union[float, Sequence[float]],
    sigma: Optional[float] = None,
    edge_correction: str = "isotropic",
    min_cells: int = 5,
) -> Tuple[pd.DataFrame, List[UnitFailure]]:
    """Evaluate every triple of ``combinations`` in one image.

    Returns
    -------
    rows : pd.DataFrame
        Long rows with ``image_id, from_type, to_type, parent, r, original,
        kontextual, n_from, n_to, n_parent``
    failures : List[UnitFailure]
        Triples rejected by the hierarchy check
    """
    radii = _as_radii(radii)
    counts = image.counts
    frames = []
    failures: List[UnitFailure] = []

    for combo in combinations.itertuples(index=False):
        from_type, to_type, parent = combo[0], combo[1], combo[2]
        parent_types = list(combo[3])
        try:
            values = kontextual(
                image, from_type, to_type, parent_types, radii,
                sigma=sigma, edge_correction=edge_correction, min_cells=min_cells,
            )
        except InvalidHierarchy as e:
            e.test = make_test_name(from_type, to_type, parent)
            logger.warning(f"{image.image_id}: {e.message}")
            failures.append(e.to_failure())
            continue

        values.insert(0, "image_id", image.image_id)
        values.insert(1, "from_type", from_type)
        values.insert(2, "to_type", to_type)
        values.insert(3, "parent", parent)
        values["n_from"] = counts.get(from_type, 0)
        values["n_to"] = counts.get(to_type, 0)
        values["n_parent"] = sum(counts.get(t, 0) for t in parent_types)
        frames.append(values)

    if frames:
        rows = pd.concat(frames, ignore_index=True)
    else:
        rows = pd.DataFrame(columns=KONTEXTUAL_COLUMNS)
    return rows, failures
