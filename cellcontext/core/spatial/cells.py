"""Single-image cell container used by the point-pattern engine.

``ImageCells`` is the one tabular contract the statistics operate on:
coordinates, type labels and the observation window of one image, plus
memoised neighbour pairs and kernel intensities so that many type pairs
can be evaluated without rebuilding the spatial index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from ...errors import InputDataError
from .config import ColumnConfig
from .density import gaussian_intensity
from .edge import Window, edge_weights


@dataclass
class NeighbourPairs:
    """Ordered cell pairs (i != j) within a maximum distance.

    Attributes
    ----------
    i, j : np.ndarray
        Indices of the centre and neighbour cells
    d : np.ndarray
        Pair distances
    w : np.ndarray
        Edge correction weights (centred on cell i)
    max_r : float
        Search radius the pairs were collected with
    """

    i: np.ndarray
    j: np.ndarray
    d: np.ndarray
    w: np.ndarray
    max_r: float

    def within(self, r: float) -> "NeighbourPairs":
        keep = self.d <= r
        return NeighbourPairs(
            i=self.i[keep], j=self.j[keep], d=self.d[keep], w=self.w[keep], max_r=r
        )

    def __len__(self) -> int:
        return len(self.i)


@dataclass
class ImageCells:
    """Validated cells of a single image.

    Attributes
    ----------
    image_id : str
        Image identifier
    coords : np.ndarray
        Cell coordinates, shape (n, 2)
    cell_types : np.ndarray
        Cell type labels, shape (n,)
    window : Tuple[float, float, float, float]
        Rectangular observation window (xmin, xmax, ymin, ymax)
    subject_id : str, optional
        Subject the image belongs to
    """

    image_id: str
    coords: np.ndarray
    cell_types: np.ndarray
    window: Window
    subject_id: Optional[str] = None
    _neighbours: Dict[str, NeighbourPairs] = field(default_factory=dict, init=False, repr=False)
    _intensity: Dict[Tuple, np.ndarray] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.coords = np.asarray(self.coords, dtype=float).reshape(-1, 2)
        self.cell_types = np.asarray(self.cell_types, dtype=object)
        if len(self.coords) != len(self.cell_types):
            raise InputDataError(
                f"{len(self.coords)} coordinates but {len(self.cell_types)} labels",
                image_id=self.image_id,
            )
        if len(self.coords) == 0:
            raise InputDataError("Image has no cells", image_id=self.image_id)
        if not np.isfinite(self.coords).all():
            n_bad = int((~np.isfinite(self.coords)).any(axis=1).sum())
            raise InputDataError(
                f"{n_bad} cells with missing or non-finite coordinates",
                image_id=self.image_id,
            )
        if pd.isna(self.cell_types).any():
            n_bad = int(pd.isna(self.cell_types).sum())
            raise InputDataError(
                f"{n_bad} cells without a cell type label", image_id=self.image_id
            )
        # Labels are matched as strings, so integer cluster ids work too
        self.cell_types = self.cell_types.astype(str).astype(object)

        n_unique = len(np.unique(self.coords, axis=0))
        if n_unique < len(self.coords):
            raise InputDataError(
                f"{len(self.coords) - n_unique} cells share coordinates with another cell",
                image_id=self.image_id,
            )

        xmin, xmax, ymin, ymax = (float(v) for v in self.window)
        if xmax <= xmin or ymax <= ymin:
            raise InputDataError(
                f"Observation window has zero area: {self.window}",
                image_id=self.image_id,
            )
        outside = (
            (self.coords[:, 0] < xmin)
            | (self.coords[:, 0] > xmax)
            | (self.coords[:, 1] < ymin)
            | (self.coords[:, 1] > ymax)
        )
        if outside.any():
            raise InputDataError(
                f"{int(outside.sum())} cells lie outside the observation window",
                image_id=self.image_id,
            )
        self.window = (xmin, xmax, ymin, ymax)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        image_id: Optional[str] = None,
        columns: Optional[ColumnConfig] = None,
        window: Optional[Sequence[float]] = None,
    ) -> "ImageCells":
        """Build from the rows of one image in a cell table.

        Parameters
        ----------
        df : pd.DataFrame
            Cells of a single image
        image_id : str, optional
            Image id; taken from the image column when omitted
        columns : ColumnConfig, optional
            Column mapping (defaults to ColumnConfig())
        window : sequence of 4 floats, optional
            (xmin, xmax, ymin, ymax). Defaults to the bounding box of the cells.

        Returns
        -------
        ImageCells
        """
        columns = columns or ColumnConfig()

        if image_id is None:
            if columns.image_id in df.columns:
                ids = df[columns.image_id].unique()
                if len(ids) != 1:
                    raise InputDataError(
                        f"Expected cells of one image, found {len(ids)} image ids"
                    )
                image_id = ids[0]
            else:
                image_id = "image"
        image_id = str(image_id)

        missing = [c for c in (columns.cell_type, columns.x, columns.y) if c not in df.columns]
        if missing:
            raise InputDataError(f"Cell table missing columns: {missing}", image_id=image_id)

        if columns.cell_id in df.columns:
            duplicated = df[columns.cell_id].duplicated()
            if duplicated.any():
                examples = df.loc[duplicated, columns.cell_id].head(5).tolist()
                raise InputDataError(
                    f"{int(duplicated.sum())} duplicated cell ids, e.g. {examples}",
                    image_id=image_id,
                )

        coords = np.column_stack([
            pd.to_numeric(df[columns.x], errors="coerce").to_numpy(dtype=float),
            pd.to_numeric(df[columns.y], errors="coerce").to_numpy(dtype=float),
        ])
        cell_types = df[columns.cell_type].to_numpy(dtype=object)

        subject_id = None
        if columns.subject_id in df.columns:
            subjects = df[columns.subject_id].dropna().unique()
            if len(subjects) > 1:
                raise InputDataError(
                    f"Image maps to {len(subjects)} subjects", image_id=image_id
                )
            if len(subjects) == 1:
                subject_id = str(subjects[0])

        if window is None:
            window = bounding_window(coords, image_id=image_id)

        return cls(
            image_id=image_id,
            coords=coords,
            cell_types=cell_types,
            window=tuple(window),
            subject_id=subject_id,
        )

    @property
    def n_cells(self) -> int:
        return len(self.cell_types)

    @property
    def area(self) -> float:
        xmin, xmax, ymin, ymax = self.window
        return (xmax - xmin) * (ymax - ymin)

    @property
    def counts(self) -> Dict[str, int]:
        labels, counts = np.unique(self.cell_types.astype(str), return_counts=True)
        return dict(zip(labels.tolist(), counts.tolist()))

    def count(self, cell_types: Iterable[str]) -> int:
        return int(self.mask(cell_types).sum())

    def mask(self, cell_types: Iterable[str]) -> np.ndarray:
        if isinstance(cell_types, str):
            cell_types = [cell_types]
        return np.isin(self.cell_types, [str(t) for t in cell_types])

    def neighbours(self, max_r: float, edge_correction: str = "isotropic") -> NeighbourPairs:
        """All ordered pairs of distinct cells within ``max_r``.

        The pair list is cached for the largest radius requested so far and
        filtered for smaller radii.
        """
        cached = self._neighbours.get(edge_correction)
        if cached is not None and cached.max_r >= max_r:
            return cached if cached.max_r == max_r else cached.within(max_r)

        tree = cKDTree(self.coords)
        hits = tree.query_ball_point(self.coords, r=max_r)
        lengths = np.fromiter((len(h) for h in hits), dtype=np.int64, count=self.n_cells)
        i = np.repeat(np.arange(self.n_cells), lengths)
        j = np.concatenate([np.asarray(h, dtype=np.int64) for h in hits])
        keep = i != j
        i, j = i[keep], j[keep]

        order = np.lexsort((j, i))
        i, j = i[order], j[order]
        d = np.sqrt(np.sum((self.coords[i] - self.coords[j]) ** 2, axis=1))
        w = edge_weights(self.coords[i], d, self.window, edge_correction)

        pairs = NeighbourPairs(i=i, j=j, d=d, w=w, max_r=float(max_r))
        self._neighbours[edge_correction] = pairs
        return pairs

    def intensity(self, cell_types: Iterable[str], sigma: float) -> np.ndarray:
        """Kernel intensity of a population at every cell, leaving each member out."""
        if isinstance(cell_types, str):
            cell_types = [cell_types]
        key = (tuple(sorted(cell_types)), float(sigma))
        if key not in self._intensity:
            member = self.mask(cell_types)
            source_index = np.full(self.n_cells, -1, dtype=np.int64)
            source_index[member] = np.arange(int(member.sum()))
            self._intensity[key] = gaussian_intensity(
                self.coords,
                self.coords[member],
                sigma,
                self.window,
                self_index=source_index,
            )
        return self._intensity[key]

    def with_labels(self, cell_types: np.ndarray) -> "ImageCells":
        """Copy with new labels that shares the neighbour cache."""
        relabelled = ImageCells(
            image_id=self.image_id,
            coords=self.coords,
            cell_types=cell_types,
            window=self.window,
            subject_id=self.subject_id,
        )
        relabelled._neighbours = self._neighbours
        return relabelled


def bounding_window(coords: np.ndarray, image_id: Optional[str] = None) -> Window:
    """Bounding box (xmin, xmax, ymin, ymax) of a set of coordinates."""
    coords = np.asarray(coords, dtype=float)
    finite = np.isfinite(coords).all(axis=1)
    if not finite.all():
        raise InputDataError(
            f"{int((~finite).sum())} cells with missing or non-finite coordinates",
            image_id=image_id,
        )
    if len(coords) == 0:
        raise InputDataError("Image has no cells", image_id=image_id)
    xmin, ymin = coords.min(axis=0)
    xmax, ymax = coords.max(axis=0)
    return (float(xmin), float(xmax), float(ymin), float(ymax))
