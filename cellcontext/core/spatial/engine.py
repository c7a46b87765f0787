"""ContextEngine - main orchestrator for spatial context analysis.

Coordinates the analysis components:
- L-function statistic for ordered cell-type pairs in every image
- Kontextual statistic for (from, to, parent) triples from a hierarchy
- Aggregation into image x test tables
- Image weighting and outcome association
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import time

import numpy as np
import pandas as pd

from ...errors import InvalidHierarchy, UnitFailure
from ..association import fit_outcome_association, fit_weights, non_estimable_failures
from ..hierarchy import CellTypeHierarchy
from .aggregate import TEST_SEPARATOR, aggregate, count_table, make_test_name
from .config import SpatialConfig
from .kontextual import KONTEXTUAL_COLUMNS, parent_combinations
from .parallel import PAIRWISE_COLUMNS, ImageInput, process_images

logger = logging.getLogger(__name__)

PairSpec = Union[str, Tuple[str, str]]
WindowSpec = Union[Sequence[float], Mapping[str, Sequence[float]]]


@dataclass
class ContextResult:
    """Result from spatial context analysis.

    Attributes
    ----------
    success : bool
        Whether at least one image was analysed
    n_images : int
        Number of images in the input
    n_images_failed : int
        Images rejected by input validation
    n_cells_total : int
        Total cells in the input
    n_cell_types : int
        Number of distinct cell types
    radii : List[float]
        Radii the statistics were evaluated at
    pairwise : pd.DataFrame
        Long results, one row per image, test and radius
    table : pd.DataFrame
        Images x tests statistic table (mean over radii)
    counts : pd.DataFrame
        Images x tests min(n_from, n_to)
    kontextual : pd.DataFrame
        Long original vs kontextual values per radius
    kontextual_table : pd.DataFrame
        Original vs kontextual per image and triple, averaged over radii
    subjects : pd.Series
        Subject id per image (empty when the table has none)
    weights : pd.DataFrame, optional
        Image weights, set by ``ContextEngine.associate``
    outcome_results : pd.DataFrame, optional
        Outcome association results, set by ``ContextEngine.associate``
    failures : List[UnitFailure]
        Per-image, per-test and per-column failures
    execution_time_seconds : float
        Total execution time
    warnings : List[str]
        Warnings encountered
    """

    success: bool = True
    n_images: int = 0
    n_images_failed: int = 0
    n_cells_total: int = 0
    n_cell_types: int = 0
    radii: List[float] = field(default_factory=list)

    pairwise: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=PAIRWISE_COLUMNS))
    table: pd.DataFrame = field(default_factory=pd.DataFrame)
    counts: pd.DataFrame = field(default_factory=pd.DataFrame)
    kontextual: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=KONTEXTUAL_COLUMNS))
    kontextual_table: pd.DataFrame = field(default_factory=pd.DataFrame)
    subjects: pd.Series = field(default_factory=lambda: pd.Series(dtype=object))

    weights: Optional[pd.DataFrame] = None
    outcome_results: Optional[pd.DataFrame] = None

    failures: List[UnitFailure] = field(default_factory=list)
    execution_time_seconds: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def failures_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [f.to_dict() for f in self.failures],
            columns=["kind", "image_id", "test", "message"],
        )

    def summary_dict(self) -> Dict[str, Any]:
        """Return summary dictionary for JSON export."""
        failure_counts: Dict[str, int] = {}
        for failure in self.failures:
            failure_counts[failure.kind] = failure_counts.get(failure.kind, 0) + 1

        n_tests = self.table.shape[1]
        n_missing = int(self.table.isna().to_numpy().sum()) if self.table.size else 0
        result = {
            "success": self.success,
            "n_images": self.n_images,
            "n_images_failed": self.n_images_failed,
            "n_cells_total": self.n_cells_total,
            "n_cell_types": self.n_cell_types,
            "n_tests": n_tests,
            "n_contextual_tests": sum(
                1 for c in self.table.columns if c.count(TEST_SEPARATOR) >= 2
            ),
            "n_missing_values": n_missing,
            "radii": list(self.radii),
            "failures": failure_counts,
            "execution_time_seconds": round(self.execution_time_seconds, 2),
            "n_warnings": len(self.warnings),
        }

        if self.outcome_results is not None:
            estimable = self.outcome_results["estimable"].astype(bool)
            result["outcome"] = {
                "n_tests": int(len(self.outcome_results)),
                "n_estimable": int(estimable.sum()),
                "n_significant_fdr_0.05": int((self.outcome_results["fdr"] <= 0.05).sum()),
            }

        return result


def _normalise_pairs(pairs: Iterable[PairSpec]) -> List[Tuple[str, str]]:
    result = []
    for pair in pairs:
        if isinstance(pair, str):
            parts = pair.split(TEST_SEPARATOR)
            if len(parts) != 2:
                raise ValueError(f"Pair '{pair}' must look like 'from{TEST_SEPARATOR}to'")
            pair = (parts[0], parts[1])
        from_type, to_type = pair
        result.append((str(from_type), str(to_type)))
    return list(dict.fromkeys(result))


def _window_for(windows: Optional[WindowSpec], image_id: str):
    if windows is None:
        return None
    if isinstance(windows, Mapping):
        window = windows.get(image_id)
        return None if window is None else tuple(float(v) for v in window)
    return tuple(float(v) for v in windows)


class ContextEngine:
    """Engine for batch spatial context analysis.

    Parameters
    ----------
    config : SpatialConfig, optional
        Configuration for analysis

    Example
    -------
    >>> from cellcontext.core.spatial import ContextEngine, SpatialConfig
    >>> engine = ContextEngine(SpatialConfig.default())
    >>> result = engine.execute(cells, hierarchy=hierarchy)
    >>> outcomes = engine.associate(result, outcome)
    """

    def __init__(self, config: Optional[SpatialConfig] = None):
        self.config = config or SpatialConfig.default()

    def execute(
        self,
        cells: pd.DataFrame,
        pairs: Optional[Iterable[PairSpec]] = None,
        hierarchy: Optional[Union[CellTypeHierarchy, Dict[str, Any]]] = None,
        radii: Optional[Sequence[float]] = None,
        windows: Optional[WindowSpec] = None,
        contextual_only: bool = False,
    ) -> ContextResult:
        """Compute plain and contextual statistics for every image.

        Parameters
        ----------
        cells : pd.DataFrame
            Cell table with image, type and coordinate columns
        pairs : iterable of (from, to) or "from__to", optional
            Ordered pairs for the plain statistic (default: all ordered
            pairs of observed types, including self pairs)
        hierarchy : CellTypeHierarchy or dict, optional
            Parent populations; enables the Kontextual statistic
        radii : sequence of float, optional
            Overrides ``config.point_pattern.radii``
        windows : (xmin, xmax, ymin, ymax) or mapping image_id -> window, optional
            Observation windows (default: bounding box of each image)
        contextual_only : bool
            Skip the plain pairs (requires ``hierarchy``)

        Returns
        -------
        ContextResult

        Raises
        ------
        ValueError
            If required columns are missing or the configuration is invalid
        """
        start_time = time.time()
        config = self.config
        columns = config.columns
        point_pattern = config.point_pattern
        if radii is not None:
            point_pattern = type(point_pattern)(
                radii=[float(r) for r in np.atleast_1d(radii)],
                sigma=point_pattern.sigma,
                edge_correction=point_pattern.edge_correction,
                min_cells_per_type=point_pattern.min_cells_per_type,
            )
        SpatialConfig(
            columns=columns, point_pattern=point_pattern,
            parallel=config.parallel, weights=config.weights, model=config.model,
        ).validate()

        missing = [c for c in columns.required if c not in cells.columns]
        if missing:
            raise ValueError(f"Cell table missing required columns: {missing}")

        result = ContextResult(radii=list(point_pattern.radii))
        image_keys = cells[columns.image_id].astype(str)
        image_ids = sorted(image_keys.unique().tolist())
        all_types = sorted(cells[columns.cell_type].dropna().astype(str).unique().tolist())

        result.n_images = len(image_ids)
        result.n_cells_total = len(cells)
        result.n_cell_types = len(all_types)

        logger.info(f"Images: {len(image_ids)}")
        logger.info(f"Cell types: {len(all_types)}")
        logger.info(f"Radii: {point_pattern.radii}")

        if contextual_only and hierarchy is None:
            raise ValueError("contextual_only requires a hierarchy")
        if contextual_only:
            pair_list: List[Tuple[str, str]] = []
        elif pairs is None:
            pair_list = [(f, t) for f in all_types for t in all_types]
        else:
            pair_list = _normalise_pairs(pairs)
        logger.info(f"Pairs: {len(pair_list)}")

        combinations = None
        if hierarchy is not None:
            if not isinstance(hierarchy, CellTypeHierarchy):
                hierarchy = CellTypeHierarchy.from_dict(hierarchy)
            unmapped = hierarchy.unmapped(all_types)
            for cell_type in unmapped:
                error = InvalidHierarchy(
                    f"Cell type '{cell_type}' is neither in the hierarchy nor unassigned"
                )
                logger.warning(error.message)
                result.failures.append(error.to_failure())
            mapped = [t for t in all_types if t not in set(unmapped)]
            combinations = parent_combinations(mapped, hierarchy)
            logger.info(f"Contextual triples: {len(combinations)}")

        images = [
            ImageInput(
                image_id=image_id,
                cells=frame,
                window=_window_for(windows, image_id),
            )
            for image_id, frame in cells.groupby(image_keys, sort=True)
        ]

        outputs = process_images(
            images,
            pair_list,
            combinations,
            point_pattern,
            columns,
            n_jobs=config.parallel.n_jobs,
            batch_size=config.parallel.batch_size,
        )

        logger.info("Aggregating results...")
        subjects = {}
        pairwise_frames = []
        kontextual_frames = []
        for output in outputs:
            result.failures.extend(output.failures)
            if not output.success:
                result.n_images_failed += 1
                continue
            if output.subject_id is not None:
                subjects[output.image_id] = output.subject_id
            if not output.pairwise.empty:
                pairwise_frames.append(output.pairwise)
            if not output.kontextual.empty:
                kontextual_frames.append(output.kontextual)

        if pairwise_frames:
            result.pairwise = pd.concat(pairwise_frames, ignore_index=True)
        if kontextual_frames:
            result.kontextual = pd.concat(kontextual_frames, ignore_index=True)
        result.subjects = pd.Series(subjects, dtype=object, name="subject_id")
        result.subjects.index.name = "image_id"

        result.table = aggregate(result.pairwise, images=image_ids)
        result.counts = count_table(result.pairwise, images=image_ids)
        result.kontextual_table = summarise_kontextual(result.kontextual)

        result.success = result.n_images_failed < result.n_images
        if result.n_images_failed:
            result.warnings.append(
                f"{result.n_images_failed} images failed input validation"
            )

        result.execution_time_seconds = time.time() - start_time
        logger.info(
            f"Completed in {result.execution_time_seconds:.1f}s: "
            f"{result.table.shape[0]} images x {result.table.shape[1]} tests, "
            f"{len(result.failures)} failures"
        )
        return result

    def associate(
        self,
        result: ContextResult,
        outcome: Union[pd.Series, pd.DataFrame],
        covariates: Optional[pd.DataFrame] = None,
        subject: Optional[pd.Series] = None,
        use_subjects: bool = False,
        tests: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """Weight images and test each column of ``result.table`` against an outcome.

        Parameters
        ----------
        result : ContextResult
            Output of ``execute``
        outcome : pd.Series or pd.DataFrame
            Outcome keyed by image id (see ``fit_outcome_association``)
        covariates : pd.DataFrame, optional
            Extra per-image covariates
        subject : pd.Series, optional
            Subject id per image for repeated-measures models
        use_subjects : bool
            Use the subject ids found in the cell table
        tests : sequence of str, optional
            Restrict to these columns of the table

        Returns
        -------
        pd.DataFrame
            Ranked outcome results (also stored on ``result``)
        """
        table = result.table if tests is None else result.table[list(tests)]
        counts = result.counts.reindex(index=table.index, columns=table.columns)

        weights = None
        if self.config.weights.enabled and table.shape[1] > 0:
            weights = fit_weights(
                table,
                counts,
                per_pair=self.config.weights.per_pair,
                min_variance=self.config.weights.min_variance,
            )
        result.weights = weights

        if subject is None and use_subjects:
            if result.subjects.empty:
                raise ValueError("No subject ids were found in the cell table")
            subject = result.subjects

        outcome_results = fit_outcome_association(
            table,
            outcome,
            weights=weights,
            subject=subject,
            covariates=covariates,
            config=self.config.model,
        )
        result.outcome_results = outcome_results
        result.failures.extend(non_estimable_failures(outcome_results))
        return outcome_results


def summarise_kontextual(kontextual: pd.DataFrame) -> pd.DataFrame:
    """Original vs kontextual per image and triple, averaged over radii."""
    columns = ["image_id", "test", "from_type", "to_type", "parent", "original", "kontextual"]
    if kontextual.empty:
        return pd.DataFrame(columns=columns)
    summary = (
        kontextual.groupby(["image_id", "from_type", "to_type", "parent"], sort=True)[
            ["original", "kontextual"]
        ]
        .mean()
        .reset_index()
    )
    summary["test"] = [
        make_test_name(f, t, p)
        for f, t, p in zip(summary["from_type"], summary["to_type"], summary["parent"])
    ]
    return summary[columns].sort_values(["image_id", "test"], kind="mergesort").reset_index(drop=True)


def build_association_table(
    cells: pd.DataFrame,
    pairs: Optional[Iterable[PairSpec]] = None,
    config: Optional[SpatialConfig] = None,
    hierarchy: Optional[Union[CellTypeHierarchy, Dict[str, Any]]] = None,
) -> pd.DataFrame:
    """Images x tests statistic table for a cell table.

    Example
    -------
    >>> table = build_association_table(cells, pairs=[("Tumour", "CD8")])
    """
    return ContextEngine(config).execute(cells, pairs=pairs, hierarchy=hierarchy).table
