"""Per-image work units and their parallel execution.

Images are independent: each worker builds the image's neighbour index
once and evaluates every requested pair and (from, to, parent) triple on
it. Failures are returned as records, never raised, so one bad image does
not stop the batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union
import logging
import time

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ...errors import CellContextError, UnitFailure
from .cells import ImageCells
from .config import ColumnConfig, PointPatternConfig
from .kontextual import KONTEXTUAL_COLUMNS, kontextual_image
from .lfunction import evaluate

logger = logging.getLogger(__name__)

PAIRWISE_COLUMNS = [
    "image_id", "from_type", "to_type", "parent", "r", "statistic",
    "n_from", "n_to", "n_parent",
]


@dataclass
class ImageInput:
    """Input data for processing a single image."""

    image_id: str
    cells: pd.DataFrame
    window: Optional[Tuple[float, float, float, float]] = None

    @property
    def n_cells(self) -> int:
        return len(self.cells)


@dataclass
class ImageOutput:
    """Long results and failures of one image."""

    image_id: str
    n_cells: int = 0
    subject_id: Optional[str] = None
    pairwise: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=PAIRWISE_COLUMNS))
    kontextual: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=KONTEXTUAL_COLUMNS))
    failures: List[UnitFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not any(f.kind == "input_data" for f in self.failures)


def pairwise_rows(
    image: ImageCells,
    pairs: Sequence[Tuple[str, str]],
    point_pattern: PointPatternConfig,
) -> pd.DataFrame:
    """L(r) - r for every ordered pair in one image, as long rows."""
    counts = image.counts
    radii = np.asarray(point_pattern.radii, dtype=float)
    records = []
    for from_type, to_type in pairs:
        values = evaluate(
            image,
            from_type,
            to_type,
            radii,
            sigma=point_pattern.sigma,
            edge_correction=point_pattern.edge_correction,
            min_cells=point_pattern.min_cells_per_type,
        )
        n_from = counts.get(from_type, 0)
        n_to = counts.get(to_type, 0)
        for r, statistic in values.items():
            records.append((
                image.image_id, from_type, to_type, None, float(r), float(statistic),
                n_from, n_to, np.nan,
            ))
    return pd.DataFrame.from_records(records, columns=PAIRWISE_COLUMNS)


def process_image(
    image_input: ImageInput,
    pairs: Sequence[Tuple[str, str]],
    combinations: Optional[pd.DataFrame],
    point_pattern: PointPatternConfig,
    columns: ColumnConfig,
) -> ImageOutput:
    """Evaluate plain pairs and contextual triples in one image.

    Parameters
    ----------
    image_input : ImageInput
        Cells of the image
    pairs : sequence of (from, to)
        Ordered type pairs for the plain statistic
    combinations : pd.DataFrame, optional
        Output of ``parent_combinations``
    point_pattern : PointPatternConfig
        Radii, sigma, edge correction and count threshold
    columns : ColumnConfig
        Cell table column names

    Returns
    -------
    ImageOutput
    """
    start = time.time()
    output = ImageOutput(image_id=image_input.image_id, n_cells=image_input.n_cells)

    try:
        image = ImageCells.from_frame(
            image_input.cells,
            image_id=image_input.image_id,
            columns=columns,
            window=image_input.window,
        )
    except CellContextError as e:
        logger.warning(f"Skipping image {image_input.image_id}: {e.message}")
        output.failures.append(e.to_failure())
        output.elapsed_seconds = time.time() - start
        return output

    output.subject_id = image.subject_id
    frames = [pairwise_rows(image, pairs, point_pattern)] if pairs else []

    if combinations is not None and not combinations.empty:
        contextual, failures = kontextual_image(
            image,
            combinations,
            point_pattern.radii,
            sigma=point_pattern.sigma,
            edge_correction=point_pattern.edge_correction,
            min_cells=point_pattern.min_cells_per_type,
        )
        output.kontextual = contextual
        output.failures.extend(failures)
        if not contextual.empty:
            frames.append(
                contextual.rename(columns={"kontextual": "statistic"})[PAIRWISE_COLUMNS]
            )

    if frames:
        output.pairwise = pd.concat(frames, ignore_index=True)
    output.elapsed_seconds = time.time() - start
    return output


def process_images(
    images: List[ImageInput],
    pairs: Sequence[Tuple[str, str]],
    combinations: Optional[pd.DataFrame],
    point_pattern: PointPatternConfig,
    columns: ColumnConfig,
    n_jobs: int = 1,
    batch_size: Union[int, str] = "auto",
) -> List[ImageOutput]:
    """Process images sequentially (n_jobs=1) or with joblib workers.

    Output order always follows ``images``.
    """
    n_images = len(images)
    if n_jobs == 1 or n_images <= 1:
        outputs = []
        batch_start = time.time()
        for idx, image_input in enumerate(images, 1):
            elapsed = time.time() - batch_start
            if idx > 1:
                remaining = elapsed / (idx - 1) * (n_images - idx + 1)
                logger.info(
                    f"[{idx}/{n_images}] {image_input.image_id} ({image_input.n_cells:,} cells) | "
                    f"elapsed: {elapsed:.0f}s, ETA: {remaining:.0f}s"
                )
            else:
                logger.info(f"[{idx}/{n_images}] {image_input.image_id} ({image_input.n_cells:,} cells)")
            output = process_image(image_input, pairs, combinations, point_pattern, columns)
            logger.debug(f"  └─ {image_input.image_id}: {output.elapsed_seconds:.1f}s")
            outputs.append(output)
        return outputs

    logger.info(f"Processing {n_images} images with {n_jobs} workers (batch_size={batch_size})")
    return Parallel(n_jobs=n_jobs, batch_size=batch_size, verbose=0)(
        delayed(process_image)(image_input, pairs, combinations, point_pattern, columns)
        for image_input in images
    )
