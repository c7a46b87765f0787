"""Export functions for spatial context results.

Provides CSV/JSON export with provenance tracking.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

import pandas as pd

from ...io.csv import ensure_output_dir, write_dataframe
from .config import SpatialConfig
from .engine import ContextResult

logger = logging.getLogger(__name__)

MODULE_VERSION = "0.1.0"


def _sorted_long(frame: pd.DataFrame, keys) -> pd.DataFrame:
    if frame.empty:
        return frame
    return frame.sort_values(keys, kind="mergesort").reset_index(drop=True)


def export_result(
    result: ContextResult,
    output_dir: Path,
) -> Dict[str, Path]:
    """Write tables and summary of an analysis.

    Parameters
    ----------
    result : ContextResult
        Analysis results
    output_dir : Path
        Output directory

    Returns
    -------
    Dict[str, Path]
        Written files by name
    """
    output_dir = ensure_output_dir(output_dir)
    written: Dict[str, Path] = {}

    pairwise = _sorted_long(result.pairwise, ["image_id", "from_type", "to_type", "r"])
    written["pairwise_long"] = write_dataframe(pairwise, output_dir / "pairwise_long.csv")
    written["association_table"] = write_dataframe(
        result.table, output_dir / "association_table.csv", index=True
    )
    written["cell_counts"] = write_dataframe(
        result.counts, output_dir / "cell_counts.csv", index=True
    )
    logger.info(f"Exported association table {result.table.shape} to {output_dir}")

    if not result.kontextual.empty:
        kontextual = _sorted_long(
            result.kontextual, ["image_id", "from_type", "to_type", "parent", "r"]
        )
        written["kontextual_long"] = write_dataframe(
            kontextual, output_dir / "kontextual_long.csv"
        )
        written["kontextual_table"] = write_dataframe(
            result.kontextual_table, output_dir / "kontextual_table.csv"
        )
        logger.info(f"Exported Kontextual results ({len(result.kontextual_table)} rows)")

    if result.weights is not None:
        written["weights"] = write_dataframe(
            result.weights, output_dir / "weights.csv", index=True
        )
    if result.outcome_results is not None:
        written["outcome_results"] = write_dataframe(
            result.outcome_results, output_dir / "outcome_results.csv"
        )
        logger.info(f"Exported outcome results ({len(result.outcome_results)} tests)")

    written["failures"] = write_dataframe(result.failures_frame, output_dir / "failures.csv")

    summary = result.summary_dict()
    summary_path = output_dir / "spatial_summary.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)
    written["summary"] = summary_path

    logger.info(f"Exported summary to {summary_path}")
    return written


def create_provenance(
    config: SpatialConfig,
    input_path: Path,
    output_dir: Path,
    result: ContextResult,
    hierarchy_path: Optional[Path] = None,
    outcome_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Create provenance record for audit trail.

    Returns
    -------
    Dict[str, Any]
        Provenance record
    """
    return {
        "timestamp": datetime.now().isoformat(),
        "module": "cellcontext.core.spatial",
        "version": MODULE_VERSION,
        "inputs": {
            "cells_path": str(input_path),
            "hierarchy_path": str(hierarchy_path) if hierarchy_path else None,
            "outcome_path": str(outcome_path) if outcome_path else None,
        },
        "outputs": {
            "output_dir": str(output_dir),
        },
        "config": config.to_dict(),
        "execution": {
            "success": result.success,
            "n_images": result.n_images,
            "n_images_failed": result.n_images_failed,
            "n_cells": result.n_cells_total,
            "n_failures": len(result.failures),
            "time_seconds": round(result.execution_time_seconds, 2),
        },
    }


def export_provenance(
    provenance: Dict[str, Any],
    output_dir: Path,
) -> Path:
    """Export provenance to JSON file."""
    output_dir = ensure_output_dir(output_dir)
    path = output_dir / "provenance.json"
    with open(path, "w") as f:
        json.dump(provenance, f, indent=2)

    logger.info(f"Exported provenance to {path}")
    return path


def export_all(
    result: ContextResult,
    output_dir: Path,
    config: SpatialConfig,
    input_path: Path,
    hierarchy_path: Optional[Path] = None,
    outcome_path: Optional[Path] = None,
) -> Dict[str, Path]:
    """Export all results and provenance."""
    written = export_result(result, output_dir)
    provenance = create_provenance(
        config=config,
        input_path=input_path,
        output_dir=output_dir,
        result=result,
        hierarchy_path=hierarchy_path,
        outcome_path=outcome_path,
    )
    written["provenance"] = export_provenance(provenance, output_dir)
    return written
