"""CLI entry point for spatial context analysis.

Usage:
    python -m cellcontext.core.spatial --input cells.csv --out results/
    python -m cellcontext.core.spatial --input cells.csv --out results/ \\
        --hierarchy hierarchy.yaml --outcome clinical.csv --outcome-col subtype
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd
import yaml

from ...io.csv import load_cell_table, load_outcome
from ...io.logging import get_logger, log_json, log_yaml
from ..hierarchy import CellTypeHierarchy
from .config import SpatialConfig
from .engine import ContextEngine
from .export import export_all

LOG_FILENAME = "cellcontext_spatial.log"
LOGGER_NAME = "cellcontext_spatial"


def setup_logging(log_dir: Path, verbose: bool = False) -> Path:
    """Configure file + console logging for the CLI and the package.

    Returns
    -------
    Path
        Actual log file path (with timestamp).
    """
    level = logging.DEBUG if verbose else logging.INFO
    _, actual_log_path = get_logger(
        name=LOGGER_NAME,
        log_path=Path(log_dir) / LOG_FILENAME,
        level=level,
        console=True,
        also=["cellcontext"],
    )

    # Reduce noise from other libraries
    logging.getLogger("lifelines").setLevel(logging.WARNING)
    logging.getLogger("statsmodels").setLevel(logging.WARNING)

    return actual_log_path


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Spatial context analysis: L-function, Kontextual and outcome association",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Input/output
    parser.add_argument(
        "-i",
        "--input",
        dest="input_path",
        type=str,
        required=True,
        help="Cell table (CSV/TSV) with image, cell type and coordinate columns",
    )
    parser.add_argument(
        "-o",
        "--out",
        dest="output_dir",
        type=str,
        required=True,
        help="Output directory for results",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--hierarchy",
        dest="hierarchy_path",
        type=str,
        default=None,
        help="YAML cell-type hierarchy; enables Kontextual tests",
    )
    parser.add_argument(
        "--log-dir",
        dest="log_dir",
        type=str,
        default=None,
        help="Directory for log files (default: output_dir)",
    )

    # Pairs
    parser.add_argument(
        "--pairs",
        dest="pairs",
        type=str,
        nargs="+",
        default=None,
        help="Ordered pairs as from__to (default: all pairs of observed types)",
    )

    # Outcome
    parser.add_argument(
        "--outcome",
        dest="outcome_path",
        type=str,
        default=None,
        help="Per-image outcome table (CSV/TSV)",
    )
    parser.add_argument(
        "--outcome-id-col",
        dest="outcome_id_col",
        type=str,
        default="image_id",
        help="Image id column of the outcome table",
    )
    outcome_group = parser.add_mutually_exclusive_group()
    outcome_group.add_argument(
        "--outcome-col",
        dest="outcome_col",
        type=str,
        default=None,
        help="Categorical or continuous outcome column",
    )
    outcome_group.add_argument(
        "--time-col",
        dest="time_col",
        type=str,
        default=None,
        help="Survival time column (requires --event-col)",
    )
    parser.add_argument(
        "--event-col",
        dest="event_col",
        type=str,
        default=None,
        help="Survival event indicator column (1 = event)",
    )
    parser.add_argument(
        "--subject-col",
        dest="subject_col",
        type=str,
        default=None,
        help="Subject column of the outcome table; fits repeated-measures models",
    )

    # Point pattern overrides
    parser.add_argument(
        "--radii",
        dest="radii",
        type=float,
        nargs="+",
        default=None,
        help="Radii to evaluate (overrides config)",
    )
    parser.add_argument(
        "--sigma",
        dest="sigma",
        type=float,
        default=None,
        help="Kernel bandwidth for the inhomogeneous null (overrides config)",
    )
    parser.add_argument(
        "--n-jobs",
        dest="n_jobs",
        type=int,
        default=None,
        help="Parallel workers over images (overrides config)",
    )
    parser.add_argument(
        "--no-weights",
        dest="no_weights",
        action="store_true",
        default=False,
        help="Fit outcome models without image weights",
    )

    # Other
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="store_true",
        default=False,
        help="Verbose logging",
    )

    args = parser.parse_args(argv)
    if args.outcome_path and not (args.outcome_col or args.time_col):
        parser.error("--outcome requires --outcome-col or --time-col/--event-col")
    if args.time_col and not args.event_col:
        parser.error("--time-col requires --event-col")
    return args


def _build_outcome(table: pd.DataFrame, args: argparse.Namespace):
    if args.time_col:
        outcome = table[[args.time_col, args.event_col]].rename(
            columns={args.time_col: "time", args.event_col: "event"}
        )
    else:
        outcome = table[args.outcome_col]
    return outcome


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    output_dir = Path(args.output_dir)
    log_dir = Path(args.log_dir) if args.log_dir else output_dir
    actual_log_path = setup_logging(log_dir, verbose=args.verbose)
    logger = logging.getLogger(LOGGER_NAME)

    print(f"[INFO] Log file: {actual_log_path}")
    logger.info("=" * 60)
    logger.info("Spatial Context Analysis")
    logger.info("=" * 60)

    # Load or create config
    if args.config_path:
        try:
            config = SpatialConfig.from_yaml(Path(args.config_path))
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Could not read configuration {args.config_path}: {e}")
            return 1
    else:
        config = SpatialConfig.default()

    # Override config with CLI args
    if args.radii:
        config.point_pattern.radii = list(args.radii)
    if args.sigma is not None:
        config.point_pattern.sigma = args.sigma
    if args.n_jobs is not None:
        config.parallel.n_jobs = args.n_jobs
    if args.no_weights:
        config.weights.enabled = False
    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    log_yaml(actual_log_path, config.to_dict(), logger=logger)

    input_path = Path(args.input_path)
    if not input_path.exists():
        logger.error(f"Input file not found: {input_path}")
        return 1

    logger.info(f"Input: {input_path}")
    logger.info(f"Output: {output_dir}")

    try:
        cells = load_cell_table(input_path, required_columns=config.columns.required)
    except ValueError as e:
        logger.error(f"Invalid cell table {input_path}: {e}")
        return 1

    hierarchy = None
    hierarchy_path = Path(args.hierarchy_path) if args.hierarchy_path else None
    if hierarchy_path is not None:
        try:
            hierarchy = CellTypeHierarchy.from_yaml(hierarchy_path)
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Invalid hierarchy {hierarchy_path}: {e}")
            return 1

    # Create engine and execute
    engine = ContextEngine(config)
    try:
        result = engine.execute(cells, pairs=args.pairs, hierarchy=hierarchy)
    except ValueError as e:
        logger.error(f"Analysis could not start: {e}")
        return 1

    outcome_path = Path(args.outcome_path) if args.outcome_path else None
    if outcome_path is not None:
        try:
            outcome_table = load_outcome(outcome_path, id_column=args.outcome_id_col)
            outcome = _build_outcome(outcome_table, args)
        except (FileNotFoundError, ValueError, KeyError) as e:
            logger.error(f"Invalid outcome table {outcome_path}: {e}")
            return 1
        covariates = None
        if config.model.covariates:
            covariates = outcome_table[list(config.model.covariates)]
        subject = None
        if args.subject_col:
            subject = outcome_table[args.subject_col].astype(str)
        engine.associate(result, outcome, covariates=covariates, subject=subject)

    # Export results
    logger.info(f"Exporting results to {output_dir}...")
    export_all(
        result=result,
        output_dir=output_dir,
        config=config,
        input_path=input_path,
        hierarchy_path=hierarchy_path,
        outcome_path=outcome_path,
    )
    log_json(output_dir / "runs.jsonl", result.summary_dict())

    # Summary
    logger.info("=" * 60)
    logger.info("Spatial Context Analysis Complete!")
    logger.info(f"Images: {result.n_images} ({result.n_images_failed} failed)")
    logger.info(f"Cells: {result.n_cells_total:,}")
    logger.info(f"Tests: {result.table.shape[1]}")
    logger.info(f"Time: {result.execution_time_seconds:.1f}s")
    logger.info("=" * 60)

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
