"""I/O utilities for CellContext.

Provides logging, CSV I/O, and data loading utilities.
"""

from .logging import get_logger, get_timestamped_log_path, log_json, log_yaml
from .csv import (
    ensure_output_dir,
    load_cell_table,
    load_outcome,
    write_dataframe,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # CSV I/O
    "ensure_output_dir",
    "load_cell_table",
    "load_outcome",
    "write_dataframe",
]
