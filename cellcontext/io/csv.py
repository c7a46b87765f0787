"""CSV I/O utilities for CellContext.

Provides functions for loading cell tables and per-image outcome tables
and for writing result frames.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _read_table(path: PathLike) -> pd.DataFrame:
    """Read CSV or TSV (by extension) into a DataFrame."""
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"Table not found: {table_path}")
    sep = "\t" if table_path.suffix.lower() in (".tsv", ".txt") else ","
    return pd.read_csv(table_path, sep=sep)


def _validate_columns(
    df: pd.DataFrame,
    required_columns: Sequence[str],
    path: PathLike,
) -> None:
    """Raise ValueError naming any required columns missing from df."""
    if df.empty:
        raise ValueError(f"Table {path} is empty")
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise ValueError(f"Table {path} missing columns: {missing}")


def load_cell_table(
    path: PathLike,
    required_columns: Sequence[str] = ("image_id", "cell_type", "x", "y"),
    id_columns: Sequence[str] = ("image_id", "cell_type", "subject_id", "cell_id"),
) -> pd.DataFrame:
    """Read a cell table (one row per cell).

    Parameters
    ----------
    path : PathLike
        Path to CSV/TSV file.
    required_columns : Sequence[str]
        Columns that must be present.
    id_columns : Sequence[str]
        Identifier columns read as strings when present.

    Returns
    -------
    pd.DataFrame
        Cell table.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty or required columns are missing.
    """
    df = _read_table(path)
    _validate_columns(df, required_columns, path)
    for col in id_columns:
        if col in df.columns:
            df[col] = df[col].where(df[col].isna(), df[col].astype(str))
    logger.info(f"Loaded {len(df):,} cells from {path}")
    return df


def load_outcome(
    path: PathLike,
    id_column: str = "image_id",
    columns: Optional[List[str]] = None,
) -> pd.DataFrame:
    """Read a per-image (or per-subject) outcome table indexed by ``id_column``.

    Parameters
    ----------
    path : PathLike
        Path to CSV/TSV file.
    id_column : str
        Identifier column, used as index.
    columns : List[str], optional
        Columns that must be present besides the identifier.

    Returns
    -------
    pd.DataFrame
        Outcome table with string index.
    """
    df = _read_table(path)
    _validate_columns(df, [id_column, *(columns or [])], path)
    df[id_column] = df[id_column].astype(str)
    if df[id_column].duplicated().any():
        raise ValueError(f"Duplicated ids in outcome table {path}")
    return df.set_index(id_column)


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path
