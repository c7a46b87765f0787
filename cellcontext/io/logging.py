"""Logging utilities for CellContext.

Provides timestamped run logs shared by the package loggers, plus
structured log output (JSON lines, YAML documents).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Tuple, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Generate a timestamped log path from the base log path.

    Example: cellcontext.log -> cellcontext_20251209_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    stem = log_path.stem
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
    console: bool = False,
    also: Iterable[str] = (),
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing to a run log file.

    Parameters
    ----------
    name : str
        Logger name (typically the package or CLI name).
    log_path : PathLike
        Base path for log file.
    level : int
        Logging level (default: INFO).
    timestamped : bool
        If True, add timestamp to filename to preserve previous logs.
        If False, overwrite existing log file.
    console : bool
        Also write to stdout.
    also : Iterable[str]
        Further logger names (e.g. "cellcontext") routed to the same handlers.

    Returns
    -------
    Tuple[logging.Logger, Path]
        Tuple of (logger, actual_log_path).
    """
    log_path = Path(log_path)

    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)

    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    handlers = [file_handler]
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(console_handler)

    for logger_name in [name, *also]:
        target = logging.getLogger(logger_name)
        target.setLevel(level)
        target.propagate = False
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        for handler in handlers:
            handler.setLevel(level)
            target.addHandler(handler)

    return logging.getLogger(name), actual_log_path


def _prepare_log_destination(log_path: PathLike) -> Path:
    """Ensure log destination directory exists."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append a JSON line to log_path."""
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def log_yaml(
    log_path: PathLike,
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append a YAML document to log_path, or to ``logger`` when given."""
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return

    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")
