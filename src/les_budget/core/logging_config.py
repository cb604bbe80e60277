"""
LES Budget Logging Configuration

The budget engine runs on every rank of a horizontal decomposition, so log
records carry the rank they come from. By default the package logger only
has a NullHandler and passes warnings and errors on to the application.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = 'les_budget'

DEFAULT_FORMAT = '%(asctime)s - [rank %(rank)s] %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class RankFilter(logging.Filter):
    """
    Attach the process rank to every record.

    With ``root_only`` set, records below WARNING from ranks other than 0
    are dropped, since every rank logs the same step summaries.
    """

    def __init__(self, rank: Optional[int] = None, root_only: bool = False):
        super().__init__()
        self.rank = rank
        self.root_only = root_only

    def filter(self, record: logging.LogRecord) -> bool:
        record.rank = '-' if self.rank is None else self.rank
        if self.root_only and self.rank not in (None, 0):
            return record.levelno >= logging.WARNING
        return True


def _as_level(level: Union[int, str], default: int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), default)
    return level


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None,
    rank: Optional[int] = None,
    root_only: bool = False
) -> logging.Logger:
    """
    Configure output for the les_budget logger hierarchy.

    Args:
        level: Logging level name or constant
        log_file: Optional log file; '{rank}' in the name is replaced by the rank
        format_string: Format string, may use %(rank)s
        rank: Process rank shown in every message ('-' when not given)
        root_only: Keep only warnings and errors on ranks other than 0

    Returns:
        logging.Logger: The configured package logger

    Examples:
        >>> from les_budget import setup_logging
        >>> setup_logging('DEBUG', log_file='budget.{rank}.log', rank=comm.rank)
    """
    level = _as_level(level, logging.INFO)
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
    rank_filter = RankFilter(rank, root_only)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    log_path = None
    if log_file:
        log_path = Path(str(log_file).replace('{rank}', str('-' if rank is None else rank)))
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(rank_filter)
        logger.addHandler(handler)

    logger.propagate = False
    if log_path is not None:
        logger.info(f"Logging to file: {log_path}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger inside the les_budget hierarchy (name may be relative)."""
    if name.startswith(PACKAGE_LOGGER):
        return logging.getLogger(name)
    return logging.getLogger(f'{PACKAGE_LOGGER}.{name}')


def set_log_level(level: Union[int, str]) -> None:
    """
    Change the level of the package logger and its handlers.

    Examples:
        >>> set_log_level('ERROR')
    """
    level = _as_level(level, logging.WARNING)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


# No output unless the application configures it
_default_logger = logging.getLogger(PACKAGE_LOGGER)
if not _default_logger.handlers:
    _default_logger.addHandler(logging.NullHandler())
_default_logger.setLevel(logging.WARNING)


__all__ = [
    'PACKAGE_LOGGER',
    'RankFilter',
    'setup_logging',
    'get_logger',
    'set_log_level',
]
