"""
Horizontal Reduction and Profile Accumulation

Turns per-rank, per-level partial sums into domain-mean vertical profiles.

Averaging semantics: every rank contributes its plain sum and point count per
level, the sums are combined in one collective call, and only then divided
by the global count. The mean therefore does not depend on how the domain is
split over ranks (beyond floating-point summation order).
"""

import zlib
from typing import Dict, List, Mapping, Tuple
import numpy as np

from .reducer import HorizontalReducer
from ..core.config import REDUCTION_TAG_SPAN, MAX_REDUCTIONS_PER_STEP
from ..core.exceptions import (
    ExtentMismatchError, ZeroCountReductionError, ReductionDesyncError, LESBudgetError
)

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Local Partial Sums
# ============================================================================

def horizontal_partial_sums(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sum a per-column quantity over the local horizontal tile.

    Args:
        values: Array of shape (..., nz, ny, nx)

    Returns:
        Tuple of (partial sums of shape (..., nz), point counts of shape (nz,))
    """
    values = np.asarray(values, dtype=np.float64)
    if values.ndim < 3:
        raise ExtentMismatchError("per-column values", "(..., nz, ny, nx)", values.shape)
    nz, ny, nx = values.shape[-3:]
    sums = values.sum(axis=(-2, -1))
    counts = np.full(nz, float(ny * nx))
    return sums, counts

# ============================================================================
# Reduction
# ============================================================================

class HorizontalReduction:
    """
    Sum-and-normalize reduction of per-level partial sums.

    Each call to :meth:`mean` is one synchronization point. All profiles of a
    term are packed into a single buffer together with the point counts and a
    sequence tag, so a term costs exactly one collective call.

    The tag identifies the reduction slot within a step. It travels with its
    square; both sums match ``size * tag`` and ``size * tag**2`` only when
    every rank sent the same tag.
    """

    def __init__(self, reducer: HorizontalReducer):
        self.reducer = reducer
        self._sequence = 0
        self.keys: List[str] = []

    def begin_step(self) -> None:
        """Reset the reduction sequence at the start of a diagnostic step."""
        self._sequence = 0
        self.keys = []

    def _tag(self, key: str) -> int:
        if self._sequence > MAX_REDUCTIONS_PER_STEP:
            raise LESBudgetError(
                f"Too many reductions in one diagnostic step ({self._sequence})",
                f"At most {MAX_REDUCTIONS_PER_STEP + 1} are supported"
            )
        return self._sequence * REDUCTION_TAG_SPAN + zlib.crc32(key.encode()) % REDUCTION_TAG_SPAN

    def mean(self, key: str, partial_sums: np.ndarray, counts: np.ndarray) -> np.ndarray:
        """
        Collective horizontal mean.

        Args:
            key: Name of the reduced quantity (same on every rank)
            partial_sums: Local sums of shape (..., nz)
            counts: Local number of points per level, shape (nz,)

        Returns:
            np.ndarray: Domain means of shape (..., nz)

        Raises:
            ReductionDesyncError: If ranks took part with different keys or order
            ZeroCountReductionError: If a level has no points on any rank
        """
        partial = np.asarray(partial_sums, dtype=np.float64)
        counts = np.asarray(counts, dtype=np.float64)
        if counts.ndim != 1:
            raise ExtentMismatchError(f"point counts of '{key}'", "(nz,)", counts.shape)
        nz = counts.shape[0]
        if partial.ndim == 0 or partial.shape[-1] != nz:
            raise ExtentMismatchError(f"partial sums of '{key}'", f"(..., {nz})", partial.shape)

        lead_shape = partial.shape[:-1]
        tag = float(self._tag(key))

        buffer = np.empty((int(np.prod(lead_shape, dtype=int)) + 3, nz))
        buffer[:-3] = partial.reshape(-1, nz)
        buffer[-3] = counts
        buffer[-2] = tag
        buffer[-1] = tag * tag

        total = self.reducer.allreduce_sum(buffer)
        sequence = self._sequence
        self._sequence += 1
        self.keys.append(key)

        size = self.reducer.size
        if not (np.all(total[-2] == size * tag) and np.all(total[-1] == size * tag * tag)):
            logger.critical(f"Reduction '{key}' in slot {sequence} does not match across {size} ranks")
            raise ReductionDesyncError(key, sequence, f"Expected tag {int(tag)} from all {size} ranks")

        global_counts = total[-3]
        empty = np.flatnonzero(global_counts <= 0)
        if empty.size:
            raise ZeroCountReductionError(key, empty.tolist())

        means = total[:-3] / global_counts
        logger.debug(f"Reduced '{key}' ({means.shape[0]} profile(s), {nz} levels) in slot {sequence}")
        return means.reshape(lead_shape + (nz,))

    def mean_of(self, key: str, values: np.ndarray) -> np.ndarray:
        """Collective horizontal mean of per-column values of shape (..., nz, ny, nx)."""
        sums, counts = horizontal_partial_sums(values)
        return self.mean(key, sums, counts)

    def mean_profiles(self, key: str, per_column: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """
        Collective horizontal means of several named quantities in one call.

        The quantities may live on different numbers of levels (e.g. cell
        centres and faces); they are concatenated along the level axis.

        Args:
            key: Name of the reduction (same on every rank)
            per_column: Mapping of name to array of shape (nz_i, ny, nx)

        Returns:
            Dict[str, np.ndarray]: Mean profile of each quantity
        """
        names = list(per_column)
        sums, counts, sizes = [], [], []
        for name in names:
            s, c = horizontal_partial_sums(per_column[name])
            if s.ndim != 1:
                raise ExtentMismatchError(f"per-column values '{name}'", "(nz, ny, nx)", np.shape(per_column[name]))
            sums.append(s)
            counts.append(c)
            sizes.append(s.shape[0])

        means = self.mean(key, np.concatenate(sums), np.concatenate(counts))
        split = np.split(means, np.cumsum(sizes)[:-1])
        return dict(zip(names, split))


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'horizontal_partial_sums',
    'HorizontalReduction',
]
