"""
Collective Sum Interface

The budget engine sees the domain decomposition only through this narrow
interface: an element-wise sum of a float64 buffer over every rank that shares
the horizontal slab. Each rank owns full columns, so one communicator covers
all vertical levels.

Every rank must call ``allreduce_sum`` the same number of times and in the same
order; the call blocks until all ranks have arrived.
"""

from abc import ABC, abstractmethod
import numpy as np

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Base Class
# ============================================================================

class HorizontalReducer(ABC):
    """Element-wise sum over the ranks of one horizontal decomposition."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of participating ranks."""

    @property
    def rank(self) -> int:
        """Rank of this process within the group."""
        return 0

    @abstractmethod
    def allreduce_sum(self, local: np.ndarray) -> np.ndarray:
        """
        Sum a buffer over all ranks.

        Args:
            local: Local partial sums, any shape, float64

        Returns:
            np.ndarray: Global sums, same shape, identical on every rank
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rank={self.rank}, size={self.size})"

# ============================================================================
# Single-Process Reducer
# ============================================================================

class SerialReducer(HorizontalReducer):
    """Single-process reducer that returns a copy of its input."""

    @property
    def size(self) -> int:
        return 1

    def allreduce_sum(self, local: np.ndarray) -> np.ndarray:
        return np.array(local, dtype=np.float64, copy=True)

# ============================================================================
# MPI Reducer
# ============================================================================

class MPIReducer(HorizontalReducer):
    """
    Reducer over an mpi4py communicator.

    The communicator is created and owned by the caller's decomposition
    component; the reducer never splits or frees it.

    Args:
        comm: mpi4py communicator (defaults to COMM_WORLD)
    """

    def __init__(self, comm=None):
        from mpi4py import MPI

        self._sum_op = MPI.SUM
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        logger.debug(f"MPI reducer on rank {self.comm.Get_rank()} of {self.comm.Get_size()}")

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    def allreduce_sum(self, local: np.ndarray) -> np.ndarray:
        send = np.ascontiguousarray(local, dtype=np.float64)
        recv = np.empty_like(send)
        self.comm.Allreduce(send, recv, op=self._sum_op)
        return recv


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'HorizontalReducer',
    'SerialReducer',
    'MPIReducer',
]
