"""
LES Budget Horizontal Reduction

This package provides the collective-sum interface (serial and MPI) and the
sum-and-normalize reduction that turns per-column values into domain-mean
vertical profiles.
"""

from .reducer import (
    HorizontalReducer,
    SerialReducer,
    MPIReducer,
)

from .accumulator import (
    horizontal_partial_sums,
    HorizontalReduction,
)

__all__ = [
    "HorizontalReducer",
    "SerialReducer",
    "MPIReducer",
    "horizontal_partial_sums",
    "HorizontalReduction",
]
