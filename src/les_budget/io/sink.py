"""
Statistics Sink Interface

The engine hands each completed BudgetResult to a sink. Encoding, storage
and timestamping of the profiles are the sink's business.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import numpy as np
import xarray as xr

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Base Class
# ============================================================================

class ProfileSink(ABC):
    """Receiver of completed budget results."""

    @abstractmethod
    def publish(self, result) -> None:
        """
        Take over the profiles of one completed diagnostic step.

        Args:
            result: BudgetResult of the step
        """

# ============================================================================
# In-Memory Dataset Sink
# ============================================================================

class DatasetSink(ProfileSink):
    """
    Sink collecting the published steps into one xarray Dataset.

    Each step becomes one entry along the 'time' dimension. The per-step
    variables 'suspect' and 'consistency_flags' record the flags.

    Example:
        >>> sink = DatasetSink()
        >>> compute_budget(snapshot, grid, context, reducer, sink=sink)
        >>> sink.dataset['tke_shear'].sel(time=60.0)
    """

    def __init__(self):
        self._steps: List[xr.Dataset] = []
        self._dataset: Optional[xr.Dataset] = None

    def publish(self, result) -> None:
        ds = result.to_dataset()
        flags = ds.attrs.pop('consistency_flags')
        ds.attrs.pop('suspect')
        ds.attrs.pop('time')

        ds['suspect'] = xr.DataArray(bool(result.suspect), attrs={'long_name': 'sample flagged as numerically suspect'})
        ds['consistency_flags'] = xr.DataArray(np.array(flags, dtype=object), attrs={'long_name': 'consistency flags'})
        ds = ds.expand_dims(time=[result.time])

        self._steps.append(ds)
        self._dataset = None
        if result.suspect:
            logger.warning(f"Published suspect budget sample at t={result.time}: {flags}")
        else:
            logger.debug(f"Published budget sample at t={result.time}")

    @property
    def dataset(self) -> xr.Dataset:
        """All published steps, concatenated along time."""
        if not self._steps:
            return xr.Dataset()
        if self._dataset is None:
            self._dataset = xr.concat(self._steps, dim="time")
            self._dataset['time'].attrs = {'long_name': 'model time', 'units': 's'}
        return self._dataset

    def __len__(self) -> int:
        return len(self._steps)


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'ProfileSink',
    'DatasetSink',
]
