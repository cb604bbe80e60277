"""
Mean-Profile Tracker

Horizontal-mean profiles of the snapshot fields, recomputed exactly from the
current snapshot on every diagnostic call. They are the base state that
every budget term subtracts to form fluctuations, so all terms of a step see
the same means.

The profiles live in a ``BudgetContext`` owned by the caller, which also
keeps the TKE history used by the storage term.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import numpy as np
import xarray as xr

from ..core.config import VERTICAL_DIM
from ..core.core_types import Field, FieldSnapshot, GridMetric
from ..core.exceptions import ExtentMismatchError, ParameterError
from ..reduction.accumulator import HorizontalReduction

import logging
logger = logging.getLogger(__name__)

# Fields whose horizontal mean is tracked (evisc is used as is)
MEAN_VARIABLES = ("u", "v", "w", "p", "th", "b")

# ============================================================================
# Mean Profiles
# ============================================================================

@dataclass
class MeanProfiles:
    """
    Horizontal means of the snapshot fields at every level of the field array.

    Ghost levels are included so that fluctuations exist in the vertical halo.
    The horizontal average only covers interior columns.

    Attributes:
        profiles: Mean profile per variable name
        time: Snapshot time the profiles belong to
    """
    profiles: Dict[str, np.ndarray] = field(default_factory=dict)
    time: Optional[float] = None

    @property
    def u(self) -> Optional[np.ndarray]:
        return self.profiles.get("u")

    @property
    def v(self) -> Optional[np.ndarray]:
        return self.profiles.get("v")

    def recompute(self, snapshot: FieldSnapshot, reduction: HorizontalReduction) -> None:
        """
        Replace the stored profiles by the means of the current snapshot.

        All variables are reduced in one collective call.
        """
        present = snapshot.fields
        per_column = {
            name: present[name].window(z=present[name].halo[VERTICAL_DIM])
            for name in MEAN_VARIABLES if name in present
        }
        self.profiles = reduction.mean_profiles("mean_profiles", per_column)
        self.time = snapshot.time
        logger.debug(f"Recomputed mean profiles of {list(self.profiles)} at t={snapshot.time}")

    def fluctuation(self, f: Field) -> Field:
        """
        Subtract the horizontal mean of the field's variable at every level.

        The result keeps the field's location and halo.

        Raises:
            ParameterError: If no mean is tracked for the field
            ExtentMismatchError: If the mean and the field disagree in levels
        """
        mean = self.profiles.get(f.name)
        if mean is None:
            raise ParameterError("field", f.name, f"No mean profile tracked; available: {list(self.profiles)}")
        if mean.shape[0] != f.data.shape[0]:
            raise ExtentMismatchError(f"mean profile of '{f.name}'", (f.data.shape[0],), mean.shape)
        return f.with_data(f.data - mean[:, None, None], f.stagger, dict(f.halo))

    def interior(self, name: str, grid: GridMetric) -> np.ndarray:
        """Mean profile on the interior levels of the grid."""
        if name not in self.profiles:
            raise ParameterError("name", name, f"No mean profile tracked; available: {list(self.profiles)}")
        return self.profiles[name][grid.kstart:grid.kend]

    def to_dataset(self, grid: GridMetric) -> xr.Dataset:
        """Mean profiles as a Dataset; w is placed on the face heights."""
        ds = xr.Dataset()
        for name, profile in self.profiles.items():
            dim, height = ("zh", grid.zh) if name == "w" else (VERTICAL_DIM, grid.z)
            ds[f"{name}_mean"] = xr.DataArray(
                profile, dims=[dim], coords={dim: height},
                attrs={'long_name': f"horizontal mean of {name}"}
            )
        if self.time is not None:
            ds.attrs['time'] = self.time
        return ds

# ============================================================================
# Budget Context
# ============================================================================

@dataclass
class BudgetContext:
    """
    Mutable state of the budget diagnostics, owned by the caller.

    Pass the same context to every diagnostic call of a run. It is only
    modified by a step that completes.

    Attributes:
        means: Mean profiles of the last completed step
        previous_tke: Interior TKE profile of the last completed step
        previous_time: Time of the last completed step
        steps: Number of completed steps
    """
    means: MeanProfiles = field(default_factory=MeanProfiles)
    previous_tke: Optional[np.ndarray] = None
    previous_time: Optional[float] = None
    steps: int = 0

    def commit(self, tke: np.ndarray, time: float) -> None:
        """Record the TKE profile of a completed step."""
        self.previous_tke = np.array(tke, dtype=np.float64, copy=True)
        self.previous_time = float(time)
        self.steps += 1

    def reset(self) -> None:
        """Forget all history (e.g. after a restart)."""
        self.means = MeanProfiles()
        self.previous_tke = None
        self.previous_time = None
        self.steps = 0


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'MEAN_VARIABLES',
    'MeanProfiles',
    'BudgetContext',
]
