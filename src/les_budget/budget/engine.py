"""
Budget Computation Engine

This module drives one diagnostic step of the TKE budget:

1. Validate every precondition of the snapshot against the grid
2. Recompute the mean profiles (one collective reduction)
3. Evaluate every term variant in the fixed order of TERM_KINDS
   (one collective reduction each, identical on every rank)
4. Check budget closure against the storage term
5. Publish the result, then commit the step into the caller's context

A failure in any step leaves the context untouched and publishes nothing.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import numpy as np
import xarray as xr

from .registry import get_registry
from .terms import (
    BudgetTerm, ConsistencyFlag, StepContext,
    ShearTerm, BuoyancyTerm, TransportTerm, PressureTerm, DissipationTerm, StorageTerm,
)
from .mean_profiles import BudgetContext, MeanProfiles
from ..core.config import FIELD_DIMS, PROFILE_DIM, VERTICAL_DIM, get_default_stagger
from ..core.core_types import BudgetSettings, FieldSnapshot, GridMetric, ReferenceState
from ..core.exceptions import (
    ExtentMismatchError, LESBudgetError, ParameterError, StaggerMismatchError,
    check_profile_length
)
from ..reduction.accumulator import HorizontalReduction
from ..reduction.reducer import HorizontalReducer

import logging
logger = logging.getLogger(__name__)

# Terms on the right-hand side of the TKE equation
CLOSURE_TERMS = ("tke_shear", "tke_buoy", "tke_turb", "tke_visc", "tke_pres", "tke_diss")

RESIDUAL_METADATA = {
    'long_name': 'TKE budget residual (storage minus sum of terms)',
    'units': 'm2 s-3',
    'term': 'closure',
}

# Fields read by the velocity stencils need one halo layer on every side
_STENCIL_FIELDS = ("u", "v", "w")

# ============================================================================
# Budget Result
# ============================================================================

@dataclass
class BudgetResult:
    """
    Complete set of budget profiles of one diagnostic step.

    Attributes:
        time: Snapshot time [s]
        z: Interior cell-centre heights [m]
        profiles: Profile per name, each of length kmax
        flags: Consistency flags raised during the step
        means: Mean profiles the terms were computed from
    """
    time: float
    z: np.ndarray
    profiles: Dict[str, np.ndarray]
    flags: List[ConsistencyFlag] = field(default_factory=list)
    means: Optional[MeanProfiles] = None

    @property
    def closed(self) -> bool:
        """False if the closure check failed."""
        return not any(f.code == "budget_not_closed" for f in self.flags)

    @property
    def suspect(self) -> bool:
        """True if any consistency flag was raised."""
        return bool(self.flags)

    def __getitem__(self, name: str) -> np.ndarray:
        return self.profiles[name]

    def __contains__(self, name: str) -> bool:
        return name in self.profiles

    def to_dataset(self) -> xr.Dataset:
        """
        Convert to an xarray Dataset on the interior heights.

        Variables carry long_name and units; the flags are stored in the
        'consistency_flags' attribute.
        """
        ds = xr.Dataset(coords={PROFILE_DIM: (PROFILE_DIM, self.z, {'long_name': 'height', 'units': 'm'})})
        for name, profile in self.profiles.items():
            ds[name] = xr.DataArray(profile, dims=[PROFILE_DIM], attrs=get_term_metadata(name))
        ds.attrs['time'] = self.time
        ds.attrs['suspect'] = int(self.suspect)
        ds.attrs['consistency_flags'] = "; ".join(str(f) for f in self.flags)
        return ds

# ============================================================================
# Term Construction and Validation
# ============================================================================

def build_terms(
    snapshot: FieldSnapshot,
    reference: ReferenceState,
    settings: BudgetSettings
) -> List[BudgetTerm]:
    """
    Build the term variants of one step in evaluation order.

    Buoyancy needs a scalar field and pressure a pressure field; without
    them those terms are left out.
    """
    terms: List[BudgetTerm] = [ShearTerm(snapshot.u, snapshot.v, snapshot.w)]
    if snapshot.scalar is not None:
        terms.append(BuoyancyTerm(snapshot.w, snapshot.scalar, snapshot.scalar_kind, reference))
    terms.append(TransportTerm(snapshot.u, snapshot.v, snapshot.w, snapshot.visc))
    if snapshot.p is not None:
        terms.append(PressureTerm(snapshot.u, snapshot.v, snapshot.w, snapshot.p, reference.rho0))
    terms.append(DissipationTerm(
        snapshot.u, snapshot.v, snapshot.w, snapshot.visc, snapshot.evisc,
        settings.dissipation_form, settings.dissipation_rtol
    ))
    terms.append(StorageTerm(snapshot.u, snapshot.v, snapshot.w, snapshot.time, snapshot.tke_tendency))
    return terms


def _validate_snapshot(
    snapshot: FieldSnapshot,
    grid: GridMetric,
    context: BudgetContext,
    reference: ReferenceState,
    settings: BudgetSettings
) -> None:
    """
    Check every precondition of a diagnostic step before any reduction.

    Raises:
        StaggerMismatchError: If a field is not at the location of its role
        ExtentMismatchError: If extents disagree with the grid or each other
        MissingHaloError: If a stencil's halo layer is absent or unpopulated
        ParameterError: If the snapshot time does not advance
    """
    horizontal = snapshot.horizontal_shape
    z_halo = (grid.kgc, grid.kgc)

    for role, f in snapshot.fields.items():
        expected = get_default_stagger(role)
        if f.stagger != expected:
            raise StaggerMismatchError(role, expected, f.stagger)
        if f.data.shape[0] != grid.kcells:
            raise ExtentMismatchError(f"vertical extent of '{role}'", grid.kcells, f.data.shape[0])
        if f.halo[VERTICAL_DIM] != z_halo:
            raise ExtentMismatchError(f"vertical ghost levels of '{role}'", z_halo, f.halo[VERTICAL_DIM])
        if f.interior_shape[1:] != horizontal:
            raise ExtentMismatchError(f"horizontal interior of '{role}'", horizontal, f.interior_shape[1:])

    for role in _STENCIL_FIELDS:
        f = snapshot.fields[role]
        for dim in FIELD_DIMS:
            f.require_halo(dim, 1, 1, check_values=settings.halo_check)
        if settings.halo_check:
            # Cross derivatives read the edge and corner halo cells
            f.require_finite(z=1, y=1, x=1)

    if snapshot.tke_tendency is not None:
        check_profile_length("TKE tendency", snapshot.tke_tendency, grid.kmax)
    elif context.previous_tke is not None:
        check_profile_length("previous TKE profile", context.previous_tke, grid.kmax)
        if snapshot.time <= context.previous_time:
            raise ParameterError(
                "time", str(snapshot.time),
                f"Must be later than the previous step at {context.previous_time}"
            )

    if snapshot.scalar is not None and snapshot.scalar_kind == "th":
        reference.buoyancy_factor(grid.kmax)

# ============================================================================
# Closure Check
# ============================================================================

def _check_closure(profiles: Dict[str, np.ndarray], ctx: StepContext) -> None:
    """Add the closure residual and flag levels where the budget does not close."""
    storage = profiles["tke_storage"]
    present = [profiles[name] for name in CLOSURE_TERMS if name in profiles]
    residual = storage - np.sum(present, axis=0)
    profiles["tke_residual"] = residual

    if np.all(np.isnan(storage)):
        logger.debug("Storage term undefined; closure check skipped")
        return

    values = np.abs(np.concatenate(present + [storage]))
    finite = values[np.isfinite(values)]
    scale = finite.max() if finite.size else 0.0
    tolerance = ctx.settings.closure_rtol * scale + ctx.settings.closure_atol

    # Non-finite residuals fail the comparison and are flagged
    levels = np.flatnonzero(~(np.abs(residual) <= tolerance))
    if levels.size:
        n_bad = int(np.count_nonzero(~np.isfinite(residual)))
        message = (
            f"Residual exceeds tolerance {tolerance:.3e} at {levels.size} level(s), "
            f"{n_bad} of them non-finite"
        )
        logger.warning(f"TKE budget does not close: {message}")
        ctx.flag("budget_not_closed", "closure", message, levels.tolist())

# ============================================================================
# Main Computation Function
# ============================================================================

def compute_budget(
    snapshot: FieldSnapshot,
    grid: GridMetric,
    context: BudgetContext,
    reducer: HorizontalReducer,
    reference: Optional[ReferenceState] = None,
    settings: Optional[BudgetSettings] = None,
    sink=None
) -> BudgetResult:
    """
    Compute the TKE budget profiles of one diagnostic step.

    Every rank of the reducer's group must call this with snapshots of the
    same structure, so that the collective reductions line up.

    Args:
        snapshot: Instantaneous fields with populated halos
        grid: Vertical grid metric
        context: Caller-owned state, updated only if the step completes
        reducer: Collective-sum handle of the horizontal decomposition
        reference: Reference state (defaults to ReferenceState())
        settings: Budget settings (defaults to BudgetSettings())
        sink: Optional ProfileSink receiving the completed result

    Returns:
        BudgetResult with all profiles and consistency flags

    Raises:
        PreconditionError: If the step cannot be computed from its inputs
        ReductionDesyncError: If the ranks' reductions do not line up

    Example:
        >>> context = BudgetContext()
        >>> result = compute_budget(snapshot, grid, context, SerialReducer())
        >>> result['tke_shear']
    """
    reference = reference or ReferenceState()
    settings = settings or BudgetSettings()
    registry = get_registry()
    registry.check_complete()

    _validate_snapshot(snapshot, grid, context, reference, settings)

    reduction = HorizontalReduction(reducer)
    reduction.begin_step()

    means = MeanProfiles()
    means.recompute(snapshot, reduction)

    ctx = StepContext(
        grid=grid,
        means=means,
        reduction=reduction,
        settings=settings,
        previous_tke=context.previous_tke,
        previous_time=context.previous_time,
    )

    profiles: Dict[str, np.ndarray] = {}
    for term in build_terms(snapshot, reference, settings):
        definition = registry.for_term(term)
        logger.debug(f"Computing budget term: {definition.kind}")
        for name, profile in definition.compute_func(term, ctx).items():
            if name not in definition.outputs:
                raise LESBudgetError(
                    f"Budget term '{definition.kind}' returned unregistered profile '{name}'",
                    f"Registered outputs: {list(definition.outputs)}"
                )
            check_profile_length(f"budget profile '{name}'", profile, grid.kmax)
            profiles[name] = profile

    _check_closure(profiles, ctx)

    result = BudgetResult(
        time=snapshot.time,
        z=grid.z_interior.copy(),
        profiles=profiles,
        flags=list(ctx.flags),
        means=means,
    )

    # A sink failure fails the step, so the context is committed afterwards
    if sink is not None:
        sink.publish(result)

    context.means = means
    context.commit(profiles["tke"], snapshot.time)
    logger.info(
        f"Budget step {context.steps} at t={snapshot.time}: {len(profiles)} profiles, "
        f"{len(reduction.keys)} reductions, {len(result.flags)} flag(s)"
    )
    return result

# ============================================================================
# Utility Functions
# ============================================================================

def list_budget_terms() -> List[str]:
    """List all published budget profile names."""
    return get_registry().list_outputs() + ["tke_residual"]


def get_term_metadata(name: str) -> Dict[str, str]:
    """
    Get metadata for a budget profile.

    Example:
        >>> get_term_metadata('tke_shear')
        {'long_name': 'TKE shear production', 'units': 'm2 s-3', 'term': 'shear'}
    """
    if name == "tke_residual":
        return dict(RESIDUAL_METADATA)
    return get_registry().get_metadata(name)


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'CLOSURE_TERMS',
    'BudgetResult',
    'build_terms',
    'compute_budget',
    'list_budget_terms',
    'get_term_metadata',
]
