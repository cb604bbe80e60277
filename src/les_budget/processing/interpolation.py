"""
Staggered Field Interpolation

This module moves fields between the staggered locations of the Arakawa C-grid.

Interpolation rules for a single-direction change:
- face -> centre: avg of a(i) and a(i+1), consumes one upper halo layer
- centre -> face: avg of a(i-1) and a(i), consumes one lower halo layer

A change in two directions averages the 4 surrounding points. Halo samples are
never fabricated: a missing or unpopulated halo layer raises MissingHaloError.
"""

from itertools import product
from typing import Sequence, Tuple

from ..core.config import FIELD_DIMS, BUDGET_STAGGER
from ..core.core_types import Field, Halo, normalize_stagger

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Public Interface
# ============================================================================

def interpolate(field: Field, target: Sequence[str], check_values: bool = True) -> Field:
    """
    Interpolate a field to another staggered location.

    Args:
        field: Source field
        target: Target stagger, e.g. ``()`` for the cell centre or ``("z",)``
        check_values: Also verify that the consumed halo layers are finite

    Returns:
        Field: New field at the target location (a copy when already there)

    Raises:
        MissingHaloError: If a consumed halo layer is absent or unpopulated
    """
    target = normalize_stagger(target)
    changes = [dim for dim in FIELD_DIMS if (dim in field.stagger) != (dim in target)]

    if not changes:
        return field.with_data(field.data.copy(), field.stagger, dict(field.halo))

    logger.debug(f"Interpolating '{field.name}' from {field.stagger} to {target}")

    if len(changes) == 2:
        return _interpolate_dual_direction(field, tuple(changes), target, check_values)

    result = field
    for dim in changes:
        result = _interpolate_single_direction(result, dim, dim in target, check_values)
    return result


def to_budget_location(field: Field, check_values: bool = True) -> Field:
    """Interpolate a field to the budget evaluation location (cell centre)."""
    return interpolate(field, BUDGET_STAGGER, check_values=check_values)

# ============================================================================
# Helper Functions
# ============================================================================

def _neighbour_slices(ndim: int, axis: int) -> Tuple[tuple, tuple]:
    """Index tuples selecting a[i] and a[i+1] along axis."""
    lower = [slice(None)] * ndim
    upper = [slice(None)] * ndim
    lower[axis] = slice(0, -1)
    upper[axis] = slice(1, None)
    return tuple(lower), tuple(upper)


def _consume_halo(field: Field, dim: str, to_face: bool, check_values: bool) -> Halo:
    """Check the halo layer a two-point average needs and return the reduced halo."""
    lo, hi = field.halo[dim]
    halo = dict(field.halo)
    if to_face:
        field.require_halo(dim, lo=1, check_values=check_values)
        halo[dim] = (lo - 1, hi)
    else:
        field.require_halo(dim, hi=1, check_values=check_values)
        halo[dim] = (lo, hi - 1)
    return halo


def _interpolate_single_direction(field: Field, dim: str, to_face: bool, check_values: bool) -> Field:
    """
    Two-point average along one dimension.

    Both directions use 0.5 * (a[m] + a[m+1]); they differ in which original
    location output index m refers to, which the halo bookkeeping records.
    """
    halo = _consume_halo(field, dim, to_face, check_values)
    axis = FIELD_DIMS.index(dim)
    lower, upper = _neighbour_slices(field.data.ndim, axis)

    data = 0.5 * (field.data[lower] + field.data[upper])

    if to_face:
        stagger = tuple(d for d in FIELD_DIMS if d in field.stagger or d == dim)
    else:
        stagger = tuple(d for d in field.stagger if d != dim)
    return field.with_data(data, stagger, halo)


def _interpolate_dual_direction(field: Field, dims: Tuple[str, str], target: Tuple[str, ...], check_values: bool) -> Field:
    """
    Four-point average for a change of location in two dimensions.

    Uses the 4 corner points surrounding the target location.
    """
    halo = dict(field.halo)
    for dim in dims:
        reduced = _consume_halo(field, dim, dim in target, check_values)
        halo[dim] = reduced[dim]

    axis1, axis2 = (FIELD_DIMS.index(dim) for dim in dims)
    choices = {axis1: (slice(0, -1), slice(1, None)), axis2: (slice(0, -1), slice(1, None))}

    # Points 1-4: (i, j), (i+1, j), (i, j+1), (i+1, j+1)
    corners = []
    for s1, s2 in product(choices[axis1], choices[axis2]):
        index = [slice(None)] * field.data.ndim
        index[axis1] = s1
        index[axis2] = s2
        corners.append(field.data[tuple(index)])

    data = 0.25 * (corners[0] + corners[1] + corners[2] + corners[3])
    return field.with_data(data, target, halo)


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'interpolate',
    'to_budget_location',
]
