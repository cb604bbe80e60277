"""
Shear and Buoyancy Production

This module implements the production terms of the TKE budget:
- Shear production from the vertical momentum flux and the mean-wind gradient
- Buoyant production/destruction from the vertical heat (or buoyancy) flux

Both are evaluated at the cell centres of the interior levels. Fluctuations
are interpolated to the centre before they are multiplied.
"""

import numpy as np
from typing import Dict

from .registry import register_term
from .terms import ShearTerm, BuoyancyTerm, StepContext
from ..processing.derivatives import vertical_gradient

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Shear Production
# ============================================================================

@register_term(
    kind='shear',
    outputs={
        'tke_shear': ('TKE shear production', 'm2 s-3'),
        'u2_shear': ("u'2 shear production", 'm2 s-3'),
        'v2_shear': ("v'2 shear production", 'm2 s-3'),
    },
    description='production of resolved TKE by the mean vertical wind shear'
)
def compute_shear_production(term: ShearTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute shear production.

    Formula:
        P_shear = -<u'w'> dU/dz - <v'w'> dV/dz

    The mean-wind gradient is centred at inner levels and one-sided at the
    bottom and top interior levels.

    Returns:
        tke_shear and the variance components u2_shear, v2_shear
    """
    grid = ctx.grid
    u = ctx.centred(term.u).interior
    v = ctx.centred(term.v).interior
    w = ctx.centred(term.w).interior

    fluxes = ctx.reduction.mean_profiles("shear", {"uw": u * w, "vw": v * w})

    dudz = vertical_gradient(ctx.means.interior("u", grid), grid.z_interior)
    dvdz = vertical_gradient(ctx.means.interior("v", grid), grid.z_interior)

    u2_shear = -2.0 * fluxes["uw"] * dudz
    v2_shear = -2.0 * fluxes["vw"] * dvdz

    return {
        'tke_shear': 0.5 * (u2_shear + v2_shear),
        'u2_shear': u2_shear,
        'v2_shear': v2_shear,
    }

# ============================================================================
# Buoyancy Production
# ============================================================================

@register_term(
    kind='buoyancy',
    outputs={
        'tke_buoy': ('TKE buoyancy production', 'm2 s-3'),
        'w2_buoy': ("w'2 buoyancy production", 'm2 s-3'),
    },
    description='production (unstable) or destruction (stable) of TKE by the vertical buoyancy flux'
)
def compute_buoyancy_production(term: BuoyancyTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute buoyancy production.

    Formula:
        P_buoy = (g / theta0) <w'theta'>    for potential temperature
        P_buoy = <w'b'>                     for buoyancy

    Returns:
        tke_buoy and w2_buoy (= 2 tke_buoy, all buoyancy enters w'2)
    """
    grid = ctx.grid
    w = ctx.centred(term.w).interior
    s = ctx.centred(term.scalar).interior

    flux = ctx.reduction.mean_profiles("buoyancy", {"ws": w * s})["ws"]

    if term.scalar_kind == "th":
        factor = term.reference.buoyancy_factor(grid.kmax)
    else:
        factor = np.ones(grid.kmax)

    tke_buoy = factor * flux
    return {
        'tke_buoy': tke_buoy,
        'w2_buoy': 2.0 * tke_buoy,
    }


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'compute_shear_production',
    'compute_buoyancy_production',
]
