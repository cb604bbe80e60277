"""
Transport and Pressure-Correlation Terms

This module implements the terms that move TKE vertically:
- Turbulent transport, the divergence of the third-order flux <w'e>
- Viscous transport, the molecular diffusion of the mean TKE
- Pressure transport, the divergence of <w'p'> / rho0
- Pressure redistribution between the velocity variances

Fluxes are formed on the kmax + 1 faces bounding the interior cells, where w
lives, and differenced across each cell. The discrete divergence telescopes,
so the vertical integral of a transport term equals the difference of its
boundary fluxes.
"""

import numpy as np
from typing import Dict

from .registry import register_term
from .terms import TransportTerm, PressureTerm, StepContext
from ..core.config import VERTICAL_DIM
from ..processing.derivatives import (
    centres_to_faces, face_divergence, face_gradient, staggered_difference
)

import logging
logger = logging.getLogger(__name__)


def _w_on_faces(term, ctx: StepContext) -> np.ndarray:
    """w' on the faces kstart..kend (bottom and top boundary included)."""
    return ctx.fluctuation(term.w).window(**{VERTICAL_DIM: (0, 1)})

# ============================================================================
# Turbulent and Viscous Transport
# ============================================================================

@register_term(
    kind='transport',
    outputs={
        'tke_turb': ('TKE turbulent transport', 'm2 s-3'),
        'u2_turb': ("u'2 turbulent transport", 'm2 s-3'),
        'v2_turb': ("v'2 turbulent transport", 'm2 s-3'),
        'w2_turb': ("w'2 turbulent transport", 'm2 s-3'),
        'tke_visc': ('TKE viscous transport', 'm2 s-3'),
        'u2_visc': ("u'2 viscous transport", 'm2 s-3'),
        'v2_visc': ("v'2 viscous transport", 'm2 s-3'),
        'w2_visc': ("w'2 viscous transport", 'm2 s-3'),
    },
    description='vertical redistribution of TKE by turbulent and molecular fluxes'
)
def compute_transport(term: TransportTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute turbulent and viscous transport.

    Formula:
        T_turb = -d<w'e>/dz,          e = (u'^2 + v'^2 + w'^2) / 2
        T_visc = visc d2<e>/dz2

    The variances are moved from the centres to the faces by two-point
    averages; the boundary faces take the adjacent interior value.
    """
    grid = ctx.grid
    u = ctx.centred(term.u).interior
    v = ctx.centred(term.v).interior
    w = ctx.centred(term.w).interior
    w_faces = _w_on_faces(term, ctx)

    variances = {"u2": u * u, "v2": v * v, "w2": w * w}

    per_column = {}
    for name, values in variances.items():
        per_column[f"w{name}"] = w_faces * centres_to_faces(values)
        per_column[name] = values

    means = ctx.reduction.mean_profiles("transport", per_column)

    profiles = {}
    for name in variances:
        profiles[f"{name}_turb"] = -face_divergence(means[f"w{name}"], grid.dz)
        gradient = face_gradient(means[name], grid.dzh)
        profiles[f"{name}_visc"] = term.visc * face_divergence(gradient, grid.dz)

    profiles['tke_turb'] = 0.5 * (profiles['u2_turb'] + profiles['v2_turb'] + profiles['w2_turb'])
    profiles['tke_visc'] = 0.5 * (profiles['u2_visc'] + profiles['v2_visc'] + profiles['w2_visc'])
    return profiles

# ============================================================================
# Pressure Transport and Redistribution
# ============================================================================

@register_term(
    kind='pressure',
    outputs={
        'tke_pres': ('TKE pressure transport', 'm2 s-3'),
        'w2_pres': ("w'2 pressure transport", 'm2 s-3'),
        'u2_rdstr': ("u'2 pressure redistribution", 'm2 s-3'),
        'v2_rdstr': ("v'2 pressure redistribution", 'm2 s-3'),
        'w2_rdstr': ("w'2 pressure redistribution", 'm2 s-3'),
    },
    description='pressure transport of TKE and pressure-strain redistribution between components'
)
def compute_pressure(term: PressureTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute pressure transport and redistribution.

    Formula:
        T_pres  = -(1/rho0) d<w'p'>/dz
        R_ii    = (2/rho0) <p' du_i'/dx_i>     (no summation)

    The redistribution terms sum to zero for a divergence-free flow.
    """
    grid = ctx.grid
    p = ctx.fluctuation(term.p).interior
    u = ctx.fluctuation(term.u)
    v = ctx.fluctuation(term.v)
    w = ctx.fluctuation(term.w)

    # velocity divergence components at the cell centre
    dudx = staggered_difference(u.window(x=(0, 1)), grid.dx, axis=2)
    dvdy = staggered_difference(v.window(y=(0, 1)), grid.dy, axis=1)
    dwdz = staggered_difference(w.window(z=(0, 1)), grid.dz, axis=0)

    means = ctx.reduction.mean_profiles("pressure", {
        "wp": _w_on_faces(term, ctx) * centres_to_faces(p),
        "pdudx": p * dudx,
        "pdvdy": p * dvdy,
        "pdwdz": p * dwdz,
    })

    tke_pres = -face_divergence(means["wp"], grid.dz) / term.rho0
    return {
        'tke_pres': tke_pres,
        'w2_pres': 2.0 * tke_pres,
        'u2_rdstr': 2.0 * means["pdudx"] / term.rho0,
        'v2_rdstr': 2.0 * means["pdvdy"] / term.rho0,
        'w2_rdstr': 2.0 * means["pdwdz"] / term.rho0,
    }


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'compute_transport',
    'compute_pressure',
]
