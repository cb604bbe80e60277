"""
Dissipation Estimator

Dissipation of resolved TKE from the fluctuating velocity-gradient tensor
and an effective viscosity (molecular plus subgrid eddy viscosity).

All nine gradient components are evaluated at the cell centre:
- du/dx, dv/dy, dw/dz: compact differences across the cell faces
- horizontal cross terms: centred differences of the centred fluctuations
- vertical cross terms: centred differences on the stretched grid

The published dissipation is never positive. A raw contraction of the wrong
sign (e.g. from negative eddy viscosity) is reported as a consistency flag.
"""

import numpy as np
from typing import Dict, List

from .registry import register_term
from .terms import DissipationTerm, StepContext
from ..processing.derivatives import (
    staggered_difference, centred_difference, vertical_centred_difference
)

import logging
logger = logging.getLogger(__name__)

# ============================================================================
# Gradient Tensor
# ============================================================================

def velocity_gradient_tensor(term: DissipationTerm, ctx: StepContext) -> List[List[np.ndarray]]:
    """
    Fluctuating velocity-gradient tensor at the interior cell centres.

    Returns:
        grad[i][j] = d u_i' / d x_j, each of shape (kmax, ny, nx)
    """
    grid = ctx.grid
    z_ext = grid.z[grid.kstart - 1:grid.kend + 1]

    raw = [ctx.fluctuation(term.u), ctx.fluctuation(term.v), ctx.fluctuation(term.w)]
    centred = [ctx.centred(term.u), ctx.centred(term.v), ctx.centred(term.w)]

    grad = [[None] * 3 for _ in range(3)]
    grad[0][0] = staggered_difference(raw[0].window(x=(0, 1)), grid.dx, axis=2)
    grad[1][1] = staggered_difference(raw[1].window(y=(0, 1)), grid.dy, axis=1)
    grad[2][2] = staggered_difference(raw[2].window(z=(0, 1)), grid.dz, axis=0)

    for i in range(3):
        if i != 0:
            grad[i][0] = centred_difference(centred[i].window(x=1), grid.dx, axis=2)
        if i != 1:
            grad[i][1] = centred_difference(centred[i].window(y=1), grid.dy, axis=1)
        if i != 2:
            grad[i][2] = vertical_centred_difference(centred[i].window(z=1), z_ext)
    return grad


def _effective_viscosity(term: DissipationTerm) -> np.ndarray:
    if term.evisc is None:
        return np.asarray(term.visc, dtype=np.float64)
    return term.visc + term.evisc.interior

# ============================================================================
# Dissipation
# ============================================================================

@register_term(
    kind='dissipation',
    outputs={
        'tke_diss': ('TKE dissipation', 'm2 s-3'),
        'u2_diss': ("u'2 dissipation", 'm2 s-3'),
        'v2_diss': ("v'2 dissipation", 'm2 s-3'),
        'w2_diss': ("w'2 dissipation", 'm2 s-3'),
    },
    description='viscous and subgrid dissipation of resolved TKE'
)
def compute_dissipation(term: DissipationTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute dissipation.

    Formula:
        strain:  D = -2 <nu_eff s_ij' s_ij'>,  s_ij = (du_i/dx_j + du_j/dx_i) / 2
        pseudo:  D = -<nu_eff du_i'/dx_j du_i'/dx_j>

    The component terms always use the pseudo form:
        u2_diss = -2 <nu_eff du'/dx_j du'/dx_j>   (likewise v2, w2)

    Every published profile is -|raw|.
    """
    grad = velocity_gradient_tensor(term, ctx)
    nu = _effective_viscosity(term)

    per_column = {}
    for i, name in enumerate(("u2", "v2", "w2")):
        per_column[name] = 2.0 * nu * sum(grad[i][j] ** 2 for j in range(3))

    if term.form == "strain":
        strain2 = sum(
            (0.5 * (grad[i][j] + grad[j][i])) ** 2
            for i in range(3) for j in range(3)
        )
        per_column["tke"] = 2.0 * nu * strain2

    means = ctx.reduction.mean_profiles("dissipation", per_column)

    raw = {f"{name}_diss": -means[name] for name in ("u2", "v2", "w2")}
    if term.form == "strain":
        raw['tke_diss'] = -means["tke"]
    else:
        raw['tke_diss'] = 0.5 * (raw['u2_diss'] + raw['v2_diss'] + raw['w2_diss'])

    profiles = {}
    for name, values in raw.items():
        profiles[name] = -np.abs(values)
        _check_sign(name, values, term.rtol, ctx)
    return profiles


def _check_sign(name: str, raw: np.ndarray, rtol: float, ctx: StepContext) -> None:
    """Flag levels where the raw dissipation is positive beyond tolerance or not finite."""
    finite = raw[np.isfinite(raw)]
    scale = np.max(np.abs(finite)) if finite.size else 0.0
    levels = np.flatnonzero(~(raw <= rtol * scale))
    if levels.size:
        n_bad = int(np.count_nonzero(~np.isfinite(raw)))
        message = (
            f"{name} raw contraction positive or non-finite at {levels.size} level(s), "
            f"{n_bad} non-finite"
        )
        logger.warning(message)
        ctx.flag("dissipation_sign", "dissipation", message, levels.tolist())


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'velocity_gradient_tensor',
    'compute_dissipation',
]
