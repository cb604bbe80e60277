"""
Storage Term

The rate of change of the mean resolved TKE. It is the left-hand side that
the sum of all other terms is checked against.
"""

import numpy as np
from typing import Dict

from .registry import register_term
from .terms import StorageTerm, StepContext
from ..core.exceptions import ParameterError, check_profile_length

import logging
logger = logging.getLogger(__name__)


@register_term(
    kind='storage',
    outputs={
        'tke': ('resolved turbulence kinetic energy', 'm2 s-2'),
        'tke_storage': ('TKE storage (tendency)', 'm2 s-3'),
    },
    description='mean TKE and its time tendency'
)
def compute_storage(term: StorageTerm, ctx: StepContext) -> Dict[str, np.ndarray]:
    """
    Compute the mean TKE and its tendency.

    The tendency is the externally measured one when the snapshot supplies
    it, otherwise the difference to the TKE of the previous completed step:

        dE/dt = (E(t) - E(t_prev)) / (t - t_prev)

    Without either, the tendency is NaN.
    """
    grid = ctx.grid
    u = ctx.centred(term.u).interior
    v = ctx.centred(term.v).interior
    w = ctx.centred(term.w).interior

    tke = ctx.reduction.mean_profiles("storage", {"e": 0.5 * (u * u + v * v + w * w)})["e"]

    if term.tendency is not None:
        check_profile_length("TKE tendency", term.tendency, grid.kmax)
        storage = np.array(term.tendency, dtype=np.float64, copy=True)
    elif ctx.previous_tke is None:
        logger.info("No previous TKE profile; storage term is undefined for this step")
        storage = np.full(grid.kmax, np.nan)
    else:
        check_profile_length("previous TKE profile", ctx.previous_tke, grid.kmax)
        dt = term.time - ctx.previous_time
        if dt <= 0:
            raise ParameterError("time", str(term.time), f"Must be later than the previous step at {ctx.previous_time}")
        storage = (tke - ctx.previous_tke) / dt

    return {
        'tke': tke,
        'tke_storage': storage,
    }


__all__ = [
    'compute_storage',
]
