"""
LES Budget Terms Module

This module provides the TKE budget terms and the engine evaluating them.

Available Budget Profiles:
    Production:
        - tke_shear, u2_shear, v2_shear: Shear production
        - tke_buoy, w2_buoy: Buoyancy production

    Transport:
        - tke_turb, u2_turb, v2_turb, w2_turb: Turbulent transport
        - tke_visc, u2_visc, v2_visc, w2_visc: Viscous transport
        - tke_pres, w2_pres: Pressure transport
        - u2_rdstr, v2_rdstr, w2_rdstr: Pressure redistribution

    Dissipation:
        - tke_diss, u2_diss, v2_diss, w2_diss

    Storage:
        - tke: Resolved TKE
        - tke_storage: TKE tendency
        - tke_residual: Closure residual

Usage:
    from les_budget.budget import BudgetContext, compute_budget
    from les_budget.reduction import SerialReducer

    context = BudgetContext()
    result = compute_budget(snapshot, grid, context, SerialReducer())
"""

# Import all term calculation modules to register terms
from . import production
from . import transport
from . import dissipation
from . import storage

from .registry import get_registry, register_term
from .terms import (
    TERM_KINDS,
    ShearTerm,
    BuoyancyTerm,
    TransportTerm,
    PressureTerm,
    DissipationTerm,
    StorageTerm,
    ConsistencyFlag,
)
from .mean_profiles import MeanProfiles, BudgetContext
from .engine import (
    BudgetResult,
    build_terms,
    compute_budget,
    list_budget_terms,
    get_term_metadata,
)

__all__ = [
    # Main computation functions
    'compute_budget',
    'build_terms',
    'list_budget_terms',
    'get_term_metadata',
    'BudgetResult',

    # State
    'MeanProfiles',
    'BudgetContext',

    # Term variants
    'TERM_KINDS',
    'ShearTerm',
    'BuoyancyTerm',
    'TransportTerm',
    'PressureTerm',
    'DissipationTerm',
    'StorageTerm',
    'ConsistencyFlag',

    # Registry
    'get_registry',
    'register_term',
]
