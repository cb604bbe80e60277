"""
LES Budget - TKE budget diagnostics for large-eddy simulation output.

This package decomposes the resolved turbulence kinetic energy of an LES
snapshot into its budget terms and reduces them to horizontally averaged
vertical profiles, on a single process or across an MPI decomposition.

Key Features:
- Arakawa C-grid fields with halos, on a stretched vertical grid
- Shear, buoyancy, transport, pressure, dissipation and storage terms
- Per-component (u'2, v'2, w'2) budgets and pressure redistribution
- One collective reduction per term, with desynchronization detection
- Closure and dissipation-sign checks reported as consistency flags

Quick Start:
    >>> import les_budget as lb
    >>> grid = lb.GridMetric(z=z, zh=zh, dx=50.0, dy=50.0)
    >>> snapshot = lb.FieldSnapshot(u=u, v=v, w=w, p=p, scalar=th, time=3600.0)
    >>> context = lb.BudgetContext()
    >>> result = lb.compute_budget(snapshot, grid, context, lb.SerialReducer())
    >>> result.to_dataset()
"""

__version__ = "1.0.0"
__author__ = "LES Budget Development Team"

# Import data types
from .core.core_types import (
    Field,
    GridMetric,
    ReferenceState,
    FieldSnapshot,
    BudgetSettings,
)

# Import configuration for advanced users
from .core.config import (
    WIND_VARIABLES,
    STAGGER_CONFIG,
    FIELD_DIMS,
    VERTICAL_DIM,
)

# Import exceptions for error handling
from .core.exceptions import (
    LESBudgetError,
    PreconditionError,
    MissingHaloError,
    ExtentMismatchError,
    StaggerMismatchError,
    VerticalBoundsError,
    ZeroCountReductionError,
    ReductionDesyncError,
    ParameterError,
)

# Import logging configuration
from .core.logging_config import setup_logging, set_log_level

# Import processing and reduction
from .processing import interpolate, to_budget_location, vertical_gradient
from .reduction import SerialReducer, MPIReducer, HorizontalReduction

# Import budget engine
from . import budget
from .budget import (
    BudgetContext,
    BudgetResult,
    MeanProfiles,
    compute_budget,
    list_budget_terms,
    get_term_metadata,
)
from .io.sink import ProfileSink, DatasetSink

# Define what gets imported with "from les_budget import *"
__all__ = [
    # Version info
    '__version__',

    # Data types
    'Field',
    'GridMetric',
    'ReferenceState',
    'FieldSnapshot',
    'BudgetSettings',

    # Configuration constants
    'WIND_VARIABLES',
    'STAGGER_CONFIG',
    'FIELD_DIMS',
    'VERTICAL_DIM',

    # Exception classes
    'LESBudgetError',
    'PreconditionError',
    'MissingHaloError',
    'ExtentMismatchError',
    'StaggerMismatchError',
    'VerticalBoundsError',
    'ZeroCountReductionError',
    'ReductionDesyncError',
    'ParameterError',

    # Logging configuration
    'setup_logging',
    'set_log_level',

    # Processing and reduction
    'interpolate',
    'to_budget_location',
    'vertical_gradient',
    'SerialReducer',
    'MPIReducer',
    'HorizontalReduction',

    # Budget
    'budget',
    'BudgetContext',
    'BudgetResult',
    'MeanProfiles',
    'compute_budget',
    'list_budget_terms',
    'get_term_metadata',

    # Sinks
    'ProfileSink',
    'DatasetSink',
]
