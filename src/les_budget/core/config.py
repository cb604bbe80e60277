"""
LES Budget Configuration and Constants

This module centralizes configuration parameters, constants, and default values
for the budget engine so that grid conventions and tolerances are shared by
every component.
"""

import os

# ============================================================================
# Dimension Names
# ============================================================================

VERTICAL_DIM = 'z'
Y_DIM = 'y'
X_DIM = 'x'

# Array layout of every 3D field: (z, y, x), C order
FIELD_DIMS = (VERTICAL_DIM, Y_DIM, X_DIM)

# Coordinate name of the published budget profiles (cell-centre heights)
PROFILE_DIM = VERTICAL_DIM

# ============================================================================
# Staggered Grid Variables
# ============================================================================

# Arakawa C-grid: the velocity components sit on the faces normal to them
WIND_VARIABLES = ("u", "v", "w")

# Variables located at the cell centre
CENTERED_VARIABLES = ("p", "th", "b", "evisc")

# Stagger configuration: which dimensions each variable is staggered in.
# A staggered sample at index i lives on the face at i-1/2 (the lower face).
STAGGER_CONFIG = {
    "u": ("x",),        # staggered in x: at (i-0.5, j, k)
    "v": ("y",),        # staggered in y: at (i, j-0.5, k)
    "w": ("z",),        # staggered in z: at (i, j, k-0.5)
    "p": (),
    "th": (),
    "b": (),
    "evisc": (),
}

# Budget terms are all evaluated at the cell centre
BUDGET_STAGGER = ()

# ============================================================================
# Halo Defaults
# ============================================================================

# Second-order stencils need one ghost layer on each side
DEFAULT_HALO_WIDTH = 1

# ============================================================================
# Default Numerical Tolerances
# ============================================================================

# Closure residual allowed relative to the largest term magnitude
DEFAULT_CLOSURE_RTOL = 1.0e-6
DEFAULT_CLOSURE_ATOL = 1.0e-12

# Raw dissipation allowed above zero before a sign warning is raised,
# relative to the dissipation magnitude
DEFAULT_DISSIPATION_RTOL = 1.0e-10

DISSIPATION_FORMS = ("strain", "pseudo")
DEFAULT_DISSIPATION_FORM = "strain"

# ============================================================================
# Switches (overridable from the environment)
# ============================================================================

# swbudget equivalent; the external statistics driver reads it
DEFAULT_BUDGET_ENABLED = os.environ.get("LES_BUDGET_ENABLED", "1").strip().lower() in ("1", "true", "yes", "on")

# Diagnostic sampling interval in seconds
DEFAULT_SAMPLETIME = float(os.environ.get("LES_BUDGET_SAMPLETIME", "60.0"))

# ============================================================================
# Reduction
# ============================================================================

# Sequence tags are encoded as exact float64 integers; keep them below 2**21
# so that the squared tag summed over ranks stays exactly representable
REDUCTION_TAG_SPAN = 2 ** 16
MAX_REDUCTIONS_PER_STEP = 31

# ============================================================================
# Helper Functions
# ============================================================================

def get_default_stagger(name: str) -> tuple:
    """Get the stagger tuple for a known variable name (cell centre otherwise)."""
    return STAGGER_CONFIG.get(name, ())

# ============================================================================
# Reference State Defaults
# ============================================================================

GRAVITY = 9.81          # Gravitational acceleration [m s^-2]
DEFAULT_THETA0 = 300.0  # Reference potential temperature [K]
DEFAULT_RHO0 = 1.0      # Reference density [kg m^-3]; 1 for kinematic pressure

SCALAR_KINDS = ("th", "b")  # potential temperature or buoyancy
