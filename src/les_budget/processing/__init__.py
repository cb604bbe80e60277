"""
LES Budget Field Processing

This package provides staggered-grid interpolation and the finite-difference
operators used by the budget terms.
"""

# Staggered interpolation
from .interpolation import (
    interpolate,
    to_budget_location,
)

# Finite differences
from .derivatives import (
    vertical_gradient,
    vertical_gradient_at,
    centres_to_faces,
    face_divergence,
    face_gradient,
    staggered_difference,
    centred_difference,
    vertical_centred_difference,
)

__all__ = [
    # Staggered interpolation
    "interpolate",
    "to_budget_location",
    # Finite differences
    "vertical_gradient",
    "vertical_gradient_at",
    "centres_to_faces",
    "face_divergence",
    "face_gradient",
    "staggered_difference",
    "centred_difference",
    "vertical_centred_difference",
]
