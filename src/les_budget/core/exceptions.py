"""
LES Budget Custom Exception Classes

This module defines all custom exception classes used by the budget engine.

Precondition violations abort the current diagnostic step before anything is
published. A reduction desynchronization corrupts the whole process group.
Numerically suspect results are not exceptions; they travel as flags on the
budget result.
"""

from typing import Optional, Sequence

# ============================================================================
# Base Exception
# ============================================================================

class LESBudgetError(Exception):
    """Base exception class for all budget engine errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        full_message = f"{message}\nDetails: {details}" if details else message
        super().__init__(full_message)

# ============================================================================
# Precondition Violations
# ============================================================================

class PreconditionError(LESBudgetError):
    """A diagnostic step was requested with inputs it cannot be computed from."""

class MissingHaloError(PreconditionError):
    """Halo (ghost) samples required by a stencil are absent or unpopulated."""

    def __init__(self, field_name: str, dim: str, side: str, needed: int, available: int):
        super().__init__(
            f"Field '{field_name}' lacks halo data in '{dim}' ({side} side)",
            f"Stencil needs {needed} layer(s), {available} available or populated"
        )
        self.field_name = field_name
        self.dim = dim
        self.side = side
        self.needed = needed
        self.available = available

class ExtentMismatchError(PreconditionError):
    """Array extents disagree with the grid metric or with each other."""

    def __init__(self, item: str, expected, actual):
        super().__init__(
            f"Extent mismatch for {item}: {actual}",
            f"Expected: {expected}"
        )
        self.item = item
        self.expected = expected
        self.actual = actual

class StaggerMismatchError(PreconditionError):
    """A field is located at a different staggering than its role requires."""

    def __init__(self, field_name: str, expected: Sequence[str], actual: Sequence[str]):
        super().__init__(
            f"Field '{field_name}' has stagger {tuple(actual)}",
            f"Expected stagger: {tuple(expected)}"
        )
        self.field_name = field_name
        self.expected = tuple(expected)
        self.actual = tuple(actual)

class VerticalBoundsError(PreconditionError):
    """A vertical level outside the valid extent was requested."""

    def __init__(self, level: int, nlevels: int):
        super().__init__(
            f"Vertical level {level} out of bounds",
            f"Valid levels: 0..{nlevels - 1}"
        )
        self.level = level
        self.nlevels = nlevels

class ZeroCountReductionError(PreconditionError):
    """A horizontal mean was requested on levels without contributing points."""

    def __init__(self, key: str, levels: Sequence[int]):
        levels_str = ", ".join(str(k) for k in levels)
        super().__init__(
            f"Horizontal reduction '{key}' has zero contributing points",
            f"Levels: {levels_str}"
        )
        self.key = key
        self.levels = list(levels)

# ============================================================================
# Collective Errors
# ============================================================================

class ReductionDesyncError(LESBudgetError):
    """Ranks disagreed on which reduction they were taking part in."""

    def __init__(self, key: str, sequence: int, reason: str):
        super().__init__(
            f"Collective reduction '{key}' (slot {sequence}) desynchronized across ranks",
            reason
        )
        self.key = key
        self.sequence = sequence

# ============================================================================
# Parameter Errors
# ============================================================================

class ParameterError(LESBudgetError):
    """Parameter validation errors."""

    def __init__(self, parameter: str, value: str, reason: str):
        super().__init__(f"Invalid parameter '{parameter}': {value}", reason)
        self.parameter = parameter
        self.value = value

# ============================================================================
# Utility Functions
# ============================================================================

def check_vertical_level(level: int, nlevels: int) -> int:
    """
    Validate a vertical level index.

    Negative indices are rejected rather than wrapped.

    Raises:
        VerticalBoundsError: If level is outside 0..nlevels-1
    """
    if level < 0 or level >= nlevels:
        raise VerticalBoundsError(level, nlevels)
    return level

def check_profile_length(item: str, profile, expected: int) -> None:
    """Check that a 1D profile has the expected number of levels."""
    if profile.ndim != 1 or profile.shape[0] != expected:
        raise ExtentMismatchError(item, (expected,), profile.shape)
