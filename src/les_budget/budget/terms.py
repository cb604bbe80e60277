"""
Budget Term Variants

Each budget term is a small immutable record carrying exactly the inputs it
needs. The closed set of kinds is listed in TERM_KINDS, which is also the
order in which every rank evaluates the terms of a diagnostic step.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Union
import numpy as np

from ..core.core_types import Field, GridMetric, ReferenceState, BudgetSettings
from ..processing.interpolation import to_budget_location
from ..reduction.accumulator import HorizontalReduction

# ============================================================================
# Term Variants
# ============================================================================

TERM_KINDS = ("shear", "buoyancy", "transport", "pressure", "dissipation", "storage")


@dataclass(frozen=True)
class ShearTerm:
    """Shear production from the mean-wind gradient and the vertical momentum flux."""
    u: Field
    v: Field
    w: Field
    kind: ClassVar[str] = "shear"


@dataclass(frozen=True)
class BuoyancyTerm:
    """Buoyant production or destruction from the vertical heat/buoyancy flux."""
    w: Field
    scalar: Field
    scalar_kind: str
    reference: ReferenceState
    kind: ClassVar[str] = "buoyancy"


@dataclass(frozen=True)
class TransportTerm:
    """Turbulent transport (third-order flux) and viscous transport."""
    u: Field
    v: Field
    w: Field
    visc: float
    kind: ClassVar[str] = "transport"


@dataclass(frozen=True)
class PressureTerm:
    """Pressure transport and pressure redistribution."""
    u: Field
    v: Field
    w: Field
    p: Field
    rho0: float
    kind: ClassVar[str] = "pressure"


@dataclass(frozen=True)
class DissipationTerm:
    """Dissipation from the fluctuating velocity-gradient tensor."""
    u: Field
    v: Field
    w: Field
    visc: float
    evisc: Optional[Field]
    form: str
    rtol: float
    kind: ClassVar[str] = "dissipation"


@dataclass(frozen=True)
class StorageTerm:
    """TKE storage (tendency), measured externally or from the previous step."""
    u: Field
    v: Field
    w: Field
    time: float
    tendency: Optional[np.ndarray] = None
    kind: ClassVar[str] = "storage"


BudgetTerm = Union[ShearTerm, BuoyancyTerm, TransportTerm, PressureTerm, DissipationTerm, StorageTerm]

TERM_TYPES = {
    "shear": ShearTerm,
    "buoyancy": BuoyancyTerm,
    "transport": TransportTerm,
    "pressure": PressureTerm,
    "dissipation": DissipationTerm,
    "storage": StorageTerm,
}

# ============================================================================
# Consistency Flags
# ============================================================================

@dataclass
class ConsistencyFlag:
    """
    Annotation of a numerically suspect result.

    Attributes:
        code: Short identifier ('dissipation_sign', 'budget_not_closed')
        term: Term kind the flag refers to
        message: Human-readable explanation
        levels: Interior levels concerned
    """
    code: str
    term: str
    message: str
    levels: List[int] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.code} ({self.term}): {self.message}"

# ============================================================================
# Step Context
# ============================================================================

@dataclass
class StepContext:
    """
    Everything a term needs during one diagnostic step.

    Fluctuation fields and their cell-centre versions are computed once per
    step and shared between terms.
    """
    grid: GridMetric
    means: "MeanProfiles"
    reduction: HorizontalReduction
    settings: BudgetSettings
    previous_tke: Optional[np.ndarray] = None
    previous_time: Optional[float] = None
    flags: List[ConsistencyFlag] = field(default_factory=list)
    _fluctuations: Dict[int, Field] = field(default_factory=dict, repr=False)
    _centred: Dict[int, Field] = field(default_factory=dict, repr=False)

    def fluctuation(self, f: Field) -> Field:
        """Field minus its horizontal mean at every level, at its own location."""
        if id(f) not in self._fluctuations:
            self._fluctuations[id(f)] = self.means.fluctuation(f)
        return self._fluctuations[id(f)]

    def centred(self, f: Field) -> Field:
        """Fluctuation interpolated to the cell centre."""
        if id(f) not in self._centred:
            self._centred[id(f)] = to_budget_location(
                self.fluctuation(f), check_values=self.settings.halo_check
            )
        return self._centred[id(f)]

    def flag(self, code: str, term: str, message: str, levels=None) -> None:
        self.flags.append(ConsistencyFlag(code, term, message, list(levels or [])))


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'TERM_KINDS',
    'TERM_TYPES',
    'ShearTerm',
    'BuoyancyTerm',
    'TransportTerm',
    'PressureTerm',
    'DissipationTerm',
    'StorageTerm',
    'BudgetTerm',
    'ConsistencyFlag',
    'StepContext',
]
