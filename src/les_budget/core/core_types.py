"""
LES Budget Type Definitions and Data Classes

This module defines the data structures shared by the budget engine: haloed
fields, the vertical grid metric, the reference state, the instantaneous
snapshot handed over by the model, and the budget settings.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union, Dict, Any, Mapping, Sequence
import numpy as np
import xarray as xr

from .config import (
    FIELD_DIMS, DEFAULT_HALO_WIDTH, get_default_stagger,
    DEFAULT_CLOSURE_RTOL, DEFAULT_CLOSURE_ATOL, DEFAULT_DISSIPATION_RTOL,
    DISSIPATION_FORMS, DEFAULT_DISSIPATION_FORM,
    DEFAULT_BUDGET_ENABLED, DEFAULT_SAMPLETIME,
    GRAVITY, DEFAULT_THETA0, DEFAULT_RHO0, SCALAR_KINDS,
)
from .exceptions import ParameterError, ExtentMismatchError, MissingHaloError

# ============================================================================
# Type Aliases
# ============================================================================

Stagger = Tuple[str, ...]
HaloWidths = Tuple[int, int]
Halo = Dict[str, HaloWidths]
HaloSpec = Union[int, Sequence[int], Mapping[str, Union[int, HaloWidths]]]
Profile = np.ndarray

# ============================================================================
# Validation Utilities (Module Level)
# ============================================================================

def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)

def normalize_stagger(stagger: Sequence[str]) -> Stagger:
    """Validate a stagger specification and return it in (z, y, x) order."""
    if isinstance(stagger, str):
        stagger = tuple(s.strip() for s in stagger.split(",") if s.strip())
    dims = tuple(stagger)
    unknown = [d for d in dims if d not in FIELD_DIMS]
    if unknown:
        raise ParameterError("stagger", str(stagger), f"Unknown dimensions {unknown}; expected a subset of {FIELD_DIMS}")
    if len(set(dims)) != len(dims):
        raise ParameterError("stagger", str(stagger), "Dimensions must not repeat")
    return tuple(d for d in FIELD_DIMS if d in dims)

def _normalize_widths(dim: str, width: Union[int, HaloWidths]) -> HaloWidths:
    if _is_int(width):
        lo = hi = int(width)
    else:
        if len(width) != 2:
            raise ParameterError(f"halo[{dim}]", str(width), "Expected an int or a (lo, hi) pair")
        lo, hi = (int(w) for w in width)
    if lo < 0 or hi < 0:
        raise ParameterError(f"halo[{dim}]", str(width), "Halo widths must be non-negative")
    return lo, hi

def _normalize_halo(halo: HaloSpec) -> Halo:
    """
    Normalize a halo specification to {dim: (lo, hi)}.

    Accepts a single width for all sides, one width per dimension in (z, y, x)
    order, or a mapping from dimension name to a width or (lo, hi) pair.
    """
    if _is_int(halo):
        return {dim: _normalize_widths(dim, halo) for dim in FIELD_DIMS}
    if isinstance(halo, Mapping):
        unknown = set(halo) - set(FIELD_DIMS)
        if unknown:
            raise ParameterError("halo", str(dict(halo)), f"Unknown dimensions {sorted(unknown)}")
        return {dim: _normalize_widths(dim, halo.get(dim, 0)) for dim in FIELD_DIMS}
    if len(halo) != len(FIELD_DIMS):
        raise ParameterError("halo", str(halo), f"Expected one width per dimension {FIELD_DIMS}")
    return {dim: _normalize_widths(dim, w) for dim, w in zip(FIELD_DIMS, halo)}

# ============================================================================
# Field
# ============================================================================

@dataclass
class Field:
    """
    A 3D field over the local sub-domain, including halo cells.

    The array is ordered (z, y, x). A field staggered in a dimension stores at
    index i the sample on the lower face of cell i. The engine only reads
    fields; every operation that derives a new field returns a new object.

    Attributes:
        name: Variable name (e.g., 'u', 'th')
        data: Array including halo cells
        stagger: Dimensions the field is staggered in (empty for cell centre)
        halo: Number of halo cells on the (lower, upper) side of each dimension
    """
    name: str
    data: np.ndarray
    stagger: Stagger = ()
    halo: Halo = field(default_factory=lambda: _normalize_halo(DEFAULT_HALO_WIDTH))

    def __post_init__(self):
        """Validate field layout."""
        self.data = np.asarray(self.data, dtype=np.float64)
        if self.data.ndim != 3:
            raise ParameterError("data", f"{self.data.ndim}D array", f"Field '{self.name}' must be 3D ordered {FIELD_DIMS}")
        self.stagger = normalize_stagger(self.stagger)
        self.halo = _normalize_halo(self.halo)

        for axis, dim in enumerate(FIELD_DIMS):
            lo, hi = self.halo[dim]
            if lo + hi >= self.data.shape[axis]:
                raise ExtentMismatchError(
                    f"field '{self.name}' along '{dim}'",
                    f"more than {lo + hi} points (halo {lo}+{hi})",
                    self.data.shape[axis]
                )

    @classmethod
    def from_dataarray(
        cls,
        da: xr.DataArray,
        halo: HaloSpec = DEFAULT_HALO_WIDTH,
        stagger: Optional[Sequence[str]] = None,
        name: Optional[str] = None
    ) -> "Field":
        """
        Build a field from a DataArray with dimensions z, y and x.

        The stagger is taken from the argument, then from a 'stagger' attribute,
        then from the variable name.
        """
        name = name or da.name or "field"
        missing = [d for d in FIELD_DIMS if d not in da.dims]
        if missing or da.ndim != 3:
            raise ParameterError("dims", str(da.dims), f"DataArray must have exactly the dimensions {FIELD_DIMS}")
        if stagger is None:
            stagger = da.attrs.get("stagger", get_default_stagger(name))
        return cls(name=name, data=da.transpose(*FIELD_DIMS).values, stagger=stagger, halo=halo)

    @property
    def interior_shape(self) -> Tuple[int, int, int]:
        """Shape of the field without halo cells."""
        return tuple(
            self.data.shape[axis] - sum(self.halo[dim])
            for axis, dim in enumerate(FIELD_DIMS)
        )

    @property
    def interior(self) -> np.ndarray:
        """View of the interior samples."""
        return self.window()

    def window(self, **extend: Union[int, HaloWidths]) -> np.ndarray:
        """
        View of the interior extended into the halo.

        Args:
            **extend: Per-dimension extension, e.g. ``z=1`` or ``x=(0, 1)``

        Returns:
            np.ndarray: View of shape interior + extension

        Raises:
            MissingHaloError: If the requested extension exceeds the halo
        """
        index = []
        for axis, dim in enumerate(FIELD_DIMS):
            lo, hi = self.halo[dim]
            elo, ehi = _normalize_widths(dim, extend.pop(dim, 0))
            if elo > lo:
                raise MissingHaloError(self.name, dim, "lower", elo, lo)
            if ehi > hi:
                raise MissingHaloError(self.name, dim, "upper", ehi, hi)
            n = self.data.shape[axis]
            index.append(slice(lo - elo, n - hi + ehi))
        if extend:
            raise ParameterError("extend", str(extend), f"Unknown dimensions; expected {FIELD_DIMS}")
        return self.data[tuple(index)]

    def require_halo(self, dim: str, lo: int = 0, hi: int = 0, check_values: bool = True) -> None:
        """
        Check that halo layers exist and are populated.

        Only the halo layers next to the interior are checked, over the
        interior range of the other dimensions.

        Raises:
            MissingHaloError: If the layers are absent or contain non-finite values
        """
        have_lo, have_hi = self.halo[dim]
        if lo > have_lo:
            raise MissingHaloError(self.name, dim, "lower", lo, have_lo)
        if hi > have_hi:
            raise MissingHaloError(self.name, dim, "upper", hi, have_hi)
        if not check_values:
            return

        axis = FIELD_DIMS.index(dim)
        interior = self.window()
        n_int = interior.shape[axis]
        extended = self.window(**{dim: (lo, hi)})
        for side, layers, count in (("lower", slice(0, lo), lo), ("upper", slice(lo + n_int, None), hi)):
            if count == 0:
                continue
            slab = np.take(extended, np.arange(extended.shape[axis])[layers], axis=axis)
            if not np.all(np.isfinite(slab)):
                raise MissingHaloError(self.name, dim, side, count, 0)

    def require_finite(self, **extend) -> None:
        """
        Check that every halo sample of an extended window is finite.

        Unlike require_halo this covers the edge and corner regions, which
        are read by stencils that combine two directions.

        Raises:
            MissingHaloError: If a halo sample in the window is non-finite
        """
        widths = {dim: _normalize_widths(dim, extend.get(dim, 0)) for dim in FIELD_DIMS}
        block = self.window(**extend)
        bad = ~np.isfinite(block)
        inner = tuple(
            slice(widths[dim][0], block.shape[axis] - widths[dim][1])
            for axis, dim in enumerate(FIELD_DIMS)
        )
        bad[inner] = False
        if not bad.any():
            return

        index = np.argwhere(bad)[0]
        for axis, dim in enumerate(FIELD_DIMS):
            lo, hi = widths[dim]
            if index[axis] < lo:
                raise MissingHaloError(self.name, dim, "lower", lo, 0)
            if index[axis] >= block.shape[axis] - hi:
                raise MissingHaloError(self.name, dim, "upper", hi, 0)

    def with_data(self, data: np.ndarray, stagger: Stagger, halo: Halo) -> "Field":
        """Return a new field sharing this field's name."""
        return replace(self, data=data, stagger=stagger, halo=halo)

# ============================================================================
# Grid Metric
# ============================================================================

@dataclass
class GridMetric:
    """
    Vertical grid metric of a (possibly stretched) grid.

    Both height arrays include ``kgc`` ghost levels on each side. ``zh[k]`` is
    the lower face of cell ``k`` and ``z[k]`` its centre. Horizontal spacing
    is uniform.

    Attributes:
        z: Cell-centre heights [m]
        zh: Cell-face heights [m]
        dx: Grid spacing in x [m]
        dy: Grid spacing in y [m]
        kgc: Number of vertical ghost levels on each side
    """
    z: np.ndarray
    zh: np.ndarray
    dx: float
    dy: float
    kgc: int = DEFAULT_HALO_WIDTH

    def __post_init__(self):
        """Validate grid metric."""
        self.z = np.asarray(self.z, dtype=np.float64)
        self.zh = np.asarray(self.zh, dtype=np.float64)

        if self.z.ndim != 1 or self.zh.ndim != 1:
            raise ParameterError("z/zh", f"{self.z.ndim}D/{self.zh.ndim}D", "Heights must be 1D")
        if self.z.shape != self.zh.shape:
            raise ExtentMismatchError("half-level heights zh", self.z.shape, self.zh.shape)
        if not _is_int(self.kgc) or self.kgc < 1:
            raise ParameterError("kgc", str(self.kgc), "At least one ghost level is required")
        if self.kmax < 2:
            raise ParameterError("z", f"{self.kmax} interior levels", "At least two interior levels are required")
        if np.any(np.diff(self.z) <= 0) or np.any(np.diff(self.zh) <= 0):
            raise ParameterError("z/zh", "non-monotonic", "Heights must increase strictly with k")
        if self.dx <= 0 or self.dy <= 0:
            raise ParameterError("dx/dy", f"{self.dx}/{self.dy}", "Horizontal spacing must be positive")

    @property
    def kcells(self) -> int:
        """Number of levels including ghost levels."""
        return self.z.shape[0]

    @property
    def kmax(self) -> int:
        """Number of interior levels."""
        return self.kcells - 2 * self.kgc

    @property
    def kstart(self) -> int:
        return self.kgc

    @property
    def kend(self) -> int:
        return self.kgc + self.kmax

    @property
    def z_interior(self) -> np.ndarray:
        """Interior cell-centre heights (the budget evaluation levels)."""
        return self.z[self.kstart:self.kend]

    @property
    def zh_interior(self) -> np.ndarray:
        """Faces bounding the interior cells, kmax + 1 values."""
        return self.zh[self.kstart:self.kend + 1]

    @property
    def dz(self) -> np.ndarray:
        """Interior cell thickness."""
        return np.diff(self.zh_interior)

    @property
    def dzh(self) -> np.ndarray:
        """Centre-to-centre distance across the kmax + 1 interior faces."""
        return np.diff(self.z[self.kstart - 1:self.kend + 1])

# ============================================================================
# Reference State
# ============================================================================

@dataclass
class ReferenceState:
    """
    Reference state used to scale the buoyancy and pressure terms.

    Attributes:
        theta0: Reference potential temperature, scalar or one value per interior level [K]
        rho0: Reference density [kg m^-3]
        g: Gravitational acceleration [m s^-2]
    """
    theta0: Union[float, np.ndarray] = DEFAULT_THETA0
    rho0: float = DEFAULT_RHO0
    g: float = GRAVITY

    def __post_init__(self):
        """Validate reference state."""
        theta0 = np.asarray(self.theta0, dtype=np.float64)
        if np.any(theta0 <= 0):
            raise ParameterError("theta0", str(self.theta0), "Reference temperature must be positive")
        if self.rho0 <= 0:
            raise ParameterError("rho0", str(self.rho0), "Reference density must be positive")

    def buoyancy_factor(self, kmax: int) -> np.ndarray:
        """g / theta0 on the interior levels."""
        theta0 = np.asarray(self.theta0, dtype=np.float64)
        if theta0.ndim == 0:
            return np.full(kmax, self.g / float(theta0))
        if theta0.shape != (kmax,):
            raise ExtentMismatchError("reference profile theta0", (kmax,), theta0.shape)
        return self.g / theta0

# ============================================================================
# Field Snapshot
# ============================================================================

def _with_role(f: Optional[Field], role: str) -> Optional[Field]:
    if f is None or f.name == role:
        return f
    return replace(f, name=role)

@dataclass
class FieldSnapshot:
    """
    Instantaneous model state borrowed for one diagnostic step.

    Attributes:
        u, v, w: Velocity components on their faces
        time: Model time of the snapshot [s]
        p: Pressure at cell centres (kinematic when rho0 = 1)
        scalar: Potential temperature or buoyancy at cell centres
        scalar_kind: 'th' for potential temperature, 'b' for buoyancy
        evisc: Subgrid eddy viscosity at cell centres [m2 s-1]
        visc: Molecular viscosity [m2 s-1]
        tke_tendency: Externally measured TKE tendency on interior levels [m2 s-3]
    """
    u: Field
    v: Field
    w: Field
    time: float = 0.0
    p: Optional[Field] = None
    scalar: Optional[Field] = None
    scalar_kind: str = "th"
    evisc: Optional[Field] = None
    visc: float = 0.0
    tke_tendency: Optional[np.ndarray] = None

    def __post_init__(self):
        """Validate snapshot parameters."""
        if self.scalar_kind not in SCALAR_KINDS:
            raise ParameterError("scalar_kind", self.scalar_kind, f"Expected one of {SCALAR_KINDS}")
        if self.visc < 0:
            raise ParameterError("visc", str(self.visc), "Molecular viscosity must be non-negative")
        if self.tke_tendency is not None:
            self.tke_tendency = np.asarray(self.tke_tendency, dtype=np.float64)

        # Fields are identified by their role from here on
        self.u = _with_role(self.u, "u")
        self.v = _with_role(self.v, "v")
        self.w = _with_role(self.w, "w")
        self.p = _with_role(self.p, "p")
        self.scalar = _with_role(self.scalar, self.scalar_kind)
        self.evisc = _with_role(self.evisc, "evisc")

    @property
    def fields(self) -> Dict[str, Field]:
        """All fields present in the snapshot, keyed by role."""
        present = {"u": self.u, "v": self.v, "w": self.w}
        if self.p is not None:
            present["p"] = self.p
        if self.scalar is not None:
            present[self.scalar_kind] = self.scalar
        if self.evisc is not None:
            present["evisc"] = self.evisc
        return present

    @property
    def horizontal_shape(self) -> Tuple[int, int]:
        """Local interior (ny, nx)."""
        return self.u.interior_shape[1:]

# ============================================================================
# Budget Settings
# ============================================================================

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off")

def _parse_switch(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ParameterError(name, str(value), f"Expected one of {_TRUE_STRINGS + _FALSE_STRINGS}")

@dataclass
class BudgetSettings:
    """
    Budget diagnostic settings.

    ``enabled`` and ``sampletime`` are read by the external statistics driver
    to decide whether and when to call the engine; the remaining options
    steer the computation itself.

    Attributes:
        enabled: Budget diagnostics on/off switch
        sampletime: Diagnostic sampling interval [s]
        closure_rtol: Closure tolerance relative to the largest term
        closure_atol: Absolute closure tolerance
        dissipation_rtol: Allowed positive raw dissipation, relative to its magnitude
        dissipation_form: 'strain' (2 nu s_ij s_ij) or 'pseudo' (nu du_i/dx_j du_i/dx_j)
        halo_check: Verify that halo layers used by stencils are populated
    """
    enabled: bool = DEFAULT_BUDGET_ENABLED
    sampletime: float = DEFAULT_SAMPLETIME
    closure_rtol: float = DEFAULT_CLOSURE_RTOL
    closure_atol: float = DEFAULT_CLOSURE_ATOL
    dissipation_rtol: float = DEFAULT_DISSIPATION_RTOL
    dissipation_form: str = DEFAULT_DISSIPATION_FORM
    halo_check: bool = True

    def __post_init__(self):
        """Validate settings."""
        if self.sampletime <= 0:
            raise ParameterError("sampletime", str(self.sampletime), "Sampling interval must be positive")
        for name in ("closure_rtol", "closure_atol", "dissipation_rtol"):
            if getattr(self, name) < 0:
                raise ParameterError(name, str(getattr(self, name)), "Tolerances must be non-negative")
        if self.dissipation_form not in DISSIPATION_FORMS:
            raise ParameterError("dissipation_form", self.dissipation_form, f"Expected one of {DISSIPATION_FORMS}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "BudgetSettings":
        """
        Build settings from an ini-style mapping of strings.

        ``swbudget`` is accepted as an alias of ``enabled``.

        Example:
            >>> BudgetSettings.from_mapping({"swbudget": "1", "sampletime": "300"})
        """
        values = dict(mapping)
        if "swbudget" in values:
            values["enabled"] = values.pop("swbudget")

        known = {f for f in cls.__dataclass_fields__}
        unknown = set(values) - known
        if unknown:
            raise ParameterError("budget settings", ", ".join(sorted(unknown)), f"Unknown keys; expected {sorted(known)}")

        parsed: Dict[str, Any] = {}
        for key, value in values.items():
            if key in ("enabled", "halo_check"):
                parsed[key] = _parse_switch(key, value)
            elif key == "dissipation_form":
                parsed[key] = str(value).strip().lower()
            else:
                try:
                    parsed[key] = float(value)
                except (TypeError, ValueError):
                    raise ParameterError(key, str(value), "Expected a number")
        return cls(**parsed)
