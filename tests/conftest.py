"""
Shared fixtures: stretched grids and analytic fields with populated halos.

Fields are built on the full vertical extent of the grid (ghost levels
included) and get periodic horizontal halos of width one.
"""

import numpy as np
import pytest

from les_budget.core.core_types import Field, GridMetric, FieldSnapshot, BudgetSettings
from les_budget.budget.mean_profiles import MeanProfiles
from les_budget.budget.terms import StepContext
from les_budget.reduction.accumulator import HorizontalReduction
from les_budget.reduction.reducer import SerialReducer


def make_grid(kmax=6, dz0=10.0, stretch=1.1, dx=20.0, dy=10.0):
    """Stretched grid with one ghost level below and above."""
    faces = np.concatenate([[0.0], np.cumsum(dz0 * stretch ** np.arange(kmax))])
    zh = np.concatenate([[2 * faces[0] - faces[1]], faces])
    z = 0.5 * (zh + np.append(zh[1:], 2 * faces[-1] - faces[-2]))
    return GridMetric(z=z, zh=zh, dx=dx, dy=dy, kgc=1)


def periodic(values):
    """Add one periodic halo layer in y and x to an array of shape (nz, ny, nx)."""
    return np.pad(values, ((0, 0), (1, 1), (1, 1)), mode="wrap")


def pattern(n, period=4):
    """Horizontal sign pattern [1, 1, -1, -1, ...] with zero mean."""
    base = np.where(np.arange(period) < period // 2, 1.0, -1.0)
    return np.tile(base, n // period)


def make_field(name, values, stagger=()):
    return Field(name, periodic(values), stagger=stagger, halo=1)


@pytest.fixture
def grid():
    return make_grid()


@pytest.fixture
def shape(grid):
    """Full (kcells, ny, nx) shape of the test fields."""
    return (grid.kcells, 8, 8)


@pytest.fixture
def closure_case(grid, shape):
    """
    Sheared flow with a y-periodic fluctuation pattern.

    u = S z + a s(y), v = 0, w = b s(y), p = 0, theta horizontally uniform.
    Expected:
        shear       = -a b S
        dissipation = -nu (a^2 + b^2) / dy^2
        all transport and buoyancy terms vanish
    """
    S, a, b, nu = 0.01, 0.5, 0.3, 0.1
    nz, ny, nx = shape
    s = pattern(ny)[None, :, None] * np.ones(shape)
    z = grid.z[:, None, None] * np.ones(shape)

    shear = -a * b * S
    diss = -nu * (a**2 + b**2) / grid.dy**2

    snapshot = FieldSnapshot(
        u=make_field("u", S * z + a * s, ("x",)),
        v=make_field("v", np.zeros(shape), ("y",)),
        w=make_field("w", b * s, ("z",)),
        p=make_field("p", np.zeros(shape)),
        scalar=make_field("th", 300.0 + 0.003 * z),
        time=100.0,
        visc=nu,
        tke_tendency=np.full(grid.kmax, shear + diss),
    )
    return {
        'snapshot': snapshot,
        'shear': shear,
        'diss': diss,
        'tke': 0.5 * (a**2 + b**2),
    }


@pytest.fixture
def random_snapshot(grid, shape):
    """Random fields with impermeable bottom and top faces."""
    rng = np.random.default_rng(1234)
    u = 2.0 + rng.standard_normal(shape)
    v = rng.standard_normal(shape)
    w = rng.standard_normal(shape)
    w[grid.kstart] = 0.0
    w[grid.kend] = 0.0
    p = rng.standard_normal(shape)
    th = 300.0 + rng.standard_normal(shape)
    return FieldSnapshot(
        u=make_field("u", u, ("x",)),
        v=make_field("v", v, ("y",)),
        w=make_field("w", w, ("z",)),
        p=make_field("p", p),
        scalar=make_field("th", th),
        time=0.0,
        visc=1.0e-3,
    )


def make_step_context(snapshot, grid, settings=None):
    """Per-step context with freshly recomputed means on a single process."""
    reduction = HorizontalReduction(SerialReducer())
    means = MeanProfiles()
    means.recompute(snapshot, reduction)
    return StepContext(grid=grid, means=means, reduction=reduction, settings=settings or BudgetSettings())
