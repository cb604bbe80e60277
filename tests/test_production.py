"""
Tests for shear and buoyancy production.
"""

import numpy as np
import pytest

from les_budget.core.core_types import FieldSnapshot, ReferenceState
from les_budget.budget.terms import ShearTerm, BuoyancyTerm
from les_budget.budget.production import compute_shear_production, compute_buoyancy_production

from conftest import make_field, make_step_context, pattern


class TestShearProduction:
    """P_shear = -<u'w'> dU/dz - <v'w'> dV/dz"""

    def test_u_shear(self, grid, closure_case):
        snapshot = closure_case['snapshot']
        ctx = make_step_context(snapshot, grid)

        result = compute_shear_production(ShearTerm(snapshot.u, snapshot.v, snapshot.w), ctx)

        np.testing.assert_allclose(result['tke_shear'], closure_case['shear'], rtol=1e-10)
        np.testing.assert_allclose(result['u2_shear'], 2 * closure_case['shear'], rtol=1e-10)
        np.testing.assert_allclose(result['v2_shear'], 0.0, atol=1e-15)
        assert result['tke_shear'].shape == (grid.kmax,)

    def test_v_shear(self, grid, shape):
        """Fluctuations varying along x leave the y-staggered v centring exact."""
        S, a, b = -0.02, 0.4, 0.2
        s = pattern(shape[2])[None, None, :] * np.ones(shape)
        z = grid.z[:, None, None] * np.ones(shape)
        snapshot = FieldSnapshot(
            u=make_field("u", np.zeros(shape), ("x",)),
            v=make_field("v", S * z + a * s, ("y",)),
            w=make_field("w", b * s, ("z",)),
        )
        ctx = make_step_context(snapshot, grid)

        result = compute_shear_production(ShearTerm(snapshot.u, snapshot.v, snapshot.w), ctx)

        np.testing.assert_allclose(result['tke_shear'], -a * b * S, rtol=1e-10)
        np.testing.assert_allclose(result['v2_shear'], -2 * a * b * S, rtol=1e-10)

    def test_no_fluctuations_no_production(self, grid, shape):
        z = grid.z[:, None, None] * np.ones(shape)
        snapshot = FieldSnapshot(
            u=make_field("u", 0.01 * z**2, ("x",)),
            v=make_field("v", np.ones(shape), ("y",)),
            w=make_field("w", np.zeros(shape), ("z",)),
        )
        ctx = make_step_context(snapshot, grid)
        result = compute_shear_production(ShearTerm(snapshot.u, snapshot.v, snapshot.w), ctx)
        np.testing.assert_allclose(result['tke_shear'], 0.0, atol=1e-14)


class TestBuoyancyProduction:
    """P_buoy = (g / theta0) <w'theta'>"""

    @pytest.fixture
    def flux_fields(self, shape):
        b, c = 0.3, 0.5
        s = pattern(shape[1])[None, :, None] * np.ones(shape)
        return b, c, s

    def test_potential_temperature(self, grid, shape, flux_fields):
        b, c, s = flux_fields
        snapshot = FieldSnapshot(
            u=make_field("u", np.zeros(shape), ("x",)),
            v=make_field("v", np.zeros(shape), ("y",)),
            w=make_field("w", b * s, ("z",)),
            scalar=make_field("th", 300.0 + c * s),
        )
        ctx = make_step_context(snapshot, grid)
        reference = ReferenceState(theta0=300.0, g=9.81)

        result = compute_buoyancy_production(
            BuoyancyTerm(snapshot.w, snapshot.scalar, "th", reference), ctx
        )

        np.testing.assert_allclose(result['tke_buoy'], 9.81 / 300.0 * b * c, rtol=1e-10)
        np.testing.assert_allclose(result['w2_buoy'], 2 * 9.81 / 300.0 * b * c, rtol=1e-10)

    def test_stable_flux_is_a_sink(self, grid, shape, flux_fields):
        b, c, s = flux_fields
        snapshot = FieldSnapshot(
            u=make_field("u", np.zeros(shape), ("x",)),
            v=make_field("v", np.zeros(shape), ("y",)),
            w=make_field("w", b * s, ("z",)),
            scalar=make_field("th", 300.0 - c * s),
        )
        ctx = make_step_context(snapshot, grid)
        result = compute_buoyancy_production(
            BuoyancyTerm(snapshot.w, snapshot.scalar, "th", ReferenceState()), ctx
        )
        assert np.all(result['tke_buoy'] < 0)

    def test_buoyancy_field_has_unit_factor(self, grid, shape, flux_fields):
        b, c, s = flux_fields
        snapshot = FieldSnapshot(
            u=make_field("u", np.zeros(shape), ("x",)),
            v=make_field("v", np.zeros(shape), ("y",)),
            w=make_field("w", b * s, ("z",)),
            scalar=make_field("buoyancy", c * s),
            scalar_kind="b",
        )
        ctx = make_step_context(snapshot, grid)
        result = compute_buoyancy_production(
            BuoyancyTerm(snapshot.w, snapshot.scalar, "b", ReferenceState()), ctx
        )
        np.testing.assert_allclose(result['tke_buoy'], b * c, rtol=1e-10)

    def test_reference_profile(self, grid, shape, flux_fields):
        """theta0 may vary with height."""
        b, c, s = flux_fields
        theta0 = np.linspace(290.0, 310.0, grid.kmax)
        snapshot = FieldSnapshot(
            u=make_field("u", np.zeros(shape), ("x",)),
            v=make_field("v", np.zeros(shape), ("y",)),
            w=make_field("w", b * s, ("z",)),
            scalar=make_field("th", 300.0 + c * s),
        )
        ctx = make_step_context(snapshot, grid)
        result = compute_buoyancy_production(
            BuoyancyTerm(snapshot.w, snapshot.scalar, "th", ReferenceState(theta0=theta0)), ctx
        )
        np.testing.assert_allclose(result['tke_buoy'], 9.81 / theta0 * b * c, rtol=1e-10)
