"""
Tests for the dissipation estimator.
"""

import numpy as np
import pytest

from les_budget.core.core_types import BudgetSettings, Field, FieldSnapshot
from les_budget.budget.terms import DissipationTerm
from les_budget.budget.dissipation import compute_dissipation, velocity_gradient_tensor

from conftest import make_field, make_step_context


def _dissipation(snapshot, grid, form="strain", rtol=1e-10):
    ctx = make_step_context(snapshot, grid)
    term = DissipationTerm(
        snapshot.u, snapshot.v, snapshot.w, snapshot.visc, snapshot.evisc, form, rtol
    )
    return compute_dissipation(term, ctx), ctx


def _with_evisc(snapshot, shape, value):
    return FieldSnapshot(
        u=snapshot.u, v=snapshot.v, w=snapshot.w, p=snapshot.p,
        scalar=snapshot.scalar, time=snapshot.time, visc=0.0,
        evisc=make_field("evisc", np.full(shape, value)),
    )


class TestDissipationValues:
    """Known dissipation rates."""

    @pytest.mark.parametrize("form", ["strain", "pseudo"])
    def test_pattern_dissipation(self, grid, closure_case, form):
        """u' = a s(y), w' = b s(y): both forms give -nu (a^2 + b^2) / dy^2."""
        result, ctx = _dissipation(closure_case['snapshot'], grid, form=form)
        np.testing.assert_allclose(result['tke_diss'], closure_case['diss'], rtol=1e-10)
        assert not ctx.flags

    def test_components(self, grid, closure_case):
        result, _ = _dissipation(closure_case['snapshot'], grid)
        total = 0.5 * (result['u2_diss'] + result['v2_diss'] + result['w2_diss'])
        np.testing.assert_allclose(total, closure_case['diss'], rtol=1e-10)
        np.testing.assert_allclose(result['v2_diss'], 0.0, atol=1e-15)

    def test_gradient_tensor_shape(self, grid, random_snapshot):
        ctx = make_step_context(random_snapshot, grid)
        term = DissipationTerm(
            random_snapshot.u, random_snapshot.v, random_snapshot.w,
            random_snapshot.visc, None, "strain", 1e-10
        )
        grad = velocity_gradient_tensor(term, ctx)
        for row in grad:
            for component in row:
                assert component.shape == (grid.kmax, 8, 8)

    def test_eddy_viscosity_adds(self, grid, shape, random_snapshot):
        """Doubling the eddy viscosity doubles the dissipation."""
        single, _ = _dissipation(_with_evisc(random_snapshot, shape, 0.5), grid)
        double, _ = _dissipation(_with_evisc(random_snapshot, shape, 1.0), grid)
        np.testing.assert_allclose(double['tke_diss'], 2.0 * single['tke_diss'], rtol=1e-12)


class TestDissipationSign:
    """The published dissipation is never positive."""

    @pytest.mark.parametrize("form", ["strain", "pseudo"])
    def test_valid_input_is_non_positive(self, grid, random_snapshot, form):
        result, ctx = _dissipation(random_snapshot, grid, form=form)
        for name in ('tke_diss', 'u2_diss', 'v2_diss', 'w2_diss'):
            assert np.all(result[name] <= 0.0)
        assert not ctx.flags

    def test_inverted_raw_sign_is_flagged(self, grid, shape, random_snapshot):
        """Negative eddy viscosity inverts the raw contraction."""
        snapshot = _with_evisc(random_snapshot, shape, -0.2)
        result, ctx = _dissipation(snapshot, grid)

        assert np.all(result['tke_diss'] <= 0.0)
        assert np.all(result['tke_diss'] < 0.0)
        codes = {flag.code for flag in ctx.flags}
        assert codes == {"dissipation_sign"}
        tke_flags = [f for f in ctx.flags if f.message.startswith("tke_diss")]
        assert tke_flags[0].levels == list(range(grid.kmax))

    def test_non_finite_contraction_is_flagged(self, grid, random_snapshot):
        """An unpopulated corner cell reaches the cross derivatives."""
        data = random_snapshot.u.data.copy()
        data[:, 0, -1] = np.nan
        snapshot = FieldSnapshot(
            u=Field("u", data, stagger=("x",), halo=1), v=random_snapshot.v, w=random_snapshot.w,
            p=random_snapshot.p, scalar=random_snapshot.scalar,
            time=random_snapshot.time, visc=random_snapshot.visc,
        )
        result, ctx = _dissipation(snapshot, grid)

        assert np.isnan(result['tke_diss']).all()
        tke_flags = [f for f in ctx.flags if f.message.startswith("tke_diss")]
        assert tke_flags[0].code == "dissipation_sign"
        assert tke_flags[0].levels == list(range(grid.kmax))

    def test_published_magnitude_kept(self, grid, shape, random_snapshot):
        """Inverting nu_eff flips the raw sign but not the published value."""
        positive, _ = _dissipation(_with_evisc(random_snapshot, shape, 0.2), grid)
        negative, _ = _dissipation(_with_evisc(random_snapshot, shape, -0.2), grid)
        np.testing.assert_allclose(negative['tke_diss'], positive['tke_diss'], rtol=1e-12)

    def test_settings_select_form(self):
        assert BudgetSettings(dissipation_form="pseudo").dissipation_form == "pseudo"
