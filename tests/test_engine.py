"""
Tests for the budget engine: closure, storage history, preconditions and
publication.
"""

import numpy as np
import pytest

from les_budget.core.core_types import BudgetSettings, Field, FieldSnapshot, ReferenceState
from les_budget.core.exceptions import (
    ExtentMismatchError,
    LESBudgetError,
    MissingHaloError,
    ParameterError,
    StaggerMismatchError,
)
from les_budget.reduction.reducer import SerialReducer
from les_budget.budget import (
    TERM_KINDS,
    BudgetContext,
    build_terms,
    compute_budget,
    get_registry,
    get_term_metadata,
    list_budget_terms,
)
from les_budget.io.sink import DatasetSink, ProfileSink

from conftest import make_field


class FailingSink(ProfileSink):
    """Sink whose storage backend is unavailable."""

    def publish(self, result):
        raise IOError("statistics file not writable")


def _replace(snapshot, **changes):
    values = dict(
        u=snapshot.u, v=snapshot.v, w=snapshot.w, p=snapshot.p,
        scalar=snapshot.scalar, scalar_kind=snapshot.scalar_kind,
        evisc=snapshot.evisc, visc=snapshot.visc, time=snapshot.time,
        tke_tendency=snapshot.tke_tendency,
    )
    values.update(changes)
    return FieldSnapshot(**values)


class TestBudgetClosure:
    """Sum of the terms equals the independently known tendency."""

    def test_closes_for_analytic_flow(self, grid, closure_case):
        context = BudgetContext()
        result = compute_budget(closure_case['snapshot'], grid, context, SerialReducer())

        np.testing.assert_allclose(result['tke_shear'], closure_case['shear'], rtol=1e-10)
        np.testing.assert_allclose(result['tke_diss'], closure_case['diss'], rtol=1e-10)
        np.testing.assert_allclose(result['tke'], closure_case['tke'], rtol=1e-12)
        for name in ('tke_buoy', 'tke_turb', 'tke_visc', 'tke_pres'):
            np.testing.assert_allclose(result[name], 0.0, atol=1e-14)

        terms = sum(result[name] for name in
                    ('tke_shear', 'tke_buoy', 'tke_turb', 'tke_visc', 'tke_pres', 'tke_diss'))
        np.testing.assert_allclose(terms, result['tke_storage'], rtol=1e-9)
        assert result.closed
        assert not result.suspect

    def test_wrong_tendency_is_flagged_but_published(self, grid, closure_case):
        snapshot = _replace(closure_case['snapshot'], tke_tendency=np.zeros(grid.kmax))
        sink = DatasetSink()
        result = compute_budget(snapshot, grid, BudgetContext(), SerialReducer(), sink=sink)

        assert not result.closed
        assert result.suspect
        assert [f.code for f in result.flags] == ["budget_not_closed"]
        np.testing.assert_allclose(result['tke_residual'], -(closure_case['shear'] + closure_case['diss']))
        assert len(sink) == 1
        assert bool(sink.dataset['suspect'].values[0])

    def test_non_finite_residual_is_flagged(self, grid, closure_case):
        tendency = closure_case['snapshot'].tke_tendency.copy()
        tendency[2] = np.nan
        snapshot = _replace(closure_case['snapshot'], tke_tendency=tendency)
        result = compute_budget(snapshot, grid, BudgetContext(), SerialReducer())

        assert not result.closed
        flag = result.flags[0]
        assert flag.code == "budget_not_closed"
        assert flag.levels == [2]

    def test_profiles_share_evaluation_levels(self, grid, random_snapshot):
        result = compute_budget(random_snapshot, grid, BudgetContext(), SerialReducer())
        assert set(result.profiles) == set(list_budget_terms())
        for profile in result.profiles.values():
            assert profile.shape == (grid.kmax,)
        np.testing.assert_array_equal(result.z, grid.z_interior)


class TestStorage:
    """Storage from the history kept in the context."""

    def test_first_step_has_no_storage(self, grid, random_snapshot):
        context = BudgetContext()
        result = compute_budget(random_snapshot, grid, context, SerialReducer())

        assert np.all(np.isnan(result['tke_storage']))
        assert result.closed
        assert context.steps == 1
        np.testing.assert_array_equal(context.previous_tke, result['tke'])
        assert context.previous_time == random_snapshot.time

    def test_storage_from_previous_step(self, grid, random_snapshot):
        context = BudgetContext()
        first = compute_budget(random_snapshot, grid, context, SerialReducer())

        scaled = _replace(
            random_snapshot,
            u=Field("u", 2.0 * random_snapshot.u.data, stagger=("x",), halo=1),
            v=Field("v", 2.0 * random_snapshot.v.data, stagger=("y",), halo=1),
            w=Field("w", 2.0 * random_snapshot.w.data, stagger=("z",), halo=1),
            time=random_snapshot.time + 10.0,
        )
        second = compute_budget(scaled, grid, context, SerialReducer())

        np.testing.assert_allclose(second['tke'], 4.0 * first['tke'], rtol=1e-12)
        np.testing.assert_allclose(second['tke_storage'], 3.0 * first['tke'] / 10.0, rtol=1e-10)
        assert context.steps == 2

    def test_time_must_advance(self, grid, random_snapshot):
        context = BudgetContext()
        compute_budget(random_snapshot, grid, context, SerialReducer())
        with pytest.raises(ParameterError):
            compute_budget(random_snapshot, grid, context, SerialReducer())
        assert context.steps == 1

    def test_supplied_tendency_wins(self, grid, random_snapshot):
        tendency = np.linspace(-1e-3, 1e-3, grid.kmax)
        snapshot = _replace(random_snapshot, tke_tendency=tendency)
        result = compute_budget(snapshot, grid, BudgetContext(), SerialReducer())
        np.testing.assert_array_equal(result['tke_storage'], tendency)


class TestPreconditions:
    """A failed precondition aborts the step before anything is published."""

    def _assert_nothing_published(self, snapshot, grid, error, **kwargs):
        context = BudgetContext()
        sink = DatasetSink()
        with pytest.raises(error):
            compute_budget(snapshot, grid, context, SerialReducer(), sink=sink, **kwargs)
        assert len(sink) == 0
        assert context.steps == 0
        assert context.previous_tke is None

    def test_unpopulated_halo(self, grid, random_snapshot):
        data = random_snapshot.v.data.copy()
        data[:, 0, :] = np.nan
        snapshot = _replace(random_snapshot, v=Field("v", data, stagger=("y",), halo=1))
        self._assert_nothing_published(snapshot, grid, MissingHaloError)

    def test_unpopulated_halo_corner(self, grid, random_snapshot):
        """Cross derivatives read the corner cells next to the interior."""
        data = random_snapshot.u.data.copy()
        data[:, 0, -1] = np.nan
        snapshot = _replace(random_snapshot, u=Field("u", data, stagger=("x",), halo=1))
        self._assert_nothing_published(snapshot, grid, MissingHaloError)

    def test_unpopulated_vertical_edge(self, grid, random_snapshot):
        data = random_snapshot.w.data.copy()
        data[0, 0, 3] = np.nan
        snapshot = _replace(random_snapshot, w=Field("w", data, stagger=("z",), halo=1))
        self._assert_nothing_published(snapshot, grid, MissingHaloError)

    def test_sink_failure_leaves_context(self, grid, random_snapshot):
        context = BudgetContext()
        with pytest.raises(IOError):
            compute_budget(random_snapshot, grid, context, SerialReducer(), sink=FailingSink())
        assert context.steps == 0
        assert context.previous_tke is None
        assert not context.means.profiles

        # Retrying the step is still a first step
        result = compute_budget(random_snapshot, grid, context, SerialReducer(), sink=DatasetSink())
        assert np.all(np.isnan(result['tke_storage']))
        assert context.steps == 1

    def test_missing_halo(self, grid, random_snapshot):
        data = random_snapshot.u.data[:, :, 1:]
        u = Field("u", data, stagger=("x",), halo={"z": 1, "y": 1, "x": (0, 1)})
        snapshot = _replace(random_snapshot, u=u)
        self._assert_nothing_published(snapshot, grid, MissingHaloError)

    def test_vertical_extent_mismatch(self, grid, random_snapshot):
        snapshot = _replace(
            random_snapshot,
            p=Field("p", random_snapshot.p.data[:-1], halo=1),
        )
        self._assert_nothing_published(snapshot, grid, ExtentMismatchError)

    def test_horizontal_extent_mismatch(self, grid, random_snapshot):
        snapshot = _replace(
            random_snapshot,
            scalar=Field("th", random_snapshot.scalar.data[:, :-1], halo=1),
        )
        self._assert_nothing_published(snapshot, grid, ExtentMismatchError)

    def test_wrong_stagger(self, grid, random_snapshot):
        snapshot = _replace(
            random_snapshot,
            w=Field("w", random_snapshot.w.data, stagger=(), halo=1),
        )
        self._assert_nothing_published(snapshot, grid, StaggerMismatchError)

    def test_tendency_length(self, grid, random_snapshot):
        snapshot = _replace(random_snapshot, tke_tendency=np.zeros(grid.kmax + 1))
        self._assert_nothing_published(snapshot, grid, ExtentMismatchError)

    def test_reference_profile_length(self, grid, random_snapshot):
        reference = ReferenceState(theta0=np.full(grid.kmax - 1, 300.0))
        self._assert_nothing_published(random_snapshot, grid, ExtentMismatchError, reference=reference)


class TestTermDispatch:
    """Closed set of term variants."""

    def test_registry_covers_all_kinds(self):
        registry = get_registry()
        registry.check_complete()
        assert registry.list_all() == list(TERM_KINDS)

    def test_optional_terms_left_out(self, grid, closure_case):
        snapshot = _replace(closure_case['snapshot'], p=None, scalar=None)
        kinds = [term.kind for term in build_terms(snapshot, ReferenceState(), BudgetSettings())]
        assert kinds == ["shear", "transport", "dissipation", "storage"]

        result = compute_budget(snapshot, grid, BudgetContext(), SerialReducer())
        assert 'tke_pres' not in result and 'tke_buoy' not in result
        assert result.closed

    def test_unregistered_profile_rejected(self, grid, closure_case, monkeypatch):
        definition = get_registry().get("storage")
        monkeypatch.setattr(
            definition, "compute_func",
            lambda term, ctx: {"tke_extra": np.zeros(grid.kmax)}
        )
        context = BudgetContext()
        with pytest.raises(LESBudgetError, match="tke_extra"):
            compute_budget(closure_case['snapshot'], grid, context, SerialReducer())
        assert context.steps == 0

    def test_metadata(self):
        metadata = get_term_metadata('tke_shear')
        assert metadata['units'] == 'm2 s-3'
        assert metadata['term'] == 'shear'
        assert get_term_metadata('tke_residual')['term'] == 'closure'
        with pytest.raises(KeyError):
            get_term_metadata('no_such_profile')


class TestOutput:
    """Conversion to xarray."""

    def test_dataset_attributes(self, grid, closure_case):
        result = compute_budget(closure_case['snapshot'], grid, BudgetContext(), SerialReducer())
        ds = result.to_dataset()

        assert ds['tke_shear'].dims == ('z',)
        assert ds['tke_shear'].attrs['long_name'] == 'TKE shear production'
        np.testing.assert_array_equal(ds['z'].values, grid.z_interior)
        assert ds.attrs['consistency_flags'] == ""

    def test_sink_collects_steps(self, grid, random_snapshot):
        context = BudgetContext()
        sink = DatasetSink()
        compute_budget(random_snapshot, grid, context, SerialReducer(), sink=sink)
        later = _replace(random_snapshot, time=random_snapshot.time + 60.0)
        compute_budget(later, grid, context, SerialReducer(), sink=sink)

        ds = sink.dataset
        assert ds.sizes['time'] == 2
        np.testing.assert_array_equal(ds['time'].values, [0.0, 60.0])
        np.testing.assert_allclose(ds['tke_storage'].isel(time=1), 0.0, atol=1e-15)


class TestSettings:
    """Ini-style configuration."""

    def test_from_mapping(self):
        settings = BudgetSettings.from_mapping({
            "swbudget": "0",
            "sampletime": "300",
            "dissipation_form": "Pseudo",
        })
        assert settings.enabled is False
        assert settings.sampletime == 300.0
        assert settings.dissipation_form == "pseudo"

    def test_unknown_key_rejected(self):
        with pytest.raises(ParameterError):
            BudgetSettings.from_mapping({"swbudgte": "1"})

    def test_invalid_values_rejected(self):
        with pytest.raises(ParameterError):
            BudgetSettings.from_mapping({"sampletime": "-5"})
        with pytest.raises(ParameterError):
            BudgetSettings.from_mapping({"dissipation_form": "smagorinsky"})
        with pytest.raises(ParameterError):
            BudgetSettings.from_mapping({"swbudget": "maybe"})
