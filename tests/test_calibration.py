from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from multicurve_engine.bundles import MultiCurveBundle, SingleCurveBundle
from multicurve_engine.calculators import (
    par_spread_market_quote,
    par_spread_market_quote_sensitivity,
    rates_initialization,
)
from multicurve_engine.calibration import (
    CalibrationOrchestrator,
    CurveRoles,
    MulticurveGenerator,
    UnitCalibrator,
    repricing_report,
)
from multicurve_engine.config import CalibrationSettings
from multicurve_engine.curves import DiscountCurve, SpreadYieldCurve, YieldCurve
from multicurve_engine.errors import (
    CalibrationConfigurationError,
    ConvergenceError,
    DependencyOrderError,
    SingularSystemError,
)
from multicurve_engine.generators import (
    InterpolatedDiscountCurveGenerator,
    InterpolatedYieldCurveGenerator,
    SpreadYieldCurveGenerator,
)
from multicurve_engine.instruments import make_fx_swap
from multicurve_engine.provider import FxMatrix, MulticurveProvider
from multicurve_engine.rootfinding import BroydenVectorRootFinder, RootResult
from multicurve_engine.utils import add_months

OIS = "USD-OIS"
LIBOR = "USD-LIBOR-3M"


class SpyRootFinder:
    def __init__(self):
        self.calls = 0

    def solve(self, function, jacobian, start):
        self.calls += 1
        raise AssertionError("root finder must not be called")


class RecordingRootFinder(BroydenVectorRootFinder):
    def __init__(self):
        super().__init__()
        self.results = []

    def solve(self, function, jacobian, start):
        result = super().solve(function, jacobian, start)
        self.results.append(result)
        return result


class GuessRootFinder:
    """Accepts the starting point as the root."""

    def solve(self, function, jacobian, start):
        return RootResult(np.asarray(start, dtype=float), 0)


def _bundle(name, instruments, generator):
    return SingleCurveBundle.from_instruments(name, instruments, generator)


@pytest.fixture(scope="module")
def roles(fed_funds, libor3m):
    return {
        "discounting_map": {OIS: "USD"},
        "forward_on_map": {OIS: [fed_funds]},
        "forward_ibor_map": {LIBOR: [libor3m]},
    }


@pytest.fixture(scope="module")
def ois_unit(ois_instruments):
    return MultiCurveBundle([_bundle(OIS, ois_instruments, InterpolatedDiscountCurveGenerator())])


@pytest.fixture(scope="module")
def libor_unit(libor_instruments):
    return MultiCurveBundle([_bundle(LIBOR, libor_instruments, InterpolatedYieldCurveGenerator())])


@pytest.fixture(scope="module")
def two_units(ois_unit, libor_unit, roles):
    known = MulticurveProvider()
    provider, bundle = CalibrationOrchestrator().make_curves_from_bundles([ois_unit, libor_unit], known, **roles)
    return known, provider, bundle


@pytest.fixture(scope="module")
def ois_only(ois_unit, roles):
    return CalibrationOrchestrator().make_curves_from_bundles([ois_unit], MulticurveProvider(), **roles)


# ---------- single unit ----------

def test_zero_rate_deposits_converge_immediately(deposit_factory):
    deposits = deposit_factory([(1, 0.0), (3, 0.0), (6, 0.0), (12, 0.0)])
    finder = RecordingRootFinder()
    orchestrator = CalibrationOrchestrator(root_finder=finder)
    provider, bundle = orchestrator.make_curves_from_derivatives(
        [[deposits]],
        [[InterpolatedYieldCurveGenerator()]],
        [["USD-DSC"]],
        [np.zeros(4)],
        MulticurveProvider(),
        {"USD-DSC": "USD"},
    )
    curve = provider.curve("USD-DSC")
    assert [r.iterations for r in finder.results] == [0]
    assert curve.df(0.0) == 1.0
    assert np.allclose(curve.parameters, 0.0)
    assert all(abs(par_spread_market_quote(d, provider)) < 1e-12 for d in deposits)
    assert bundle.get_block("USD-DSC")[1].shape == (4, 4)


def test_mismatched_guess_fails_before_root_finding(deposit_factory):
    deposits = deposit_factory([(1, 0.01), (3, 0.01), (6, 0.01)])
    spy = SpyRootFinder()
    with pytest.raises(CalibrationConfigurationError):
        CalibrationOrchestrator(root_finder=spy).make_curves_from_derivatives(
            [[deposits]],
            [[InterpolatedYieldCurveGenerator()]],
            [["USD-DSC"]],
            [[0.01, 0.01]],
            MulticurveProvider(),
            {"USD-DSC": "USD"},
        )
    assert spy.calls == 0


def test_mismatched_unit_counts_fail(deposit_factory):
    deposits = deposit_factory([(1, 0.01)])
    with pytest.raises(CalibrationConfigurationError):
        CalibrationOrchestrator(root_finder=SpyRootFinder()).make_curves_from_derivatives(
            [[deposits]],
            [[InterpolatedYieldCurveGenerator()], [InterpolatedYieldCurveGenerator()]],
            [["USD-DSC"]],
            [[0.01]],
            MulticurveProvider(),
            {"USD-DSC": "USD"},
        )


def test_duplicate_curve_names_fail(deposit_factory):
    a = deposit_factory([(1, 0.01)])
    b = deposit_factory([(3, 0.01)])
    units = [
        MultiCurveBundle([_bundle("USD-DSC", a, InterpolatedYieldCurveGenerator())]),
        MultiCurveBundle([_bundle("USD-DSC", b, InterpolatedYieldCurveGenerator())]),
    ]
    with pytest.raises(CalibrationConfigurationError, match="twice"):
        CalibrationOrchestrator(root_finder=SpyRootFinder()).make_curves_from_bundles(
            units, MulticurveProvider(), {"USD-DSC": "USD"}
        )


def test_duplicate_instruments_are_singular(deposit_factory):
    deposits = deposit_factory([(1, 0.01), (3, 0.012), (3, 0.012)])
    with pytest.raises(SingularSystemError) as info:
        CalibrationOrchestrator().make_curves_from_derivatives(
            [[deposits]],
            [[InterpolatedYieldCurveGenerator()]],
            [["USD-DSC"]],
            [[0.01, 0.012, 0.012]],
            MulticurveProvider(),
            {"USD-DSC": "USD"},
        )
    assert info.value.unit == 0
    assert info.value.curve_names == ("USD-DSC",)


def test_singular_block_jacobian_names_the_unit(deposit_factory):
    # the root finder accepts the guess, so only the block inverse sees the duplicate
    deposits = deposit_factory([(1, 0.01), (3, 0.012), (3, 0.012)])
    with pytest.raises(SingularSystemError) as info:
        CalibrationOrchestrator(root_finder=GuessRootFinder()).make_curves_from_derivatives(
            [[deposits]],
            [[InterpolatedYieldCurveGenerator()]],
            [["USD-DSC"]],
            [[0.01, 0.012, 0.012]],
            MulticurveProvider(),
            {"USD-DSC": "USD"},
        )
    assert info.value.unit == 0
    assert info.value.curve_names == ("USD-DSC",)


def test_step_budget_exhaustion_names_the_unit(ois_unit, roles):
    orchestrator = CalibrationOrchestrator(CalibrationSettings(max_steps=1))
    with pytest.raises(ConvergenceError) as info:
        orchestrator.make_curves_from_bundles([ois_unit], MulticurveProvider(), **roles)
    assert info.value.unit == 0
    assert info.value.curve_names == (OIS,)


# ---------- two units: OIS discounting then LIBOR projection ----------

def test_all_instruments_reprice(two_units, ois_instruments, libor_instruments):
    _, provider, _ = two_units
    report = repricing_report(provider, {OIS: ois_instruments, LIBOR: libor_instruments})
    assert len(report) == len(ois_instruments) + len(libor_instruments)
    assert (report["residual"].abs() < 1e-9).all()
    assert set(report["curve"]) == {OIS, LIBOR}


def test_provider_roles(two_units, fed_funds, libor3m):
    _, provider, _ = two_units
    assert isinstance(provider.discount_curve("USD"), DiscountCurve)
    assert provider.forward_curve(fed_funds).name == OIS
    assert provider.forward_curve(libor3m).name == LIBOR


def test_first_unit_unchanged_by_second(two_units, ois_only):
    _, provider, _ = two_units
    alone, _ = ois_only
    assert np.allclose(provider.curve(OIS).parameters, alone.curve(OIS).parameters, atol=1e-14)


def test_merge_invariant(two_units, ois_only):
    _, provider, _ = two_units
    alone, _ = ois_only
    assert alone.curve_names == [OIS]
    assert set(provider.curve_names) == {OIS, LIBOR}


def test_known_data_is_not_mutated(two_units):
    known, _, _ = two_units
    assert known.curve_names == []


def test_seeded_known_data_is_not_mutated(ois_unit, libor_unit, roles):
    eur = YieldCurve("EUR-DSC", [1.0], [0.02])
    fx = FxMatrix("USD")
    fx.add_currency("EUR", "USD", 1.10)
    known = MulticurveProvider({"EUR": eur}, fx_matrix=fx)

    provider, _ = CalibrationOrchestrator().make_curves_from_bundles([ois_unit, libor_unit], known, **roles)

    assert known.curve_names == ["EUR-DSC"]
    assert known.discount_curve("EUR") is eur
    assert not known.has_curve(OIS)
    assert not known.has_curve(LIBOR)
    with pytest.raises(KeyError):
        known.discount_curve("USD")
    assert known.fx_matrix is fx
    assert fx.currencies == ["USD", "EUR"]
    assert fx.rate("EUR", "USD") == pytest.approx(1.10)

    assert set(provider.curve_names) == {"EUR-DSC", OIS, LIBOR}
    assert provider.discount_curve("EUR") is eur
    assert provider.fx_rate("EUR", "USD") == pytest.approx(1.10)


def test_bundle_shapes_and_partition(two_units, ois_instruments, libor_instruments):
    _, provider, bundle = two_units
    assert bundle.names == [OIS, LIBOR]

    n_ois, n_libor = len(ois_instruments), len(libor_instruments)
    ois_block, ois_matrix = bundle.get_block(OIS)
    libor_block, libor_matrix = bundle.get_block(LIBOR)

    assert ois_matrix.shape == (n_ois, n_ois)
    assert libor_matrix.shape == (n_libor, n_ois + n_libor)
    assert ois_block.total_parameters == n_ois
    assert libor_block.names == [OIS, LIBOR]

    frame = libor_block.to_frame().sort_values("start")
    assert frame["start"].iloc[0] == 0
    assert list(frame["start"].iloc[1:]) == list(frame["end"].iloc[:-1])
    assert frame["end"].iloc[-1] == libor_block.total_parameters


def _bumped(curve, k, h):
    if isinstance(curve, DiscountCurve):
        values = curve.node_log_dfs.copy()
        values[k] += h
        return replace(curve, node_log_dfs=values)
    values = curve.node_rates.copy()
    values[k] += h
    return replace(curve, node_rates=values)


def test_bundle_inverts_finite_difference_jacobian(two_units, ois_instruments, libor_instruments):
    _, provider, bundle = two_units
    instruments = ois_instruments + libor_instruments
    n_ois = len(ois_instruments)
    n = len(instruments)

    h = 1e-6
    jac = np.zeros((n, n))
    column = 0
    for name in [OIS, LIBOR]:
        curve = provider.curve(name)
        for k in range(curve.n_parameters):
            up = provider.copy()
            up.replace_curve(_bumped(curve, k, h))
            dn = provider.copy()
            dn.replace_curve(_bumped(curve, k, -h))
            jac[:, column] = [
                (par_spread_market_quote(i, up) - par_spread_market_quote(i, dn)) / (2 * h) for i in instruments
            ]
            column += 1

    ois_rows = np.hstack([bundle.get_block(OIS)[1], np.zeros((n_ois, n - n_ois))])
    inverse = np.vstack([ois_rows, bundle.get_block(LIBOR)[1]])
    assert np.allclose(inverse @ jac, np.eye(n), atol=1e-5)


def test_calibration_is_deterministic(ois_unit, libor_unit, roles):
    runs = [
        CalibrationOrchestrator().make_curves_from_bundles([ois_unit, libor_unit], MulticurveProvider(), **roles)
        for _ in range(2)
    ]
    for name in [OIS, LIBOR]:
        assert np.array_equal(runs[0][0].curve(name).parameters, runs[1][0].curve(name).parameters)
        assert np.array_equal(runs[0][1].get_block(name)[1], runs[1][1].get_block(name)[1])


def test_explicit_arrays_match_bundles(two_units, ois_unit, libor_unit, roles, ois_instruments, libor_instruments):
    _, provider, bundle = two_units
    explicit, explicit_bundle = CalibrationOrchestrator().make_curves_from_derivatives(
        [[ois_instruments], [libor_instruments]],
        [[InterpolatedDiscountCurveGenerator()], [InterpolatedYieldCurveGenerator()]],
        [[OIS], [LIBOR]],
        [ois_unit.starting_point, libor_unit.starting_point],
        MulticurveProvider(),
        **roles,
    )
    for name in [OIS, LIBOR]:
        assert np.allclose(explicit.curve(name).parameters, provider.curve(name).parameters)
        assert np.allclose(explicit_bundle.get_block(name)[1], bundle.get_block(name)[1])


def test_chained_blocks_share_one_bundle(ois_only, libor_unit, roles):
    provider, ois_bundle = ois_only
    final, bundle = CalibrationOrchestrator().make_curves_from_bundles(
        [libor_unit], provider, known_block_bundle=ois_bundle, **roles
    )
    assert bundle.names == [OIS, LIBOR]
    # the OIS curve is known data here, so the LIBOR block only spans LIBOR parameters
    assert bundle.get_block(LIBOR)[0].names == [LIBOR]
    assert set(final.curve_names) == {OIS, LIBOR}


# ---------- spread curves and dependency order ----------

@pytest.fixture(scope="module")
def spread_units(ois_instruments, libor_instruments):
    base = _bundle(OIS, ois_instruments, InterpolatedDiscountCurveGenerator())
    spread = _bundle(LIBOR, libor_instruments, SpreadYieldCurveGenerator(OIS))
    return base, spread


def test_spread_curve_over_earlier_unit(spread_units, roles, libor_instruments):
    base, spread = spread_units
    provider, bundle = CalibrationOrchestrator().make_curves_from_bundles(
        [MultiCurveBundle([base]), MultiCurveBundle([spread])], MulticurveProvider(), **roles
    )
    libor = provider.curve(LIBOR)
    assert isinstance(libor, SpreadYieldCurve)
    assert libor.base is provider.curve(OIS)
    assert all(abs(par_spread_market_quote(i, provider)) < 1e-9 for i in libor_instruments)

    block, matrix = bundle.get_block(LIBOR)
    # dependency on the base curve shows up in the OIS columns
    assert np.any(np.abs(matrix[:, block.slice(OIS)]) > 1e-8)


def test_spread_curve_in_same_unit_after_base(spread_units, roles, ois_instruments, libor_instruments):
    base, spread = spread_units
    provider, bundle = CalibrationOrchestrator().make_curves_from_bundles(
        [MultiCurveBundle([base, spread])], MulticurveProvider(), **roles
    )
    for i in ois_instruments + libor_instruments:
        assert abs(par_spread_market_quote(i, provider)) < 1e-9
    assert bundle.get_block(OIS)[0] is bundle.get_block(LIBOR)[0]


def test_spread_curve_before_its_base_is_rejected(spread_units, roles):
    base, spread = spread_units
    spy = SpyRootFinder()
    orchestrator = CalibrationOrchestrator(root_finder=spy)
    with pytest.raises(DependencyOrderError) as info:
        orchestrator.make_curves_from_bundles(
            [MultiCurveBundle([spread]), MultiCurveBundle([base])], MulticurveProvider(), **roles
        )
    assert info.value.unit == 0
    assert info.value.curve_names == (LIBOR,)

    with pytest.raises(DependencyOrderError):
        orchestrator.make_curves_from_bundles([MultiCurveBundle([spread, base])], MulticurveProvider(), **roles)
    assert spy.calls == 0


def test_units_in_reverse_order_are_rejected(ois_unit, libor_unit, roles):
    # LIBOR swaps discount on the OIS curve, which is only built by the second unit
    spy = SpyRootFinder()
    with pytest.raises(DependencyOrderError) as info:
        CalibrationOrchestrator(root_finder=spy).make_curves_from_bundles(
            [libor_unit, ois_unit], MulticurveProvider(), **roles
        )
    assert info.value.unit == 0
    assert info.value.curve_names == (LIBOR,)
    assert "USD" in str(info.value)
    assert spy.calls == 0


def test_unit_calibrator_reports_missing_curves(libor_instruments, roles):
    generator = MulticurveGenerator(
        MulticurveProvider(),
        [(LIBOR, InterpolatedYieldCurveGenerator().finalize(list(libor_instruments)))],
        CurveRoles.of(**roles),
    )
    calibrator = UnitCalibrator(BroydenVectorRootFinder(), par_spread_market_quote, par_spread_market_quote_sensitivity)
    with pytest.raises(DependencyOrderError) as info:
        calibrator.calibrate(3, generator, libor_instruments, np.full(len(libor_instruments), 0.04))
    assert info.value.unit == 3
    assert info.value.curve_names == (LIBOR,)
    assert isinstance(info.value.__cause__, KeyError)


def test_spread_curve_over_known_data(ois_only, spread_units, roles, libor_instruments):
    provider, _ = ois_only
    _, spread = spread_units
    final, bundle = CalibrationOrchestrator().make_curves_from_bundles([MultiCurveBundle([spread])], provider, **roles)
    assert all(abs(par_spread_market_quote(i, final)) < 1e-9 for i in libor_instruments)
    assert bundle.get_block(LIBOR)[1].shape == (len(libor_instruments), len(libor_instruments))


# ---------- FX-implied curve ----------

def test_fx_implied_curve(val_date):
    usd = YieldCurve("USD-DSC", [1.0], [0.03])
    fx = FxMatrix("USD")
    fx.add_currency("EUR", "USD", 1.10)
    known = MulticurveProvider({"USD": usd}, fx_matrix=fx)

    spot = val_date + pd.Timedelta(days=2)
    swaps = []
    for months in [3, 6, 12, 24]:
        draft = make_fx_swap(val_date, "USD", "EUR", spot, add_months(spot, months), 0.0)
        points = 1.10 * (
            np.exp((0.03 - 0.02) * draft.far_time) - np.exp((0.03 - 0.02) * draft.near_time)
        )
        swaps.append(replace(draft, forward_points=points))

    guess = [rates_initialization(s) for s in swaps]
    provider, _ = CalibrationOrchestrator().make_curves_from_derivatives(
        [[swaps]],
        [[InterpolatedYieldCurveGenerator()]],
        [["EUR-FX"]],
        [guess],
        known,
        {"EUR-FX": "EUR"},
    )
    eur = provider.discount_curve("EUR")
    assert eur.name == "EUR-FX"
    assert np.allclose(eur.parameters, 0.02, atol=1e-8)
