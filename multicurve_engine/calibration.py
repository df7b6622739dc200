"""
Multi-curve calibration.

Curves are calibrated unit by unit. A unit is one or more curves solved
jointly against the concatenation of their instruments; later units see
the curves of earlier units as known data. After every unit the analytic
Jacobian of all instruments solved so far is rebuilt over all parameters
solved so far, inverted, and the rows of the unit's curves are stored in a
CurveBuildingBlockBundle for market-quote risk.
"""
from __future__ import annotations

import logging
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .building_blocks import CurveBuildingBlock, CurveBuildingBlockBundle
from .bundles import MultiCurveBundle
from .calculators import par_spread_market_quote, par_spread_market_quote_sensitivity
from .config import CalibrationSettings
from .errors import CalibrationConfigurationError, CalibrationError, DependencyOrderError
from .indices import IborIndex, OvernightIndex
from .linalg import MatrixAlgebra
from .provider import MulticurveProvider
from .rootfinding import BroydenVectorRootFinder
from .sensitivity import ParameterSensitivityMatrixCalculator, SensitivityCalculator

logger = logging.getLogger(__name__)

ValueCalculator = Callable[[object, MulticurveProvider], float]


@dataclass(frozen=True)
class CurveRoles:
    """Where calibrated curves go in the provider, by curve name."""
    discounting: Mapping[str, str]
    forward_ibor: Mapping[str, Sequence[IborIndex]]
    forward_on: Mapping[str, Sequence[OvernightIndex]]

    @classmethod
    def of(cls, discounting_map=None, forward_ibor_map=None, forward_on_map=None) -> "CurveRoles":
        return cls(dict(discounting_map or {}), dict(forward_ibor_map or {}), dict(forward_on_map or {}))

    def store(self, provider: MulticurveProvider, curve) -> None:
        ccy = self.discounting.get(curve.name)
        provider.set_curve(
            curve,
            currencies=(ccy,) if ccy is not None else (),
            ibor_indices=self.forward_ibor.get(curve.name, ()),
            overnight_indices=self.forward_on.get(curve.name, ()),
        )


class MulticurveGenerator:
    """
    Builds a provider from one flat parameter vector: a copy of the known
    data plus one curve per generator, evaluated in order so a curve can use
    the ones before it.
    """

    def __init__(self, known_data: MulticurveProvider, generators: Sequence[Tuple[str, object]], roles: CurveRoles):
        self.known_data = known_data
        self.generators = list(generators)
        self.roles = roles
        self.layout = CurveBuildingBlock.from_sizes((name, g.n_parameters) for name, g in self.generators)

    @property
    def curve_names(self) -> List[str]:
        return [name for name, _ in self.generators]

    def evaluate(self, parameters) -> MulticurveProvider:
        parameters = np.asarray(parameters, dtype=float)
        if parameters.shape != (self.layout.total_parameters,):
            raise CalibrationConfigurationError(
                f"Expected {self.layout.total_parameters} parameters, got shape {parameters.shape}"
            )
        provider = self.known_data.copy()
        for name, generator in self.generators:
            curve = generator.evaluate(parameters[self.layout.slice(name)], name, provider)
            self.roles.store(provider, curve)
        return provider


class UnitCalibrator:
    """Solves one unit: par spreads of its instruments driven to zero."""

    def __init__(self, root_finder, calculator: ValueCalculator, sensitivity_calculator: SensitivityCalculator):
        self.root_finder = root_finder
        self.calculator = calculator
        self.matrix_calculator = ParameterSensitivityMatrixCalculator(sensitivity_calculator)

    def calibrate(
        self,
        unit: int,
        generator: MulticurveGenerator,
        instruments: Sequence,
        initial_guess: np.ndarray,
    ) -> Tuple[MulticurveProvider, np.ndarray, int]:
        """Calibrated provider, root and the number of root-finder iterations."""
        names = generator.curve_names
        n = generator.layout.total_parameters
        if len(instruments) != n or len(initial_guess) != n:
            raise CalibrationConfigurationError(
                f"{len(instruments)} instruments, {len(initial_guess)} initial values and {n} parameters",
                unit=unit,
                curve_names=names,
            )

        def function(x):
            provider = generator.evaluate(x)
            return np.array([self.calculator(instrument, provider) for instrument in instruments], dtype=float)

        def jacobian(x):
            return self.matrix_calculator.matrix(instruments, generator.evaluate(x), generator.layout)

        try:
            x, iterations = self.root_finder.solve(function, jacobian, np.asarray(initial_guess, dtype=float))
        except CalibrationError as exc:
            raise exc.with_context(unit, names) from exc
        except KeyError as exc:
            raise DependencyOrderError(
                f"Instruments need data that is not available: {exc.args[0]}", unit=unit, curve_names=names
            ) from exc

        return generator.evaluate(x), x, iterations


class JacobianAssembler:
    """Inverse of the full block Jacobian, sliced by curve."""

    def __init__(self, sensitivity_calculator: SensitivityCalculator, matrix_algebra: MatrixAlgebra):
        self.matrix_calculator = ParameterSensitivityMatrixCalculator(sensitivity_calculator)
        self.matrix_algebra = matrix_algebra

    def jacobian(self, generator: MulticurveGenerator, instruments: Sequence, parameters: np.ndarray) -> np.ndarray:
        return self.matrix_calculator.matrix(instruments, generator.evaluate(parameters), generator.layout)

    def assemble(
        self,
        unit: int,
        generator: MulticurveGenerator,
        instruments: Sequence,
        parameters: np.ndarray,
        curve_names: Sequence[str],
    ) -> Dict[str, np.ndarray]:
        jac = self.jacobian(generator, instruments, parameters)
        try:
            inverse = self.matrix_algebra.inverse(jac)
        except CalibrationError as exc:
            raise exc.with_context(unit, curve_names) from exc
        return {name: inverse[generator.layout.slice(name), :] for name in curve_names}


@dataclass
class _PreparedCurve:
    name: str
    instruments: Tuple
    generator: object
    initial_guess: np.ndarray


@dataclass
class _PreparedUnit:
    index: int
    curves: List[_PreparedCurve]

    @property
    def curve_names(self) -> List[str]:
        return [c.name for c in self.curves]

    @property
    def generators(self) -> List[Tuple[str, object]]:
        return [(c.name, c.generator) for c in self.curves]

    @property
    def instruments(self) -> List:
        return [instrument for c in self.curves for instrument in c.instruments]

    @property
    def initial_guess(self) -> np.ndarray:
        return np.concatenate([c.initial_guess for c in self.curves])


class CalibrationOrchestrator:
    """
    Public entry point: calibrates a block of units in the order given and
    returns the final provider and the CurveBuildingBlockBundle.

    All units are checked (dimensions, curve names, dependency order) before
    any root finding starts. Nothing is returned on failure.
    """

    def __init__(
        self,
        settings: Optional[CalibrationSettings] = None,
        root_finder=None,
        matrix_algebra: Optional[MatrixAlgebra] = None,
    ):
        self.settings = settings if settings is not None else CalibrationSettings()
        self.root_finder = root_finder if root_finder is not None else BroydenVectorRootFinder.from_settings(self.settings)
        self.matrix_algebra = matrix_algebra if matrix_algebra is not None else MatrixAlgebra(self.settings.singular_threshold)

    # ---- input shapes ----

    def make_curves_from_derivatives(
        self,
        instruments: Sequence[Sequence[Sequence]],
        curve_generators: Sequence[Sequence],
        curve_names: Sequence[Sequence[str]],
        parameters_guess: Sequence[Sequence[float]],
        known_data: MulticurveProvider,
        discounting_map: Optional[Mapping[str, str]] = None,
        forward_ibor_map: Optional[Mapping[str, Sequence[IborIndex]]] = None,
        forward_on_map: Optional[Mapping[str, Sequence[OvernightIndex]]] = None,
        calculator: ValueCalculator = par_spread_market_quote,
        sensitivity_calculator: SensitivityCalculator = par_spread_market_quote_sensitivity,
        known_block_bundle: Optional[CurveBuildingBlockBundle] = None,
    ) -> Tuple[MulticurveProvider, CurveBuildingBlockBundle]:
        """
        Explicit arrays: instruments[unit][curve][k], with generators and
        names shaped [unit][curve] and one flat initial guess per unit.
        """
        roles = CurveRoles.of(discounting_map, forward_ibor_map, forward_on_map)
        units = self._prepare(
            instruments, curve_generators, curve_names, parameters_guess, known_data, known_block_bundle, roles, calculator
        )
        return self._calibrate(units, known_data, roles, calculator, sensitivity_calculator, known_block_bundle)

    def make_curves_from_bundles(
        self,
        curve_bundles: Sequence[MultiCurveBundle],
        known_data: MulticurveProvider,
        discounting_map: Optional[Mapping[str, str]] = None,
        forward_ibor_map: Optional[Mapping[str, Sequence[IborIndex]]] = None,
        forward_on_map: Optional[Mapping[str, Sequence[OvernightIndex]]] = None,
        known_block_bundle: Optional[CurveBuildingBlockBundle] = None,
        calculator: ValueCalculator = par_spread_market_quote,
        sensitivity_calculator: SensitivityCalculator = par_spread_market_quote_sensitivity,
    ) -> Tuple[MulticurveProvider, CurveBuildingBlockBundle]:
        """One MultiCurveBundle per unit; each curve carries its own starting point."""
        return self.make_curves_from_derivatives(
            [[c.instruments for c in unit.curves] for unit in curve_bundles],
            [[c.generator for c in unit.curves] for unit in curve_bundles],
            [unit.curve_names for unit in curve_bundles],
            [unit.starting_point for unit in curve_bundles],
            known_data,
            discounting_map,
            forward_ibor_map,
            forward_on_map,
            calculator=calculator,
            sensitivity_calculator=sensitivity_calculator,
            known_block_bundle=known_block_bundle,
        )

    # ---- preparation ----

    def _prepare(
        self,
        instruments,
        curve_generators,
        curve_names,
        parameters_guess,
        known_data: MulticurveProvider,
        known_block_bundle: Optional[CurveBuildingBlockBundle],
        roles: CurveRoles,
        calculator: ValueCalculator,
    ) -> List[_PreparedUnit]:
        n_units = len(instruments)
        if not (len(curve_generators) == len(curve_names) == len(parameters_guess) == n_units):
            raise CalibrationConfigurationError(
                f"Unit counts differ: {n_units} instrument lists, {len(curve_generators)} generator lists, "
                f"{len(curve_names)} name lists, {len(parameters_guess)} initial guesses"
            )
        if n_units == 0:
            raise CalibrationConfigurationError("Nothing to calibrate: no units given.")

        seen = set()
        units = []
        for u in range(n_units):
            names = list(curve_names[u])
            if not (len(instruments[u]) == len(curve_generators[u]) == len(names)) or not names:
                raise CalibrationConfigurationError(
                    f"{len(instruments[u])} instrument lists, {len(curve_generators[u])} generators "
                    f"and {len(names)} names",
                    unit=u,
                    curve_names=names,
                )
            for name in names:
                if name in seen:
                    raise CalibrationConfigurationError(f"Curve {name!r} is calibrated twice.", unit=u)
                if known_data.has_curve(name):
                    raise CalibrationConfigurationError(f"Curve {name!r} is already in the known data.", unit=u)
                if known_block_bundle is not None and name in known_block_bundle:
                    raise CalibrationConfigurationError(f"Curve {name!r} is already in the known bundle.", unit=u)
                seen.add(name)

            bound = []
            for name, generator, curve_instruments in zip(names, curve_generators[u], instruments[u]):
                try:
                    bound.append(generator.finalize(list(curve_instruments)))
                except CalibrationError as exc:
                    raise exc.with_context(u, (name,)) from exc

            guess = np.asarray(parameters_guess[u], dtype=float).ravel()
            n_instruments = sum(len(i) for i in instruments[u])
            n_parameters = sum(g.n_parameters for g in bound)
            if not (n_instruments == n_parameters == len(guess)):
                raise CalibrationConfigurationError(
                    f"{n_instruments} instruments, {n_parameters} parameters and an initial guess of length {len(guess)}",
                    unit=u,
                    curve_names=names,
                )

            curves = []
            offset = 0
            for name, generator, curve_instruments in zip(names, bound, instruments[u]):
                n = generator.n_parameters
                curves.append(_PreparedCurve(name, tuple(curve_instruments), generator, guess[offset:offset + n]))
                offset += n
            units.append(_PreparedUnit(u, curves))

        self._check_dependencies(units, known_data)
        self._check_instrument_curves(units, known_data, roles, calculator)
        return units

    @staticmethod
    def _check_dependencies(units: Sequence[_PreparedUnit], known_data: MulticurveProvider) -> None:
        available = set(known_data.curve_names)
        for unit in units:
            for curve in unit.curves:
                for dependency in getattr(curve.generator, "dependencies", ()):
                    if dependency not in available:
                        raise DependencyOrderError(
                            f"Curve {curve.name!r} needs {dependency!r}, which is neither known data "
                            "nor calibrated before it.",
                            unit=unit.index,
                            curve_names=(curve.name,),
                        )
                available.add(curve.name)

    @staticmethod
    def _check_instrument_curves(
        units: Sequence[_PreparedUnit], known_data: MulticurveProvider, roles: CurveRoles, calculator: ValueCalculator
    ) -> None:
        """Prices every instrument once at the initial guesses, in unit order."""
        provider = known_data
        for unit in units:
            provider = MulticurveGenerator(provider, unit.generators, roles).evaluate(unit.initial_guess)
            for curve in unit.curves:
                for instrument in curve.instruments:
                    try:
                        calculator(instrument, provider)
                    except KeyError as exc:
                        raise DependencyOrderError(
                            f"Instrument {type(instrument).__name__} of curve {curve.name!r} needs data that is "
                            f"neither known nor calibrated before it: {exc.args[0]}",
                            unit=unit.index,
                            curve_names=(curve.name,),
                        ) from exc

    # ---- calibration ----

    def _calibrate(
        self,
        units: Sequence[_PreparedUnit],
        known_data: MulticurveProvider,
        roles: CurveRoles,
        calculator: ValueCalculator,
        sensitivity_calculator: SensitivityCalculator,
        known_block_bundle: Optional[CurveBuildingBlockBundle],
    ) -> Tuple[MulticurveProvider, CurveBuildingBlockBundle]:
        unit_calibrator = UnitCalibrator(self.root_finder, calculator, sensitivity_calculator)
        assembler = JacobianAssembler(sensitivity_calculator, self.matrix_algebra)

        original = known_data.copy()
        known_so_far = known_data.copy()
        bundle = CurveBuildingBlockBundle()
        if known_block_bundle is not None:
            bundle.add_all(known_block_bundle)

        instruments_so_far: List = []
        parameters_so_far: List[np.ndarray] = []
        generators_so_far: List[Tuple[str, object]] = []

        logger.info(
            "Calibrating %d unit(s), curves %s, %d parameter(s)",
            len(units),
            [name for unit in units for name in unit.curve_names],
            sum(len(unit.initial_guess) for unit in units),
        )

        for unit in units:
            unit_generator = MulticurveGenerator(known_so_far, unit.generators, roles)
            provider, x, iterations = unit_calibrator.calibrate(unit.index, unit_generator, unit.instruments, unit.initial_guess)

            residual = max(abs(calculator(instrument, provider)) for instrument in unit.instruments)
            logger.info(
                "Unit %d %s converged: %d iteration(s), max |residual| %.3e",
                unit.index, unit.curve_names, iterations, residual,
            )

            instruments_so_far.extend(unit.instruments)
            parameters_so_far.append(x)
            generators_so_far.extend(unit.generators)

            block_generator = MulticurveGenerator(original, generators_so_far, roles)
            blocks = assembler.assemble(
                unit.index, block_generator, instruments_so_far, np.concatenate(parameters_so_far), unit.curve_names
            )
            for name in unit.curve_names:
                bundle.add(name, block_generator.layout, blocks[name])
                roles.store(known_so_far, provider.curve(name))

        logger.info("Calibration finished: %d curve(s) in bundle", len(bundle))
        return known_so_far, bundle


def repricing_report(
    provider: MulticurveProvider,
    instruments_by_curve: Mapping[str, Sequence],
    calculator: ValueCalculator = par_spread_market_quote,
) -> pd.DataFrame:
    """Calibration residual of every instrument against a calibrated provider."""
    rows = []
    for curve_name, instruments in instruments_by_curve.items():
        for position, instrument in enumerate(instruments):
            rows.append(
                {
                    "curve": curve_name,
                    "position": position,
                    "instrument": type(instrument).__name__,
                    "last_time": float(getattr(instrument, "last_time", np.nan)),
                    "residual": calculator(instrument, provider),
                }
            )
    return pd.DataFrame(rows, columns=["curve", "position", "instrument", "last_time", "residual"])
