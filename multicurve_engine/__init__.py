"""
Multi-curve calibration engine

Modules:
- calibration: unit-by-unit calibration, block Jacobian, curve provider + bundle
- building_blocks / bundles: parameter index maps, inverse Jacobian blocks, call shapes
- generators: curve generators (interpolated zero / log-DF curves, spread curves)
- curves: immutable parameterised curves + node QC report
- instruments / calculators: calibration instruments and par spread calculators
- sensitivity: zero-rate sensitivities projected onto curve parameters
- provider / indices: curves by currency and index, FX matrix
- rootfinding / linalg: Broyden root finder, matrix inversion
- risk: market-quote sensitivities from the calibration bundle
- config / errors / utils: settings, exceptions, day count + schedule helpers
"""
import logging

from .building_blocks import CurveBuildingBlock, CurveBuildingBlockBundle
from .bundles import MultiCurveBundle, SingleCurveBundle
from .calibration import CalibrationOrchestrator, repricing_report
from .config import CalibrationSettings
from .errors import (
    CalibrationConfigurationError,
    CalibrationError,
    ConvergenceError,
    DependencyOrderError,
    SingularSystemError,
)
from .provider import FxMatrix, MulticurveProvider

logging.getLogger(__name__).addHandler(logging.NullHandler())
