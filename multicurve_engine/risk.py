from __future__ import annotations

import numpy as np
import pandas as pd
from typing import Dict, Mapping, Optional, Sequence

from .building_blocks import CurveBuildingBlock, CurveBuildingBlockBundle
from .calculators import par_spread_market_quote_sensitivity
from .provider import MulticurveProvider
from .sensitivity import ParameterSensitivityMatrixCalculator, SensitivityCalculator


def parameter_sensitivity(
    instrument,
    provider: MulticurveProvider,
    curve_names: Sequence[str],
    sensitivity_calculator: SensitivityCalculator = par_spread_market_quote_sensitivity,
) -> Dict[str, np.ndarray]:
    """d value / d parameters of each named curve; other curves are held fixed."""
    layout = CurveBuildingBlock.from_sizes((name, provider.curve(name).n_parameters) for name in curve_names)
    row = ParameterSensitivityMatrixCalculator(sensitivity_calculator).row(instrument, provider, layout)
    return {name: row[layout.slice(name)] for name in curve_names}


def market_quote_sensitivity(
    parameter_sensitivities: Mapping[str, np.ndarray],
    bundle: CurveBuildingBlockBundle,
) -> Dict[str, np.ndarray]:
    """
    Convert parameter risk into risk against the calibration market quotes.

    Each curve's parameter sensitivity is multiplied by its inverse Jacobian
    block; the product spans the quotes of every curve in that block and is
    split back by curve.
    """
    out: Dict[str, np.ndarray] = {}
    for name, sens in parameter_sensitivities.items():
        block, matrix = bundle.get_block(name)
        sens = np.asarray(sens, dtype=float)
        if sens.shape != (matrix.shape[0],):
            raise ValueError(f"Sensitivity to {name!r} has shape {sens.shape}, expected ({matrix.shape[0]},)")
        quotes = sens @ matrix
        for curve in block:
            part = quotes[block.slice(curve)]
            out[curve] = out[curve] + part if curve in out else part.copy()
    return out


def market_quote_sensitivity_frame(
    instrument,
    provider: MulticurveProvider,
    bundle: CurveBuildingBlockBundle,
    curve_names: Optional[Sequence[str]] = None,
    sensitivity_calculator: SensitivityCalculator = par_spread_market_quote_sensitivity,
) -> pd.DataFrame:
    names = list(curve_names) if curve_names is not None else bundle.names
    param = parameter_sensitivity(instrument, provider, names, sensitivity_calculator)
    quotes = market_quote_sensitivity(param, bundle)

    rows = [
        {"curve": curve, "instrument": k, "sensitivity": float(v)}
        for curve, values in quotes.items()
        for k, v in enumerate(values)
    ]
    return pd.DataFrame(rows, columns=["curve", "instrument", "sensitivity"])
