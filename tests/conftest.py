import pandas as pd
import pytest

from multicurve_engine.indices import IborIndex, OvernightIndex
from multicurve_engine.instruments import (
    make_cash_deposit,
    make_fra,
    make_ibor_deposit,
    make_ibor_swap,
    make_ois,
)
from multicurve_engine.utils import add_months


@pytest.fixture(scope="module")
def val_date():
    return pd.Timestamp("2026-02-13")


@pytest.fixture(scope="module")
def fed_funds():
    return OvernightIndex("USD-FEDFUNDS", "USD")


@pytest.fixture(scope="module")
def libor3m():
    return IborIndex("USD-LIBOR-3M", "USD", 3)


@pytest.fixture(scope="module")
def ois_instruments(val_date, fed_funds):
    quotes = [(3, 0.0430), (6, 0.0425), (12, 0.0415), (24, 0.0395), (36, 0.0385), (60, 0.0380)]
    return [
        make_ois(val_date, fed_funds, val_date, add_months(val_date, months), rate)
        for months, rate in quotes
    ]


@pytest.fixture(scope="module")
def libor_instruments(val_date, libor3m):
    out = [
        make_ibor_deposit(val_date, libor3m, val_date, 0.0460),
        make_fra(val_date, libor3m, add_months(val_date, 3), 0.0455),
    ]
    for years, rate in [(1, 0.0440), (2, 0.0420), (3, 0.0410), (5, 0.0405)]:
        out.append(make_ibor_swap(val_date, libor3m, val_date, add_months(val_date, 12 * years), rate))
    return out


@pytest.fixture(scope="module")
def deposit_factory(val_date):
    def make(months_and_rates):
        return [
            make_cash_deposit(val_date, "USD", val_date, add_months(val_date, months), rate)
            for months, rate in months_and_rates
        ]

    return make
