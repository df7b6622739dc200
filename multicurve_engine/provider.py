from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from .curves import Curve
from .indices import IborIndex, OvernightIndex


Index = Union[IborIndex, OvernightIndex]


class FxMatrix:
    """Spot FX rates, each currency stored against a single reference currency."""

    def __init__(self, reference: Optional[str] = None):
        self._reference = reference
        self._to_reference: Dict[str, float] = {}
        if reference is not None:
            self._to_reference[reference] = 1.0

    @property
    def currencies(self) -> List[str]:
        return list(self._to_reference)

    def add_currency(self, ccy: str, reference: str, rate: float) -> None:
        """Register `ccy` with `rate` units of `reference` per 1 unit of `ccy`."""
        if rate <= 0:
            raise ValueError(f"FX rate must be positive: {ccy}/{reference}={rate}")
        if self._reference is None:
            self._reference = reference
            self._to_reference[reference] = 1.0
        if reference not in self._to_reference:
            raise KeyError(f"Unknown currency {reference} in FX matrix")
        self._to_reference[ccy] = rate * self._to_reference[reference]

    def rate(self, ccy1: str, ccy2: str) -> float:
        """Units of ccy2 for 1 unit of ccy1."""
        if ccy1 == ccy2:
            return 1.0
        try:
            return self._to_reference[ccy1] / self._to_reference[ccy2]
        except KeyError as exc:
            raise KeyError(f"No FX rate for {ccy1}/{ccy2}") from exc

    def convert(self, amount: float, ccy_from: str, ccy_to: str) -> float:
        return amount * self.rate(ccy_from, ccy_to)

    def update(self, other: "FxMatrix") -> None:
        """Add the currencies of `other` that this matrix does not know yet."""
        if not self._to_reference:
            self._reference = other._reference
            self._to_reference = dict(other._to_reference)
            return
        for ccy in other.currencies:
            if ccy not in self._to_reference:
                self.add_currency(ccy, self._reference, other.rate(ccy, self._reference))

    def copy(self) -> "FxMatrix":
        out = FxMatrix(self._reference)
        out._to_reference = dict(self._to_reference)
        return out


class MulticurveProvider:
    """
    Curves and FX needed to value calibration instruments.

    Curves are looked up by role (discounting currency, Ibor index, overnight
    index) and by name. Curves themselves are immutable, so `copy()` only has
    to copy the containers to give an independent provider.
    """

    def __init__(
        self,
        discounting_curves: Optional[Dict[str, Curve]] = None,
        forward_ibor_curves: Optional[Dict[IborIndex, Curve]] = None,
        forward_on_curves: Optional[Dict[OvernightIndex, Curve]] = None,
        fx_matrix: Optional[FxMatrix] = None,
    ):
        self._discounting: Dict[str, Curve] = dict(discounting_curves or {})
        self._forward_ibor: Dict[IborIndex, Curve] = dict(forward_ibor_curves or {})
        self._forward_on: Dict[OvernightIndex, Curve] = dict(forward_on_curves or {})
        self._named: Dict[str, Curve] = {}
        self.fx_matrix = fx_matrix if fx_matrix is not None else FxMatrix()
        for curve in self._all_role_curves():
            self._named[curve.name] = curve

    def _all_role_curves(self) -> Iterable[Curve]:
        yield from self._discounting.values()
        yield from self._forward_ibor.values()
        yield from self._forward_on.values()

    # ---- copy / merge ----

    def copy(self) -> "MulticurveProvider":
        out = MulticurveProvider(self._discounting, self._forward_ibor, self._forward_on, self.fx_matrix.copy())
        out._named.update(self._named)
        return out

    def set_all(self, other: "MulticurveProvider") -> None:
        """Merge every curve (and FX rate) of `other` into this provider."""
        self._discounting.update(other._discounting)
        self._forward_ibor.update(other._forward_ibor)
        self._forward_on.update(other._forward_on)
        self._named.update(other._named)
        self.fx_matrix.update(other.fx_matrix)

    def set_curve(
        self,
        curve: Curve,
        currencies: Iterable[str] = (),
        ibor_indices: Iterable[IborIndex] = (),
        overnight_indices: Iterable[OvernightIndex] = (),
    ) -> None:
        """Store `curve` under its name and in each of the given roles."""
        for ccy in currencies:
            self._discounting[ccy] = curve
        for index in ibor_indices:
            self._forward_ibor[index] = curve
        for index in overnight_indices:
            self._forward_on[index] = curve
        self._named[curve.name] = curve

    def replace_curve(self, curve: Curve) -> None:
        """Swap every role held by the curve with the same name."""
        if curve.name not in self._named:
            raise KeyError(f"No curve named {curve.name!r}")
        for roles in (self._discounting, self._forward_ibor, self._forward_on):
            for key, existing in roles.items():
                if existing.name == curve.name:
                    roles[key] = curve
        self._named[curve.name] = curve

    # ---- lookups ----

    @property
    def curve_names(self) -> List[str]:
        return list(self._named)

    def has_curve(self, name: str) -> bool:
        return name in self._named

    def curve(self, name: str) -> Curve:
        try:
            return self._named[name]
        except KeyError as exc:
            raise KeyError(f"No curve named {name!r}") from exc

    def discount_curve(self, ccy: str) -> Curve:
        try:
            return self._discounting[ccy]
        except KeyError as exc:
            raise KeyError(f"No discounting curve for {ccy}") from exc

    def forward_curve(self, index: Index) -> Curve:
        roles = self._forward_on if isinstance(index, OvernightIndex) else self._forward_ibor
        try:
            return roles[index]
        except KeyError as exc:
            raise KeyError(f"No forward curve for index {index.name}") from exc

    def discount_factor(self, ccy: str, t: float) -> float:
        return self.discount_curve(ccy).df(t)

    def forward_rate(self, index: Index, start: float, end: float, accrual: float) -> float:
        return self.forward_curve(index).forward_rate(start, end, accrual)

    def fx_rate(self, ccy1: str, ccy2: str) -> float:
        return self.fx_matrix.rate(ccy1, ccy2)

    def __repr__(self) -> str:
        return f"MulticurveProvider(curves={self.curve_names}, fx={self.fx_matrix.currencies})"
