from __future__ import annotations

import numpy as np
import pandas as pd
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


class CurveBuildingBlock:
    """
    Position of each curve's parameters inside one concatenated parameter
    vector: curve name -> (start, number of parameters).

    Ranges never overlap and together cover [0, total_parameters).
    """

    def __init__(self, data: Mapping[str, Tuple[int, int]]):
        ordered = sorted(((int(s), int(n), name) for name, (s, n) in data.items()))
        expected = 0
        for start, n, name in ordered:
            if n <= 0:
                raise ValueError(f"Curve {name!r} has no parameters.")
            if start != expected:
                raise ValueError(
                    f"Parameter ranges must partition [0, total): curve {name!r} starts at {start}, expected {expected}."
                )
            expected = start + n
        self._data: Dict[str, Tuple[int, int]] = {name: (int(s), int(n)) for name, (s, n) in data.items()}
        self._total = expected

    @classmethod
    def from_sizes(cls, sizes: Iterable[Tuple[str, int]]) -> "CurveBuildingBlock":
        data: Dict[str, Tuple[int, int]] = {}
        start = 0
        for name, n in sizes:
            if name in data:
                raise ValueError(f"Duplicate curve name {name!r}.")
            data[name] = (start, int(n))
            start += int(n)
        return cls(data)

    @property
    def data(self) -> Mapping[str, Tuple[int, int]]:
        return MappingProxyType(self._data)

    @property
    def names(self) -> List[str]:
        return list(self._data)

    @property
    def total_parameters(self) -> int:
        return self._total

    def start(self, name: str) -> int:
        return self._data[name][0]

    def n_parameters(self, name: str) -> int:
        return self._data[name][1]

    def slice(self, name: str) -> slice:
        start, n = self._data[name]
        return slice(start, start + n)

    def __contains__(self, name: object) -> bool:
        return name in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __repr__(self) -> str:
        return f"CurveBuildingBlock({self._data})"

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(name, s, n, s + n) for name, (s, n) in self._data.items()],
            columns=["curve", "start", "n_parameters", "end"],
        )


class CurveBuildingBlockBundle:
    """
    Per-curve (parameter index map, inverse Jacobian block).

    Append-only: entries are written once, in calibration order. Matrices are
    stored read-only with one row per curve parameter and one column per
    calibration instrument of the curve's block.
    """

    def __init__(self, data: Optional[Mapping[str, Tuple[CurveBuildingBlock, np.ndarray]]] = None):
        self._data: Dict[str, Tuple[CurveBuildingBlock, np.ndarray]] = {}
        for name, (block, matrix) in (data or {}).items():
            self.add(name, block, matrix)

    def add(self, name: str, block: CurveBuildingBlock, matrix: np.ndarray) -> None:
        if name in self._data:
            raise ValueError(f"Curve {name!r} already has a building block.")
        if name not in block:
            raise ValueError(f"Curve {name!r} is not part of its own building block.")
        matrix = np.array(matrix, dtype=float)
        expected = (block.n_parameters(name), block.total_parameters)
        if matrix.shape != expected:
            raise ValueError(f"Matrix for {name!r} has shape {matrix.shape}, expected {expected}.")
        matrix.setflags(write=False)
        self._data[name] = (block, matrix)

    def add_all(self, other: "CurveBuildingBlockBundle") -> None:
        for name, (block, matrix) in other.items():
            self.add(name, block, matrix)

    def get_block(self, name: str) -> Tuple[CurveBuildingBlock, np.ndarray]:
        try:
            return self._data[name]
        except KeyError as exc:
            raise KeyError(f"No building block for curve {name!r}") from exc

    @property
    def names(self) -> List[str]:
        return list(self._data)

    def items(self):
        return self._data.items()

    def __contains__(self, name: object) -> bool:
        return name in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"CurveBuildingBlockBundle({self.names})"

    def to_frame(self, name: str) -> pd.DataFrame:
        """Inverse Jacobian block of one curve; columns labelled (curve, instrument)."""
        block, matrix = self.get_block(name)
        # columns follow the block's start order
        order = sorted(block.names, key=block.start)
        columns = pd.MultiIndex.from_tuples(
            [(c, k) for c in order for k in range(block.n_parameters(c))],
            names=["curve", "instrument"],
        )
        index = pd.Index(range(block.n_parameters(name)), name="parameter")
        return pd.DataFrame(np.array(matrix), index=index, columns=columns)
