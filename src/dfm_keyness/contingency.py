from dataclasses import dataclass

import numpy as np

from dfm_keyness.errors import InvalidShape
from dfm_keyness.matrix import SparseCountMatrix


@dataclass(frozen=True)
class ContingencyTable:
    """
    Observed 2x2 table for one feature.

                 feature   other features
    target          a            c
    reference       b            d
    """

    a: float
    b: float
    c: float
    d: float

    @property
    def N(self) -> float:
        return self.a + self.b + self.c + self.d

    @property
    def E(self) -> float:
        """Expected target count under independence; NaN for an empty table."""
        N = self.N
        return (self.a + self.b) * (self.a + self.c) / N if N else float("nan")


@dataclass(frozen=True, eq=False)
class ContingencyTables:
    """Per-feature 2x2 tables for a whole matrix, held as parallel float arrays."""

    features: tuple[str, ...]
    a: np.ndarray
    b: np.ndarray
    c: np.ndarray
    d: np.ndarray

    @property
    def N(self) -> np.ndarray:
        return self.a + self.b + self.c + self.d

    @property
    def E(self) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return (self.a + self.b) * (self.a + self.c) / self.N

    def __len__(self) -> int:
        return len(self.features)

    def table(self, i: int) -> ContingencyTable:
        return ContingencyTable(
            float(self.a[i]), float(self.b[i]), float(self.c[i]), float(self.d[i])
        )

    def subset(self, idx) -> "ContingencyTables":
        return ContingencyTables(
            tuple(self.features[i] for i in idx),
            self.a[idx],
            self.b[idx],
            self.c[idx],
            self.d[idx],
        )

    def swapped(self) -> "ContingencyTables":
        """The same tables with target and reference exchanged."""
        return ContingencyTables(self.features, self.b, self.a, self.d, self.c)


def build_tables(matrix: SparseCountMatrix) -> ContingencyTables:
    """
    Derive the 2x2 table of every feature from a (target, reference) matrix.

    Row 0 is the target and row 1 the reference; ``c`` and ``d`` are the
    remaining counts of each row.

    >>> m = SparseCountMatrix.from_dense([[5, 0], [1, 4]], ["t", "r"], ["a", "b"])
    >>> t = build_tables(m).table(0)
    >>> (t.a, t.b, t.c, t.d)
    (5.0, 1.0, 0.0, 4.0)
    """
    if matrix.ndoc != 2:
        raise InvalidShape(
            f"contingency tables need exactly 2 rows (target, reference), got {matrix.ndoc}"
        )
    dense = matrix.to_dense().astype(np.float64)
    a, b = dense[0], dense[1]
    total_target, total_reference = dense.sum(axis=1)
    return ContingencyTables(
        matrix.features, a, b, total_target - a, total_reference - b
    )
