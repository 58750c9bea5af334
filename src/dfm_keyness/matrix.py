from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import numpy as np
import polars as pl
import scipy.sparse as sp

from dfm_keyness.errors import DimensionMismatch, InvalidMatrix


def _freeze(m: sp.csr_matrix) -> sp.csr_matrix:
    for arr in (m.data, m.indices, m.indptr):
        arr.flags.writeable = False
    return m


def _count_dtype(values: np.ndarray) -> np.dtype:
    # Integer and boolean counts are summed in int64; everything else in float64.
    if values.dtype.kind in "biu":
        return np.dtype(np.int64)
    return np.dtype(np.float64)


def _check_unique(names: Sequence[str], axis: str) -> None:
    seen: set[str] = set()
    dupes = [n for n in names if n in seen or seen.add(n)]
    if dupes:
        raise InvalidMatrix(f"{axis} identifiers must be unique; duplicated: {dupes[:5]}")


@dataclass(frozen=True, eq=False)
class SparseCountMatrix:
    """
    Immutable documents x features matrix of non-negative counts.

    Counts live in a canonical CSR matrix (sorted indices, no duplicate
    entries, no explicit zeros) whose buffers are flagged read-only. Every
    transform in this package returns a new instance.

    :param documents: ordered, unique document identifiers (rows)
    :param features: ordered, unique feature identifiers (columns)
    :param data: sparse counts, shape ``(len(documents), len(features))``
    :param docvars: per-document variables, one row per document (may have no columns)
    :param meta: matrix-level scalar metadata, e.g. weighting tags

    >>> m = SparseCountMatrix.from_dense([[1, 0], [2, 3]], ["d1", "d2"], ["x", "y"])
    >>> m.shape
    (2, 2)
    >>> m.row_sums().tolist()
    [1, 5]
    """

    documents: tuple[str, ...]
    features: tuple[str, ...]
    data: sp.csr_matrix = field(repr=False)
    docvars: pl.DataFrame = field(default_factory=pl.DataFrame, repr=False)
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        documents = tuple(str(d) for d in self.documents)
        features = tuple(str(f) for f in self.features)
        _check_unique(documents, "document")
        _check_unique(features, "feature")

        if not sp.issparse(self.data):
            raise InvalidMatrix(f"data must be a scipy sparse matrix, got {type(self.data)}")
        if self.data.shape != (len(documents), len(features)):
            raise DimensionMismatch(
                f"data has shape {self.data.shape} but there are "
                f"{len(documents)} documents and {len(features)} features"
            )

        # Always take a private copy so callers cannot mutate through an alias.
        data = sp.csr_matrix(self.data, copy=True)
        data = data.astype(_count_dtype(data.data), copy=False)
        data.sum_duplicates()
        data.eliminate_zeros()
        if data.nnz and data.data.min() < 0:
            raise InvalidMatrix("counts must be non-negative")

        docvars = self.docvars if self.docvars is not None else pl.DataFrame()
        if docvars.width and docvars.height != len(documents):
            raise DimensionMismatch(
                f"docvars has {docvars.height} rows but there are {len(documents)} documents"
            )

        object.__setattr__(self, "documents", documents)
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "data", _freeze(data))
        object.__setattr__(self, "docvars", docvars)
        object.__setattr__(self, "meta", MappingProxyType(dict(self.meta or {})))

    @classmethod
    def from_coo(
        cls,
        documents: Sequence[Hashable],
        features: Sequence[Hashable],
        rows: Sequence[int],
        cols: Sequence[int],
        counts: Sequence[float],
        docvars: pl.DataFrame | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> "SparseCountMatrix":
        """
        Build a matrix from a coordinate enumeration of nonzero entries.

        Repeated coordinates are summed.

        >>> m = SparseCountMatrix.from_coo(["d1"], ["x", "y"], [0, 0, 0], [1, 1, 0], [2, 3, 1])
        >>> m.to_dense().tolist()
        [[1, 5]]
        """
        rows_arr = np.asarray(rows, dtype=np.int64)
        cols_arr = np.asarray(cols, dtype=np.int64)
        values = np.asarray(counts)
        if not (len(rows_arr) == len(cols_arr) == len(values)):
            raise DimensionMismatch(
                f"coordinate arrays differ in length: rows={len(rows_arr)}, "
                f"cols={len(cols_arr)}, counts={len(values)}"
            )
        n_docs, n_feats = len(documents), len(features)
        if len(rows_arr) and (rows_arr.min() < 0 or rows_arr.max() >= n_docs):
            raise InvalidMatrix(f"row coordinates must lie in [0, {n_docs})")
        if len(cols_arr) and (cols_arr.min() < 0 or cols_arr.max() >= n_feats):
            raise InvalidMatrix(f"column coordinates must lie in [0, {n_feats})")
        values = values.astype(_count_dtype(values), copy=False)
        data = sp.coo_matrix((values, (rows_arr, cols_arr)), shape=(n_docs, n_feats))
        return cls(
            tuple(documents),
            tuple(features),
            data.tocsr(),
            docvars if docvars is not None else pl.DataFrame(),
            meta or {},
        )

    @classmethod
    def from_dense(
        cls,
        array,
        documents: Sequence[Hashable] | None = None,
        features: Sequence[Hashable] | None = None,
        docvars: pl.DataFrame | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> "SparseCountMatrix":
        """Build a matrix from a dense 2-D array; names default to text1.., feat1.."""
        arr = np.atleast_2d(np.asarray(array))
        if arr.ndim != 2:
            raise InvalidMatrix(f"expected a 2-D array, got {arr.ndim} dimensions")
        if documents is None:
            documents = [f"text{i + 1}" for i in range(arr.shape[0])]
        if features is None:
            features = [f"feat{j + 1}" for j in range(arr.shape[1])]
        arr = arr.astype(_count_dtype(arr), copy=False)
        return cls(
            tuple(documents),
            tuple(features),
            sp.csr_matrix(arr),
            docvars if docvars is not None else pl.DataFrame(),
            meta or {},
        )

    @classmethod
    def from_records(
        cls,
        df: pl.DataFrame,
        doc_col: str = "doc",
        feature_col: str = "feature",
        count_col: str = "count",
        documents: Sequence[str] | None = None,
        features: Sequence[str] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> "SparseCountMatrix":
        """
        Build a matrix from a long-format frame of (doc, feature, count) rows.

        Identifiers are ordered by first occurrence unless given explicitly.

        >>> import polars as pl
        >>> df = pl.DataFrame({"doc": ["a", "a", "b"], "feature": ["x", "y", "x"], "count": [1, 2, 3]})
        >>> SparseCountMatrix.from_records(df).to_dense().tolist()
        [[1, 2], [3, 0]]
        """
        missing = {doc_col, feature_col, count_col} - set(df.columns)
        if missing:
            raise InvalidMatrix(f"DataFrame missing required columns: {sorted(missing)}")

        docs_s = df.get_column(doc_col).cast(pl.Utf8)
        feats_s = df.get_column(feature_col).cast(pl.Utf8)
        if documents is None:
            documents = docs_s.unique(maintain_order=True).to_list()
        if features is None:
            features = feats_s.unique(maintain_order=True).to_list()

        doc_index = {d: i for i, d in enumerate(documents)}
        feat_index = {f: j for j, f in enumerate(features)}
        unknown_docs = set(docs_s.to_list()) - doc_index.keys()
        unknown_feats = set(feats_s.to_list()) - feat_index.keys()
        if unknown_docs or unknown_feats:
            raise InvalidMatrix(
                f"records reference undeclared identifiers: documents={sorted(unknown_docs)[:5]}, "
                f"features={sorted(unknown_feats)[:5]}"
            )

        rows = [doc_index[d] for d in docs_s.to_list()]
        cols = [feat_index[f] for f in feats_s.to_list()]
        return cls.from_coo(
            documents, features, rows, cols, df.get_column(count_col).to_numpy(), meta=meta
        )

    @property
    def ndoc(self) -> int:
        return len(self.documents)

    @property
    def nfeature(self) -> int:
        return len(self.features)

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def nnz(self) -> int:
        return self.data.nnz

    def row_sums(self) -> np.ndarray:
        return np.asarray(self.data.sum(axis=1)).ravel()

    def col_sums(self) -> np.ndarray:
        return np.asarray(self.data.sum(axis=0)).ravel()

    def total(self):
        return self.data.data.sum()

    def ntoken(self) -> dict[str, Any]:
        """Total count per document."""
        return dict(zip(self.documents, self.row_sums().tolist()))

    def ntype(self) -> dict[str, int]:
        """Number of distinct features observed per document."""
        return dict(zip(self.documents, np.diff(self.data.indptr).tolist()))

    def to_dense(self) -> np.ndarray:
        return self.data.toarray()

    def to_coo(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return fresh (rows, cols, counts) arrays of the nonzero entries."""
        coo = self.data.tocoo()
        return coo.row.astype(np.int64), coo.col.astype(np.int64), coo.data.copy()

    def to_polars(self) -> pl.DataFrame:
        """Long-format frame with one row per nonzero cell."""
        rows, cols, counts = self.to_coo()
        docs = np.asarray(self.documents, dtype=object)
        feats = np.asarray(self.features, dtype=object)
        return pl.DataFrame(
            {
                "doc": pl.Series(docs[rows].tolist() if len(rows) else [], dtype=pl.Utf8),
                "feature": pl.Series(feats[cols].tolist() if len(cols) else [], dtype=pl.Utf8),
                "count": counts,
            }
        )

    def take_rows(self, order: Sequence[int]) -> "SparseCountMatrix":
        """Return a new matrix with rows (and docvars) taken in ``order``."""
        idx = np.asarray(order, dtype=np.int64)
        if len(idx) and (idx.min() < 0 or idx.max() >= self.ndoc):
            raise InvalidMatrix(f"row indices must lie in [0, {self.ndoc})")
        docvars = self.docvars
        if docvars.width:
            docvars = docvars.select(pl.all().gather(idx.tolist()))
        return SparseCountMatrix(
            tuple(self.documents[i] for i in idx),
            self.features,
            self.data[idx, :],
            docvars,
            self.meta,
        )

    def equals(self, other: "SparseCountMatrix") -> bool:
        return (
            self.documents == other.documents
            and self.features == other.features
            and self.data.shape == other.data.shape
            and (self.data != other.data).nnz == 0
        )

    def __repr__(self) -> str:
        return (
            f"SparseCountMatrix(ndoc={self.ndoc}, nfeature={self.nfeature}, "
            f"nnz={self.nnz}, meta={dict(self.meta)})"
        )
