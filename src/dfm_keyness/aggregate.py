import logging
from collections.abc import Hashable, Sequence
from typing import Any

import numpy as np
import pandas as pd
import polars as pl
import scipy.sparse as sp

from dfm_keyness.errors import DimensionMismatch, ValidationError
from dfm_keyness.matrix import SparseCountMatrix

GroupingKey = Sequence[Hashable] | pl.Series | pd.Series | pd.Categorical


def _is_missing(value: Any) -> bool:
    # None, NaN, pd.NA and NaT alike
    return value is None or (pd.api.types.is_scalar(value) and bool(pd.isna(value)))


def _label_names(raw: list[Any], axis: str) -> list[str]:
    """Stringify labels, refusing distinct labels that print the same (1 and "1")."""
    seen: dict[str, Any] = {}
    names = []
    for value in raw:
        name = str(value)
        first = seen.setdefault(name, value)
        if first is not value and first != value:
            raise ValidationError(
                f"grouping key labels {first!r} and {value!r} on the {axis} axis "
                f"share the name '{name}'"
            )
        names.append(name)
    return names


def _key_labels(key: GroupingKey) -> tuple[list[Any], list[str] | None]:
    """
    Split a grouping key into per-index labels and declared levels.

    Declared levels exist only for categorical keys (``pandas`` categoricals
    and ``polars`` Enum series); for anything else the second element is None.
    """
    if isinstance(key, pd.Categorical):
        return list(key), [str(c) for c in key.categories]
    if isinstance(key, pd.Series):
        if isinstance(key.dtype, pd.CategoricalDtype):
            return key.tolist(), [str(c) for c in key.cat.categories]
        return key.tolist(), None
    if isinstance(key, pl.Series):
        if isinstance(key.dtype, pl.Enum):
            return key.to_list(), [str(c) for c in key.dtype.categories.to_list()]
        return key.to_list(), None
    if isinstance(key, (str, bytes)):
        raise ValidationError(f"grouping key must be a sequence of labels, got {key!r}")
    return list(key), None


def _group_levels(labels: list[str], declared: list[str] | None, fill: bool) -> list[str]:
    """
    Order the group labels: first occurrence, or declared order for categorical keys.

    With ``fill`` and declared levels, levels absent from ``labels`` are appended
    after the observed ones.

    >>> _group_levels(["b", "a", "b"], None, fill=True)
    ['b', 'a']
    >>> _group_levels(["b", "a"], ["a", "b", "c"], fill=False)
    ['a', 'b']
    >>> _group_levels(["c"], ["a", "b", "c"], fill=True)
    ['c', 'a', 'b']
    """
    observed = list(dict.fromkeys(labels))
    if declared is None:
        if fill:
            logging.debug("fill has no effect for a non-categorical grouping key")
        return observed
    present = set(observed)
    levels = [lv for lv in declared if lv in present]
    if fill:
        levels += [lv for lv in declared if lv not in present]
    return levels


def _resolve_key(key: GroupingKey, size: int, axis: str, fill: bool) -> tuple[np.ndarray, list[str]]:
    raw, declared = _key_labels(key)
    if len(raw) != size:
        raise DimensionMismatch(
            f"grouping key has length {len(raw)} but the {axis} axis has size {size}"
        )
    missing = [i for i, v in enumerate(raw) if _is_missing(v)]
    if missing:
        raise ValidationError(
            f"grouping key has missing labels at {axis} positions {missing[:10]}"
        )
    labels = _label_names(raw, axis)
    levels = _group_levels(labels, declared, fill)
    position = {lv: i for i, lv in enumerate(levels)}
    mapping = np.fromiter((position[lv] for lv in labels), dtype=np.int64, count=size)
    return mapping, levels


def _docvar_key(matrix: SparseCountMatrix, names: str | Sequence[str]) -> GroupingKey | None:
    """Turn docvar name(s) into a grouping key, or None if they are not docvar names."""
    if isinstance(names, str):
        names = [names]
    elif not (isinstance(names, (list, tuple)) and names and all(isinstance(n, str) for n in names)):
        return None
    if not all(n in matrix.docvars.columns for n in names):
        return None
    if len(names) == 1:
        return matrix.docvars.get_column(names[0])
    # Interaction of several docvars, joined the way R's interaction() labels levels.
    return (
        matrix.docvars.select(
            pl.concat_str([pl.col(n).cast(pl.Utf8) for n in names], separator=".")
        )
        .to_series()
        .to_list()
    )


def group_matrix(
    matrix: SparseCountMatrix,
    documents: GroupingKey | None = None,
    features: GroupingKey | None = None,
    fill: bool = False,
) -> SparseCountMatrix:
    """
    Combine rows and/or columns of a matrix by grouping keys, summing counts.

    Every nonzero cell is moved to its (group row, group column) coordinate;
    cells that collide are summed exactly (integer counts stay integers). The
    grouped axis is renamed to the group labels, and per-document variables
    are dropped when rows are grouped. Matrix-level ``meta`` passes through.

    :param matrix: input matrix, left untouched
    :param documents: one label per document, or None to keep rows
    :param features: one label per feature, or None to keep columns
    :param fill: for categorical keys, also emit all-zero groups for declared
        levels that do not occur
    :return: a new SparseCountMatrix

    >>> m = SparseCountMatrix.from_dense([[1, 2], [3, 4], [5, 6]], ["a", "b", "c"], ["x", "y"])
    >>> g = group_matrix(m, documents=["g1", "g2", "g1"])
    >>> g.documents, g.to_dense().tolist()
    (('g1', 'g2'), [[6, 8], [3, 4]])
    """
    if documents is None and features is None:
        return matrix

    rows, cols, counts = matrix.to_coo()
    doc_names, feat_names = matrix.documents, matrix.features
    docvars = matrix.docvars

    if documents is not None:
        doc_map, doc_names = _resolve_key(documents, matrix.ndoc, "document", fill)
        rows = doc_map[rows]
        docvars = pl.DataFrame()
    if features is not None:
        feat_map, feat_names = _resolve_key(features, matrix.nfeature, "feature", fill)
        cols = feat_map[cols]

    shape = (len(doc_names), len(feat_names))
    # COO -> CSR conversion sums entries sharing a coordinate.
    data = sp.coo_matrix((counts, (rows, cols)), shape=shape).tocsr()
    logging.debug(
        "grouped %s matrix into %s (%d nonzero cells)", matrix.shape, shape, data.nnz
    )
    return SparseCountMatrix(tuple(doc_names), tuple(feat_names), data, docvars, matrix.meta)


def group_rows(
    matrix: SparseCountMatrix, key: GroupingKey | str | Sequence[str], fill: bool = False
) -> SparseCountMatrix:
    """
    Combine documents by a grouping key.

    ``key`` may also name one docvar, or several docvars whose values are
    combined into interaction labels such as ``"grp1.2020"``.

    >>> m = SparseCountMatrix.from_dense([[1, 0], [2, 1], [0, 5], [4, 4]])
    >>> group_rows(m, [1, 1, 2, 2]).to_dense().tolist()
    [[3, 1], [4, 9]]
    """
    from_docvars = _docvar_key(matrix, key) if isinstance(key, (str, list, tuple)) else None
    if from_docvars is not None:
        key = from_docvars
    elif isinstance(key, str):
        raise ValidationError(
            f"'{key}' is not a docvar; available docvars: {matrix.docvars.columns}"
        )
    return group_matrix(matrix, documents=key, fill=fill)


def group_columns(
    matrix: SparseCountMatrix, key: GroupingKey, fill: bool = False
) -> SparseCountMatrix:
    """Combine features by a grouping key."""
    return group_matrix(matrix, features=key, fill=fill)
