import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import numpy as np
import pandas as pd
import polars as pl
from pydantic import ValidationError as PydanticValidationError
from statsmodels.stats.multitest import multipletests

from dfm_keyness.aggregate import group_rows
from dfm_keyness.contingency import ContingencyTables, build_tables
from dfm_keyness.errors import (
    EmptyGroup,
    IndexOutOfRange,
    InsufficientDocuments,
    InvalidOption,
    LengthMismatch,
    TargetNotFound,
)
from dfm_keyness.matrix import SparseCountMatrix
from dfm_keyness.measures import AssociationMeasure, get_measure
from dfm_keyness.schemas import KeynessOptions

TARGET = "target"
REFERENCE = "reference"


@dataclass(frozen=True, eq=False)
class KeynessResult:
    """
    Keyness table plus the grouping it was computed from.

    ``table`` has one row per feature with columns ``feature``, the score
    (named after the measure: ``chi2``, ``G2``, ``or`` or ``pmi``), ``p``,
    ``n_target`` and ``n_reference`` (and ``p_adj`` when requested).
    ``documents`` maps ``"target"`` and ``"reference"`` to the document
    identifiers merged into each group.
    """

    table: pl.DataFrame
    documents: Mapping[str, tuple[str, ...]]
    measure: str
    correction: str

    def __post_init__(self):
        documents = {group: tuple(docs) for group, docs in self.documents.items()}
        object.__setattr__(self, "documents", MappingProxyType(documents))

    @property
    def score_column(self) -> str:
        return self.table.columns[1]

    def __len__(self) -> int:
        return self.table.height


def _is_bool_like(values: Sequence[Any]) -> bool:
    return all(isinstance(v, (bool, np.bool_)) for v in values)


def _is_int_like(values: Sequence[Any]) -> bool:
    return all(
        isinstance(v, (int, np.integer)) and not isinstance(v, (bool, np.bool_))
        for v in values
    )


def _check_index(i: int, ndoc: int) -> int:
    if i < 1 or i > ndoc:
        raise IndexOutOfRange(f"target index {i} outside range of documents [1, {ndoc}]")
    return i - 1


def _check_name(name: str, documents: Sequence[str]) -> int:
    try:
        return documents.index(name)
    except ValueError:
        raise TargetNotFound(f"target '{name}' not found among the document names") from None


def target_mask(matrix: SparseCountMatrix, target: Any) -> np.ndarray:
    """
    Resolve a target selector into a boolean mask over documents.

    ``target`` is a 1-based document index, a document name, a boolean mask
    with one entry per document, or a sequence of indices or names.

    >>> m = SparseCountMatrix.from_dense([[1], [2], [3]], ["a", "b", "c"], ["x"])
    >>> target_mask(m, "b").tolist()
    [False, True, False]
    >>> target_mask(m, 3).tolist()
    [False, False, True]
    """
    ndoc = matrix.ndoc
    mask = np.zeros(ndoc, dtype=bool)

    if isinstance(target, (bool, np.bool_)):
        raise LengthMismatch(
            f"target mask has length 1 but there are {ndoc} documents"
        )
    if isinstance(target, float) and target.is_integer():
        target = int(target)
    if isinstance(target, (int, np.integer)):
        mask[_check_index(int(target), ndoc)] = True
        return mask
    if isinstance(target, str):
        mask[_check_name(target, matrix.documents)] = True
        return mask

    if isinstance(target, (pl.Series, pd.Series, np.ndarray)):
        values = target.to_list() if isinstance(target, pl.Series) else target.tolist()
    else:
        try:
            values = list(target)
        except TypeError:
            values = []

    if values and _is_bool_like(values):
        if len(values) != ndoc:
            raise LengthMismatch(
                f"target mask has length {len(values)} but there are {ndoc} documents"
            )
        return np.asarray(values, dtype=bool)
    if values and _is_int_like(values):
        for i in values:
            mask[_check_index(int(i), ndoc)] = True
        return mask
    if values and all(isinstance(v, str) for v in values):
        for name in values:
            mask[_check_name(name, matrix.documents)] = True
        return mask
    raise InvalidOption(
        f"target must be an index, a document name or a boolean mask, got {target!r}"
    )


def _score_features(
    scorer: AssociationMeasure, tables: ContingencyTables, correction: str, n_jobs: int
) -> tuple[np.ndarray, np.ndarray]:
    n = len(tables)
    if n_jobs == 1 or n < 2:
        return scorer.score_all(tables, correction)
    chunks = [idx for idx in np.array_split(np.arange(n), min(n_jobs, n)) if len(idx)]
    with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
        # map() yields in submission order, so chunks come back in feature order.
        parts = list(pool.map(lambda idx: scorer.score_all(tables.subset(idx), correction), chunks))
    return (
        np.concatenate([values for values, _ in parts]),
        np.concatenate([pvalues for _, pvalues in parts]),
    )


def _adjust_pvalues(pvalues: np.ndarray, method: str) -> np.ndarray:
    adjusted = np.full(len(pvalues), np.nan)
    finite = np.isfinite(pvalues)
    if finite.any():
        _, p_adj, _, _ = multipletests(pvalues[finite], alpha=0.05, method=method)
        adjusted[finite] = p_adj
    return adjusted


def textstat_keyness(
    matrix: SparseCountMatrix,
    target: Any = 1,
    measure: str = "chi2",
    sort: bool = True,
    correction: str = "default",
    adjust: str | None = None,
    n_jobs: int = 1,
    progress: bool = False,
) -> KeynessResult:
    """
    Score features that occur differentially in a target group of documents.

    The documents picked by ``target`` are merged into one target row and all
    other documents into one reference row; every feature is then scored on
    its 2x2 table with the chosen measure.

    :param matrix: documents x features counts, at least two documents
    :param target: 1-based index, document name, or boolean mask (default: first document)
    :param measure: "chi2" (default), "exact" (Fisher), "lr" (G2) or "pmi"
    :param sort: order features by descending score (ties keep feature order)
    :param correction: "default" (Yates for chi2, Williams for lr, none otherwise),
        "yates", "williams" or "none"; exact and pmi warn and ignore corrections
    :param adjust: optional statsmodels multipletests method, adds a ``p_adj`` column
    :param n_jobs: number of threads to score features with
    :param progress: show a progress bar for the exact test
    :return: KeynessResult

    >>> m = SparseCountMatrix.from_dense([[5, 0], [1, 4]], ["d1", "d2"], ["a", "b"])
    >>> res = textstat_keyness(m)
    >>> res.table["feature"].to_list()
    ['a', 'b']
    >>> dict(res.documents)
    {'target': ('d1',), 'reference': ('d2',)}
    """
    try:
        options = KeynessOptions(
            measure=measure,
            correction=correction,
            sort=sort,
            adjust=adjust,
            n_jobs=n_jobs,
            progress=progress,
        )
    except PydanticValidationError as e:
        raise InvalidOption(str(e)) from e

    if matrix.ndoc < 2:
        raise InsufficientDocuments(
            f"keyness needs at least two documents, got {matrix.ndoc}"
        )
    mask = target_mask(matrix, target)
    if mask.all():
        raise EmptyGroup("target selects every document; the reference group is empty")
    if not mask.any():
        raise EmptyGroup("target selects no documents")

    key = pl.Series("group", np.where(mask, TARGET, REFERENCE).tolist())
    grouped = group_rows(matrix, key, fill=False)
    grouped = grouped.take_rows(
        [grouped.documents.index(TARGET), grouped.documents.index(REFERENCE)]
    )

    tables = build_tables(grouped)
    scorer = get_measure(
        options.measure, **({"progress": options.progress} if options.measure == "exact" else {})
    )
    effective = scorer.resolve_correction(options.correction)
    logging.info(
        "keyness: measure=%s correction=%s target=%d docs reference=%d docs features=%d",
        options.measure,
        effective,
        int(mask.sum()),
        int((~mask).sum()),
        len(tables),
    )

    values, pvalues = _score_features(scorer, tables, effective, options.n_jobs)

    counts_dtype = pl.Int64 if matrix.data.dtype.kind in "iu" else pl.Float64
    table = pl.DataFrame(
        {
            "feature": pl.Series(list(tables.features), dtype=pl.Utf8),
            scorer.label: pl.Series(values, dtype=pl.Float64),
            "p": pl.Series(pvalues, dtype=pl.Float64),
            "n_target": pl.Series(tables.a).cast(counts_dtype),
            "n_reference": pl.Series(tables.b).cast(counts_dtype),
        }
    )
    if options.adjust:
        table = table.with_columns(pl.Series("p_adj", _adjust_pvalues(pvalues, options.adjust)))

    if options.sort and table.height:
        # Stable descending order; NaN scores sort last.
        order = np.argsort(-values, kind="stable")
        table = table.select(pl.all().gather(order.tolist()))

    documents = {
        TARGET: tuple(d for d, m in zip(matrix.documents, mask) if m),
        REFERENCE: tuple(d for d, m in zip(matrix.documents, mask) if not m),
    }
    return KeynessResult(table, documents, options.measure, effective)
