import logging
from pathlib import Path

import orjson
import polars as pl

from dfm_keyness.errors import DimensionMismatch, InvalidMatrix
from dfm_keyness.keyness import KeynessResult
from dfm_keyness.matrix import SparseCountMatrix


def _separator(path: Path) -> str:
    return "\t" if path.suffix.lower() in (".tsv", ".tab") else ","


def read_counts(
    path: Path | str,
    docvars_path: Path | str | None = None,
    doc_col: str = "doc",
    feature_col: str = "feature",
    count_col: str = "count",
) -> SparseCountMatrix:
    """
    Read a long-format counts file (one row per document/feature pair) into a matrix.

    :param path: CSV or TSV with ``doc``, ``feature`` and ``count`` columns;
        repeated pairs are summed
    :param docvars_path: optional CSV/TSV with a ``doc`` column and one row per
        document; its other columns become docvars
    """
    path = Path(path).expanduser()
    df = pl.read_csv(path, separator=_separator(path))
    logging.info("Read %d count records from %s", df.height, path)

    docvars = None
    documents = None
    if docvars_path is not None:
        docvars_path = Path(docvars_path).expanduser()
        dv = pl.read_csv(docvars_path, separator=_separator(docvars_path))
        if doc_col not in dv.columns:
            raise InvalidMatrix(f"{docvars_path} has no '{doc_col}' column")
        dv = dv.with_columns(pl.col(doc_col).cast(pl.Utf8))
        # Documents follow the docvars file, so documents without counts are kept.
        documents = dv.get_column(doc_col).to_list()
        docvars = dv.drop(doc_col)

    m = SparseCountMatrix.from_records(
        df, doc_col=doc_col, feature_col=feature_col, count_col=count_col, documents=documents
    )
    if docvars is not None:
        if docvars.height != m.ndoc:
            raise DimensionMismatch(
                f"docvars has {docvars.height} rows but there are {m.ndoc} documents"
            )
        m = SparseCountMatrix(m.documents, m.features, m.data, docvars, m.meta)
    return m


def write_counts(matrix: SparseCountMatrix, path: Path | str) -> None:
    """Write the nonzero cells of a matrix as a long-format CSV/TSV."""
    path = Path(path)
    matrix.to_polars().write_csv(path, separator=_separator(path))
    logging.info("Wrote %d nonzero cells to %s", matrix.nnz, path)


def write_keyness(result: KeynessResult, path: Path | str) -> Path:
    """
    Write a keyness table as CSV, with its grouping in ``<stem>.documents.json``.

    :return: path of the JSON sidecar
    """
    path = Path(path)
    result.table.write_csv(path, separator=_separator(path))
    sidecar = path.with_name(f"{path.stem}.documents.json")
    sidecar.write_bytes(
        orjson.dumps(
            {
                "measure": result.measure,
                "correction": result.correction,
                "documents": dict(result.documents),
            },
            option=orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE,
        )
    )
    logging.info("Wrote %d features to %s (groups in %s)", len(result), path, sidecar)
    return sidecar
