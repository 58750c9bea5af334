from dfm_keyness.aggregate import group_columns, group_matrix, group_rows
from dfm_keyness.contingency import ContingencyTable, ContingencyTables, build_tables
from dfm_keyness.errors import (
    ConfigurationWarning,
    DimensionMismatch,
    EmptyGroup,
    IndexOutOfRange,
    InsufficientDocuments,
    InvalidMatrix,
    InvalidOption,
    InvalidShape,
    LengthMismatch,
    TargetNotFound,
    ValidationError,
)
from dfm_keyness.keyness import KeynessResult, textstat_keyness
from dfm_keyness.matrix import SparseCountMatrix
from dfm_keyness.measures import MEASURES, get_measure

__all__ = [
    "MEASURES",
    "ConfigurationWarning",
    "ContingencyTable",
    "ContingencyTables",
    "DimensionMismatch",
    "EmptyGroup",
    "IndexOutOfRange",
    "InsufficientDocuments",
    "InvalidMatrix",
    "InvalidOption",
    "InvalidShape",
    "KeynessResult",
    "LengthMismatch",
    "SparseCountMatrix",
    "TargetNotFound",
    "ValidationError",
    "build_tables",
    "get_measure",
    "group_columns",
    "group_matrix",
    "group_rows",
    "textstat_keyness",
]
