import numpy as np
import pandas as pd
import polars as pl
import pytest

from dfm_keyness import (
    DimensionMismatch,
    SparseCountMatrix,
    ValidationError,
    group_columns,
    group_matrix,
    group_rows,
)


def test_group_rows_pairwise_sums(four_docs):
    g = group_rows(four_docs, [1, 1, 2, 2])
    dense = four_docs.to_dense()
    assert g.documents == ("1", "2")
    assert g.features == four_docs.features
    assert g.to_dense().tolist() == [
        (dense[0] + dense[1]).tolist(),
        (dense[2] + dense[3]).tolist(),
    ]


def test_labels_follow_first_occurrence(four_docs):
    g = group_rows(four_docs, ["z", "a", "z", "m"])
    assert g.documents == ("z", "a", "m")


@pytest.mark.parametrize("axis", ["rows", "columns"])
def test_mass_is_conserved(random_matrix, axis):
    rng = np.random.default_rng(7)
    if axis == "rows":
        key = rng.integers(0, 3, size=random_matrix.ndoc).tolist()
        g = group_rows(random_matrix, key)
    else:
        key = rng.integers(0, 5, size=random_matrix.nfeature).tolist()
        g = group_columns(random_matrix, key)
    assert g.total() == random_matrix.total()
    assert g.data.dtype == np.int64


def test_summation_does_not_depend_on_entry_order():
    rows = [0, 1, 2, 0, 1, 2]
    cols = [0, 1, 0, 1, 0, 1]
    counts = [3, 5, 7, 11, 13, 17]
    m1 = SparseCountMatrix.from_coo(["a", "b", "c"], ["x", "y"], rows, cols, counts)
    m2 = SparseCountMatrix.from_coo(
        ["a", "b", "c"], ["x", "y"], rows[::-1], cols[::-1], counts[::-1]
    )
    key = ["g", "g", "g"]
    assert group_rows(m1, key).to_dense().tolist() == [[23, 33]]
    assert group_rows(m1, key).equals(group_rows(m2, key))


def test_identity_grouping(random_matrix):
    g = group_rows(random_matrix, list(random_matrix.documents))
    assert g.equals(random_matrix)
    g = group_columns(random_matrix, list(random_matrix.features))
    assert g.equals(random_matrix)


def test_regrouping_is_a_no_op(four_docs):
    g = group_rows(four_docs, ["x", "y", "x", "y"])
    again = group_rows(g, list(g.documents))
    assert again.equals(g)


def test_group_both_axes(four_docs):
    g = group_matrix(four_docs, documents=[1, 1, 2, 2], features=["ab", "ab", "cd", "cd"])
    assert g.shape == (2, 2)
    assert g.to_dense().tolist() == [[5, 2], [2, 9]]


def test_fill_with_pandas_categorical(four_docs):
    key = pd.Categorical(["c", "a", "c", "a"], categories=["a", "b", "c", "d"])
    observed = group_rows(four_docs, key, fill=False)
    filled = group_rows(four_docs, key, fill=True)

    # declared level order for categorical keys
    assert observed.documents == ("a", "c")
    assert filled.documents == ("a", "c", "b", "d")
    assert set(observed.documents) <= set(filled.documents)
    assert filled.to_dense()[:2].tolist() == observed.to_dense().tolist()
    assert filled.to_dense()[2:].sum() == 0


def test_fill_with_polars_enum(four_docs):
    key = pl.Series(["b", "b", "a", "a"], dtype=pl.Enum(["a", "b", "c"]))
    assert group_rows(four_docs, key).documents == ("a", "b")
    assert group_rows(four_docs, key, fill=True).documents == ("a", "b", "c")


def test_fill_on_feature_axis(four_docs):
    key = pd.Series(["v", "v", "w", "w"], dtype=pd.CategoricalDtype(["u", "v", "w"]))
    g = group_columns(four_docs, key, fill=True)
    assert g.features == ("v", "w", "u")
    assert g.col_sums().tolist() == [7, 11, 0]


def test_fill_ignored_for_plain_keys(four_docs):
    assert group_rows(four_docs, [1, 1, 2, 2], fill=True).documents == ("1", "2")


def test_key_length_must_match(four_docs):
    with pytest.raises(DimensionMismatch, match="length 3 but the document axis has size 4"):
        group_rows(four_docs, [1, 2, 3])
    with pytest.raises(DimensionMismatch, match="feature axis"):
        group_columns(four_docs, ["a"])


def test_missing_labels_rejected(four_docs):
    with pytest.raises(ValidationError, match="missing labels"):
        group_rows(four_docs, ["a", None, "b", "b"])


@pytest.mark.parametrize(
    "key",
    [
        pd.Series(["a", pd.NA, "a", "b"], dtype=object),
        pd.Series(["a", pd.NA, "a", "b"], dtype="string"),
        pd.Series([1, pd.NA, 1, 2], dtype="Int64"),
        pd.Categorical(["a", None, "a", "b"]),
        pl.Series(["a", None, "a", "b"]),
        [float("nan"), "a", "a", "b"],
    ],
)
def test_pandas_and_polars_missing_labels_rejected(four_docs, key):
    with pytest.raises(ValidationError, match="missing labels at document positions"):
        group_rows(four_docs, key)


def test_labels_that_print_alike_are_not_merged(four_docs):
    with pytest.raises(ValidationError, match="share the name '1'"):
        group_rows(four_docs, [1, "1", 2, 2])
    # numpy and python integers are the same label
    g = group_rows(four_docs, [np.int64(1), 1, 2, 2])
    assert g.documents == ("1", "2")


def test_group_by_docvar(four_docs):
    g = group_rows(four_docs, "grp")
    assert g.documents == ("grp1", "grp2")
    assert g.to_dense().tolist() == [[3, 2, 2, 0], [2, 0, 3, 6]]
    assert g.docvars.width == 0
    assert g.meta == four_docs.meta


def test_group_by_docvar_interaction(four_docs):
    g = group_rows(four_docs, ["grp", "year"])
    assert g.documents == ("grp1.2020", "grp1.2021", "grp2.2020")
    assert g.total() == four_docs.total()


def test_unknown_docvar(four_docs):
    with pytest.raises(ValidationError, match="not a docvar"):
        group_rows(four_docs, "genre")


def test_grouping_columns_keeps_docvars(four_docs):
    g = group_columns(four_docs, ["x", "x", "y", "y"])
    assert g.docvars.equals(four_docs.docvars)


def test_input_left_untouched(four_docs):
    before = four_docs.to_dense().copy()
    group_rows(four_docs, [1, 1, 1, 1])
    assert (four_docs.to_dense() == before).all()


def test_empty_matrix_groups():
    m = SparseCountMatrix.from_coo(["a", "b", "c"], ["x"], [], [], [])
    g = group_rows(m, [1, 2, 1])
    assert g.shape == (2, 1)
    assert g.nnz == 0
