import numpy as np
import polars as pl
import pytest

from dfm_keyness import SparseCountMatrix


@pytest.fixture
def pair():
    """Two documents: {a:5, b:0} vs {a:1, b:4}."""
    return SparseCountMatrix.from_dense([[5, 0], [1, 4]], ["d1", "d2"], ["a", "b"])


@pytest.fixture
def four_docs():
    docvars = pl.DataFrame(
        {
            "grp": ["grp1", "grp1", "grp2", "grp2"],
            "year": [2020, 2021, 2020, 2020],
        }
    )
    return SparseCountMatrix.from_dense(
        [[2, 1, 0, 0], [1, 1, 2, 0], [1, 0, 1, 4], [1, 0, 2, 2]],
        ["d1", "d2", "d3", "d4"],
        ["a", "b", "c", "d"],
        docvars=docvars,
        meta={"weight_tf": "count"},
    )


@pytest.fixture(scope="session")
def random_matrix():
    rng = np.random.default_rng(20240601)
    counts = rng.integers(0, 12, size=(6, 40))
    counts[:, 7] = 0  # one feature never observed
    return SparseCountMatrix.from_dense(counts)
