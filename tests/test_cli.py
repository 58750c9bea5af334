import orjson
import polars as pl
import pytest
from typer.testing import CliRunner

from dfm_keyness.cli import app
from dfm_keyness.io import read_counts

runner = CliRunner()


@pytest.fixture
def counts_csv(tmp_path):
    path = tmp_path / "counts.csv"
    pl.DataFrame(
        {
            "doc": ["d1", "d1", "d2", "d2", "d3", "d3"],
            "feature": ["a", "b", "a", "b", "a", "c"],
            "count": [5, 1, 1, 4, 2, 3],
        }
    ).write_csv(path)
    return path


@pytest.fixture
def docvars_tsv(tmp_path):
    path = tmp_path / "docs.tsv"
    path.write_text("doc\tperiod\nd1\tpre\nd2\tpost\nd3\tpost\nd4\tpre\n", encoding="utf-8")
    return path


def test_read_counts_with_docvars(counts_csv, docvars_tsv):
    m = read_counts(counts_csv, docvars_path=docvars_tsv)
    # d4 has no counts but is declared in the docvars file
    assert m.documents == ("d1", "d2", "d3", "d4")
    assert m.docvars["period"].to_list() == ["pre", "post", "post", "pre"]
    assert m.to_dense()[3].sum() == 0


def test_keyness_command(tmp_path, counts_csv):
    out = tmp_path / "keyness.csv"
    result = runner.invoke(app, ["keyness", str(counts_csv), str(out), "--measure", "lr"])
    print(result.output)
    assert result.exit_code == 0
    table = pl.read_csv(out)
    assert table.columns == ["feature", "G2", "p", "n_target", "n_reference"]
    assert table["feature"][0] == "a"

    meta = orjson.loads((tmp_path / "keyness.documents.json").read_bytes())
    assert meta["documents"] == {"target": ["d1"], "reference": ["d2", "d3"]}
    assert meta["correction"] == "williams"


def test_keyness_command_with_docvar_target(tmp_path, counts_csv, docvars_tsv):
    out = tmp_path / "keyness.csv"
    result = runner.invoke(
        app,
        [
            "keyness",
            str(counts_csv),
            str(out),
            "--docvars",
            str(docvars_tsv),
            "--target-docvar",
            "period=post",
            "--no-sort",
        ],
    )
    assert result.exit_code == 0, result.output
    table = pl.read_csv(out)
    assert table["n_target"].to_list() == [3, 4, 3]
    meta = orjson.loads((tmp_path / "keyness.documents.json").read_bytes())
    assert meta["documents"]["target"] == ["d2", "d3"]


def test_keyness_command_bad_docvar(tmp_path, counts_csv, docvars_tsv):
    result = runner.invoke(
        app,
        [
            "keyness",
            str(counts_csv),
            str(tmp_path / "out.csv"),
            "--docvars",
            str(docvars_tsv),
            "--target-docvar",
            "genre=news",
        ],
    )
    assert result.exit_code != 0


def test_group_command(tmp_path, counts_csv, docvars_tsv):
    out = tmp_path / "grouped.csv"
    result = runner.invoke(
        app,
        ["group", str(counts_csv), str(out), "--docvars", str(docvars_tsv), "--by", "period"],
    )
    assert result.exit_code == 0, result.output
    grouped = pl.read_csv(out).sort(["doc", "feature"])
    assert grouped.rows() == [
        ("post", "a", 3),
        ("post", "b", 4),
        ("post", "c", 3),
        ("pre", "a", 5),
        ("pre", "b", 1),
    ]


def test_keyness_command_with_numeric_document_names(tmp_path):
    counts = tmp_path / "years.csv"
    pl.DataFrame(
        {
            "doc": [1999, 1999, 2017, 2017, 2021],
            "feature": ["a", "b", "a", "c", "b"],
            "count": [2, 3, 4, 1, 5],
        }
    ).write_csv(counts)

    out = tmp_path / "by_name.csv"
    result = runner.invoke(app, ["keyness", str(counts), str(out), "--target", "2017"])
    assert result.exit_code == 0, result.output
    meta = orjson.loads((tmp_path / "by_name.documents.json").read_bytes())
    assert meta["documents"]["target"] == ["2017"]

    # digits that are not a document name are still an index
    out = tmp_path / "by_index.csv"
    result = runner.invoke(app, ["keyness", str(counts), str(out), "--target", "3"])
    assert result.exit_code == 0, result.output
    meta = orjson.loads((tmp_path / "by_index.documents.json").read_bytes())
    assert meta["documents"]["target"] == ["2021"]
