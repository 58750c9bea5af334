"""
dfm-keyness: CLI for grouping document-feature counts and scoring keyness.

Usage:
  dfm-keyness keyness [OPTIONS] COUNTS OUT_CSV
  dfm-keyness group [OPTIONS] COUNTS OUT_CSV

Examples:
  dfm-keyness keyness counts.csv keyness.csv
  dfm-keyness keyness counts.csv keyness.csv --target 2017-Trump --measure lr -v
  dfm-keyness keyness counts.tsv keyness.csv --docvars docs.tsv --target-docvar period=post-war
  dfm-keyness group counts.csv grouped.csv --docvars docs.csv --by genre --by year
"""

import logging
from pathlib import Path

import polars as pl
import typer

from dfm_keyness.aggregate import group_rows
from dfm_keyness.io import read_counts, write_counts, write_keyness
from dfm_keyness.keyness import textstat_keyness

app = typer.Typer(help=__doc__, no_args_is_help=True)


def setup_logging(verbose: int):
    """Set up logging based on verbosity level."""
    if verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:  # verbose >= 2
        level = logging.DEBUG

    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s")


def _parse_target(target: str, documents: tuple[str, ...]):
    """A document name wins over a 1-based index, so names like 2017 stay names."""
    if target in documents or not target.isdigit():
        return target
    return int(target)


@app.command("keyness", help="Score keyness of every feature for a target group.")
def keyness(
    counts: Path = typer.Argument(..., help="Long-format CSV/TSV with doc, feature, count"),
    out_csv: Path = typer.Argument(..., help="Output CSV for the keyness table"),
    target: str = typer.Option(
        "1", "--target", "-t", help="1-based document index or document name"
    ),
    target_docvar: str = typer.Option(
        None,
        "--target-docvar",
        help="Select the target as DOCVAR=VALUE (needs --docvars)",
    ),
    docvars: Path = typer.Option(
        None, "--docvars", "-d", help="CSV/TSV of document variables with a doc column"
    ),
    measure: str = typer.Option("chi2", "--measure", "-m", help="chi2, exact, lr or pmi"),
    correction: str = typer.Option(
        "default", "--correction", "-c", help="default, yates, williams or none"
    ),
    sort: bool = typer.Option(True, "--sort/--no-sort", help="Sort by descending score"),
    adjust: str = typer.Option(
        None, "--adjust", help="Multiple-comparison method, e.g. fdr_bh"
    ),
    n_jobs: int = typer.Option(1, "--jobs", "-j", help="Threads for feature scoring", min=1),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
) -> None:
    """Read counts, score keyness and write the table plus its document groups."""
    setup_logging(verbose)
    matrix = read_counts(counts, docvars_path=docvars)

    if target_docvar:
        name, sep, value = target_docvar.partition("=")
        if not sep or name not in matrix.docvars.columns:
            raise typer.BadParameter(
                f"expected DOCVAR=VALUE with DOCVAR in {matrix.docvars.columns}",
                param_hint="--target-docvar",
            )
        selector = (
            matrix.docvars.get_column(name).cast(pl.Utf8).eq(value).fill_null(False)
        )
    else:
        selector = _parse_target(target, matrix.documents)

    result = textstat_keyness(
        matrix,
        target=selector,
        measure=measure,
        sort=sort,
        correction=correction,
        adjust=adjust,
        n_jobs=n_jobs,
        progress=verbose > 0,
    )
    write_keyness(result, out_csv)
    typer.echo(str(result.table.head(10)))


@app.command("group", help="Combine documents by docvar(s) and write the summed counts.")
def group(
    counts: Path = typer.Argument(..., help="Long-format CSV/TSV with doc, feature, count"),
    out_csv: Path = typer.Argument(..., help="Output long-format CSV of grouped counts"),
    docvars: Path = typer.Option(
        ..., "--docvars", "-d", help="CSV/TSV of document variables with a doc column"
    ),
    by: list[str] = typer.Option(..., "--by", help="Docvar(s) to group documents by"),
    fill: bool = typer.Option(
        False, "--fill/--no-fill", help="Keep empty groups for declared levels"
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
) -> None:
    """Group documents by docvars, summing their feature counts."""
    setup_logging(verbose)
    matrix = read_counts(counts, docvars_path=docvars)
    missing = [b for b in by if b not in matrix.docvars.columns]
    if missing:
        raise typer.BadParameter(
            f"unknown docvar(s) {missing}; available: {matrix.docvars.columns}",
            param_hint="--by",
        )
    grouped = group_rows(matrix, by if len(by) > 1 else by[0], fill=fill)
    logging.info("Grouped %d documents into %d groups", matrix.ndoc, grouped.ndoc)
    write_counts(grouped, out_csv)


if __name__ == "__main__":
    app()
