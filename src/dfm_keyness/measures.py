"""
Signed association measures over per-feature 2x2 tables.

Each measure maps the tables of a (target, reference) matrix to a score and
a p-value per feature. Scores are signed so that they are positive when the
feature is over-represented in the target (``a > E``) and negative when it is
under-represented; for ``exact`` the score is an odds ratio, which is above 1
in the same situation.

The p-values are measure-specific: chi2 and lr use the asymptotic chi-squared
distribution with one degree of freedom, exact uses the hypergeometric test,
and the pmi p-value is only a heuristic (the chi-squared tail applied to
``|pmi|``). They are not comparable across measures.

References:
    Dunning, T. 1993. Accurate Methods for the Statistics of Surprise and
    Coincidence. Computational Linguistics 19(1): 61-74.
    http://influentialpoints.com/Training/g-likelihood_ratio_test.htm
"""

import logging
import warnings

import numpy as np
from scipy.stats import chi2 as _chi2
from scipy.stats import fisher_exact
from scipy.stats.contingency import odds_ratio
from tqdm import tqdm

from dfm_keyness.contingency import ContingencyTable, ContingencyTables
from dfm_keyness.errors import ConfigurationWarning, InvalidOption

EPSILON = 1e-9
CORRECTIONS = ("default", "yates", "williams", "none")


def _small_expected(a, b, c, d, N):
    """True where any expected cell frequency is below 5."""
    return (
        ((a + b) * (a + c) / N < 5)
        | ((a + b) * (b + d) / N < 5)
        | ((a + c) * (c + d) / N < 5)
        | ((c + d) * (b + d) / N < 5)
    )


def _yates_applies_chi2(a, b, c, d, N):
    # Not applied when |ad - bc| is below N/2.
    return _small_expected(a, b, c, d, N) & (np.abs(a * d - b * c) >= N / 2)


def _yates_applies_lr(a, b, c, d, N):
    return _small_expected(a, b, c, d, N) & (np.abs(a * d - b * c) > N / 2)


def _williams_q(a, b, c, d, N):
    """Williams' correction factor; 1 wherever a cell is zero."""
    q = 1 + (N / (a + b) + N / (c + d) - 1) * (N / (a + c) + N / (b + d) - 1) / (6 * N)
    return np.where(a * b * c * d == 0, 1.0, q)


def _direction(a, E):
    return np.where(a > E, 1.0, -1.0)


def _log_ratio_term(x, expected):
    """x * ln(x / E + eps), taking an empty cell to contribute nothing."""
    return np.where(x == 0, 0.0, x * np.log(x / expected + EPSILON))


def chi2_pvalue(stat):
    """Upper tail of the chi-squared distribution with one degree of freedom."""
    return _chi2.sf(np.abs(stat), 1)


class AssociationMeasure:
    """
    Base class for the keyness measures.

    Subclasses implement ``_score`` over arrays of cell counts; ``score`` and
    ``score_all`` resolve the correction and dispatch to it.
    """

    name: str = ""
    label: str = ""
    corrections: tuple[str, ...] = ("none",)
    default_correction: str = "none"

    def resolve_correction(self, correction: str = "default") -> str:
        """
        Map ``correction`` to the one this measure will actually apply.

        Measures that take no correction emit one ConfigurationWarning when
        asked for one, and fall back to ``"none"``.
        """
        if correction not in CORRECTIONS:
            raise InvalidOption(
                f"correction must be one of {CORRECTIONS}, got {correction!r}"
            )
        if correction == "default":
            return self.default_correction
        if correction not in self.corrections:
            warnings.warn(
                f"correction is always none for measure {self.name}; ignoring {correction!r}",
                ConfigurationWarning,
                stacklevel=3,
            )
            return "none"
        return correction

    def score_all(
        self, tables: ContingencyTables, correction: str = "default"
    ) -> tuple[np.ndarray, np.ndarray]:
        correction = self.resolve_correction(correction)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return self._score(tables.a, tables.b, tables.c, tables.d, correction)

    def score(self, table: ContingencyTable, correction: str = "default") -> tuple[float, float]:
        correction = self.resolve_correction(correction)
        cells = [np.array([x], dtype=np.float64) for x in (table.a, table.b, table.c, table.d)]
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            value, p = self._score(*cells, correction)
        return float(value[0]), float(p[0])

    def _score(self, a, b, c, d, correction):
        raise NotImplementedError


class Chi2Measure(AssociationMeasure):
    """Pearson's chi-squared for 2x2 tables, Yates-corrected by default."""

    name = "chi2"
    label = "chi2"
    corrections = ("yates", "williams", "none")
    default_correction = "yates"

    def _score(self, a, b, c, d, correction):
        N = a + b + c + d
        E = (a + b) * (a + c) / N
        diff = np.abs(a * d - b * c)
        if correction == "yates":
            diff = np.where(
                _yates_applies_chi2(a, b, c, d, N), np.maximum(0.0, diff - N / 2), diff
            )
        stat = N * diff**2 / ((a + b) * (c + d) * (a + c) * (b + d))
        if correction == "williams":
            stat = stat / _williams_q(a, b, c, d, N)
        value = stat * _direction(a, E)
        return value, chi2_pvalue(value)


class LikelihoodRatioMeasure(AssociationMeasure):
    """Likelihood ratio G2, Williams-corrected by default."""

    name = "lr"
    label = "G2"
    corrections = ("yates", "williams", "none")
    default_correction = "williams"

    def _score(self, a, b, c, d, correction):
        N = a + b + c + d
        E11 = (a + b) * (a + c) / N
        if correction == "yates":
            # Move 0.5 from the cells on the diagonal that dominates onto the other diagonal.
            shift = np.where(
                _yates_applies_lr(a, b, c, d, N),
                np.where(a * d - b * c > 0, -0.5, 0.5),
                0.0,
            )
            a, d, b, c = a + shift, d + shift, b - shift, c - shift
        G2 = 2 * (
            _log_ratio_term(a, E11)
            + _log_ratio_term(b, (a + b) * (b + d) / N)
            + _log_ratio_term(c, (a + c) * (c + d) / N)
            + _log_ratio_term(d, (b + d) * (c + d) / N)
        )
        G2 = np.where(N > 0, G2, np.nan) * _direction(a, E11)
        if correction == "williams":
            G2 = G2 / _williams_q(a, b, c, d, N)
        return G2, chi2_pvalue(G2)


class ExactMeasure(AssociationMeasure):
    """
    Fisher's exact test, scored by the conditional MLE of the odds ratio.

    Tables are tested one feature at a time; ``progress`` shows a tqdm bar.
    """

    name = "exact"
    label = "or"

    def __init__(self, progress: bool = False):
        self.progress = progress

    def _score(self, a, b, c, d, correction):
        cells = np.column_stack([a, b, c, d])
        counts = np.rint(cells)
        if not np.allclose(counts, cells):
            logging.warning("exact test needs integer counts; rounding weighted counts")
        counts = counts.astype(np.int64)

        estimates = np.empty(len(counts))
        pvalues = np.empty(len(counts))
        for i, (ai, bi, ci, di) in enumerate(
            tqdm(counts, desc="fisher", disable=not self.progress)
        ):
            table = np.array([[ai, bi], [ci, di]])
            if table.sum() == 0:
                estimates[i], pvalues[i] = np.nan, np.nan
                continue
            pvalues[i] = fisher_exact(table, alternative="two-sided")[1]
            if 0 in table.sum(axis=0) or 0 in table.sum(axis=1):
                # A zero margin leaves a single possible table; its estimate is 0.
                estimates[i] = 0.0
            else:
                estimates[i] = odds_ratio(table, kind="conditional").statistic
        return estimates, pvalues


class PmiMeasure(AssociationMeasure):
    """Pointwise mutual information ln(a / E + eps) of feature and target."""

    name = "pmi"
    label = "pmi"

    def _score(self, a, b, c, d, correction):
        N = a + b + c + d
        E11 = (a + b) * (a + c) / N
        ratio = np.where(a == 0, 0.0, a / E11)
        pmi = np.where(N > 0, np.log(ratio + EPSILON), np.nan)
        return pmi, chi2_pvalue(pmi)


MEASURES: dict[str, type[AssociationMeasure]] = {
    "chi2": Chi2Measure,
    "exact": ExactMeasure,
    "lr": LikelihoodRatioMeasure,
    "pmi": PmiMeasure,
}


def get_measure(name: str, **kwargs) -> AssociationMeasure:
    """
    Instantiate a measure by name.

    >>> get_measure("lr").label
    'G2'
    """
    try:
        cls = MEASURES[name]
    except KeyError:
        raise InvalidOption(
            f"measure must be one of {tuple(MEASURES)}, got {name!r}"
        ) from None
    return cls(**kwargs)
