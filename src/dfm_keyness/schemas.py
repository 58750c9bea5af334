from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

Measure = Literal["chi2", "exact", "lr", "pmi"]
Correction = Literal["default", "yates", "williams", "none"]

# Methods accepted by statsmodels.stats.multitest.multipletests
ADJUST_METHODS = (
    "bonferroni",
    "sidak",
    "holm-sidak",
    "holm",
    "simes-hochberg",
    "hommel",
    "fdr_bh",
    "fdr_by",
    "fdr_tsbh",
    "fdr_tsbky",
)


class KeynessOptions(BaseModel):
    """Options for textstat_keyness(), validated before any computation."""

    model_config = ConfigDict(frozen=True)

    measure: Measure = "chi2"
    correction: Correction = "default"
    sort: bool = True
    adjust: Optional[str] = None
    n_jobs: int = 1
    progress: bool = False

    @field_validator("adjust")
    @classmethod
    def adjust_must_be_known(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ADJUST_METHODS:
            raise ValueError(f"adjust must be one of {ADJUST_METHODS}")
        return v

    @field_validator("n_jobs")
    @classmethod
    def n_jobs_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("n_jobs must be at least one")
        return v
