"""zinb_associations — Per-feature zero-inflated negative binomial testing.

Fits a zero-inflated negative binomial (ZINB) regression of each
feature of a count table (microbiome / omics) against a set of sample
covariates, with a log library-size offset and, for repeated-measures
designs, a random intercept per subject.  Per-feature coefficients and
Wald p-values are collected into one ranked association table with
Benjamini–Hochberg (or pooled) q-values.  Fit failures are isolated
per feature, and whole datasets can be fitted in parallel with failing
datasets dropped.

Public API:
    .. autosummary::
        fit_zinb
        run_dataset
        list_zinb
        label_associations
        Dataset
        fit_feature
        select_model_shape
        build_formula
        ModelFormula
        ModelFitter
        ModelShape
        StatsmodelsZINBFitter
        FixedZINBFit
        MixedZINBFit
        coefficient_table
        ZeroInflatedNegativeBinomialFixed
        ZeroInflatedNegativeBinomialMixed
        attempt_with_one_retry
        FitSuccess
        FitFailed
        DatasetOutcome
        aggregate_results
        append_qvalues
        bh_adjust
        get_n_jobs
        set_n_jobs
        get_quadrature_points
        set_quadrature_points
        ZINBAssociationError
        UnsupportedTransformationError
        FitFailureError
        StructuralMismatchError
"""

from ._config import get_n_jobs, get_quadrature_points, set_n_jobs, set_quadrature_points
from ._results import DatasetOutcome, FitFailed, FitSuccess, attempt_with_one_retry
from .batch import list_zinb
from .core import fit_feature, select_model_shape
from .engine import Dataset, fit_zinb, label_associations, run_dataset
from .exceptions import (
    FitFailureError,
    StructuralMismatchError,
    UnsupportedTransformationError,
    ZINBAssociationError,
)
from .fitters import (
    FixedZINBFit,
    MixedZINBFit,
    ModelFitter,
    ModelShape,
    StatsmodelsZINBFitter,
    coefficient_table,
)
from .formula import ModelFormula, build_formula
from .models import (
    ZeroInflatedNegativeBinomialFixed,
    ZeroInflatedNegativeBinomialMixed,
)
from .qvalues import aggregate_results, append_qvalues, bh_adjust

__all__ = [
    "fit_zinb",
    "run_dataset",
    "list_zinb",
    "label_associations",
    "Dataset",
    "fit_feature",
    "select_model_shape",
    "build_formula",
    "ModelFormula",
    "ModelFitter",
    "ModelShape",
    "StatsmodelsZINBFitter",
    "FixedZINBFit",
    "MixedZINBFit",
    "coefficient_table",
    "ZeroInflatedNegativeBinomialFixed",
    "ZeroInflatedNegativeBinomialMixed",
    "attempt_with_one_retry",
    "FitSuccess",
    "FitFailed",
    "DatasetOutcome",
    "aggregate_results",
    "append_qvalues",
    "bh_adjust",
    "get_n_jobs",
    "set_n_jobs",
    "get_quadrature_points",
    "set_quadrature_points",
    "ZINBAssociationError",
    "UnsupportedTransformationError",
    "FitFailureError",
    "StructuralMismatchError",
]

__version__ = "0.1.0"
