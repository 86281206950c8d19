"""Per-feature ZINB fitting.

:func:`fit_feature` turns one column of the feature table into exactly
``ncol(metadata)`` coefficient rows:

1. Assemble the working data ``{expr, <covariates…>, libSize, ID}``.
2. Build the formula (:func:`~zinb_associations.formula.build_formula`).
3. Choose the model shape from the subject IDs alone: every sample its
   own subject → fixed-effects ZINB; any repeated subject → ZINB with
   a random intercept per subject.
4. Fit through :func:`~zinb_associations._results.attempt_with_one_retry`
   — one identical retry, then give up.
5. Extract the covariate block of the count component, or fall back to
   a block of NaN rows.

A feature never raises because its model could not be fitted: a
double failure and a coefficient block of the wrong size (a structural
problem, e.g. a multi-level categorical covariate that expands to
several design columns) both degrade to NaN rows.  They are logged at
different levels so that the two cases stay distinguishable.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable

import numpy as np
import pandas as pd

from ._results import attempt_with_one_retry
from .exceptions import StructuralMismatchError
from .fitters import (
    COEFFICIENT_COLUMNS,
    ModelFitter,
    ModelShape,
    StatsmodelsZINBFitter,
    coefficient_table,
)
from .formula import (
    ID_COLUMN,
    LIBSIZE_COLUMN,
    RESPONSE_COLUMN,
    build_formula,
    has_repeated_ids,
)

logger = logging.getLogger(__name__)

_RESERVED_COLUMNS = (RESPONSE_COLUMN, LIBSIZE_COLUMN, ID_COLUMN)


def select_model_shape(ids: np.ndarray) -> ModelShape:
    """Fixed effects iff every sample has its own ID, mixed otherwise."""
    return ModelShape.MIXED if has_repeated_ids(ids) else ModelShape.FIXED


def working_data(
    values: np.ndarray,
    metadata: pd.DataFrame,
    lib_size: np.ndarray,
    ids: np.ndarray,
) -> pd.DataFrame:
    """Assemble the per-feature modelling frame.

    Raises:
        ValueError: If a covariate uses a reserved column name.
    """
    clashes = [c for c in metadata.columns if c in _RESERVED_COLUMNS]
    if clashes:
        raise ValueError(
            f"Metadata column(s) {clashes} clash with reserved names "
            f"{list(_RESERVED_COLUMNS)}; rename them before fitting."
        )
    data = pd.concat(
        [
            pd.DataFrame({RESPONSE_COLUMN: np.asarray(values, dtype=float)}),
            metadata.reset_index(drop=True).rename(columns=str),
        ],
        axis=1,
    )
    data[LIBSIZE_COLUMN] = np.asarray(lib_size)
    data[ID_COLUMN] = np.asarray(ids)
    return data


def na_block(n_rows: int) -> pd.DataFrame:
    """``n_rows`` rows of NaN ``coef, stderr, pval``."""
    return pd.DataFrame(np.nan, index=range(n_rows), columns=COEFFICIENT_COLUMNS)


def fit_feature(
    values: np.ndarray,
    feature: Hashable,
    metadata: pd.DataFrame,
    lib_size: np.ndarray,
    ids: np.ndarray,
    fitter: ModelFitter | None = None,
    *,
    feature_index: int | None = None,
) -> pd.DataFrame:
    """Fit one feature and return its coefficient rows.

    Args:
        values: Counts for this feature, one per sample.
        feature: Feature name, copied to the ``feature`` column.
        metadata: Covariates, one column each, one row per sample.
        lib_size: Library size per sample.
        ids: Subject ID per sample.
        fitter: Model fitter; defaults to
            :class:`~zinb_associations.fitters.StatsmodelsZINBFitter`.
        feature_index: Position of the feature in its table, used in
            log messages only.

    Returns:
        DataFrame with ``ncol(metadata)`` rows and columns
        ``coef, stderr, pval, metadata, feature``.
    """
    fitter = fitter if fitter is not None else StatsmodelsZINBFitter()
    covariates = list(metadata.columns)
    n_cov = len(covariates)
    label = feature if feature_index is None else f"{feature_index} ({feature})"

    data = working_data(values, metadata, lib_size, ids)
    formula = build_formula(covariates, lib_size, ids)
    shape = select_model_shape(ids)
    logger.debug("Feature %s: fitting %s model %s", label, shape.value, formula)

    outcome = attempt_with_one_retry(lambda: fitter.fit(formula, data, shape))

    block = None
    if outcome.ok:
        try:
            block = coefficient_table(outcome.model)
            if len(block) != n_cov:
                raise StructuralMismatchError(expected=n_cov, observed=len(block))
        except StructuralMismatchError as exc:
            logger.error(
                "Structural problem for feature %s, returning NA: %s", label, exc
            )
            block = None
    else:
        logger.warning(
            "Fitting problem for feature %s, returning NA: %s", label, outcome.reason
        )

    if block is None:
        block = na_block(n_cov)

    block = block.reset_index(drop=True).astype(float)
    block["metadata"] = covariates
    block["feature"] = feature
    return block
