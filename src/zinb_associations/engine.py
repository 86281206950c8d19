"""Dataset-level ZINB runs.

:func:`fit_zinb` fits every feature of one dataset and returns the
ranked association table.  :func:`run_dataset` wraps it for batch use:
it times the run, names every association ``pairwiseAssociation<K>``
(K = 1-based rank) and tags simulated true positives.

True-positive tagging
~~~~~~~~~~~~~~~~~~~~~
Simulation benchmarks mark the spiked-in feature/covariate pairs by
giving *both* names a ``_TP`` suffix (e.g. feature ``Otu12_TP`` and
covariate ``Treatment_TP``).  Such rows get the same suffix on their
identifier (``pairwiseAssociation3_TP``), so that downstream scoring
can recognise them without a separate lookup.  Values and ordering are
untouched.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from ._compat import DataFrameLike, _ensure_1d, _ensure_pandas_df
from ._config import get_n_jobs
from ._typing import VectorLike
from .core import fit_feature
from .exceptions import UnsupportedTransformationError
from .fitters import ModelFitter, StatsmodelsZINBFitter
from .qvalues import QValueAdjuster, aggregate_results

logger = logging.getLogger(__name__)

SUPPORTED_TRANSFORMATION = "NONE"
TRUE_POSITIVE_MARKER = "_TP"
ASSOCIATION_PREFIX = "pairwiseAssociation"


@dataclass(frozen=True)
class Dataset:
    """One dataset: samples × features counts plus per-sample covariates.

    Attributes:
        features: Count table, rows = samples, columns = features.
        metadata: Covariate table, rows = samples.
        lib_size: Library size per sample.
        ids: Subject ID per sample.
    """

    features: Any
    metadata: Any
    lib_size: Any
    ids: Any

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> Dataset:
        """Build from a mapping with keys ``features``, ``metadata``,
        ``libSize`` (or ``lib_size``) and ``ID`` (or ``ids``)."""
        missing = [
            key
            for key, alts in (
                ("features", ("features",)),
                ("metadata", ("metadata",)),
                ("libSize", ("libSize", "lib_size")),
                ("ID", ("ID", "ids")),
            )
            if not any(a in record for a in alts)
        ]
        if missing:
            raise KeyError(f"Dataset record is missing {missing}.")
        return cls(
            features=record["features"],
            metadata=record["metadata"],
            lib_size=record["libSize"] if "libSize" in record else record["lib_size"],
            ids=record["ID"] if "ID" in record else record["ids"],
        )


def _check_transformation(transformation: str) -> None:
    if transformation != SUPPORTED_TRANSFORMATION:
        raise UnsupportedTransformationError(
            f"Transformation '{transformation}' is not supported for a ZINB "
            f"model. Use '{SUPPORTED_TRANSFORMATION}'."
        )


def _validate_inputs(
    features: pd.DataFrame,
    metadata: pd.DataFrame,
    lib_size: np.ndarray,
    ids: np.ndarray,
) -> None:
    if features.shape[1] == 0:
        raise ValueError("features must contain at least one feature column.")
    if metadata.shape[1] == 0:
        raise ValueError("metadata must contain at least one covariate column.")
    n = features.shape[0]
    if n == 0:
        raise ValueError("features must contain at least one sample.")
    for name, length in (
        ("metadata", metadata.shape[0]),
        ("libSize", lib_size.shape[0]),
        ("ID", ids.shape[0]),
    ):
        if length != n:
            raise ValueError(
                f"{name} has {length} samples but features has {n}."
            )


def fit_zinb(
    features: DataFrameLike,
    metadata: DataFrameLike,
    lib_size: VectorLike,
    ids: VectorLike,
    transformation: str = SUPPORTED_TRANSFORMATION,
    multiple_qvalues: bool = False,
    *,
    fitter: ModelFitter | None = None,
    qvalue_adjuster: QValueAdjuster | None = None,
    n_jobs: int | None = None,
    progress: bool = False,
) -> pd.DataFrame:
    """Fit a ZINB per feature and return the ranked association table.

    Args:
        features: Count table, rows = samples, columns = features.
        metadata: Covariates, rows = samples.  Every column enters
            every model.
        lib_size: Library size per sample.  Used as a
            ``log(libSize)`` offset unless constant.
        ids: Subject ID per sample.  Any repeated ID switches every
            feature to the random-intercept model.
        transformation: Must be ``"NONE"``.
        multiple_qvalues: Compute pooled q-values with
            *qvalue_adjuster* instead of plain BH on ``pval``.
        fitter: Model fitter (default
            :class:`~zinb_associations.fitters.StatsmodelsZINBFitter`).
        qvalue_adjuster: Pooled q-value procedure (default
            :func:`~zinb_associations.qvalues.append_qvalues`).
        n_jobs: Parallel jobs over features (joblib threads).
            ``None`` uses :func:`~zinb_associations.get_n_jobs`.
        progress: Show a progress bar over features.

    Returns:
        DataFrame with ``ncol(features) × ncol(metadata)`` rows and
        columns ``feature, metadata, coef, stderr, pval, qval_BH``
        (plus any extra pooled q-value columns), sorted by
        ``qval_BH``.

    Raises:
        UnsupportedTransformationError: *transformation* is not
            ``"NONE"``.
        ValueError: Empty or misaligned inputs.
    """
    _check_transformation(transformation)

    features = _ensure_pandas_df(features, name="features")
    metadata = _ensure_pandas_df(metadata, name="metadata")
    lib_size = _ensure_1d(lib_size, name="libSize")
    ids = _ensure_1d(ids, name="ID")
    _validate_inputs(features, metadata, lib_size, ids)

    fitter = fitter if fitter is not None else StatsmodelsZINBFitter()
    n_jobs = n_jobs if n_jobs is not None else get_n_jobs()
    columns = list(features.columns)
    counts = features.to_numpy()

    indices = tqdm(range(len(columns)), desc="Fitting ZINB", disable=not progress)
    if n_jobs == 1:
        blocks = [
            fit_feature(
                counts[:, j], columns[j], metadata, lib_size, ids, fitter, feature_index=j
            )
            for j in indices
        ]
    else:
        # Threads: statsmodels and NumPy release the GIL in the heavy
        # kernels, and the shared read-only inputs are not copied.
        # Results come back in submission (= feature) order.
        blocks = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(fit_feature)(
                counts[:, j], columns[j], metadata, lib_size, ids, fitter, feature_index=j
            )
            for j in indices
        )

    table = pd.concat(blocks, ignore_index=True)
    return aggregate_results(
        table,
        features,
        metadata,
        multiple_qvalues=multiple_qvalues,
        qvalue_adjuster=qvalue_adjuster,
    )


def label_associations(
    table: pd.DataFrame, marker: str = TRUE_POSITIVE_MARKER
) -> pd.DataFrame:
    """Prepend ``pairwiseAssociation<K>`` identifiers to *table*.

    Rows whose ``feature`` *and* ``metadata`` both end in *marker*
    (preceded by at least one character) get *marker* appended to the
    identifier as well.
    """
    out = table.copy()
    labels = np.array(
        [f"{ASSOCIATION_PREFIX}{k}" for k in range(1, len(out) + 1)], dtype=object
    )
    pattern = rf".+{re.escape(marker)}$"
    is_tp = (
        out["feature"].astype(str).str.match(pattern)
        & out["metadata"].astype(str).str.match(pattern)
    ).to_numpy()
    labels[is_tp] = labels[is_tp] + marker
    out.insert(0, "pairwiseAssociation", labels)
    return out


def run_dataset(
    dataset: Dataset | Mapping[str, Any],
    transformation: str = SUPPORTED_TRANSFORMATION,
    multiple_qvalues: bool = False,
    *,
    fitter: ModelFitter | None = None,
    qvalue_adjuster: QValueAdjuster | None = None,
    n_jobs: int | None = None,
    progress: bool = False,
) -> pd.DataFrame:
    """Run :func:`fit_zinb` on one dataset with identifiers and timing.

    Returns:
        The association table with ``pairwiseAssociation`` as first
        column and a constant ``time`` column (elapsed wall-clock
        minutes, rounded to 3 decimals) as last column.
    """
    start = time.perf_counter()
    if not isinstance(dataset, Dataset):
        dataset = Dataset.from_mapping(dataset)

    table = fit_zinb(
        dataset.features,
        dataset.metadata,
        dataset.lib_size,
        dataset.ids,
        transformation,
        multiple_qvalues,
        fitter=fitter,
        qvalue_adjuster=qvalue_adjuster,
        n_jobs=n_jobs,
        progress=progress,
    )
    table = label_associations(table)

    minutes = round((time.perf_counter() - start) / 60.0, 3)
    table["time"] = minutes
    logger.debug("Dataset fitted in %.3f min (%d rows)", minutes, len(table))
    return table
