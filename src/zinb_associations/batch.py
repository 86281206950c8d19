"""Fan-out of dataset runs over a worker pool.

:func:`list_zinb` runs :func:`~zinb_associations.engine.run_dataset`
once per dataset, in parallel when ``n_jobs != 1``.  Each task catches
its own failure and returns a
:class:`~zinb_associations._results.DatasetOutcome`, so one malformed
dataset never takes down its siblings.  Failed datasets are dropped
from the result entirely — no placeholder, no partial table, no retry
— which is coarser than the per-feature isolation inside a dataset,
where a failed fit only turns that feature's rows into NaN.

Parallelism
~~~~~~~~~~~
Datasets are dispatched with ``joblib.Parallel`` on its default
process-based backend: each task receives its own pickled copy of one
dataset and nothing is shared between tasks.  Inside each task the
features are fitted sequentially (``n_jobs=1``) to avoid nested
oversubscription.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping, Sequence
from typing import Any

import pandas as pd
from joblib import Parallel, delayed

from ._config import get_n_jobs
from ._results import DatasetOutcome
from .engine import SUPPORTED_TRANSFORMATION, Dataset, run_dataset
from .fitters import ModelFitter
from .qvalues import QValueAdjuster

logger = logging.getLogger(__name__)


def _run_one(
    key: Hashable,
    dataset: Dataset | Mapping[str, Any],
    transformation: str,
    multiple_qvalues: bool,
    fitter: ModelFitter | None,
    qvalue_adjuster: QValueAdjuster | None,
) -> DatasetOutcome:
    try:
        table = run_dataset(
            dataset,
            transformation,
            multiple_qvalues,
            fitter=fitter,
            qvalue_adjuster=qvalue_adjuster,
            n_jobs=1,
        )
    except Exception as exc:
        return DatasetOutcome(key=key, error=f"{type(exc).__name__}: {exc}")
    return DatasetOutcome(key=key, table=table)


def list_zinb(
    datasets: Sequence[Dataset | Mapping[str, Any]]
    | Mapping[Hashable, Dataset | Mapping[str, Any]],
    transformation: str = SUPPORTED_TRANSFORMATION,
    multiple_qvalues: bool = True,
    *,
    n_jobs: int | None = None,
    fitter: ModelFitter | None = None,
    qvalue_adjuster: QValueAdjuster | None = None,
) -> list[pd.DataFrame] | dict[Hashable, pd.DataFrame]:
    """Run the ZINB pipeline over a collection of datasets.

    Args:
        datasets: A sequence of datasets, or a mapping from dataset
            name to dataset.  Each dataset is a
            :class:`~zinb_associations.engine.Dataset` or a mapping
            with keys ``features, metadata, libSize, ID``.
        transformation: Must be ``"NONE"``; anything else fails every
            dataset.
        multiple_qvalues: Use the pooled q-value procedure.
        n_jobs: Parallel dataset workers.  ``None`` uses
            :func:`~zinb_associations.get_n_jobs`.
        fitter: Model fitter shared by all datasets (must be
            picklable when ``n_jobs != 1``).
        qvalue_adjuster: Pooled q-value procedure.

    Returns:
        The association tables of the datasets that ran successfully:
        a list in input order when *datasets* is a sequence, or a dict
        keyed like *datasets* when it is a mapping.
    """
    keyed = isinstance(datasets, Mapping)
    items = list(datasets.items()) if keyed else list(enumerate(datasets))
    n_jobs = n_jobs if n_jobs is not None else get_n_jobs()

    args = (transformation, multiple_qvalues, fitter, qvalue_adjuster)
    if n_jobs == 1:
        outcomes = [_run_one(key, ds, *args) for key, ds in items]
    else:
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_run_one)(key, ds, *args) for key, ds in items
        )

    for outcome in outcomes:
        if not outcome.ok:
            logger.warning("Dropping dataset %r: %s", outcome.key, outcome.error)

    survivors = [o for o in outcomes if o.ok]
    logger.debug("%d of %d dataset(s) fitted", len(survivors), len(outcomes))
    if keyed:
        return {o.key: o.table for o in survivors}
    return [o.table for o in survivors]
