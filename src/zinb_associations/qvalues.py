"""Multiple-testing correction and result aggregation.

Two correction modes are supported:

* **Per-table BH** (``multiple_qvalues=False``) — the Benjamini–Hochberg
  step-up adjustment of the ``pval`` column:

      q_(i) = min_{j ≥ i} ( p_(j) · m / j )

  over the *m* non-missing p-values sorted ascending, clipped to
  ``[0, 1]``.  Missing p-values (features whose fit failed) get a
  missing q-value and do not count towards *m*.

* **Pooled q-values** (``multiple_qvalues=True``) — the table is handed
  to a :data:`QValueAdjuster`, which must return it augmented with at
  least a ``qval_BH`` column.  The default, :func:`append_qvalues`,
  adds BH, Benjamini–Yekutieli and two-stage BH q-values computed
  jointly over every row of the table.

Reference:
    Benjamini, Y. & Hochberg, Y. (1995). Controlling the false
    discovery rate: a practical and powerful approach to multiple
    testing. *J. R. Stat. Soc. B*, 57(1), 289–300.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

# (features, metadata, coefficient table) -> table with ``qval_BH``.
QValueAdjuster = Callable[[pd.DataFrame, pd.DataFrame, pd.DataFrame], pd.DataFrame]

LEADING_COLUMNS = ["feature", "metadata"]

# Pooled q-value columns added by ``append_qvalues`` and the
# ``multipletests`` method behind each one.
POOLED_METHODS = {
    "qval_BH": "fdr_bh",
    "qval_BY": "fdr_by",
    "qval_TSBH": "fdr_tsbh",
}


def _adjust(pvals: np.ndarray | pd.Series, method: str) -> np.ndarray:
    p = np.asarray(pvals, dtype=float)
    q = np.full(p.shape, np.nan)
    valid = np.isfinite(p)
    if valid.any():
        q[valid] = multipletests(p[valid], method=method)[1]
    return np.clip(q, 0.0, 1.0)


def bh_adjust(pvals: np.ndarray | pd.Series) -> np.ndarray:
    """Benjamini–Hochberg q-values; NaN in, NaN out."""
    return _adjust(pvals, "fdr_bh")


def append_qvalues(
    features: pd.DataFrame,
    metadata: pd.DataFrame,
    table: pd.DataFrame,
) -> pd.DataFrame:
    """Default pooled q-value procedure.

    Adds one column per entry of :data:`POOLED_METHODS`, each computed
    over all rows of *table* at once.  *features* and *metadata* are
    part of the adjuster signature for procedures that need covariate
    information; this one does not use them.
    """
    out = table.copy()
    for column, method in POOLED_METHODS.items():
        out[column] = _adjust(out["pval"], method)
    return out


def aggregate_results(
    table: pd.DataFrame,
    features: pd.DataFrame,
    metadata: pd.DataFrame,
    multiple_qvalues: bool = False,
    qvalue_adjuster: QValueAdjuster | None = None,
) -> pd.DataFrame:
    """Add q-values, rank, and re-column a stacked coefficient table.

    Args:
        table: Stacked per-feature rows (``coef, stderr, pval,
            metadata, feature``).
        features: The dataset's feature table.
        metadata: The dataset's covariate table.
        multiple_qvalues: Use the pooled adjuster instead of plain BH.
        qvalue_adjuster: Pooled procedure; defaults to
            :func:`append_qvalues`.

    Returns:
        A new DataFrame sorted ascending by ``qval_BH`` (missing last,
        ties in input order) with ``feature, metadata`` leading and a
        fresh ``RangeIndex``.

    Raises:
        ValueError: If the pooled adjuster does not provide ``qval_BH``.
    """
    if multiple_qvalues:
        adjuster = qvalue_adjuster if qvalue_adjuster is not None else append_qvalues
        table = adjuster(features, metadata, table)
        if "qval_BH" not in table.columns:
            raise ValueError(
                "The pooled q-value procedure must return a 'qval_BH' column; "
                f"got columns {list(table.columns)}."
            )
    else:
        table = table.copy()
        table["qval_BH"] = bh_adjust(table["pval"])

    table = table.sort_values("qval_BH", kind="mergesort", na_position="last")
    rest = [c for c in table.columns if c not in LEADING_COLUMNS]
    return table[LEADING_COLUMNS + rest].reset_index(drop=True)
