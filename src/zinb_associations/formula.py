"""Regression formula construction.

A :class:`ModelFormula` describes one per-feature model: the response
column, the covariate terms, an optional ``offset(log(libSize))`` term
and an optional random intercept grouped by subject.  It renders in
lme4 notation for display and logs::

    expr ~ age + diet + offset(log(libSize)) + (1 | ID)

and exposes :attr:`ModelFormula.fixed_formula`, the patsy formula of
the fixed-effects part only, which is what the model fitters turn into
a design matrix.  The offset and the grouping factor are passed to the
fitters as arrays, never through patsy.

:func:`build_formula` applies two data-driven rules:

* **Library-size offset** — included only when the library sizes take
  more than one distinct value.  Constant library sizes mean the data
  were already total-sum scaled, and a constant offset only shifts the
  intercept.
* **Random intercept** — included only when some subject ID repeats
  (repeated measures).  When every sample is its own unit the model is
  purely fixed-effects.
"""

from __future__ import annotations

import keyword
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

RESPONSE_COLUMN = "expr"
LIBSIZE_COLUMN = "libSize"
ID_COLUMN = "ID"


def _patsy_term(name: str) -> str:
    """Quote *name* with patsy's ``Q()`` unless it is a plain identifier."""
    if name.isidentifier() and not keyword.iskeyword(name):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'Q("{escaped}")'


@dataclass(frozen=True)
class ModelFormula:
    """Immutable description of a per-feature regression model.

    Attributes:
        covariates: Covariate (metadata column) names, in order.
        response: Name of the response column in the working data.
        offset: Name of the library-size column used as
            ``offset(log(.))``, or ``None`` when no offset is used.
        group: Name of the grouping column for the random intercept,
            or ``None`` for a fixed-effects model.
    """

    covariates: tuple[str, ...]
    response: str = RESPONSE_COLUMN
    offset: str | None = None
    group: str | None = None

    @property
    def has_offset(self) -> bool:
        return self.offset is not None

    @property
    def has_random_intercept(self) -> bool:
        return self.group is not None

    @property
    def terms(self) -> list[str]:
        """Right-hand-side terms in display order."""
        terms = list(self.covariates)
        if self.offset is not None:
            terms.append(f"offset(log({self.offset}))")
        if self.group is not None:
            terms.append(f"(1 | {self.group})")
        return terms

    @property
    def fixed_formula(self) -> str:
        """Patsy formula for the fixed-effects design (intercept implied)."""
        rhs = " + ".join(_patsy_term(c) for c in self.covariates)
        return f"{_patsy_term(self.response)} ~ {rhs}"

    def __str__(self) -> str:
        return f"{self.response} ~ {' + '.join(self.terms)}"


def build_formula(
    covariates: Sequence[str],
    lib_size: np.ndarray,
    ids: np.ndarray,
) -> ModelFormula:
    """Build the per-feature model formula.

    Args:
        covariates: Metadata column names; all enter the model jointly.
        lib_size: Per-sample library sizes.
        ids: Per-sample subject identifiers.

    Returns:
        A :class:`ModelFormula`.

    Raises:
        ValueError: If *covariates* is empty.
    """
    covariates = tuple(str(c) for c in covariates)
    if not covariates:
        raise ValueError("At least one covariate is required to build a formula.")

    varying_lib_size = pd.Series(np.asarray(lib_size)).nunique(dropna=False) > 1
    repeated_ids = has_repeated_ids(ids)

    return ModelFormula(
        covariates=covariates,
        offset=LIBSIZE_COLUMN if varying_lib_size else None,
        group=ID_COLUMN if repeated_ids else None,
    )


def has_repeated_ids(ids: np.ndarray) -> bool:
    """Return ``True`` when some subject contributes more than one sample."""
    ids = np.asarray(ids)
    return pd.Series(ids).nunique(dropna=False) != len(ids)
