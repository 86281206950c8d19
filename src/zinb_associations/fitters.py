"""Model fitters and the coefficient-table contract.

The per-feature logic in ``core.py`` never talks to statsmodels
directly.  It programs against the :class:`ModelFitter` protocol:

    fit(formula, data, shape) -> FittedModel      (raises on failure)

and reads results only through :func:`coefficient_table`.  A fitter
returns one of two tagged variants:

* :class:`FixedZINBFit` — a zero-inflated NB2 fixed-effects model
  (:class:`~zinb_associations.models.ZeroInflatedNegativeBinomialFixed`).
* :class:`MixedZINBFit` — the random-intercept model
  (:class:`~zinb_associations.models.ZeroInflatedNegativeBinomialMixed`).

Both lay their parameters out with the conditional (count) block
first, so :func:`coefficient_table` hands back the same ``coef /
stderr / pval`` frame for both without inspecting anything else on
the fitted object.

:class:`StatsmodelsZINBFitter` is the default implementation.  Any
object with a compatible ``fit`` method (e.g. a test double or a
wrapper around another optimiser) can be injected instead.
"""

from __future__ import annotations

import enum
import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np
import pandas as pd
import patsy
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    HessianInversionWarning,
)

from .exceptions import FitFailureError
from .formula import ModelFormula
from .models import (
    ZeroInflatedNegativeBinomialFixed,
    ZeroInflatedNegativeBinomialMixed,
)

logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"
COEFFICIENT_COLUMNS = ["coef", "stderr", "pval"]


class ModelShape(str, enum.Enum):
    """Fixed-effects ZINB vs random-intercept ZINB."""

    FIXED = "fixed"
    MIXED = "mixed"


# ------------------------------------------------------------------ #
# Fitted-model variants
# ------------------------------------------------------------------ #


def _conditional_frame(result: Any, names: tuple[str, ...]) -> pd.DataFrame:
    """Slice the leading ``len(names)`` parameters into a summary frame."""
    k = len(names)
    params = np.asarray(result.params, dtype=float)[:k]
    bse = np.asarray(result.bse, dtype=float)[:k]
    tvalues = np.asarray(result.tvalues, dtype=float)[:k]
    pvalues = np.asarray(result.pvalues, dtype=float)[:k]
    return pd.DataFrame(
        {"estimate": params, "stderr": bse, "z": tvalues, "pval": pvalues},
        index=pd.Index(names, name="term"),
    )


@dataclass(frozen=True)
class FixedZINBFit:
    """A fitted fixed-effects ZINB.

    Attributes:
        result: ``GenericLikelihoodModelResults`` of
            :class:`~zinb_associations.models.ZeroInflatedNegativeBinomialFixed`.
        term_names: Count-design column names, intercept first.
    """

    result: Any
    term_names: tuple[str, ...]
    shape: ModelShape = field(default=ModelShape.FIXED, init=False)

    def conditional_block(self) -> pd.DataFrame:
        """Count-component table: ``estimate, stderr, z, pval`` per term."""
        return _conditional_frame(self.result, self.term_names)


@dataclass(frozen=True)
class MixedZINBFit:
    """A fitted random-intercept ZINB.

    Attributes:
        result: ``GenericLikelihoodModelResults`` of
            :class:`~zinb_associations.models.ZeroInflatedNegativeBinomialMixed`.
        term_names: Fixed-effects design column names, intercept first.
    """

    result: Any
    term_names: tuple[str, ...]
    shape: ModelShape = field(default=ModelShape.MIXED, init=False)

    def conditional_block(self) -> pd.DataFrame:
        """Conditional-component table: ``estimate, stderr, z, pval`` per term."""
        return _conditional_frame(self.result, self.term_names)


FittedModel = FixedZINBFit | MixedZINBFit


def coefficient_table(fitted: FittedModel) -> pd.DataFrame:
    """Return the covariate block of *fitted* as ``coef, stderr, pval``.

    The intercept row and the test-statistic column are dropped; rows
    from the zero-inflation component and the dispersion / variance
    parameters never enter the block.

    Raises:
        TypeError: If *fitted* is not a known variant.
    """
    if isinstance(fitted, (FixedZINBFit, MixedZINBFit)):
        block = fitted.conditional_block()
    else:
        raise TypeError(
            f"Unsupported fitted model type {type(fitted).__name__}; expected "
            "FixedZINBFit or MixedZINBFit."
        )

    block = block.drop(index=INTERCEPT, errors="ignore")
    block = block[["estimate", "stderr", "pval"]]
    block.columns = COEFFICIENT_COLUMNS
    return block


# ------------------------------------------------------------------ #
# ModelFitter protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ModelFitter(Protocol):
    """Interface that every model fitter must implement."""

    def fit(
        self,
        formula: ModelFormula,
        data: pd.DataFrame,
        shape: ModelShape,
    ) -> FittedModel:
        """Fit one feature's model.

        Args:
            formula: Model description from
                :func:`~zinb_associations.formula.build_formula`.
            data: Working data with the response, covariate, library
                size and ID columns named in *formula*.
            shape: Which model to fit.

        Returns:
            A :class:`FixedZINBFit` or :class:`MixedZINBFit`.

        Raises:
            Exception: Any failure.  Callers treat every exception as
                a fit failure.
        """
        ...


# ------------------------------------------------------------------ #
# Default statsmodels implementation
# ------------------------------------------------------------------ #


def _converged(result: Any) -> bool:
    retvals = getattr(result, "mle_retvals", None) or {}
    return bool(retvals.get("converged", True))


def design_matrices(
    formula: ModelFormula, data: pd.DataFrame
) -> tuple[np.ndarray, pd.DataFrame]:
    """Build ``(endog, exog)`` for the fixed-effects part of *formula*."""
    y, X = patsy.dmatrices(
        formula.fixed_formula, data, return_type="dataframe", NA_action="raise"
    )
    return np.asarray(y, dtype=float).ravel(), X


@dataclass(frozen=True)
class StatsmodelsZINBFitter:
    """Default :class:`ModelFitter` backed by statsmodels.

    A fit that does not converge with *method* is restarted once from
    a Nelder–Mead solution before it is judged.

    Args:
        method: Optimiser passed to statsmodels ``fit`` (default
            ``"bfgs"``).
        maxiter: Maximum optimiser iterations.
        check_convergence: When ``True`` (default), a fit whose
            optimiser did not report convergence, or whose count-block
            standard errors are not finite (singular Hessian), raises
            :class:`FitFailureError`.
        quadrature_points: Gauss–Hermite nodes for the mixed model;
            ``None`` defers to
            :func:`~zinb_associations.get_quadrature_points`.
    """

    method: str = "bfgs"
    maxiter: int = 1000
    check_convergence: bool = True
    quadrature_points: int | None = None

    def fit(
        self,
        formula: ModelFormula,
        data: pd.DataFrame,
        shape: ModelShape,
    ) -> FittedModel:
        shape = ModelShape(shape)
        if (shape is ModelShape.MIXED) != formula.has_random_intercept:
            raise ValueError(
                f"Model shape '{shape.value}' does not match formula '{formula}'."
            )

        endog, exog = design_matrices(formula, data)
        offset = None
        if formula.offset is not None:
            offset = np.log(np.asarray(data[formula.offset], dtype=float))
        term_names = tuple(str(c) for c in exog.columns)

        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=HessianInversionWarning)
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            if shape is ModelShape.FIXED:
                model = ZeroInflatedNegativeBinomialFixed(endog, exog, offset=offset)
                result = self._maximise(model)
                fitted: FittedModel = FixedZINBFit(result=result, term_names=term_names)
            else:
                model = ZeroInflatedNegativeBinomialMixed(
                    endog,
                    exog,
                    groups=np.asarray(data[formula.group]),
                    offset=offset,
                    quadrature_points=self.quadrature_points,
                    group_name=formula.group,
                )
                result = self._maximise(model)
                fitted = MixedZINBFit(result=result, term_names=term_names)

        self._check(fitted)
        return fitted

    def _maximise(self, model):
        result = model.fit(method=self.method, maxiter=self.maxiter)
        if _converged(result):
            return result
        logger.debug(
            "Optimiser %r did not converge; restarting from Nelder-Mead.", self.method
        )
        simplex = model.fit(method="nm", maxiter=self.maxiter)
        return model.fit(
            start_params=np.asarray(simplex.params, dtype=float),
            method=self.method,
            maxiter=self.maxiter,
        )

    def _check(self, fitted: FittedModel) -> None:
        block = fitted.conditional_block()
        if not np.all(np.isfinite(block["estimate"].to_numpy())):
            raise FitFailureError("Non-finite coefficient estimates.")
        if not self.check_convergence:
            return
        if not _converged(fitted.result):
            raise FitFailureError(
                f"Optimiser '{self.method}' did not converge in "
                f"{self.maxiter} iterations."
            )
        if not np.all(np.isfinite(block["stderr"].to_numpy())):
            raise FitFailureError("Singular fit: standard errors are not finite.")
