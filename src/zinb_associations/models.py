"""Zero-inflated negative binomial likelihoods.

Model, for sample *i* (of subject *g* in the mixed model):

    P(Y_i = 0)     = π + (1 − π) · NB(0 | μ_i, α)
    P(Y_i = y > 0) =     (1 − π) · NB(y | μ_i, α)

    log μ_i = x_i'β + offset_i [+ b_g],     b_g ~ N(0, σ²)
    logit π = γ                              (intercept-only inflation)

with the NB2 parameterisation ``Var(Y | b) = μ + α·μ²``.  The two
classes correspond to ``pscl::zeroinfl(y ~ x | 1, dist = "negbin")``
and ``glmmTMB(y ~ x + (1 | ID), ziformula = ~1, family = nbinom2)``.

Both are :class:`statsmodels.base.model.GenericLikelihoodModel`
subclasses maximised over unconstrained parameters: the dispersion
and the random-effect SD enter on the log scale, so equidispersed data
(α → 0) drift towards a large negative ``lnalpha`` instead of pushing
the optimiser against a boundary.  statsmodels supplies the numerical
Hessian, standard errors and Wald z-tests.

Parameter layout (also the order of ``model.exog_names``)::

    fixed:  [β_0 … β_{p-1}, inflate_const, lnalpha]
    mixed:  [β_0 … β_{p-1}, inflate_const, lnalpha, <group>_lnsd]

so the conditional (count) block is always the first ``k_exog``
entries.

Random intercept
~~~~~~~~~~~~~~~~
The mixed model integrates b_g out of each subject's likelihood by
Gauss–Hermite quadrature on K nodes:

    L_g = ∫ Π_{i∈g} f(y_i | b) φ(b; 0, σ²) db
        ≈ π^{-1/2} Σ_k w_k Π_{i∈g} f(y_i | √2 σ x_k)

evaluated in log space (``logsumexp``) so that long subject series do
not underflow.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import special, stats
from statsmodels.base.model import GenericLikelihoodModel
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)

from ._config import get_quadrature_points

logger = logging.getLogger(__name__)

_LOG_SQRT_PI = 0.5 * np.log(np.pi)
# exp() overflows float64 beyond ~709.
_MAX_ETA = 700.0


def zinb_logpmf(y, eta, gamma: float, alpha: float) -> np.ndarray:
    """Elementwise ZINB log-probability; *y* and *eta* broadcast."""
    mu = np.exp(np.clip(eta, -_MAX_ETA, _MAX_ETA))
    size = 1.0 / alpha
    log_nb = stats.nbinom.logpmf(y, size, size / (size + mu))

    # log(expit(γ)) and log(1 − expit(γ)), overflow-safe.
    log_pi = -np.logaddexp(0.0, -gamma)
    log_1m_pi = -np.logaddexp(0.0, gamma)

    return np.where(
        y == 0,
        np.logaddexp(log_pi, log_1m_pi + log_nb),
        log_1m_pi + log_nb,
    )


def _inverse_information(model, params, retvals=None) -> np.ndarray:
    """Covariance of *params*, conditional on collapsed nuisance parameters.

    When the inflation probability, the dispersion or the random-effect
    SD is driven to zero its log-scale parameter drifts along a flat
    ridge and the observed information is no longer positive definite.
    Such parameters are then held fixed, flattest first, until the
    remaining block is positive definite: their rows and columns are
    NaN and the rest is inverted on its own.  The count block is never
    dropped.  Without a collapse this is the ordinary inverse Hessian.
    """
    k = len(params)
    info = -np.asarray(model.hessian(params), dtype=float)
    info = (info + info.T) / 2.0
    cov = np.full((k, k), np.nan)
    if not np.all(np.isfinite(info)):
        return cov

    keep = np.ones(k, dtype=bool)
    nuisance = model.k_exog + np.argsort(np.diag(info)[model.k_exog :])
    for dropped in [None, *nuisance]:
        if dropped is not None:
            keep[dropped] = False
        eigvals, eigvecs = np.linalg.eigh(info[np.ix_(keep, keep)])
        if eigvals.min() > 0:
            break
    else:
        return cov

    if not keep.all():
        logger.debug(
            "Holding collapsed parameters %s fixed for the covariance.",
            [model.exog_names[i] for i in np.flatnonzero(~keep)],
        )

    cov[np.ix_(keep, keep)] = (eigvecs / eigvals) @ eigvecs.T
    return cov


class _ZINBLikelihood(GenericLikelihoodModel):
    """Shared construction, start values and fitting defaults."""

    def __init__(self, endog, exog, offset=None, extra_params_names=None, **kwds):
        super().__init__(endog, exog, extra_params_names=extra_params_names, **kwds)
        self.k_exog = self.exog.shape[1]
        if offset is None:
            self.offset = np.zeros(self.endog.shape[0])
        else:
            self.offset = np.asarray(offset, dtype=float)

    def _start_params(self) -> np.ndarray:
        """Poisson GLM slopes, zero-fraction inflation, α = 0.5."""
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            try:
                beta0 = np.asarray(
                    sm.GLM(
                        self.endog,
                        self.exog,
                        family=sm.families.Poisson(),
                        offset=self.offset,
                    )
                    .fit()
                    .params,
                    dtype=float,
                )
            except (ValueError, np.linalg.LinAlgError) as exc:
                logger.debug("Poisson start values failed (%s); using zeros.", exc)
                beta0 = np.zeros(self.k_exog)
        if not np.all(np.isfinite(beta0)):
            beta0 = np.zeros(self.k_exog)

        zero_frac = float(np.clip(np.mean(self.endog == 0) * 0.5, 0.01, 0.5))
        return np.concatenate([beta0, [special.logit(zero_frac), np.log(0.5)]])

    def fit(
        self,
        start_params=None,
        method: str = "bfgs",
        maxiter: int = 1000,
        **kwargs,
    ):
        """Maximise the likelihood.

        Defaults to BFGS from Poisson-GLM start values, with the
        covariance from :func:`_inverse_information`; all other
        arguments are forwarded to ``GenericLikelihoodModel.fit``.
        """
        if start_params is None:
            start_params = self._start_params()
        kwargs.setdefault("disp", 0)
        kwargs.setdefault("cov_params_func", _inverse_information)
        return super().fit(
            start_params=start_params,
            method=method,
            maxiter=maxiter,
            **kwargs,
        )


class ZeroInflatedNegativeBinomialFixed(_ZINBLikelihood):
    """Fixed-effects ZINB with a log-scale dispersion.

    Args:
        endog: Count response ``(n,)``.
        exog: Design ``(n, p)`` including the intercept column.
        offset: Optional log-scale offset ``(n,)``.
    """

    def __init__(self, endog, exog, offset=None, **kwds) -> None:
        super().__init__(
            endog,
            exog,
            offset=offset,
            extra_params_names=["inflate_const", "lnalpha"],
            **kwds,
        )

    def loglikeobs(self, params: np.ndarray) -> np.ndarray:
        params = np.asarray(params, dtype=float)
        k = self.k_exog
        eta = self.exog @ params[:k] + self.offset
        return zinb_logpmf(self.endog, eta, params[k], np.exp(params[k + 1]))

    def loglike(self, params: np.ndarray) -> float:
        return float(np.sum(self.loglikeobs(params)))


class ZeroInflatedNegativeBinomialMixed(_ZINBLikelihood):
    """Random-intercept ZINB fitted by non-adaptive Gauss–Hermite quadrature.

    Args:
        endog: Count response ``(n,)``.
        exog: Fixed-effects design ``(n, p)`` including the intercept
            column.
        groups: Subject label per sample ``(n,)``.  Missing labels
            form one subject of their own.
        offset: Optional log-scale offset ``(n,)``.
        quadrature_points: Number of Gauss–Hermite nodes.  ``None``
            uses :func:`~zinb_associations.get_quadrature_points`.
        group_name: Label used for the random-effect SD parameter.
    """

    def __init__(
        self,
        endog,
        exog,
        groups,
        offset=None,
        quadrature_points: int | None = None,
        group_name: str = "ID",
        **kwds,
    ) -> None:
        super().__init__(
            endog,
            exog,
            offset=offset,
            extra_params_names=["inflate_const", "lnalpha", f"{group_name}_lnsd"],
            **kwds,
        )
        groups = np.asarray(groups)
        if groups.shape[0] != self.endog.shape[0]:
            raise ValueError(
                f"groups has {groups.shape[0]} entries but endog has "
                f"{self.endog.shape[0]}."
            )
        codes, labels = pd.factorize(groups, use_na_sentinel=False)
        self.group_codes = codes
        self.n_groups = len(labels)

        k = quadrature_points if quadrature_points is not None else get_quadrature_points()
        nodes, weights = np.polynomial.hermite.hermgauss(k)
        self._nodes = nodes
        self._log_weights = np.log(weights) - _LOG_SQRT_PI

    def loglike_groups(self, params: np.ndarray) -> np.ndarray:
        """Marginal log-likelihood contribution of each subject ``(G,)``."""
        params = np.asarray(params, dtype=float)
        k = self.k_exog
        beta, gamma = params[:k], params[k]
        alpha, sd = np.exp(params[k + 1]), np.exp(params[k + 2])

        eta = self.exog @ beta + self.offset
        b = np.sqrt(2.0) * sd * self._nodes
        ll = zinb_logpmf(self.endog[:, None], eta[:, None] + b[None, :], gamma, alpha)

        per_group = np.zeros((self.n_groups, ll.shape[1]))
        np.add.at(per_group, self.group_codes, ll)
        return special.logsumexp(per_group + self._log_weights[None, :], axis=1)

    def loglike(self, params: np.ndarray) -> float:
        return float(np.sum(self.loglike_groups(params)))

    def _start_params(self) -> np.ndarray:
        return np.concatenate([super()._start_params(), [np.log(0.5)]])
