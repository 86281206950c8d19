"""Shared fixtures: a scriptable model-fitter double and small datasets."""

from __future__ import annotations

import threading
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from zinb_associations.exceptions import FitFailureError
from zinb_associations.fitters import FixedZINBFit, MixedZINBFit, ModelShape


class FakeFitter:
    """ModelFitter double whose output is a function of the response.

    * ``coef`` = mean of the response.
    * ``pval`` = mean of the response / 100, clipped to [0, 1].
    * ``stderr`` = 0.25.

    Args:
        fail_when: Predicate on the response array; when it returns
            True every call raises ``FitFailureError``.
        fail_first: Number of initial calls (across all features)
            that raise before the fitter starts working.
        extra_rows: Extra count-block terms to emit, to provoke a
            structural mismatch.
    """

    def __init__(self, fail_when=None, fail_first=0, extra_rows=0):
        self.fail_when = fail_when
        self.fail_first = fail_first
        self.extra_rows = extra_rows
        self.calls = []
        self._lock = threading.Lock()

    def fit(self, formula, data, shape):
        y = data[formula.response].to_numpy(dtype=float)
        with self._lock:
            self.calls.append((str(formula), ModelShape(shape)))
            n_calls = len(self.calls)
        if n_calls <= self.fail_first:
            raise FitFailureError("scripted transient failure")
        if self.fail_when is not None and self.fail_when(y):
            raise FitFailureError("scripted failure")

        terms = list(formula.covariates) + [f"extra{i}" for i in range(self.extra_rows)]
        k = len(terms)
        mean = float(y.mean())
        p = float(np.clip(mean / 100.0, 0.0, 1.0))
        count = {
            "params": np.r_[0.5, np.full(k, mean)],
            "bse": np.r_[0.1, np.full(k, 0.25)],
            "pvalues": np.r_[0.9, np.full(k, p)],
        }
        names = ("Intercept", *terms)
        if ModelShape(shape) is ModelShape.FIXED:
            # [Intercept, terms…, inflate_const, lnalpha]
            params = np.r_[count["params"], -2.0, -1.2]
            bse = np.r_[count["bse"], 0.5, 0.05]
            pvalues = np.r_[count["pvalues"], 0.01, 0.001]
            result = SimpleNamespace(
                params=params, bse=bse, tvalues=params / bse, pvalues=pvalues
            )
            return FixedZINBFit(result=result, term_names=names)
        # [Intercept, terms…, inflate_const, lnalpha, ID_lnsd]
        params = np.r_[count["params"], -2.0, -1.0, -0.5]
        bse = np.r_[count["bse"], 0.5, 0.2, 0.3]
        pvalues = np.r_[count["pvalues"], 0.01, 0.001, 0.1]
        result = SimpleNamespace(
            params=params, bse=bse, tvalues=params / bse, pvalues=pvalues
        )
        return MixedZINBFit(result=result, term_names=names)


@pytest.fixture()
def fake_fitter():
    """Factory for :class:`FakeFitter` instances."""
    return FakeFitter


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def small_dataset():
    """4 features × 8 samples, 2 covariates, distinct IDs, varying libSize.

    Feature means are 10, 40, 5, 80 so the fake fitter's p-values are
    0.10, 0.40, 0.05, 0.80.
    """
    n = 8
    features = pd.DataFrame(
        {
            "f1": np.full(n, 10.0),
            "f2": np.full(n, 40.0),
            "f3": np.full(n, 5.0),
            "f4": np.full(n, 80.0),
        }
    )
    metadata = pd.DataFrame(
        {
            "group": np.tile([0, 1], n // 2),
            "age": np.linspace(20.0, 60.0, n),
        }
    )
    lib_size = np.linspace(1000.0, 2000.0, n)
    ids = np.array([f"s{i}" for i in range(n)])
    return features, metadata, lib_size, ids
