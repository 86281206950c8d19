"""Result types for per-feature fits and per-dataset runs.

Frozen dataclasses that turn raised exceptions into values at the two
fault-isolation boundaries of the package:

* :class:`FitSuccess` / :class:`FitFailed` — the outcome of one
  feature's model fit.  :func:`attempt_with_one_retry` is the only
  place that catches fitter exceptions; everything downstream branches
  on the outcome type.
* :class:`DatasetOutcome` — the outcome of one dataset inside a batch.
  Failed datasets are filtered out by the batch runner.

All types are frozen (immutable after construction) to communicate
that they are a snapshot of a completed attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pandas as pd

    from .fitters import FittedModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitSuccess:
    """A usable fitted model.

    Attributes:
        model: The fitted-model variant.
        attempts: Number of calls it took (1 or 2).
    """

    model: FittedModel
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FitFailed:
    """A fit that failed on every attempt.

    Attributes:
        reason: Human-readable description of the last error.
        error: The last exception raised by the fitter.
        attempts: Number of calls made.
    """

    reason: str
    error: BaseException | None = None
    attempts: int = 2

    @property
    def ok(self) -> bool:
        return False


FitOutcome = FitSuccess | FitFailed


def attempt_with_one_retry(fit_fn: Callable[[], FittedModel]) -> FitOutcome:
    """Call *fit_fn*; on any exception call it exactly once more.

    Args:
        fit_fn: Zero-argument callable performing the fit.

    Returns:
        :class:`FitSuccess` from the first call that returns, or
        :class:`FitFailed` carrying the second exception.
    """
    try:
        return FitSuccess(model=fit_fn(), attempts=1)
    except Exception as first:
        logger.debug("Fit attempt 1 failed: %s; retrying once.", first)

    try:
        return FitSuccess(model=fit_fn(), attempts=2)
    except Exception as second:
        return FitFailed(
            reason=f"{type(second).__name__}: {second}",
            error=second,
            attempts=2,
        )


@dataclass(frozen=True)
class DatasetOutcome:
    """The result of running one dataset inside a batch.

    Exactly one of ``table`` and ``error`` is set.  ``error`` is the
    formatted exception (``"TypeName: message"``) rather than the
    exception object, so outcomes survive pickling between worker
    processes.
    """

    key: Hashable
    table: pd.DataFrame | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
