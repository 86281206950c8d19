"""Exception hierarchy for zinb_associations.

* :class:`UnsupportedTransformationError` — a response transformation
  other than ``"NONE"`` was requested.  Fatal for the dataset.
* :class:`FitFailureError` — a model fit did not converge or produced
  non-finite estimates.  Recoverable: the feature is retried once and
  then degrades to NaN rows.
* :class:`StructuralMismatchError` — the extracted coefficient block
  does not have one row per covariate.  Handled like a fit failure for
  output purposes, but logged as a structural problem.

All of them derive from :class:`ZINBAssociationError`, and also from
the builtin type a caller would naturally catch (``ValueError`` or
``RuntimeError``).
"""

from __future__ import annotations


class ZINBAssociationError(Exception):
    """Base class for all package-specific errors."""


class UnsupportedTransformationError(ZINBAssociationError, ValueError):
    """Raised when a transformation other than ``"NONE"`` is requested."""


class FitFailureError(ZINBAssociationError, RuntimeError):
    """Raised by a model fitter when a fit cannot be used."""


class StructuralMismatchError(ZINBAssociationError, RuntimeError):
    """Raised when a coefficient block does not match the covariates."""

    def __init__(self, expected: int, observed: int) -> None:
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"Coefficient block has {observed} rows but {expected} "
            f"covariate(s) were supplied."
        )
