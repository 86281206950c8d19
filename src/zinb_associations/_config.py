"""Runtime configuration for the zinb_associations package.

Controls the default degree of parallelism used when fitting features
and datasets, and the number of Gauss–Hermite nodes used to integrate
the random intercept out of the mixed-effects likelihood.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_n_jobs` /
       :func:`set_quadrature_points`.
    2. The ``ZINB_ASSOCIATIONS_N_JOBS`` /
       ``ZINB_ASSOCIATIONS_QUADRATURE_POINTS`` environment variables.
    3. Built-in defaults (``1`` job, ``15`` nodes).

Keyword arguments passed to the public API always win over all three.

Examples:
    Fit datasets on all cores from the shell::

        export ZINB_ASSOCIATIONS_N_JOBS=-1

    Or programmatically::

        import zinb_associations
        zinb_associations.set_n_jobs(-1)

    Restore the default resolution order::

        zinb_associations.set_n_jobs(None)
"""

from __future__ import annotations

import os

_DEFAULT_N_JOBS = 1
_DEFAULT_QUADRATURE_POINTS = 15

_N_JOBS_ENV = "ZINB_ASSOCIATIONS_N_JOBS"
_QUADRATURE_ENV = "ZINB_ASSOCIATIONS_QUADRATURE_POINTS"

# Sentinels indicating "no programmatic override has been set".
_n_jobs_override: int | None = None
_quadrature_override: int | None = None


def _validate_n_jobs(value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value == 0:
        raise ValueError(
            f"n_jobs must be a non-zero integer (-1 for all cores), got {value!r}."
        )
    return value


def _validate_quadrature_points(value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(
            f"quadrature_points must be a positive integer, got {value!r}."
        )
    return value


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


def get_n_jobs() -> int:
    """Return the default number of parallel jobs.

    Returns:
        A non-zero integer; ``-1`` means "all cores" (joblib
        convention).
    """
    if _n_jobs_override is not None:
        return _n_jobs_override

    env = _env_int(_N_JOBS_ENV)
    if env is not None:
        return _validate_n_jobs(env)

    return _DEFAULT_N_JOBS


def set_n_jobs(n_jobs: int | None) -> None:
    """Override the default number of parallel jobs.

    Args:
        n_jobs: Non-zero integer, or ``None`` to restore the default
            resolution order.

    Raises:
        ValueError: If *n_jobs* is zero or not an integer.
    """
    global _n_jobs_override
    _n_jobs_override = None if n_jobs is None else _validate_n_jobs(n_jobs)


def get_quadrature_points() -> int:
    """Return the number of Gauss–Hermite nodes for mixed-model fits."""
    if _quadrature_override is not None:
        return _quadrature_override

    env = _env_int(_QUADRATURE_ENV)
    if env is not None:
        return _validate_quadrature_points(env)

    return _DEFAULT_QUADRATURE_POINTS


def set_quadrature_points(points: int | None) -> None:
    """Override the number of Gauss–Hermite nodes.

    Args:
        points: Positive integer, or ``None`` to restore the default
            resolution order.

    Raises:
        ValueError: If *points* is not a positive integer.
    """
    global _quadrature_override
    _quadrature_override = (
        None if points is None else _validate_quadrature_points(points)
    )
