"""
Exception types raised by gwascan.

Configuration problems are fatal and surface before any model is fitted.
Fit failures are recoverable for a single marker but fatal for the baseline
model.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """Invalid or missing analysis keyword (family, formula, threshold, field)."""

    def __init__(self, message: str, keyword: Optional[str] = None):
        self.keyword = keyword
        if keyword is not None:
            message = f"{keyword}: {message}"
        super().__init__(message)


class FitError(RuntimeError):
    """Base class for regression fitting failures."""


class RankDeficiencyError(FitError):
    """Design matrix is not of full column rank."""

    def __init__(self, rank: int, n_columns: int, n_rows: Optional[int] = None):
        self.rank = rank
        self.n_columns = n_columns
        self.n_rows = n_rows
        if n_rows is not None and n_rows < n_columns:
            detail = f"{n_rows} complete rows for {n_columns} predictors"
        else:
            detail = f"rank {rank} < {n_columns} columns"
        super().__init__(f"Design matrix is rank deficient ({detail})")


class NonConvergenceError(FitError):
    """Iteratively reweighted least squares hit its iteration cap."""

    def __init__(self, iterations: int, loglik: float):
        self.iterations = iterations
        self.loglik = loglik
        super().__init__(
            f"IRLS did not converge within {iterations} iterations "
            f"(last loglikelihood {loglik:.6g})"
        )


class BaselineFitError(RuntimeError):
    """The covariate-only model could not be fitted, so no scan is possible."""
