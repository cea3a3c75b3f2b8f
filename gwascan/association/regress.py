"""
Fast maximum-likelihood regression for the three canonical-link GWAS models.

- LINEAR: least squares through a pivoted QR decomposition.
- LOGISTIC / POISSON: Newton-Raphson (IRLS under the canonical link) with
  step-halving whenever a full step lowers the log-likelihood.

Both the baseline model and every escalated marker model go through
GWASCAN_Regress, so rank and convergence failures are reported the same way.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy import linalg

from ..utils.errors import NonConvergenceError, RankDeficiencyError
from .families import Family

DEFAULT_MAX_ITER = 100
DEFAULT_TOL = 1e-10
MAX_STEP_HALVINGS = 30


@dataclass(frozen=True)
class FitResult:
    """Coefficients and maximised log-likelihood of one model fit."""

    coefficients: np.ndarray
    loglik: float
    family: Family
    iterations: int = 1

    def __post_init__(self):
        coef = np.array(self.coefficients, dtype=np.float64, copy=True)
        coef.setflags(write=False)
        object.__setattr__(self, "coefficients", coef)

    @property
    def n_coefficients(self) -> int:
        return self.coefficients.shape[0]


def _check_inputs(X: np.ndarray, y: np.ndarray):
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    if X.ndim != 2:
        raise ValueError("Design matrix must be two-dimensional")
    if y.ndim != 1 or y.shape[0] != X.shape[0]:
        raise ValueError(
            f"Response length {y.shape} does not match design matrix rows {X.shape[0]}"
        )
    if not (np.all(np.isfinite(X)) and np.all(np.isfinite(y))):
        raise ValueError("Design matrix and response must not contain missing values")
    return X, y


def matrix_rank(X: np.ndarray) -> int:
    """Numerical column rank from a column-pivoted QR decomposition."""
    if X.size == 0:
        return 0
    R = linalg.qr(X, mode="r", pivoting=True)[0]
    diag = np.abs(np.diag(R))
    if diag.size == 0 or diag[0] == 0.0:
        return 0
    tol = max(X.shape) * np.finfo(np.float64).eps * diag[0]
    return int(np.sum(diag > tol))


def _require_full_rank(X: np.ndarray) -> None:
    n, p = X.shape
    if n < p:
        raise RankDeficiencyError(rank=n, n_columns=p, n_rows=n)
    rank = matrix_rank(X)
    if rank < p:
        raise RankDeficiencyError(rank=rank, n_columns=p)


def fitted_mean(X: np.ndarray, beta: np.ndarray, family: Family) -> np.ndarray:
    """Mean response implied by coefficients beta."""
    return family.mean(np.asarray(X, dtype=np.float64) @ np.asarray(beta, dtype=np.float64))


def loglikelihood(X: np.ndarray, y: np.ndarray, beta: np.ndarray, family: Family) -> float:
    """Log-likelihood of coefficients beta (residual variance profiled for LINEAR)."""
    X, y = _check_inputs(X, y)
    return family.loglik(y, X @ np.asarray(beta, dtype=np.float64))


def _fit_linear(X: np.ndarray, y: np.ndarray) -> FitResult:
    Q, R = np.linalg.qr(X, mode="reduced")
    beta = linalg.solve_triangular(R, Q.T @ y, lower=False)
    loglik = Family.LINEAR.loglik(y, X @ beta)
    return FitResult(beta, loglik, Family.LINEAR, iterations=1)


def _newton_step(X: np.ndarray, w: np.ndarray, score: np.ndarray) -> np.ndarray:
    info = X.T @ (X * w[:, np.newaxis])
    try:
        return linalg.cho_solve(linalg.cho_factor(info, lower=False), score)
    except linalg.LinAlgError:
        # Weights underflow near separation; fall back to least squares
        return np.linalg.lstsq(info, score, rcond=None)[0]


def _initial_beta(X: np.ndarray, y: np.ndarray, family: Family) -> np.ndarray:
    """One weighted least-squares pass from a mean pulled toward the data average."""
    if family is Family.LOGISTIC:
        mu = (y + 0.5) / 2.0
        eta = np.log(mu / (1.0 - mu))
    else:
        mu = (y + max(float(np.mean(y)), 0.1)) / 2.0
        eta = np.log(mu)
    w = family.variance(mu)
    z = eta + (y - mu) / w
    Xw = X * w[:, np.newaxis]
    try:
        return linalg.solve(X.T @ Xw, Xw.T @ z, assume_a="pos")
    except linalg.LinAlgError:
        return np.zeros(X.shape[1])


def _fit_irls(X: np.ndarray, y: np.ndarray, family: Family,
              max_iter: int, tol: float) -> FitResult:
    beta = _initial_beta(X, y, family)
    loglik = family.loglik(y, X @ beta)
    if not np.isfinite(loglik):
        beta = np.zeros(X.shape[1])
        loglik = family.loglik(y, X @ beta)

    for iteration in range(1, max_iter + 1):
        mu = family.mean(X @ beta)
        w = family.variance(mu)
        step = _newton_step(X, w, X.T @ (y - mu))

        new_beta = beta + step
        new_loglik = family.loglik(y, X @ new_beta)
        halvings = 0
        while (not np.isfinite(new_loglik) or new_loglik < loglik) and halvings < MAX_STEP_HALVINGS:
            step = step / 2.0
            new_beta = beta + step
            new_loglik = family.loglik(y, X @ new_beta)
            halvings += 1

        if not np.isfinite(new_loglik) or new_loglik < loglik:
            # No ascent direction left; beta is a stationary point
            return FitResult(beta, loglik, family, iterations=iteration)

        delta_ll = abs(new_loglik - loglik)
        max_step = float(np.max(np.abs(step))) if step.size else 0.0
        beta, loglik = new_beta, new_loglik
        if delta_ll <= tol * (abs(loglik) + 1.0) or max_step <= tol * (float(np.max(np.abs(beta))) + 1.0):
            return FitResult(beta, loglik, family, iterations=iteration)

    raise NonConvergenceError(iterations=max_iter, loglik=loglik)


def GWASCAN_Regress(X: np.ndarray,
                    y: np.ndarray,
                    family: Union[Family, str],
                    max_iter: int = DEFAULT_MAX_ITER,
                    tol: float = DEFAULT_TOL,
                    check_rank: bool = True) -> FitResult:
    """Fit a canonical-link linear, logistic or Poisson regression.

    Args:
        X: Design matrix (n x p), intercept column included by the caller
        y: Response vector (n,)
        family: Family member or its name
        max_iter: IRLS iteration cap (ignored for linear regression)
        tol: Convergence tolerance on the relative loglikelihood change
            or the largest coefficient step
        check_rank: Verify full column rank before fitting

    Returns:
        FitResult with coefficients (length p) and the maximised loglikelihood.

    Raises:
        RankDeficiencyError: X has fewer rows than columns or collinear columns
        NonConvergenceError: IRLS exceeded max_iter
    """
    family = Family.parse(family)
    X, y = _check_inputs(X, y)
    if check_rank:
        _require_full_rank(X)

    if family is Family.LINEAR:
        return _fit_linear(X, y)
    if family is Family.LOGISTIC or family is Family.POISSON:
        family.validate_response(y)
        return _fit_irls(X, y, family, max_iter=max_iter, tol=tol)
    raise AssertionError(f"Unhandled family {family!r}")
