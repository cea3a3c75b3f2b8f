"""
Score test for adding one dosage column to a fitted baseline GLM.

The baseline fit (beta0 on X0) is frozen into a ScoreTestContext once. Each
candidate column d is then tested without refitting:

    U  = d'(y - mu0) / phi
    I  = (d'Wd - (X0'Wd)' (X0'WX0)^-1 (X0'Wd)) / phi
    T  = U^2 / I  ~ chi2(1) under H0

W holds the canonical-link working weights at mu0 and phi is the residual
variance MLE for linear regression (1 otherwise). Columns are processed as
a block so a batch of markers costs a handful of matrix products.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy import linalg, stats

from .families import Family
from .regress import FitResult

# Relative floor on the efficient information; below it d lies in span(X0)
_INFO_RTOL = 1e-10


@dataclass(frozen=True)
class ScoreTestContext:
    """Null-model quantities shared read-only by every marker test."""

    X0: np.ndarray
    residuals: np.ndarray
    weights: np.ndarray
    dispersion: float
    cho_factor: Tuple[np.ndarray, bool]
    family: Family

    @classmethod
    def from_fit(cls, X0: np.ndarray, y: np.ndarray, fit: FitResult) -> "ScoreTestContext":
        X0 = np.array(X0, dtype=np.float64, order="C")
        y = np.asarray(y, dtype=np.float64)
        family = fit.family
        mu = family.mean(X0 @ fit.coefficients)
        residuals = y - mu
        weights = family.variance(mu)
        if family.has_dispersion and np.isposinf(fit.loglik):
            dispersion = 0.0
        elif family.has_dispersion:
            dispersion = float(residuals @ residuals) / y.shape[0]
        else:
            dispersion = 1.0
        info = X0.T @ (X0 * weights[:, np.newaxis])
        factor = linalg.cho_factor(info, lower=False)
        for arr in (X0, residuals, weights):
            arr.setflags(write=False)
        return cls(X0, residuals, weights, dispersion, factor, family)

    @property
    def n_rows(self) -> int:
        return self.X0.shape[0]


def score_statistics(context: ScoreTestContext, dosages: np.ndarray) -> np.ndarray:
    """Score statistics for each column of dosages (n x k, or a single vector)."""
    D = np.asarray(dosages, dtype=np.float64)
    if D.ndim == 1:
        D = D[:, np.newaxis]
    if D.shape[0] != context.n_rows:
        raise ValueError(
            f"Dosage rows ({D.shape[0]}) do not match baseline rows ({context.n_rows})"
        )

    if context.dispersion <= 0.0:
        # Baseline fits exactly; residuals are zero so every score is zero
        return np.zeros(D.shape[1])

    WD = D * context.weights[:, np.newaxis]
    XtWD = context.X0.T @ WD
    dWd = np.einsum("ij,ij->j", D, WD)
    projected = np.einsum("ij,ij->j", XtWD, linalg.cho_solve(context.cho_factor, XtWD))
    info = dWd - projected
    informative = info > _INFO_RTOL * np.maximum(dWd, np.finfo(np.float64).tiny)

    U = D.T @ context.residuals
    with np.errstate(divide="ignore", invalid="ignore"):
        stat = (U * U) / (info * context.dispersion)
    return np.maximum(np.where(informative, stat, 0.0), 0.0)


def GWASCAN_ScoreTest(context: ScoreTestContext,
                      dosages: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Score test p-values for one or more candidate dosage columns.

    Args:
        context: Baseline model quantities from ScoreTestContext.from_fit
        dosages: Dosages for the baseline's complete-case rows (n,) or (n x k)

    Returns:
        Tuple of (statistics, pvalues), each of length k. Columns that are
        constant or collinear with the baseline design get statistic 0 and
        p-value 1.
    """
    stat = score_statistics(context, dosages)
    pvalues = stats.chi2.sf(stat, df=1)
    return stat, pvalues
