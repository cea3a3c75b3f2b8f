import numpy as np
from scipy import stats
from typing import Tuple, Union

from .families import Family
from .regress import GWASCAN_Regress, DEFAULT_MAX_ITER, DEFAULT_TOL


def lrt_pvalue(lrt_stat: float) -> float:
    """Chi-square(1) right tail of a likelihood ratio statistic."""
    return float(stats.chi2.sf(lrt_stat, df=1))


def fit_marker_lrt(X0: np.ndarray,
                   y: np.ndarray,
                   dosage: np.ndarray,
                   family: Union[Family, str],
                   base_loglik: float,
                   max_iter: int = DEFAULT_MAX_ITER,
                   tol: float = DEFAULT_TOL) -> Tuple[float, float, float, float]:
    """
    Perform a Likelihood Ratio Test (LRT) for a single marker.

    Args:
        X0: Baseline design matrix (complete-case rows, intercept included)
        y: Response for the same rows
        dosage: Marker dosage for the same rows
        family: Regression family of the baseline model
        base_loglik: Loglikelihood of the baseline model (pre-calculated)

    Returns:
        Tuple (LRT_statistic, p_value, beta_marker, loglik_alt)

    Raises:
        RankDeficiencyError, NonConvergenceError from the alternative fit.
    """

    # Construct Alternative Model Design Matrix: [X0 | d]
    X_alt = np.column_stack([X0, np.asarray(dosage, dtype=np.float64)])
    fit = GWASCAN_Regress(X_alt, y, family, max_iter=max_iter, tol=tol)

    # LRT = 2 * (LL_alt - LL_null)
    lrt_stat = 2.0 * (fit.loglik - base_loglik)

    # Numerical stability check (stat should be >= 0); inf - inf from two exact fits
    if np.isnan(lrt_stat) or lrt_stat < 0:
        lrt_stat = 0.0

    return float(lrt_stat), lrt_pvalue(lrt_stat), float(fit.coefficients[-1]), float(fit.loglik)
