"""
Statistical utilities for GWAS analysis
"""

import numba
import numpy as np
from typing import Tuple, Optional, Sequence
from scipy import stats

from .data_types import FDRRow, FDRTable

DEFAULT_FDR_LEVELS: Tuple[float, ...] = (
    0.01, 0.05, 0.10, 0.20, 0.30, 0.40, 0.50, 0.60, 0.70, 0.80, 0.90,
)

HWE_METHODS = ('chisq', 'exact')


def GWASCAN_FDR(pvalues: np.ndarray,
                levels: Sequence[float] = DEFAULT_FDR_LEVELS,
                n_tests: Optional[int] = None) -> FDRTable:
    """Benjamini-Hochberg p-value thresholds for a list of target FDR levels.

    For each level q the threshold is the largest sorted p-value p(k) with
    p(k) <= (k / m) * q, and k markers pass. When no k qualifies the row
    reports threshold 0.0 and 0 passing markers.

    Args:
        pvalues: One p-value per marker (skipped markers included at 1.0)
        levels: Target FDR levels; output rows keep this order
        n_tests: Number of hypotheses m (default: len(pvalues))

    Returns:
        FDRTable with one row per level
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    if np.any(np.isnan(pvalues)):
        raise ValueError("P-value vector contains NaN")
    m = int(n_tests) if n_tests is not None else pvalues.shape[0]
    if m < pvalues.shape[0]:
        raise ValueError(f"n_tests ({m}) is smaller than the number of p-values ({pvalues.shape[0]})")

    sorted_p = np.sort(pvalues)
    ranks = np.arange(1, sorted_p.shape[0] + 1, dtype=np.float64)

    rows = []
    for q in levels:
        q = float(q)
        if not 0.0 < q <= 1.0:
            raise ValueError(f"FDR level must lie in (0, 1], got {q}")
        passing = np.nonzero(sorted_p <= ranks / m * q)[0]
        if passing.size:
            k = int(passing[-1]) + 1
            rows.append(FDRRow(level=q, threshold=float(sorted_p[k - 1]), n_passing=k))
        else:
            rows.append(FDRRow(level=q, threshold=0.0, n_passing=0))

    return FDRTable(rows=rows, n_tests=m)


def genomic_inflation_factor(pvalues: np.ndarray) -> float:
    """Calculate genomic inflation factor (lambda)

    Args:
        pvalues: Array of p-values

    Returns:
        Genomic inflation factor (lambda)
    """
    valid_pvals = pvalues[np.isfinite(pvalues) & (pvalues > 0)]
    if len(valid_pvals) == 0:
        return 1.0

    chi2_values = stats.chi2.isf(valid_pvals, df=1)
    median_chi2 = np.median(chi2_values)
    expected_median = stats.chi2.ppf(0.5, df=1)

    lambda_gc = median_chi2 / expected_median
    return lambda_gc


def qq_plot_data(pvalues: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Expected and observed p-values for a Q-Q plot.

    P-values outside (0, 1] and NaN are dropped; observed values are sorted
    and paired with the uniform quantiles i / (n + 1).

    Returns:
        Tuple of (expected_pvalues, observed_pvalues)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    observed = np.sort(pvalues[np.isfinite(pvalues) & (pvalues > 0) & (pvalues <= 1)])
    n = len(observed)
    if n == 0:
        return np.array([]), np.array([])
    return np.arange(1, n + 1) / (n + 1), observed


def genotype_counts(dosage: np.ndarray) -> np.ndarray:
    """Counts of rounded genotypes [n0, n1, n2] ignoring missing dosages."""
    dosage = np.asarray(dosage, dtype=np.float64)
    called = np.rint(dosage[np.isfinite(dosage)])
    called = np.clip(called, 0, 2).astype(np.int64)
    return np.bincount(called, minlength=3)[:3]


@numba.njit(cache=True)
def _hwe_exact_kernel(n_het: int, n_hom1: int, n_hom2: int) -> float:
    """Wigginton, Cutler & Abecasis (2005) exact HWE test."""
    obs_homc = max(n_hom1, n_hom2)
    obs_homr = min(n_hom1, n_hom2)
    rare_copies = 2 * obs_homr + n_het
    genotypes = n_het + obs_homc + obs_homr
    if genotypes == 0 or rare_copies == 0:
        return 1.0

    het_probs = np.zeros(rare_copies + 1)
    mid = rare_copies * (2 * genotypes - rare_copies) // (2 * genotypes)
    if (mid % 2) != (rare_copies % 2):
        mid += 1

    het_probs[mid] = 1.0
    total = 1.0

    curr_homr = (rare_copies - mid) // 2
    curr_homc = genotypes - mid - curr_homr
    curr_hets = mid
    while curr_hets > 1:
        het_probs[curr_hets - 2] = (het_probs[curr_hets] * curr_hets * (curr_hets - 1.0)
                                    / (4.0 * (curr_homr + 1.0) * (curr_homc + 1.0)))
        total += het_probs[curr_hets - 2]
        curr_homr += 1
        curr_homc += 1
        curr_hets -= 2

    curr_homr = (rare_copies - mid) // 2
    curr_homc = genotypes - mid - curr_homr
    curr_hets = mid
    while curr_hets <= rare_copies - 2:
        het_probs[curr_hets + 2] = (het_probs[curr_hets] * 4.0 * curr_homr * curr_homc
                                    / ((curr_hets + 2.0) * (curr_hets + 1.0)))
        total += het_probs[curr_hets + 2]
        curr_homr -= 1
        curr_homc -= 1
        curr_hets += 2

    p_obs = het_probs[n_het] / total
    p_value = 0.0
    for i in range(rare_copies + 1):
        p_i = het_probs[i] / total
        if p_i <= p_obs * (1.0 + 1e-8):
            p_value += p_i
    return min(1.0, p_value)


def _pearson_pvalue(observed: np.ndarray, expected: np.ndarray, df: int) -> float:
    keep = expected > 0
    if df <= 0 or not np.any(keep):
        return 1.0
    chi2 = float(np.sum((observed[keep] - expected[keep]) ** 2 / expected[keep]))
    return float(stats.chi2.sf(chi2, df=df))


def hardy_weinberg_test(dosage: np.ndarray, method: str = 'chisq') -> float:
    """Hardy-Weinberg equilibrium p-value for an autosomal marker.

    Dosages are rounded to the nearest genotype and missing entries skipped.

    Args:
        dosage: Per-individual dosage vector
        method: 'chisq' for the Pearson chi-square test with 1 df, or
            'exact' for the Wigginton et al. (2005) exact test

    Returns:
        p-value (1.0 for monomorphic or empty markers)
    """
    if method not in HWE_METHODS:
        raise ValueError(f"Unknown Hardy-Weinberg method '{method}'; use one of {HWE_METHODS}")
    n0, n1, n2 = (int(c) for c in genotype_counts(dosage))
    n = n0 + n1 + n2
    if n == 0:
        return 1.0
    p = (2.0 * n2 + n1) / (2.0 * n)
    if p <= 0.0 or p >= 1.0:
        return 1.0

    if method == 'exact':
        return float(_hwe_exact_kernel(n1, n0, n2))

    q = 1.0 - p
    observed = np.array([n0, n1, n2], dtype=np.float64)
    expected = n * np.array([q * q, 2.0 * p * q, p * p])
    return _pearson_pvalue(observed, expected, df=1)


def xlinked_hardy_weinberg_test(dosage: np.ndarray, male: np.ndarray) -> float:
    """Hardy-Weinberg p-value for an X-linked marker.

    Males are hemizygous: a rounded dosage of 1 or more counts as one copy of
    the allele. Females contribute diploid genotype counts. The allele
    frequency is pooled over all alleles and a Pearson chi-square is taken
    over the sex-by-genotype classes (2 df when both sexes are present).

    Args:
        dosage: Per-individual dosage vector
        male: Boolean vector, True for males

    Returns:
        p-value (1.0 for monomorphic or empty markers)
    """
    dosage = np.asarray(dosage, dtype=np.float64)
    male = np.asarray(male, dtype=bool)
    if male.shape != dosage.shape:
        raise ValueError("Sex vector must match the dosage vector length")

    male_dosage = dosage[male]
    male_dosage = male_dosage[np.isfinite(male_dosage)]
    male_carriers = float(np.sum(np.rint(male_dosage) >= 1))
    n_male = float(male_dosage.shape[0])

    f0, f1, f2 = (float(c) for c in genotype_counts(dosage[~male]))
    n_female = f0 + f1 + f2

    n_alleles = n_male + 2.0 * n_female
    if n_alleles == 0:
        return 1.0
    p = (male_carriers + f1 + 2.0 * f2) / n_alleles
    if p <= 0.0 or p >= 1.0:
        return 1.0
    q = 1.0 - p

    observed = []
    expected = []
    df = -1  # one allele frequency estimated
    if n_male > 0:
        observed += [n_male - male_carriers, male_carriers]
        expected += [n_male * q, n_male * p]
        df += 1
    if n_female > 0:
        observed += [f0, f1, f2]
        expected += [n_female * q * q, 2.0 * n_female * p * q, n_female * p * p]
        df += 2
    return _pearson_pvalue(np.array(observed), np.array(expected), df=df)
