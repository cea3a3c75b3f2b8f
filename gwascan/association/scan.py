"""
Score-screened association scan over a marker panel.

Per marker:
1. MAF filter: markers with MAF <= maf_threshold keep p = 1.0.
2. Screen: score test of the dosage against the frozen baseline fit.
3. Escalate: screening p < lrt_threshold triggers a full refit and the
   likelihood ratio p-value replaces the screening one.
4. Report: p < report_alpha / n_markers, with a Hardy-Weinberg p-value
   (sex-aware on the X chromosome).

The baseline fit is a barrier before any marker work. Screening runs in
marker blocks and escalation refits run as a second stage, both on a thread
pool; every task writes only the result slots of its own markers.
"""

import time
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import linalg
from tqdm import tqdm

from ..model.formula import ModelFrame
from ..utils.data_types import (
    GenotypeMatrix, GenotypeMap, ScanResults, MarkerReport, is_x_chromosome,
    OUTCOME_SKIPPED_MAF, OUTCOME_MISSING_DOSAGE, OUTCOME_SCREENED,
    OUTCOME_ESCALATED, OUTCOME_FIT_FAILED,
)
from ..utils.errors import BaselineFitError, FitError
from ..utils.stats import hardy_weinberg_test, xlinked_hardy_weinberg_test
from .lrt import fit_marker_lrt
from .regress import GWASCAN_Regress, FitResult, DEFAULT_MAX_ITER, DEFAULT_TOL
from .score import ScoreTestContext, GWASCAN_ScoreTest

DEFAULT_LRT_THRESHOLD = 5e-8
DEFAULT_MAF_THRESHOLD = 0.01
DEFAULT_REPORT_ALPHA = 0.05


def _default_map(n_markers: int) -> GenotypeMap:
    return GenotypeMap(pd.DataFrame({
        'SNP': [f"SNP{j + 1}" for j in range(n_markers)],
        'CHROM': ['NA'] * n_markers,
        'POS': np.zeros(n_markers, dtype=int),
    }))


def fit_baseline(model: ModelFrame,
                 max_iter: int = DEFAULT_MAX_ITER,
                 tol: float = DEFAULT_TOL) -> Tuple[FitResult, ScoreTestContext]:
    """Fit the covariate-only model and freeze it for score testing.

    Raises:
        BaselineFitError: the baseline model cannot be fitted
    """
    try:
        fit = GWASCAN_Regress(model.X, model.y, model.family, max_iter=max_iter, tol=tol)
        context = ScoreTestContext.from_fit(model.X, model.y, fit)
    except (FitError, linalg.LinAlgError) as exc:
        raise BaselineFitError(f"Baseline model '{model.formula}' could not be fitted: {exc}") from exc
    return fit, context


class _ScanState:
    """Result slots shared by the scan tasks; each task owns disjoint indices."""

    def __init__(self, n_markers: int):
        self.pvalues = np.ones(n_markers)
        self.screen_pvalues = np.ones(n_markers)
        self.effects = np.full(n_markers, np.nan)
        self.logliks = np.full(n_markers, np.nan)
        self.outcomes = np.full(n_markers, OUTCOME_SKIPPED_MAF, dtype=object)
        self.fit_errors = {}


def _screen_block(state: _ScanState,
                  geno: GenotypeMatrix,
                  rows: np.ndarray,
                  testable: np.ndarray,
                  context: ScoreTestContext,
                  start: int,
                  end: int) -> Tuple[List[int], int]:
    """Score-test markers start..end-1; returns (indices screened in, n missing)."""
    local = np.flatnonzero(testable[start:end])
    if local.size == 0:
        return [], 0
    D = geno.get_batch_dosage(start, end)[rows][:, local]

    has_missing = np.isnan(D).any(axis=0)
    n_missing = int(has_missing.sum())
    if n_missing:
        state.outcomes[start + local[has_missing]] = OUTCOME_MISSING_DOSAGE
        local = local[~has_missing]
        D = D[:, ~has_missing]
    if local.size == 0:
        return [], n_missing

    _, pvals = GWASCAN_ScoreTest(context, D)
    idx = start + local
    state.screen_pvalues[idx] = pvals
    state.pvalues[idx] = pvals
    state.outcomes[idx] = OUTCOME_SCREENED
    return idx.tolist(), n_missing


def _escalate_marker(state: _ScanState,
                     geno: GenotypeMatrix,
                     model: ModelFrame,
                     rows: np.ndarray,
                     base: FitResult,
                     marker: int,
                     max_iter: int,
                     tol: float) -> Optional[str]:
    """Likelihood ratio refit of one marker; returns the error text on failure."""
    dosage = geno.get_dosage(marker)[rows]
    try:
        _, pvalue, beta, loglik = fit_marker_lrt(
            model.X, model.y, dosage, model.family, base.loglik,
            max_iter=max_iter, tol=tol,
        )
    except FitError as exc:
        state.outcomes[marker] = OUTCOME_FIT_FAILED
        state.fit_errors[marker] = str(exc)
        return str(exc)
    state.pvalues[marker] = pvalue
    state.effects[marker] = beta
    state.logliks[marker] = loglik
    state.outcomes[marker] = OUTCOME_ESCALATED
    return None


def _hwe_pvalue(dosage: np.ndarray, chromosome, male: Optional[np.ndarray], method: str) -> float:
    if is_x_chromosome(chromosome) and male is not None:
        return xlinked_hardy_weinberg_test(dosage, male)
    return hardy_weinberg_test(dosage, method=method)


def GWASCAN_Scan(model: ModelFrame,
                 geno: GenotypeMatrix,
                 geno_map: Optional[GenotypeMap] = None,
                 maf_threshold: float = DEFAULT_MAF_THRESHOLD,
                 lrt_threshold: float = DEFAULT_LRT_THRESHOLD,
                 report_alpha: float = DEFAULT_REPORT_ALPHA,
                 male: Optional[np.ndarray] = None,
                 hwe_method: str = 'chisq',
                 batch_size: int = 5000,
                 n_workers: int = 1,
                 max_iter: int = DEFAULT_MAX_ITER,
                 tol: float = DEFAULT_TOL,
                 verbose: bool = True) -> ScanResults:
    """Score-screened GWAS scan with likelihood ratio escalation.

    Args:
        model: Baseline design (complete-case rows) from build_model
        geno: Dosage matrix whose rows are the individuals of the frame the
            model was built from, in the same order
        geno_map: Marker map (SNP, CHROM, POS); placeholder names if None
        maf_threshold: Markers with MAF <= this are not tested
        lrt_threshold: Screening p-values below this trigger a refit
        report_alpha: Markers with p < report_alpha / n_markers are reported
        male: Male indicator per individual (same rows as geno) for the
            X-linked Hardy-Weinberg test
        hwe_method: 'chisq' or 'exact' for autosomal markers
        batch_size: Markers per screening block
        n_workers: Thread pool size for screening and escalation
        max_iter: IRLS iteration cap
        tol: IRLS convergence tolerance
        verbose: Print progress

    Returns:
        ScanResults with per-marker p-values, outcomes and report records

    Raises:
        BaselineFitError: the covariate-only model cannot be fitted
        ValueError: genotype rows do not line up with the model frame
    """
    if geno.n_individuals != model.n_individuals:
        raise ValueError(
            f"Genotype matrix has {geno.n_individuals} individuals but the model "
            f"frame has {model.n_individuals}; align samples before scanning"
        )
    n_markers = geno.n_markers
    if geno_map is None:
        geno_map = _default_map(n_markers)
    elif geno_map.n_markers != n_markers:
        raise ValueError(f"Map has {geno_map.n_markers} markers, genotype matrix has {n_markers}")
    if male is not None:
        male = np.asarray(male, dtype=bool)
        if male.shape[0] != geno.n_individuals:
            raise ValueError("Sex vector length does not match the genotype matrix")
    batch_size = max(int(batch_size), 1)
    n_workers = max(int(n_workers), 1)

    scan_start = time.time()
    base, context = fit_baseline(model, max_iter=max_iter, tol=tol)
    if verbose:
        print(f"Baseline {model.family.value} model '{model.formula}' on {model.n_complete} "
              f"complete cases: loglikelihood {base.loglik:.8g}")

    rows = model.complete_indices
    maf = geno.calculate_maf()
    testable = maf > maf_threshold
    state = _ScanState(n_markers)

    blocks = [(s, min(s + batch_size, n_markers)) for s in range(0, n_markers, batch_size)]
    candidates: List[int] = []
    n_missing = 0
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = [
            executor.submit(_screen_block, state, geno, rows, testable, context, s, e)
            for s, e in blocks
        ]
        progress = tqdm(as_completed(futures), total=len(futures), desc="Screening",
                        unit="block", disable=not verbose)
        for future in progress:
            screened, missing = future.result()
            n_missing += missing
            candidates.extend(j for j in screened if state.screen_pvalues[j] < lrt_threshold)

        candidates.sort()
        refits = {
            executor.submit(_escalate_marker, state, geno, model, rows, base, j, max_iter, tol): j
            for j in candidates
        }
        for future in as_completed(refits):
            error = future.result()
            if error is not None:
                marker = refits[future]
                warnings.warn(
                    f"Likelihood ratio refit failed for SNP {geno_map.snp_ids.iloc[marker]}: "
                    f"{error}; keeping the score test p-value"
                )

    if n_missing:
        warnings.warn(
            f"{n_missing} markers have missing dosages among the analysed individuals "
            "and were not tested"
        )

    report_threshold = report_alpha / max(n_markers, 1)
    reports = []
    for j in np.flatnonzero(state.pvalues < report_threshold):
        chromosome = geno_map.chromosomes.iloc[j]
        reports.append(MarkerReport(
            index=int(j),
            snp=str(geno_map.snp_ids.iloc[j]),
            chromosome=str(chromosome),
            position=int(geno_map.positions.iloc[j]),
            pvalue=float(state.pvalues[j]),
            maf=float(maf[j]),
            hwe_pvalue=_hwe_pvalue(geno.get_dosage(j), chromosome, male, hwe_method),
            effect=float(state.effects[j]),
            loglik=float(state.logliks[j]),
            outcome=str(state.outcomes[j]),
            fit_error=state.fit_errors.get(int(j)),
        ))

    results = ScanResults(
        pvalues=state.pvalues,
        screen_pvalues=state.screen_pvalues,
        effects=state.effects,
        logliks=state.logliks,
        maf=maf,
        outcomes=state.outcomes,
        fit_errors=state.fit_errors,
        baseline=base,
        baseline_names=list(model.column_names),
        reports=reports,
        snp_map=geno_map,
        report_threshold=report_threshold,
    )

    if verbose:
        elapsed = time.time() - scan_start
        print(f"Scanned {n_markers} markers in {elapsed:.2f} seconds: "
              f"{results.n_skipped} below MAF {maf_threshold}, {len(candidates)} escalated to LRT, "
              f"{len(reports)} reported (p < {report_threshold:.3g})")

    return results
