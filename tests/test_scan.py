import warnings

import numpy as np
import pandas as pd
import pytest

from gwascan.association import scan as scan_module
from gwascan.association.families import Family
from gwascan.association.lrt import fit_marker_lrt
from gwascan.association.regress import GWASCAN_Regress
from gwascan.association.scan import GWASCAN_Scan, fit_baseline
from gwascan.model.formula import build_model
from gwascan.utils.data_types import (
    GenotypeMap,
    GenotypeMatrix,
    OUTCOME_ESCALATED,
    OUTCOME_FIT_FAILED,
    OUTCOME_MISSING_DOSAGE,
    OUTCOME_SCREENED,
    OUTCOME_SKIPPED_MAF,
    ScanResults,
)
from gwascan.utils.errors import BaselineFitError, NonConvergenceError
from gwascan.utils.stats import hardy_weinberg_test, xlinked_hardy_weinberg_test


def _logistic_cohort(n: int = 200, m: int = 50, causal: int = 17, effect: float = 2.0, seed: int = 0):
    rng = np.random.default_rng(seed)
    freqs = rng.uniform(0.1, 0.5, size=m)
    geno = rng.binomial(2, freqs, size=(n, m)).astype(np.float32)
    age = rng.normal(40.0, 10.0, size=n)
    eta = -1.0 + 0.01 * (age - 40.0) + effect * (geno[:, causal] - 2.0 * freqs[causal])
    status = (rng.random(n) < 1.0 / (1.0 + np.exp(-eta))).astype(float)
    frame = pd.DataFrame({
        'ID': [f"ind{i}" for i in range(n)],
        'Status': status,
        'Age': age,
        'Sex': np.where(rng.random(n) < 0.5, 'male', 'female'),
    })
    return frame, GenotypeMatrix(geno)


def _linear_cohort(n: int = 120, m: int = 12, seed: int = 1):
    rng = np.random.default_rng(seed)
    geno = rng.binomial(2, 0.35, size=(n, m)).astype(np.float32)
    trait = 1.5 * geno[:, 3] + rng.normal(size=n)
    frame = pd.DataFrame({'Trait': trait, 'Cov': rng.normal(size=n)})
    return frame, geno


def test_causal_marker_ranks_first_and_is_reported() -> None:
    frame, geno = _logistic_cohort()
    model = build_model(frame, "Status ~ Age", Family.LOGISTIC)

    results = GWASCAN_Scan(model, geno, lrt_threshold=1e-3, verbose=False)

    assert isinstance(results, ScanResults)
    assert results.n_markers == 50
    assert int(np.argmin(results.pvalues)) == 17
    assert results.pvalues[17] < 0.05 / 50
    assert results.outcomes[17] == OUTCOME_ESCALATED
    assert results.effects[17] > 0.0
    assert 17 in [r.index for r in results.reports]
    assert results.report_threshold == pytest.approx(0.05 / 50)


def test_reports_are_exactly_the_markers_below_bonferroni() -> None:
    frame, geno = _logistic_cohort(seed=3)
    model = build_model(frame, "Status ~ Age", Family.LOGISTIC)

    results = GWASCAN_Scan(model, geno, report_alpha=0.05, verbose=False)

    expected = np.flatnonzero(results.pvalues < 0.05 / 50).tolist()
    assert [r.index for r in results.reports] == expected
    report_df = results.report_dataframe()
    assert list(report_df.columns) == [
        'SNP', 'CHROM', 'POS', 'P', 'MAF', 'HWE_P', 'Effect', 'LogLik', 'Outcome', 'FitError',
    ]
    assert len(report_df) == len(expected)


def test_low_maf_markers_are_skipped_with_pvalue_one() -> None:
    frame, geno = _linear_cohort(n=100)
    geno[:, 0] = 0.0
    geno[:, 1] = 0.0
    geno[:2, 1] = 1.0  # MAF exactly 0.01
    geno[:, 2] = 2.0
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    results = GWASCAN_Scan(model, GenotypeMatrix(geno), maf_threshold=0.01, verbose=False)

    for j in (0, 1, 2):
        assert results.pvalues[j] == 1.0
        assert results.outcomes[j] == OUTCOME_SKIPPED_MAF
    assert results.n_skipped == 3
    assert results.outcomes[3] != OUTCOME_SKIPPED_MAF


def test_escalated_pvalue_replaces_screening_pvalue() -> None:
    frame, geno = _linear_cohort()
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    results = GWASCAN_Scan(model, GenotypeMatrix(geno), lrt_threshold=1.0, maf_threshold=0.0, verbose=False)

    base = GWASCAN_Regress(model.X, model.y, Family.LINEAR)
    _, lrt_p, beta, loglik = fit_marker_lrt(model.X, model.y, geno[:, 3].astype(float),
                                            Family.LINEAR, base.loglik)
    assert results.outcomes[3] == OUTCOME_ESCALATED
    assert results.pvalues[3] == pytest.approx(lrt_p, rel=1e-8)
    assert results.effects[3] == pytest.approx(beta, rel=1e-8)
    assert results.logliks[3] == pytest.approx(loglik, rel=1e-10)
    assert results.screen_pvalues[3] != results.pvalues[3]


def test_screened_markers_keep_score_pvalue_below_escalation() -> None:
    frame, geno = _linear_cohort()
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    results = GWASCAN_Scan(model, GenotypeMatrix(geno), lrt_threshold=1e-300, verbose=False)

    tested = results.outcomes == OUTCOME_SCREENED
    assert tested.sum() == 12
    np.testing.assert_array_equal(results.pvalues, results.screen_pvalues)
    assert np.all(np.isnan(results.effects))


def test_threaded_blocks_match_single_block() -> None:
    frame, geno = _logistic_cohort(seed=5)
    model = build_model(frame, "Status ~ Age", Family.LOGISTIC)

    single = GWASCAN_Scan(model, geno, lrt_threshold=1e-2, verbose=False)
    threaded = GWASCAN_Scan(model, geno, lrt_threshold=1e-2, batch_size=7, n_workers=4, verbose=False)

    np.testing.assert_allclose(threaded.pvalues, single.pvalues, rtol=1e-9)
    np.testing.assert_array_equal(threaded.outcomes, single.outcomes)
    assert [r.index for r in threaded.reports] == [r.index for r in single.reports]


def test_refit_failure_keeps_screening_pvalue_and_warns(monkeypatch) -> None:
    frame, geno = _linear_cohort()
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    def failing_refit(*args, **kwargs):
        raise NonConvergenceError(iterations=3, loglik=-12.5)

    monkeypatch.setattr(scan_module, "fit_marker_lrt", failing_refit)
    with pytest.warns(UserWarning, match="refit failed"):
        results = GWASCAN_Scan(model, GenotypeMatrix(geno), lrt_threshold=1e-6, verbose=False)

    assert results.outcomes[3] == OUTCOME_FIT_FAILED
    assert results.pvalues[3] == results.screen_pvalues[3]
    assert results.pvalues[3] < 1e-6
    assert "did not converge" in results.fit_errors[3]
    report = [r for r in results.reports if r.index == 3][0]
    assert report.fit_error is not None
    assert "score test" in report.format_block()


def test_missing_dosage_marker_is_not_tested() -> None:
    frame, geno = _linear_cohort()
    geno[5, 4] = np.nan
    geno[7, 6] = -9
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    with pytest.warns(UserWarning, match="2 markers have missing dosages"):
        results = GWASCAN_Scan(model, GenotypeMatrix(geno), verbose=False)

    for j in (4, 6):
        assert results.outcomes[j] == OUTCOME_MISSING_DOSAGE
        assert results.pvalues[j] == 1.0


def test_missing_dosage_on_excluded_row_is_ignored() -> None:
    frame, geno = _linear_cohort()
    frame.loc[5, 'Cov'] = np.nan
    geno[5, 4] = np.nan
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        results = GWASCAN_Scan(model, GenotypeMatrix(geno), verbose=False)

    assert results.outcomes[4] == OUTCOME_SCREENED


def test_rank_deficient_baseline_raises() -> None:
    frame, geno = _linear_cohort()
    frame['Cov2'] = 2.0 * frame['Cov']
    model = build_model(frame, "Trait ~ Cov + Cov2", Family.LINEAR)

    with pytest.raises(BaselineFitError):
        fit_baseline(model)
    with pytest.raises(BaselineFitError):
        GWASCAN_Scan(model, GenotypeMatrix(geno), verbose=False)


def test_genotype_rows_must_match_frame() -> None:
    frame, geno = _linear_cohort()
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    with pytest.raises(ValueError):
        GWASCAN_Scan(model, GenotypeMatrix(geno[:-1]), verbose=False)


def test_hardy_weinberg_is_sex_aware_on_x() -> None:
    frame, geno = _logistic_cohort(seed=7)
    model = build_model(frame, "Status ~ Age", Family.LOGISTIC)
    male = (frame['Sex'] == 'male').to_numpy()
    chroms = ['1'] * 50
    chroms[17] = 'X'
    geno_map = GenotypeMap(pd.DataFrame({
        'SNP': [f"rs{j}" for j in range(50)],
        'CHROM': chroms,
        'POS': np.arange(50) * 1000 + 1,
    }))

    results = GWASCAN_Scan(model, geno, geno_map=geno_map, male=male, verbose=False)

    by_index = {r.index: r for r in results.reports}
    assert 17 in by_index
    report = by_index[17]
    assert report.snp == "rs17"
    assert report.chromosome == "X"
    assert report.hwe_pvalue == pytest.approx(xlinked_hardy_weinberg_test(geno.get_dosage(17), male))
    for index, other in by_index.items():
        if index != 17:
            assert other.hwe_pvalue == pytest.approx(hardy_weinberg_test(geno.get_dosage(index)))


def test_results_dataframe_includes_map_columns() -> None:
    frame, geno = _linear_cohort()
    model = build_model(frame, "Trait ~ Cov", Family.LINEAR)

    results = GWASCAN_Scan(model, GenotypeMatrix(geno), verbose=False)
    df = results.to_dataframe()

    assert list(df.columns[:3]) == ['SNP', 'CHROM', 'POS']
    assert len(df) == 12
    assert list(results.baseline_summary()['Term']) == ['(Intercept)', 'Cov']
