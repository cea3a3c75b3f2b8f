import numpy as np
import pytest
import statsmodels.api as sm

from gwascan.association.families import Family
from gwascan.association.regress import GWASCAN_Regress, FitResult, fitted_mean, loglikelihood, matrix_rank
from gwascan.utils.errors import ConfigurationError, NonConvergenceError, RankDeficiencyError


def _design(n: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.column_stack([
        np.ones(n),
        rng.normal(size=n),
        rng.integers(0, 3, size=n).astype(float),
    ])


def test_linear_recovers_exact_coefficients() -> None:
    X = _design(40, 0)
    beta = np.array([1.5, -0.7, 0.25])
    y = X @ beta

    fit = GWASCAN_Regress(X, y, Family.LINEAR)

    np.testing.assert_allclose(fit.coefficients, beta, atol=1e-10)
    # zero residual sum of squares
    assert fit.loglik == np.inf


def test_linear_matches_statsmodels_ols() -> None:
    X = _design(80, 1)
    rng = np.random.default_rng(2)
    y = X @ np.array([0.5, 1.0, -0.3]) + rng.normal(scale=0.8, size=80)

    fit = GWASCAN_Regress(X, y, "linear")
    ref = sm.OLS(y, X).fit()

    np.testing.assert_allclose(fit.coefficients, ref.params, rtol=1e-8, atol=1e-10)
    assert fit.loglik == pytest.approx(ref.llf, rel=1e-10)


def test_logistic_matches_statsmodels_glm() -> None:
    X = _design(300, 3)
    rng = np.random.default_rng(4)
    eta = X @ np.array([-0.4, 0.8, 0.5])
    y = (rng.random(300) < 1.0 / (1.0 + np.exp(-eta))).astype(float)

    fit = GWASCAN_Regress(X, y, Family.LOGISTIC)
    ref = sm.GLM(y, X, family=sm.families.Binomial()).fit()

    np.testing.assert_allclose(fit.coefficients, ref.params, rtol=1e-4, atol=1e-6)
    assert fit.loglik == pytest.approx(ref.llf, rel=1e-6)
    assert fit.family is Family.LOGISTIC
    assert fit.iterations >= 1


def test_poisson_matches_statsmodels_glm() -> None:
    X = _design(250, 5)
    rng = np.random.default_rng(6)
    mu = np.exp(X @ np.array([0.3, 0.4, -0.2]))
    y = rng.poisson(mu).astype(float)

    fit = GWASCAN_Regress(X, y, Family.POISSON)
    ref = sm.GLM(y, X, family=sm.families.Poisson()).fit()

    np.testing.assert_allclose(fit.coefficients, ref.params, rtol=1e-4, atol=1e-6)
    assert fit.loglik == pytest.approx(ref.llf, rel=1e-6)


def test_intercept_only_logistic_is_log_odds_of_prevalence() -> None:
    y = np.array([1, 0, 0, 1, 0, 0, 0, 1, 0, 0], dtype=float)
    X = np.ones((10, 1))

    fit = GWASCAN_Regress(X, y, Family.LOGISTIC)

    assert fit.coefficients[0] == pytest.approx(np.log(0.3 / 0.7), abs=1e-8)
    expected_ll = 3 * np.log(0.3) + 7 * np.log(0.7)
    assert fit.loglik == pytest.approx(expected_ll, rel=1e-10)


def test_rank_deficient_design_raises() -> None:
    X = _design(30, 7)
    X = np.column_stack([X, 2.0 * X[:, 1]])
    y = np.arange(30, dtype=float)

    assert matrix_rank(X) == 3
    with pytest.raises(RankDeficiencyError) as excinfo:
        GWASCAN_Regress(X, y, Family.LINEAR)
    assert excinfo.value.rank == 3
    assert excinfo.value.n_columns == 4


def test_more_columns_than_rows_raises() -> None:
    X = np.ones((2, 3))
    X[:, 1] = [0.0, 1.0]
    X[:, 2] = [1.0, 5.0]

    with pytest.raises(RankDeficiencyError):
        GWASCAN_Regress(X, np.array([0.0, 1.0]), Family.LINEAR)


def test_iteration_cap_raises_non_convergence() -> None:
    X = _design(200, 8)
    rng = np.random.default_rng(9)
    y = (rng.random(200) < 0.4).astype(float)

    with pytest.raises(NonConvergenceError) as excinfo:
        GWASCAN_Regress(X, y, Family.LOGISTIC, max_iter=1)
    assert excinfo.value.iterations == 1
    assert np.isfinite(excinfo.value.loglik)


def test_invalid_family_and_response_raise_configuration_error() -> None:
    X = np.ones((4, 1))
    with pytest.raises(ConfigurationError):
        GWASCAN_Regress(X, np.zeros(4), "probit")
    with pytest.raises(ConfigurationError):
        GWASCAN_Regress(X, np.array([0.0, 1.0, 2.0, 1.0]), Family.LOGISTIC)
    with pytest.raises(ConfigurationError):
        GWASCAN_Regress(X, np.array([0.0, -1.0, 2.0, 1.0]), Family.POISSON)


def test_fit_result_coefficients_are_read_only() -> None:
    fit = FitResult(np.array([1.0, 2.0]), -3.0, Family.LINEAR)
    with pytest.raises(ValueError):
        fit.coefficients[0] = 5.0
    assert fit.n_coefficients == 2


def test_loglikelihood_and_fitted_mean_match_fit() -> None:
    rng = np.random.default_rng(21)
    X = _design(150, 21)
    y = rng.poisson(np.exp(0.2 + 0.3 * X[:, 1])).astype(float)

    fit = GWASCAN_Regress(X, y, Family.POISSON)

    assert loglikelihood(X, y, fit.coefficients, Family.POISSON) == pytest.approx(fit.loglik, rel=1e-12)
    mu = fitted_mean(X, fit.coefficients, Family.POISSON)
    # score equations hold at the maximum
    np.testing.assert_allclose(X.T @ (y - mu), np.zeros(3), atol=1e-4)
