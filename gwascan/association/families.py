"""
Regression families supported by the fast fitter.

Each family uses its canonical link, so the working weights of IRLS equal the
variance function evaluated at the fitted mean.
"""

from enum import Enum
from typing import Union

import numpy as np
from scipy import special

from ..utils.errors import ConfigurationError

# Bound on the linear predictor for the log link; exp(700) is near float64 max.
_MAX_ETA = 700.0
_EXACT_FIT_RTOL = 1e-20


class Family(Enum):
    LINEAR = "linear"
    LOGISTIC = "logistic"
    POISSON = "poisson"

    @classmethod
    def parse(cls, value: Union[str, "Family", None]) -> "Family":
        """Resolve a family keyword (case-insensitive) or raise ConfigurationError."""
        if isinstance(value, Family):
            return value
        if value is None or str(value).strip() == "":
            raise ConfigurationError(
                "No regression type has been defined for this analysis. "
                "Set it to 'linear' (quantitative traits), 'logistic' "
                "(case/control traits) or 'poisson' (count traits).",
                keyword="regression",
            )
        name = str(value).strip().lower()
        for family in cls:
            if family.value == name:
                return family
        raise ConfigurationError(
            f"'{value}' is not supported; use 'linear', 'logistic' or 'poisson'.",
            keyword="regression",
        )

    @property
    def has_dispersion(self) -> bool:
        """Whether the family estimates a residual variance."""
        return self is Family.LINEAR

    def mean(self, eta: np.ndarray) -> np.ndarray:
        """Inverse canonical link."""
        if self is Family.LINEAR:
            return eta
        if self is Family.LOGISTIC:
            return special.expit(eta)
        if self is Family.POISSON:
            return np.exp(np.minimum(eta, _MAX_ETA))
        raise AssertionError(f"Unhandled family {self!r}")

    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function V(mu); equals the IRLS weight under the canonical link."""
        if self is Family.LINEAR:
            return np.ones_like(mu)
        if self is Family.LOGISTIC:
            return mu * (1.0 - mu)
        if self is Family.POISSON:
            return mu
        raise AssertionError(f"Unhandled family {self!r}")

    def loglik(self, y: np.ndarray, eta: np.ndarray) -> float:
        """Log-likelihood at linear predictor eta.

        For LINEAR the residual variance is profiled out at its MLE, and an
        exact fit returns +inf.
        """
        if self is Family.LINEAR:
            n = y.shape[0]
            rss = float(np.sum((y - eta) ** 2))
            # Residuals at rounding level count as an exact fit
            if rss <= _EXACT_FIT_RTOL * float(np.sum(y ** 2)):
                return np.inf
            return -0.5 * n * (np.log(2.0 * np.pi * rss / n) + 1.0)
        if self is Family.LOGISTIC:
            # y*eta - log(1 + exp(eta)), stable for large |eta|
            return float(np.sum(y * eta - np.logaddexp(0.0, eta)))
        if self is Family.POISSON:
            eta = np.minimum(eta, _MAX_ETA)
            return float(np.sum(y * eta - np.exp(eta) - special.gammaln(y + 1.0)))
        raise AssertionError(f"Unhandled family {self!r}")

    def validate_response(self, y: np.ndarray) -> None:
        """Check the response lies in the family's support."""
        if self is Family.LINEAR:
            return
        if self is Family.LOGISTIC:
            if np.any((y != 0.0) & (y != 1.0)):
                raise ConfigurationError(
                    "Logistic regression requires a 0/1 response; set "
                    "affected_designator to recode case labels.",
                    keyword="regression",
                )
            return
        if self is Family.POISSON:
            if np.any(y < 0.0):
                raise ConfigurationError(
                    "Poisson regression requires a non-negative response.",
                    keyword="regression",
                )
            return
        raise AssertionError(f"Unhandled family {self!r}")
