"""
Count distributions for the per-enhancer GLMs.

Each distribution is a strategy exposing ``log_likelihood`` and ``fit``
over a log-link linear predictor ``eta = offset + design @ beta``:

- NegativeBinomial: NB2 with ``var = mu + alpha * mu^2``; the dispersion
  ``alpha`` is estimated jointly with the coefficients by statsmodels'
  discrete ``NegativeBinomial`` model (BFGS on log-alpha)
- Poisson: statsmodels GLM with a Poisson family (IRLS)

Parameter vectors hold the coefficients followed by any extra parameters
(the NB dispersion, on its natural scale).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
import statsmodels.api as sm
from statsmodels.discrete.discrete_model import NegativeBinomial as NBDiscrete

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DistributionFit:
    """Raw fitter output for a single GLM."""
    coefficients: np.ndarray
    std_errors: np.ndarray
    dispersion: float
    log_likelihood: float
    converged: bool
    n_iter: int = 0
    message: str = ""


class CountDistribution(ABC):
    """Base class for count distributions with a log link."""

    name = "base"
    n_extra_params = 0

    def __init__(
        self,
        max_iter: Optional[int] = None,
        tolerance: Optional[float] = None,
        gradient_tolerance: Optional[float] = None,
    ):
        self.max_iter = max_iter or settings.max_iter
        self.tolerance = tolerance or settings.tolerance
        self.gradient_tolerance = gradient_tolerance or settings.gradient_tolerance

    @abstractmethod
    def _model(self, design: np.ndarray, observed: np.ndarray, offset: np.ndarray):
        """statsmodels model for one enhancer."""

    @abstractmethod
    def _fit_model(self, model, start: Optional[np.ndarray]) -> DistributionFit:
        """Fit a model built by ``_model``."""

    def log_likelihood(
        self,
        params: np.ndarray,
        observed: np.ndarray,
        offset: np.ndarray,
        design: np.ndarray,
    ) -> float:
        """
        Total log-likelihood of ``observed`` given parameters.

        Args:
            params: Coefficients followed by any extra parameters
            observed: Counts (n,)
            offset: Log-scale offsets (n,)
            design: Design matrix (n, p)

        Returns:
            Log-likelihood (float)
        """
        model = self._model(np.asarray(design, dtype=float), np.asarray(observed, dtype=float),
                            np.asarray(offset, dtype=float))
        return float(model.loglike(np.asarray(params, dtype=float)))

    def fit(
        self,
        design: np.ndarray,
        observed: np.ndarray,
        offset: np.ndarray,
        start: Optional[np.ndarray] = None,
    ) -> DistributionFit:
        """
        Maximum-likelihood fit of the GLM.

        Args:
            design: Design matrix (n, p), intercept in the first column
            observed: Counts (n,)
            offset: Log-scale offsets (n,)
            start: Optional starting parameters (coefficients + extras)

        Returns:
            DistributionFit
        """
        design = np.asarray(design, dtype=float)
        y = np.asarray(observed, dtype=float)
        offset = np.asarray(offset, dtype=float)
        p = design.shape[1]

        if y.sum() <= 0:
            return self._failed(p, "no counts observed")

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            fit = self._fit_model(self._model(design, y, offset), start)

        if not np.isfinite(fit.log_likelihood) or not np.all(np.isfinite(fit.coefficients)):
            return self._failed(p, f"non-finite likelihood ({fit.message})")
        return fit

    def extend_start(
        self, coefficients: np.ndarray, dispersion: float, n_coefficients: int, positions
    ) -> np.ndarray:
        """
        Starting parameters for a larger model that nests a fitted one.

        Args:
            coefficients: Coefficients of the nested (reduced) fit
            dispersion: Dispersion of the nested fit
            n_coefficients: Number of coefficients in the larger model
            positions: Index in the larger model of each nested coefficient

        Returns:
            Parameter vector with the nested optimum and zeros elsewhere
        """
        beta = np.zeros(n_coefficients)
        beta[list(positions)] = coefficients
        return np.concatenate([beta, self._extra_from_dispersion(dispersion)])

    def _extra_from_dispersion(self, dispersion: float) -> np.ndarray:
        return np.empty(0)

    def _failed(self, p: int, message: str) -> DistributionFit:
        return DistributionFit(
            coefficients=np.full(p, np.nan),
            std_errors=np.full(p, np.nan),
            dispersion=np.nan,
            log_likelihood=np.nan,
            converged=False,
            message=message,
        )


class Poisson(CountDistribution):
    """Poisson log-linear model (statsmodels GLM, IRLS)."""

    name = "poisson"

    def _model(self, design, observed, offset):
        return sm.GLM(observed, design, family=sm.families.Poisson(), offset=offset)

    def _fit_model(self, model, start):
        result = model.fit(start_params=start, maxiter=self.max_iter, tol=self.tolerance)
        return DistributionFit(
            coefficients=np.asarray(result.params, dtype=float),
            std_errors=np.asarray(result.bse, dtype=float),
            dispersion=0.0,
            log_likelihood=float(result.llf),
            converged=bool(result.converged),
            n_iter=int(result.fit_history.get("iteration", 0)),
            message="converged" if result.converged else "IRLS did not converge",
        )


class NegativeBinomial(CountDistribution):
    """Negative binomial (NB2) with a jointly estimated dispersion."""

    name = "negative_binomial"
    n_extra_params = 1

    def __init__(
        self,
        max_iter: Optional[int] = None,
        tolerance: Optional[float] = None,
        gradient_tolerance: Optional[float] = None,
        dispersion_bounds: Optional[Tuple[float, float]] = None,
        initial_dispersion: Optional[float] = None,
    ):
        super().__init__(max_iter, tolerance, gradient_tolerance)
        # Bounds on log(alpha)
        self.dispersion_bounds = dispersion_bounds or settings.dispersion_bounds()
        self.initial_dispersion = initial_dispersion or settings.initial_dispersion

    def _model(self, design, observed, offset):
        return NBDiscrete(observed, design, offset=offset, loglike_method="nb2")

    def _start(self, model) -> np.ndarray:
        # Warm start from a Poisson fit, as for a GLM with offset
        poisson = sm.GLM(model.endog, model.exog, family=sm.families.Poisson(), offset=model.offset)
        beta = poisson.fit(maxiter=self.max_iter, tol=self.tolerance).params
        return np.r_[beta, self.initial_dispersion]

    def _fit_model(self, model, start):
        if start is None:
            start = self._start(model)
        start = np.asarray(start, dtype=float).copy()
        start[-1] = self._clip_dispersion(start[-1])

        result = model.fit(
            start_params=start,
            method="bfgs",
            maxiter=self.max_iter,
            gtol=self.gradient_tolerance,
            disp=False,
            warn_convergence=False,
        )

        params = np.asarray(result.params, dtype=float)
        bse = np.asarray(result.bse, dtype=float)
        converged = bool(result.mle_retvals.get("converged", False))
        message = "converged" if converged else "BFGS did not converge"

        alpha = float(params[-1])
        lo, hi = self.dispersion_bounds
        if alpha > np.exp(hi):
            converged = False
            message = f"dispersion {alpha:.3g} above the allowed maximum"

        return DistributionFit(
            coefficients=params[:-1],
            std_errors=bse[:-1],
            dispersion=self._clip_dispersion(alpha),
            log_likelihood=float(result.llf),
            converged=converged,
            n_iter=int(result.mle_retvals.get("iterations", 0)),
            message=message,
        )

    def _clip_dispersion(self, dispersion: float) -> float:
        lo, hi = self.dispersion_bounds
        return float(np.clip(dispersion, np.exp(lo), np.exp(hi)))

    def _extra_from_dispersion(self, dispersion: float) -> np.ndarray:
        return np.array([self._clip_dispersion(dispersion)])


_DISTRIBUTIONS = {
    "negative_binomial": NegativeBinomial,
    "nb": NegativeBinomial,
    "gamma_poisson": NegativeBinomial,
    "poisson": Poisson,
}


def get_distribution(distribution: Union[str, CountDistribution, None] = None) -> CountDistribution:
    """Resolve a distribution name (or instance) to a CountDistribution."""
    if distribution is None:
        return NegativeBinomial()
    if isinstance(distribution, CountDistribution):
        return distribution
    key = str(distribution).lower()
    if key not in _DISTRIBUTIONS:
        raise ValueError(f"Unknown distribution: {distribution}. Supported: {sorted(_DISTRIBUTIONS)}")
    return _DISTRIBUTIONS[key]()
