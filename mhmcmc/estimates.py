"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Monte Carlo estimate built from the realizations of a posterior sample
------------------------------------------------------------------------------------------------------------------------
"""
from typing import Tuple

import numpy as np


class MonteCarloEstimate:
    """
    Mean, variance and quantiles of a set of realized parameter vectors
    """

    def __init__(self):
        self._realizations = []
        self._array = None

    def add_realization(self, realization):
        self._realizations.append(np.asarray(realization, dtype=float))
        self._array = None

    @property
    def n_realizations(self) -> int:
        return len(self._realizations)

    def get_realizations(self) -> np.ndarray:
        """
        Returns
        ----------
        realizations : np.ndarray, shape (n_realizations, n_parms)
        """
        if not self._realizations:
            raise ValueError("The estimate has no realization")
        if self._array is None:
            self._array = np.vstack(self._realizations)
            self._array.setflags(write=False)
        return self._array

    def get_mean(self) -> np.ndarray:
        return self.get_realizations().mean(axis=0)

    def get_variance(self) -> np.ndarray:
        """Variance-covariance of the realizations; zero if there is a single realization"""
        realizations = self.get_realizations()
        if realizations.shape[0] < 2:
            return np.zeros((realizations.shape[1], realizations.shape[1]))
        return np.atleast_2d(np.cov(realizations, rowvar=False, ddof=1))

    def get_quantile(self, probability: float) -> np.ndarray:
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"The probability must be between 0 and 1, got {probability}")
        return np.quantile(self.get_realizations(), probability, axis=0)

    def get_confidence_interval_bounds(self, one_minus_alpha: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Percentile credible interval

        Parameters
        ----------
        one_minus_alpha : float
            coverage of the interval, e.g. 0.95

        Returns
        ----------
        lower, upper : np.ndarray
        """
        if not 0.0 < one_minus_alpha < 1.0:
            raise ValueError(f"The coverage must lie in (0, 1), got {one_minus_alpha}")
        alpha = 1.0 - one_minus_alpha
        return self.get_quantile(0.5 * alpha), self.get_quantile(1.0 - 0.5 * alpha)

    def __repr__(self):
        return f"MonteCarloEstimate(n_realizations={self.n_realizations})"
