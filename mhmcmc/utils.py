"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Distributions and numerical helpers

PriorDistribution wraps a frozen scipy.stats distribution and serves as prior for a single parameter.
GaussianDistribution is the multivariate normal used as starting distribution, as random walk sampler and as
individual prior of the random effects.
------------------------------------------------------------------------------------------------------------------------
"""
import math

import numpy as np
from scipy import stats
from scipy import linalg


SUPPORTED_PRIORS = ('normal', 'uniform', 'lognormal', 'gamma', 'invgamma', 'beta', 'exponential')


class PriorDistribution:
    """
    Univariate prior distribution

    Supported types:
    - 'normal': mean, std
    - 'uniform': low, high
    - 'lognormal': mean, std (on the log scale)
    - 'gamma': shape, scale
    - 'invgamma': shape, scale
    - 'beta': alpha, beta
    - 'exponential': scale
    """

    def __init__(self, distribution_type: str, **params):
        """
        Parameters
        ----------
        distribution_type : str
            one of SUPPORTED_PRIORS
        **params : dict
            parameters of the distribution, see the class docstring
        """
        self.distribution_type = distribution_type
        self.params = params

        if distribution_type == 'normal':
            mean = params.get('mean', 0.0)
            std = params.get('std', 1.0)
            self.dist = stats.norm(loc=mean, scale=std)

        elif distribution_type == 'uniform':
            low = params.get('low', 0.0)
            high = params.get('high', 1.0)
            if high <= low:
                raise ValueError(f"Uniform prior requires low < high, got low={low}, high={high}")
            self.dist = stats.uniform(loc=low, scale=high - low)

        elif distribution_type == 'lognormal':
            mean = params.get('mean', 0.0)
            std = params.get('std', 1.0)
            self.dist = stats.lognorm(s=std, scale=np.exp(mean))

        elif distribution_type == 'gamma':
            shape = params.get('shape', 2.0)
            scale = params.get('scale', 1.0)
            self.dist = stats.gamma(a=shape, scale=scale)

        elif distribution_type == 'invgamma':
            shape = params.get('shape', 1.0)
            scale = params.get('scale', 1.0)
            self.dist = stats.invgamma(a=shape, scale=scale)

        elif distribution_type == 'beta':
            alpha = params.get('alpha', 2.0)
            beta = params.get('beta', 2.0)
            self.dist = stats.beta(a=alpha, b=beta)

        elif distribution_type == 'exponential':
            scale = params.get('scale', 1.0)
            self.dist = stats.expon(scale=scale)

        else:
            raise ValueError(f"Unsupported prior type: {distribution_type}. Must be one of {SUPPORTED_PRIORS}")

    def sample(self, size, rng: np.random.Generator = None):
        """
        Draw random realizations

        Parameters
        ----------
        size : int or tuple
            shape of the sample
        rng : np.random.Generator, optional
            random stream; the global numpy stream is used if None

        Returns
        ----------
        samples : np.ndarray
        """
        return self.dist.rvs(size=size, random_state=rng)

    def random_realization(self, rng: np.random.Generator = None) -> float:
        return float(self.dist.rvs(random_state=rng))

    def pdf(self, x):
        return self.dist.pdf(x)

    def log_pdf(self, x):
        return self.dist.logpdf(x)

    def __repr__(self):
        return f"PriorDistribution(type='{self.distribution_type}', params={self.params})"


class GaussianDistribution:
    """
    Multivariate Gaussian distribution N(mean, covariance)

    The mean and the covariance can be replaced after construction. The Cholesky factor of the covariance is
    cached and recomputed only when the covariance changes.
    """

    def __init__(self, mean, covariance):
        """
        Parameters
        ----------
        mean : array-like, shape (n_dim,)
            mean vector
        covariance : array-like, shape (n_dim, n_dim) or (n_dim,)
            covariance matrix; a 1-D array is taken as the diagonal
        """
        self._mean = None
        self._covariance = None
        self._cholesky = None
        self.set_mean(mean)
        self.set_variance(covariance)

    @property
    def n_dim(self) -> int:
        return self._mean.shape[0]

    def get_mean(self) -> np.ndarray:
        return self._mean.copy()

    def set_mean(self, mean):
        mean = np.atleast_1d(np.asarray(mean, dtype=float))
        if mean.ndim != 1:
            raise ValueError(f"The mean must be a vector, got shape {mean.shape}")
        if self._mean is not None and mean.shape != self._mean.shape:
            raise ValueError(f"The mean must keep shape {self._mean.shape}, got {mean.shape}")
        self._mean = mean

    def get_variance(self) -> np.ndarray:
        return self._covariance.copy()

    def set_variance(self, covariance):
        covariance = np.asarray(covariance, dtype=float)
        if covariance.ndim <= 1:
            covariance = np.diag(np.atleast_1d(covariance))
        n_dim = self._mean.shape[0]
        if covariance.shape != (n_dim, n_dim):
            raise ValueError(f"The covariance must have shape ({n_dim}, {n_dim}), got {covariance.shape}")
        if not np.allclose(covariance, covariance.T):
            raise ValueError("The covariance matrix must be symmetric")
        self._cholesky = linalg.cholesky(covariance, lower=True)
        self._covariance = covariance

    def get_cholesky(self) -> np.ndarray:
        return self._cholesky

    def random_realization(self, rng: np.random.Generator) -> np.ndarray:
        """
        Draw one realization as mean + L z, z ~ N(0, I)

        Parameters
        ----------
        rng : np.random.Generator
            random stream of the caller

        Returns
        ----------
        realization : np.ndarray, shape (n_dim,)
        """
        z = rng.standard_normal(self.n_dim)
        return self._mean + self._cholesky @ z

    def log_pdf(self, x) -> float:
        return float(stats.multivariate_normal.logpdf(x, mean=self._mean, cov=self._covariance))

    def __repr__(self):
        return f"GaussianDistribution(mean={self._mean}, variance={np.diag(self._covariance)})"


# ========================================================================================================
# Numerical helpers
# ========================================================================================================

def log_sum_exp(arr: np.ndarray) -> float:
    """Stable log-sum-exp."""
    arr = np.asarray(arr, dtype=float)
    amax = float(np.max(arr))
    if not np.isfinite(amax):
        return amax
    return amax + float(np.log(np.sum(np.exp(arr - amax))))


def log_mean_exp(arr: np.ndarray) -> float:
    """Stable log-mean-exp: log(mean(exp(arr)))."""
    n = int(np.asarray(arr).shape[0])
    if n <= 0:
        return -float("inf")
    return log_sum_exp(arr) - math.log(n)


def safe_log(x) -> np.ndarray:
    """Natural log mapping 0 to -inf without a divide-by-zero warning."""
    with np.errstate(divide='ignore'):
        return np.log(x)
