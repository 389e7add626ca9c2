"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Reference models

GaussianModel: y_i ~ N(mu, sigma2)
RandomInterceptModel: y_ij ~ N(mu + u_j, sigma_e^2), u_j ~ N(0, sigma_u^2), or without u_j when hierarchical=False
------------------------------------------------------------------------------------------------------------------------
"""
import math

import numpy as np

from mhmcmc.mcmc import MetropolisHastingsCompatibleModel
from mhmcmc.utils import GaussianDistribution, PriorDistribution

LOG_SQRT_2PI = 0.5 * math.log(2.0 * math.pi)


def _starting_variance(estimates: np.ndarray, coef_var: float) -> np.ndarray:
    scale = np.abs(estimates)
    scale[scale == 0.0] = 1.0
    return (coef_var * scale) ** 2


def _gaussian_log_density(residuals: np.ndarray, std: float) -> np.ndarray:
    return -0.5 * (residuals / std) ** 2 - math.log(std) - LOG_SQRT_2PI


# ---------------- Gaussian mean and variance ---------------- #

class GaussianModel(MetropolisHastingsCompatibleModel):
    """
    Mean and variance of a Gaussian sample; each observation is a subject

    Priors: mu ~ N(0, 1000^2), sigma2 ~ InvGamma(0.001, 0.001).
    """

    def __init__(self, y):
        self.y = np.asarray(y, dtype=float)
        if self.y.ndim != 1 or self.y.shape[0] < 2:
            raise ValueError("GaussianModel requires a vector of at least two observations")

    def get_number_of_observations(self) -> int:
        return self.y.shape[0]

    def get_nb_subjects(self) -> int:
        return self.y.shape[0]

    def get_likelihood_of_this_subject(self, parms, subject_id: int) -> float:
        mu, sigma2 = parms[0], parms[1]
        if sigma2 <= 0.0:
            return 0.0
        residual = self.y[subject_id] - mu
        return math.exp(-0.5 * residual * residual / sigma2) / math.sqrt(2.0 * math.pi * sigma2)

    def get_log_likelihood(self, parms) -> float:
        mu, sigma2 = parms[0], parms[1]
        if sigma2 <= 0.0:
            return -math.inf
        return float(np.sum(_gaussian_log_density(self.y - mu, math.sqrt(sigma2))))

    def get_effect_list(self) -> list:
        return ['mu']

    def get_other_parameter_names(self) -> list:
        return ['sigma2']

    def get_starting_parm_est(self, coef_var: float) -> GaussianDistribution:
        estimates = np.array([self.y.mean(), self.y.var(ddof=1)])
        return GaussianDistribution(estimates, _starting_variance(estimates, coef_var))

    def set_prior_distributions(self, handler):
        handler.add_fixed_effect_distribution(PriorDistribution('normal', mean=0.0, std=1000.0), 0)
        handler.add_fixed_effect_distribution(PriorDistribution('invgamma', shape=0.001, scale=0.001), 1)

    def is_intercept_model(self) -> bool:
        return True


# ---------------- Random intercept ---------------- #

class RandomInterceptModel(MetropolisHastingsCompatibleModel):
    """
    Linear model with an intercept and, in its hierarchical version, a random intercept per group

    The groups are the subjects in both versions, so that their pseudomarginal likelihoods can be compared.
    Parameter vector: mu, sigma_e, then sigma_u, u_0, ..., u_{G-1} if hierarchical. The standard deviations have
    uniform priors on [0, max_std] (Gelman 2006).
    """

    def __init__(self, y, groups, hierarchical: bool = True, max_std: float = 100.0):
        self.y = np.asarray(y, dtype=float)
        groups = np.asarray(groups)
        if groups.shape != self.y.shape:
            raise ValueError("y and groups must have the same length")
        self.group_labels, self.group_index = np.unique(groups, return_inverse=True)
        self.hierarchical = hierarchical
        self.max_std = max_std
        self._members = [np.flatnonzero(self.group_index == g) for g in range(len(self.group_labels))]

    @property
    def n_groups(self) -> int:
        return len(self.group_labels)

    def get_number_of_observations(self) -> int:
        return self.y.shape[0]

    def get_nb_subjects(self) -> int:
        return self.n_groups

    def _group_effects(self, parms) -> np.ndarray:
        if self.hierarchical:
            return np.asarray(parms[3:3 + self.n_groups], dtype=float)
        return np.zeros(self.n_groups)

    def get_likelihood_of_this_subject(self, parms, subject_id: int) -> float:
        mu, sigma_e = parms[0], parms[1]
        if sigma_e <= 0.0:
            return 0.0
        u = self._group_effects(parms)[subject_id]
        residuals = self.y[self._members[subject_id]] - mu - u
        return math.exp(float(np.sum(_gaussian_log_density(residuals, sigma_e))))

    def get_log_likelihood(self, parms) -> float:
        mu, sigma_e = parms[0], parms[1]
        if sigma_e <= 0.0:
            return -math.inf
        residuals = self.y - mu - self._group_effects(parms)[self.group_index]
        return float(np.sum(_gaussian_log_density(residuals, sigma_e)))

    def get_effect_list(self) -> list:
        return ['mu']

    def get_other_parameter_names(self) -> list:
        names = ['sigma_e']
        if self.hierarchical:
            names += ['sigma_u'] + [f'u_{label}' for label in self.group_labels]
        return names

    def get_starting_parm_est(self, coef_var: float) -> GaussianDistribution:
        mu = self.y.mean()
        group_means = np.array([self.y[m].mean() for m in self._members])
        if not self.hierarchical:
            estimates = np.array([mu, self.y.std(ddof=1)])
            return GaussianDistribution(estimates, _starting_variance(estimates, coef_var))

        u = group_means - mu
        sigma_e = math.sqrt(np.mean((self.y - group_means[self.group_index]) ** 2))
        sigma_u = float(np.std(u, ddof=1)) if self.n_groups > 1 else 1.0
        estimates = np.concatenate([[mu, sigma_e, sigma_u], u])
        variance = _starting_variance(estimates, coef_var)
        # the realizations are scaled by sigma_u rather than by their own values, which may be close to 0
        variance[3:] = (coef_var * sigma_u) ** 2
        return GaussianDistribution(estimates, variance)

    def set_prior_distributions(self, handler):
        handler.add_fixed_effect_distribution(PriorDistribution('normal', mean=0.0, std=1000.0), 0)
        handler.add_fixed_effect_distribution(PriorDistribution('uniform', low=0.0, high=self.max_std), 1)
        if self.hierarchical:
            std_prior = PriorDistribution('uniform', low=0.0, high=self.max_std)
            handler.add_fixed_effect_distribution(std_prior, 2)
            for g in range(self.n_groups):
                handler.add_random_effect_standard_deviation(GaussianDistribution([0.0], [[1.0]]), std_prior, 3 + g)

    def is_intercept_model(self) -> bool:
        return True


# ---------------- Data simulation ---------------- #

def simulate_gaussian_data(n: int, mean: float, variance: float, rng: np.random.Generator,
                           exact: bool = False) -> np.ndarray:
    """
    Draw n observations from N(mean, variance)

    With exact=True, the draws are standardized so that their sample mean and sample variance (ddof=1) equal mean
    and variance.
    """
    y = rng.normal(mean, math.sqrt(variance), size=n)
    if exact:
        y = (y - y.mean()) / y.std(ddof=1) * math.sqrt(variance) + mean
    return y


def simulate_random_intercept_data(n_groups: int, n_per_group: int, mu: float, sigma_u: float, sigma_e: float,
                                   rng: np.random.Generator):
    """
    Returns
    ----------
    y : np.ndarray, shape (n_groups * n_per_group,)
    groups : np.ndarray of int, same shape
    """
    groups = np.repeat(np.arange(n_groups), n_per_group)
    u = rng.normal(0.0, sigma_u, size=n_groups)
    y = mu + u[groups] + rng.normal(0.0, sigma_e, size=groups.shape[0])
    return y, groups
