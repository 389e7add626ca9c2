import math

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest

from mhmcmc import (GaussianDistribution, MetropolisHastingsCompatibleModel, MetropolisHastingsParameters,
                    PriorDistribution)
from mhmcmc.example import GaussianModel, simulate_gaussian_data


class FlatModel(MetropolisHastingsCompatibleModel):
    """Likelihood 1 everywhere, uniform priors on [-10, 10]: the posterior is flat on its support"""

    def __init__(self, n_parms=2, mean=None):
        self.n_parms = n_parms
        self.mean = np.zeros(n_parms) if mean is None else np.asarray(mean, dtype=float)

    def get_number_of_observations(self):
        return 3

    def get_nb_subjects(self):
        return 3

    def get_likelihood_of_this_subject(self, parms, subject_id):
        return 1.0

    def get_effect_list(self):
        return [f'b{i}' for i in range(self.n_parms)]

    def get_starting_parm_est(self, coef_var):
        return GaussianDistribution(self.mean, np.full(self.n_parms, 0.25))

    def set_prior_distributions(self, handler):
        for i in range(self.n_parms):
            handler.add_fixed_effect_distribution(PriorDistribution('uniform', low=-10.0, high=10.0), i)


class TruncatedModel(FlatModel):
    """Zero likelihood as soon as the first parameter exceeds 1"""

    def get_likelihood_of_this_subject(self, parms, subject_id):
        return 0.0 if parms[0] > 1.0 else 0.5


class SpikeModel(FlatModel):
    """Zero likelihood everywhere but at the starting point, so that every proposal is rejected"""

    def get_likelihood_of_this_subject(self, parms, subject_id):
        return 1.0 if np.array_equal(parms, self.mean) else 0.0


class NanModel(FlatModel):
    """Undefined likelihood when the first parameter is negative"""

    def get_likelihood_of_this_subject(self, parms, subject_id):
        return math.nan if parms[0] < 0.0 else 1.0


class FailingModel(FlatModel):
    """Raises once the chain moves away from the starting point"""

    def get_likelihood_of_this_subject(self, parms, subject_id):
        if not np.array_equal(parms, self.mean):
            raise RuntimeError("likelihood evaluation failed")
        return 1.0


@pytest.fixture
def gaussian_data():
    """100 draws standardized to a sample mean of 3 and a sample variance of 16"""
    return simulate_gaussian_data(100, 3.0, 16.0, np.random.default_rng(20240324), exact=True)


@pytest.fixture
def gaussian_model(gaussian_data):
    return GaussianModel(gaussian_data)


@pytest.fixture
def small_parameters():
    return MetropolisHastingsParameters(n_iterations=600, n_burn_in=200, thinning=4, n_initial_grid=50,
                                        adaptation_interval=50)
