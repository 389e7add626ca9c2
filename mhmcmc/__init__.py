"""
Bayesian estimation of hierarchical statistical models with the Metropolis-Hastings algorithm
"""
import logging

from mhmcmc.comparison import (calculate_log_pseudomarginal_likelihood, compare_models, log_pseudo_bayes_factor,
                               pseudo_bayes_factor)
from mhmcmc.estimates import MonteCarloEstimate
from mhmcmc.exceptions import (InvalidConfigurationError, MetropolisHastingsError, NotFinalizedError,
                               UnregisteredParameterError)
from mhmcmc.mcmc import MetropolisHastingsCompatibleModel
from mhmcmc.metropolis_hastings import MetropolisHastingsAlgorithm
from mhmcmc.parameters import MetropolisHastingsParameters
from mhmcmc.priors import MetropolisHastingsPriorHandler, PriorEntry, PriorType
from mhmcmc.sample import ChainState, ChainStatus, MetropolisHastingsSample
from mhmcmc.utils import GaussianDistribution, PriorDistribution

__version__ = "1.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
