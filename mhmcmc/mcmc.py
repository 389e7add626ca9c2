"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Contract of the models estimated by Markov chain Monte Carlo

The engine consumes a model only through this class. Fixed-effect-only and hierarchical models implement the same
methods; the bookkeeping of random effects stays inside the concrete model.
------------------------------------------------------------------------------------------------------------------------
"""
import numpy as np

from mhmcmc.utils import safe_log


class MetropolisHastingsCompatibleModel(object):
    """
    Base class of the models that can be fitted with the MetropolisHastingsAlgorithm

    In the context of mixed-effects models, the parameter vector also includes the realized random effects and the
    subject is the highest hierarchical level (e.g. the plot). Otherwise the subject is the observation.
    """

    def get_number_of_observations(self) -> int:
        raise NotImplementedError

    def get_nb_subjects(self) -> int:
        """
        Return the number of subjects

        If the model is a mixed-effects model, the number of subjects must match the number of random effects.
        """
        raise NotImplementedError

    def get_likelihood_of_this_subject(self, parms: np.ndarray, subject_id: int) -> float:
        """
        Provide the likelihood (not the log-likelihood) of a particular subject

        Parameters
        ----------
        parms : np.ndarray
            full parameter vector, random effects included
        subject_id : int
            index of the subject, from 0 to get_nb_subjects() - 1

        Returns
        ----------
        likelihood : float
        """
        raise NotImplementedError

    def get_log_likelihood(self, parms: np.ndarray) -> float:
        """
        Return the log-likelihood of the parameters

        By default, the subject likelihoods are converted to logs and summed. A likelihood of 0 contributes -inf.
        Subclasses may override this with a vectorized computation giving the same value.
        """
        likelihoods = np.array([self.get_likelihood_of_this_subject(parms, i) for i in range(self.get_nb_subjects())],
                               dtype=float)
        return float(np.sum(safe_log(likelihoods)))

    def get_effect_list(self) -> list:
        raise NotImplementedError

    def get_other_parameter_names(self) -> list:
        return []

    def get_parameter_names(self) -> list:
        return list(self.get_effect_list()) + list(self.get_other_parameter_names())

    def get_starting_parm_est(self, coef_var: float):
        """
        Return the starting distribution

        The mean holds the starting values of the parameters. The variances are often the square of the product of
        the starting value by coef_var.

        Parameters
        ----------
        coef_var : float
            coefficient of variation of the starting values

        Returns
        ----------
        distribution : GaussianDistribution
        """
        raise NotImplementedError

    def set_prior_distributions(self, handler):
        """
        Register the priors of the fixed effects and the random effects in a MetropolisHastingsPriorHandler

        The standard deviation of a random effect is better given a uniform prior than its variance (Gelman 2006).
        """
        raise NotImplementedError

    def is_intercept_model(self) -> bool:
        return False
