"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Model comparison through the log pseudomarginal likelihood (LPML)

The conditional predictive ordinate of subject i is the harmonic mean of its likelihood over the posterior sample:
    CPO_i = ( (1/S) sum_s 1 / L_i(theta_s) )^-1
and LPML = sum_i log CPO_i. The pseudo Bayes factor of model A against model B is exp(LPML_A - LPML_B).

The LPML is not divided by the number of subjects (Ibrahim et al. 2001, p. 228).
------------------------------------------------------------------------------------------------------------------------
"""
import logging
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from mhmcmc.utils import log_mean_exp, safe_log

logger = logging.getLogger(__name__)


def calculate_log_pseudomarginal_likelihood(model, samples: Sequence[np.ndarray]) -> float:
    """
    Log pseudomarginal likelihood of a posterior sample

    Computed in log space: log CPO_i = -log_mean_exp(-log L_i(theta_s)).

    Parameters
    ----------
    model : MetropolisHastingsCompatibleModel
        model providing the subject likelihoods
    samples : sequence of np.ndarray
        parameter vectors of the posterior sample

    Returns
    ----------
    lpml : float
    """
    if len(samples) == 0:
        raise ValueError("The LPML requires at least one posterior sample")
    n_subjects = model.get_nb_subjects()
    lpml = 0.0
    for i in range(n_subjects):
        log_lk = safe_log(np.array([model.get_likelihood_of_this_subject(parms, i) for parms in samples],
                                   dtype=float))
        lpml -= log_mean_exp(-log_lk)
    return float(lpml)


def log_pseudo_bayes_factor(lpml_a: float, lpml_b: float) -> float:
    """Log of the pseudo Bayes factor of model A against model B"""
    return float(lpml_a - lpml_b)


def pseudo_bayes_factor(lpml_a: float, lpml_b: float) -> float:
    """Pseudo Bayes factor of model A against model B; overflows to inf for very large differences"""
    with np.errstate(over='ignore'):
        return float(np.exp(log_pseudo_bayes_factor(lpml_a, lpml_b)))


def compare_models(algorithms: Mapping[str, object]) -> pd.DataFrame:
    """
    Rank finalized chains by LPML

    Parameters
    ----------
    algorithms : mapping of str to MetropolisHastingsAlgorithm
        finalized estimations keyed by model name

    Returns
    ----------
    table : pd.DataFrame
        one row per model, best first, with the LPML, its difference to the best model and the pseudo Bayes
        factor of the best model against each model
    """
    if not algorithms:
        raise ValueError("No model to compare")
    lpml = {name: algorithm.get_log_pseudomarginal_likelihood() for name, algorithm in algorithms.items()}
    ranked = sorted(lpml, key=lambda name: -lpml[name])
    best = lpml[ranked[0]]
    table = pd.DataFrame({
        'model': ranked,
        'lpml': [lpml[name] for name in ranked],
        'delta_lpml': [lpml[name] - best for name in ranked],
        'pseudo_bayes_factor': [pseudo_bayes_factor(best, lpml[name]) for name in ranked],
    })
    logger.info("Model comparison (best first):\n%s", table.to_string(index=False))
    return table
