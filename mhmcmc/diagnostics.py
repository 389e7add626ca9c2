"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Convergence diagnostics

A chain is sequential by nature. Independent chains, each with its own algorithm instance and random stream, are the
unit of parallelism and the basis of the Gelman-Rubin statistic. The effective sample sizes and the potential scale
reduction factors are computed by ArviZ on rank-normalized split chains.
------------------------------------------------------------------------------------------------------------------------
"""
import logging
from typing import Callable, Iterable, List

import arviz as az
import numpy as np

logger = logging.getLogger(__name__)


def _to_inference_data(chains: np.ndarray):
    """
    Parameters
    ----------
    chains : np.ndarray, shape (n_chains, n_samples, n_parms)

    Returns
    ----------
    idata : arviz.InferenceData
        posterior group with one variable per parameter, named x0, x1, ...
    """
    return az.from_dict(posterior={f'x{j}': chains[:, :, j] for j in range(chains.shape[2])})


def _is_constant(values: np.ndarray) -> bool:
    return float(np.max(values) - np.min(values)) <= np.finfo(float).resolution


def effective_sample_size(samples: np.ndarray) -> np.ndarray:
    """
    Bulk effective sample size of each parameter of a single chain

    A constant parameter counts as n_samples independent draws.

    Parameters
    ----------
    samples : np.ndarray, shape (n_samples, n_parms)
        ordered chain

    Returns
    ----------
    ess : np.ndarray, shape (n_parms,)
        nan for chains too short to be assessed
    """
    samples = np.asarray(samples, dtype=float)
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    n, p = samples.shape
    constant = np.array([_is_constant(samples[:, j]) for j in range(p)], dtype=bool)
    ess = np.where(constant, float(n), np.nan)
    varying = np.flatnonzero(~constant)
    if varying.size:
        dataset = az.ess(_to_inference_data(samples[np.newaxis, :, varying]), method='bulk')
        ess[varying] = [float(dataset[f'x{k}'].values) for k in range(len(varying))]
    return ess


def gelman_rubin(chains: List[np.ndarray]) -> np.ndarray:
    """
    Rank-normalized split R-hat of each parameter across independent chains

    Chains are truncated to the shortest one. Returns nan with fewer than two chains; a parameter constant over all
    the chains gets 1.0.

    Parameters
    ----------
    chains : list of np.ndarray, shape (n_samples, n_parms) each

    Returns
    ----------
    rhat : np.ndarray, shape (n_parms,)
    """
    chains = [np.asarray(c, dtype=float).reshape(len(c), -1) for c in chains]
    if not chains:
        raise ValueError("No chain to compare")
    p = chains[0].shape[1]
    n = min(c.shape[0] for c in chains)
    if len(chains) < 2:
        logger.warning("R-hat requires at least two chains, got %d", len(chains))
        return np.full(p, np.nan, dtype=float)

    stacked = np.stack([c[:n] for c in chains])
    rhat = np.ones(p, dtype=float)
    varying = np.flatnonzero([not _is_constant(stacked[:, :, j]) for j in range(p)])
    if varying.size:
        dataset = az.rhat(_to_inference_data(stacked[:, :, varying]))
        rhat[varying] = [float(dataset[f'x{k}'].values) for k in range(len(varying))]
    return rhat


def run_independent_chains(factory: Callable[[int], object], seeds: Iterable[int]) -> list:
    """
    Run one finalized estimation per seed

    Parameters
    ----------
    factory : callable
        builds a fresh MetropolisHastingsAlgorithm from a seed; chains must not share a model whose state changes
        during the estimation
    seeds : iterable of int

    Returns
    ----------
    algorithms : list of MetropolisHastingsAlgorithm
    """
    algorithms = []
    for seed in seeds:
        algorithm = factory(seed)
        logger.info("Starting chain with seed=%s", seed)
        algorithm.do_estimation()
        algorithms.append(algorithm)
    return algorithms


def final_selection_arrays(algorithms: Iterable[object]) -> List[np.ndarray]:
    """Final selections of finalized algorithms as arrays of shape (n_samples, n_parms)"""
    return [algorithm.get_parameter_estimates().get_realizations() for algorithm in algorithms]
