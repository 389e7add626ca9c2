"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Metropolis-Hastings algorithm

The posterior distribution of the parameters of a MetropolisHastingsCompatibleModel is sampled by a random walk:
- a grid of candidates drawn from the starting distribution provides the first sample
- during the warm-up, the proposal covariance is scaled every batch of iterations to approach a target acceptance rate
- the proposal is then frozen and the chain continues until it holds the requested number of samples
- the final selection drops the burn-in period and keeps one sample every `thinning`

The log pseudomarginal likelihood of the final selection serves to compare models.

References:
'J.G. Ibrahim, M.-H. Chen and D. Sinha. Bayesian Survival Analysis. Springer, 2001, p. 228'
'A. Gelman. Prior distributions for variance parameters in hierarchical models. Bayesian Analysis 1(3):515-534, 2006'
------------------------------------------------------------------------------------------------------------------------
"""
import logging
import math
import time
from typing import Callable, List, Optional, Tuple

import numpy as np
import pandas as pd

from mhmcmc.comparison import calculate_log_pseudomarginal_likelihood
from mhmcmc.diagnostics import effective_sample_size
from mhmcmc.estimates import MonteCarloEstimate
from mhmcmc.exceptions import InvalidConfigurationError, NotFinalizedError
from mhmcmc.mcmc import MetropolisHastingsCompatibleModel
from mhmcmc.parameters import MetropolisHastingsParameters
from mhmcmc.priors import MetropolisHastingsPriorHandler
from mhmcmc.sample import ChainState, ChainStatus, MetropolisHastingsSample
from mhmcmc.utils import GaussianDistribution

logger = logging.getLogger(__name__)

INCREASE_FACTOR = 1.2 * 1.2
DECREASE_FACTOR = 0.8 * 0.8
BALANCING_TARGET = 0.5
PROGRESS_INTERVAL = 10000


# ========================================================================================================
# Internal functions of the algorithm
# ========================================================================================================

def _evaluate_log_posterior(model: MetropolisHastingsCompatibleModel,
                            priors: MetropolisHastingsPriorHandler,
                            parms: np.ndarray) -> float:
    """
    Log-posterior of a parameter vector, up to a constant

    log posterior = sum of the subject log-likelihoods + log density of the random effects + log prior density

    The likelihood is not evaluated when the parameters fall outside the support of the priors.

    Parameters
    ----------
    model : MetropolisHastingsCompatibleModel
        model providing the likelihood
    priors : MetropolisHastingsPriorHandler
        prior distributions
    parms : np.ndarray, shape (n_parms,)
        parameter vector

    Returns
    ----------
    llk : float
        log-posterior, -inf for an infeasible vector
    """
    log_prior = priors.get_log_probability_density(parms)
    if log_prior == -math.inf:
        return -math.inf
    log_random_effects = priors.get_log_probability_density_of_random_effects(parms)
    if log_random_effects == -math.inf:
        return -math.inf
    llk = float(model.get_log_likelihood(parms)) + log_random_effects + log_prior
    if math.isnan(llk):
        return -math.inf
    return llk


def _find_first_set_of_parameters(log_posterior_func: Callable[[np.ndarray], float],
                                  sampling_dist: GaussianDistribution,
                                  n_initial_grid: int,
                                  rng: np.random.Generator,
                                  log: Callable = None) -> MetropolisHastingsSample:
    """
    Grid search of the starting sample

    The mean of the sampling distribution is evaluated first. Then n_initial_grid independent realizations are drawn
    and evaluated. The candidate with the greatest log-posterior is returned; the first one wins a tie. With
    n_initial_grid = 0, no random number is consumed.

    Parameters
    ----------
    log_posterior_func : callable
        log-posterior of a parameter vector
    sampling_dist : GaussianDistribution
        starting distribution
    n_initial_grid : int
        number of random candidates
    rng : np.random.Generator
        random stream of the chain

    Returns
    ----------
    sample : MetropolisHastingsSample
    """
    log = log or logger.log
    start_time = time.perf_counter()
    mean = sampling_dist.get_mean()
    best = MetropolisHastingsSample(mean, log_posterior_func(mean))
    n_feasible = int(best.llk > -math.inf)
    for i in range(n_initial_grid):
        parms = sampling_dist.random_realization(rng)
        llk = log_posterior_func(parms)
        if llk > -math.inf:
            n_feasible += 1
        if llk > best.llk:
            best = MetropolisHastingsSample(parms, llk)
        if (i + 1) % 1000 == 0:
            log(logging.DEBUG, "Initial grid has %d candidates, %d feasible", i + 1, n_feasible)

    if best.llk == -math.inf:
        raise InvalidConfigurationError(f"None of the {n_initial_grid + 1} starting candidates has a finite "
                                        f"log-posterior; check the starting distribution and the priors")

    log(logging.DEBUG, "Time to find a first set of plausible parameters = %.1f ms",
        (time.perf_counter() - start_time) * 1000)
    log(logging.DEBUG, "LLK = %s - Parameters = %s", best.llk, best.parms)
    return best


def _propose(current_parms: np.ndarray, sampler: GaussianDistribution, rng: np.random.Generator) -> np.ndarray:
    """Random walk proposal: current + L z, where L L' is the proposal covariance"""
    return current_parms + sampler.get_cholesky() @ rng.standard_normal(current_parms.shape[0])


def _accept(llk_proposed: float, llk_current: float, rng: np.random.Generator) -> bool:
    """
    Metropolis acceptance rule in log space

    A non-finite proposal is rejected without consuming a random number. Otherwise the proposal is accepted if
    log(u) < llk_proposed - llk_current with u ~ U(0, 1), so a proposal that does not decrease the log-posterior is
    always accepted.
    """
    if not math.isfinite(llk_proposed):
        return False
    u = rng.random()
    log_u = math.log(u) if u > 0.0 else -math.inf
    return log_u < llk_proposed - llk_current


def _metropolis_hastings_step(state: ChainState,
                              log_posterior_func: Callable[[np.ndarray], float],
                              rng: np.random.Generator) -> Tuple[MetropolisHastingsSample, bool]:
    """
    One iteration of the chain: propose, evaluate, accept or reject

    The state is updated in place. A rejected iteration returns the current sample again.

    Returns
    ----------
    sample : MetropolisHastingsSample
        new current sample
    accepted : bool
    """
    proposal = _propose(state.current.parms, state.sampler, rng)
    llk = log_posterior_func(proposal)
    accepted = _accept(llk, state.current.llk, rng)
    if accepted:
        state.current = MetropolisHastingsSample(proposal, llk)
    state.record(accepted)
    return state.current, accepted


def _adapt_covariance(state: ChainState,
                      iteration: int,
                      target_acceptance: float,
                      tolerance: float) -> float:
    """
    Scale the proposal covariance according to the acceptance rate of the last batch

    The variance is multiplied by 1.2^2 if the rate exceeds target + tolerance and by 0.8^2 if it falls below
    target - tolerance. The batch counters are reset.

    Returns
    ----------
    factor : float
        factor applied to the covariance, 1.0 if unchanged
    """
    rate = state.batch_acceptance_rate
    factor = 1.0
    if rate > target_acceptance + tolerance:
        factor = INCREASE_FACTOR
    elif rate < target_acceptance - tolerance:
        factor = DECREASE_FACTOR
    if factor != 1.0:
        state.sampler.set_variance(state.sampler.get_variance() * factor)
    state.adaptation_history.append((iteration, rate, factor))
    state.reset_batch()
    return factor


def _balance_variance(first_sample: MetropolisHastingsSample,
                      sampler: GaussianDistribution,
                      log_posterior_func: Callable[[np.ndarray], float],
                      n_sweeps: int,
                      interval: int,
                      rng: np.random.Generator,
                      log: Callable = None) -> np.ndarray:
    """
    Balance the proposal variances across the parameters

    Each parameter is perturbed alone in turn. Every `interval` sweeps, the diagonal variance of a parameter is
    multiplied by 1.2^2 if its acceptance rate exceeds 0.55 and by 0.8^2 if it falls below 0.45. The absolute level
    does not matter much: the point is to obtain similar rates for all the parameters. The samples of this stage are
    discarded.

    Returns
    ----------
    rates : np.ndarray, shape (n_parms,)
        acceptance rate of each parameter over the last batch
    """
    log = log or logger.log
    start_time = time.perf_counter()
    n_dim = first_sample.parms.shape[0]
    trials = np.zeros(n_dim, dtype=int)
    successes = np.zeros(n_dim, dtype=int)
    rates = np.full(n_dim, np.nan)
    parms = first_sample.parms.copy()
    llk = first_sample.llk
    for sweep in range(1, n_sweeps + 1):
        std = np.sqrt(np.diag(sampler.get_variance()))
        for j in range(n_dim):
            original_value = parms[j]
            parms[j] = original_value + std[j] * rng.standard_normal()
            new_llk = log_posterior_func(parms)
            trials[j] += 1
            if _accept(new_llk, llk, rng):
                successes[j] += 1
                llk = new_llk
            else:
                parms[j] = original_value
        if sweep % interval == 0:
            rates = successes / trials
            log(logging.DEBUG, "After %d sweeps, the acceptance rates are %s", sweep, rates)
            variance = sampler.get_variance()
            for j in range(n_dim):
                if rates[j] > BALANCING_TARGET + 0.05:
                    variance[j, j] *= INCREASE_FACTOR
                elif rates[j] < BALANCING_TARGET - 0.05:
                    variance[j, j] *= DECREASE_FACTOR
            sampler.set_variance(variance)
            trials[:] = 0
            successes[:] = 0

    log(logging.DEBUG, "Time to balance the variance of the sampler: %.1f ms",
        (time.perf_counter() - start_time) * 1000)
    return rates


def _retrieve_final_sample(chain: List[MetropolisHastingsSample],
                           n_burn_in: int,
                           thinning: int) -> Tuple[MetropolisHastingsSample, ...]:
    """Drop the burn-in samples and keep one sample every `thinning`"""
    return tuple(chain[n_burn_in::thinning])


# ========================================================================================================
# Metropolis-Hastings main class
# ========================================================================================================

class MetropolisHastingsAlgorithm:
    """
    Metropolis-Hastings estimator of a MetropolisHastingsCompatibleModel

    The chain goes through the states INITIALIZING, WARMING_UP, SAMPLING and FINALIZED. The whole chain is kept
    in memory; the final selection is released once and never recomputed afterwards.
    """

    def __init__(self,
                 model: MetropolisHastingsCompatibleModel,
                 parameters: Optional[MetropolisHastingsParameters] = None,
                 seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None,
                 logger_prefix: str = '',
                 verbose: bool = False):
        """
        Parameters
        ----------
        model : MetropolisHastingsCompatibleModel
            model to be estimated
        parameters : MetropolisHastingsParameters, optional
            simulation parameters; defaults are used if None
        seed : int, optional
            seed of the random stream of this chain
        rng : np.random.Generator, optional
            random stream of this chain, takes precedence over seed
        logger_prefix : str
            prefix of the log messages, useful to tell chains apart
        verbose : bool
            log the adaptation of the proposal at INFO instead of DEBUG
        """
        self.model = model
        self.simulation_parameters = parameters if parameters is not None else MetropolisHastingsParameters()
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.logger_prefix = logger_prefix
        self.verbose = verbose

        self.priors = MetropolisHastingsPriorHandler()
        self.status = ChainStatus.INITIALIZING
        self.state: Optional[ChainState] = None
        self._chain: List[MetropolisHastingsSample] = []
        self._completed = False

        self._final_selection: Optional[Tuple[MetropolisHastingsSample, ...]] = None
        self._mcmc_estimate: Optional[MonteCarloEstimate] = None
        self._lpml = math.nan

    # ---------------------------------------------------------------------------------------------------
    # Configuration
    # ---------------------------------------------------------------------------------------------------

    def _log(self, level: int, msg: str, *args):
        if self.logger_prefix:
            msg = self.logger_prefix + ' ' + msg
        logger.log(level, msg, *args)

    def get_prior_handler(self) -> MetropolisHastingsPriorHandler:
        return self.priors

    def get_simulation_parameters(self) -> MetropolisHastingsParameters:
        return self.simulation_parameters

    def set_simulation_parameters(self, parameters: MetropolisHastingsParameters):
        """Replace the simulation parameters; only allowed before the chain is initialized"""
        if self.status is not ChainStatus.INITIALIZING or self.state is not None:
            raise InvalidConfigurationError("The simulation parameters cannot change once the estimation has started")
        if parameters is not None:
            parameters.validate()
            self.simulation_parameters = parameters

    def log_posterior(self, parms) -> float:
        """Log-posterior of a parameter vector given the model and the registered priors"""
        return _evaluate_log_posterior(self.model, self.priors, np.asarray(parms, dtype=float))

    # ---------------------------------------------------------------------------------------------------
    # State machine
    # ---------------------------------------------------------------------------------------------------

    def initialize(self) -> MetropolisHastingsSample:
        """
        Set the priors, find the starting sample and prepare the chain state

        Returns
        ----------
        first_sample : MetropolisHastingsSample
        """
        if self.status is not ChainStatus.INITIALIZING or self.state is not None:
            raise InvalidConfigurationError(f"The chain is already initialized (status {self.status.value})")
        parms = self.simulation_parameters
        parms.validate()

        sampling_dist = self.model.get_starting_parm_est(parms.coef_var)
        if self.priors.is_empty():
            self.model.set_prior_distributions(self.priors)
        self.priors.check_coverage(sampling_dist.n_dim)
        n_names = len(self.model.get_parameter_names())
        if n_names != sampling_dist.n_dim:
            raise InvalidConfigurationError(f"The model names {n_names} parameters but its starting distribution "
                                            f"has {sampling_dist.n_dim} dimensions")

        first_sample = _find_first_set_of_parameters(self.log_posterior, sampling_dist, parms.n_initial_grid,
                                                     self.rng, self._log)
        self._chain = [first_sample]
        self.state = ChainState(current=first_sample,
                                sampler=GaussianDistribution(first_sample.parms, sampling_dist.get_variance()))
        self.status = ChainStatus.WARMING_UP
        return first_sample

    def step(self, state: Optional[ChainState] = None) -> Tuple[MetropolisHastingsSample, bool]:
        """
        One Metropolis-Hastings iteration on the given state, or on the state of this chain

        The sample is not appended to the chain.
        """
        state = state if state is not None else self.state
        if state is None:
            raise InvalidConfigurationError("The chain must be initialized before stepping")
        return _metropolis_hastings_step(state, self.log_posterior, self.rng)

    def run(self) -> List[MetropolisHastingsSample]:
        """
        Run the warm-up and the sampling phases until the chain holds n_iterations samples

        Returns
        ----------
        chain : list of MetropolisHastingsSample
        """
        if self.status is not ChainStatus.WARMING_UP or self._completed:
            raise InvalidConfigurationError(f"run() requires a freshly initialized chain (status {self.status.value})")
        parms = self.simulation_parameters
        state = self.state
        adaptation_level = logging.INFO if self.verbose else logging.DEBUG
        start_time = time.perf_counter()

        if parms.balance_variance and parms.n_warm_up > 0:
            _balance_variance(self._chain[0], state.sampler, self.log_posterior, parms.n_warm_up,
                              parms.adaptation_interval, self.rng, self._log)

        if parms.n_warm_up == 0:
            self.status = ChainStatus.SAMPLING

        for iteration in range(1, parms.n_iterations):
            sample, _ = _metropolis_hastings_step(state, self.log_posterior, self.rng)
            self._chain.append(sample)

            if state.consecutive_rejections == parms.max_consecutive_rejections:
                self._log(logging.WARNING, "No proposal accepted in the last %d iterations (iteration %d)",
                          state.consecutive_rejections, iteration)

            if self.status is ChainStatus.WARMING_UP:
                if iteration % parms.adaptation_interval == 0:
                    rate = state.batch_acceptance_rate
                    factor = _adapt_covariance(state, iteration, parms.target_acceptance, parms.acceptance_tolerance)
                    self._log(adaptation_level, "After %d realizations, the acceptance rate is %.3f; variance "
                                                "multiplied by %.2f", iteration, rate, factor)
                if iteration >= parms.n_warm_up:
                    self.status = ChainStatus.SAMPLING
                    state.reset_batch()
                    self._log(logging.DEBUG, "Warm-up completed after %d iterations; proposal frozen", iteration)

            if iteration % PROGRESS_INTERVAL == 0:
                self._log(logging.INFO, "Processing realization %d / %d; acceptance rate %.3f",
                          iteration, parms.n_iterations, state.acceptance_rate)

        self._completed = True
        self.status = ChainStatus.SAMPLING
        self._log(logging.INFO, "Time to obtain %d samples = %.1f ms", len(self._chain),
                  (time.perf_counter() - start_time) * 1000)
        self._log(logging.INFO, "Acceptance ratio = %s", state.acceptance_rate)
        return self._chain

    def release_final_sample_selection(self) -> Tuple[MetropolisHastingsSample, ...]:
        """
        Finalize the chain: discard the burn-in and thin the rest

        The first call freezes the selection; later calls return the very same selection.

        Returns
        ----------
        final_selection : tuple of MetropolisHastingsSample
        """
        if self.status is ChainStatus.FINALIZED:
            return self._final_selection
        if not self._completed:
            raise InvalidConfigurationError(f"The chain must be run before its final sample is released "
                                            f"(status {self.status.value})")
        parms = self.simulation_parameters
        self._log(logging.DEBUG, "Discarding %d samples as burn in.", parms.n_burn_in)
        selection = _retrieve_final_sample(self._chain, parms.n_burn_in, parms.thinning)
        self._log(logging.DEBUG, "Selecting one every %d samples as final selection.", parms.thinning)

        estimate = MonteCarloEstimate()
        for sample in selection:
            estimate.add_realization(sample.parms)
        lpml = calculate_log_pseudomarginal_likelihood(self.model, [s.parms for s in selection])

        self._final_selection = selection
        self._mcmc_estimate = estimate
        self._lpml = lpml
        self.status = ChainStatus.FINALIZED
        self._log(logging.DEBUG, "Final sample had %d sets of parameters.", len(selection))
        return self._final_selection

    def do_estimation(self) -> bool:
        """
        Estimate the posterior distributions of the parameters

        Initialization, warm-up, sampling and release of the final selection in a row.
        """
        self.initialize()
        self.run()
        self.release_final_sample_selection()
        return self.is_convergence_achieved()

    # ---------------------------------------------------------------------------------------------------
    # Outputs
    # ---------------------------------------------------------------------------------------------------

    def is_convergence_achieved(self) -> bool:
        return self.status is ChainStatus.FINALIZED

    def _check_finalized(self):
        if self.status is not ChainStatus.FINALIZED:
            raise NotFinalizedError(f"The final sample selection has not been released yet (status "
                                    f"{self.status.value}); call release_final_sample_selection() first")

    def get_chain(self) -> Tuple[MetropolisHastingsSample, ...]:
        """Complete chain, burn-in included"""
        return tuple(self._chain)

    @property
    def acceptance_rate(self) -> float:
        return self.state.acceptance_rate if self.state is not None else math.nan

    def get_final_sample_selection(self) -> Tuple[MetropolisHastingsSample, ...]:
        self._check_finalized()
        return self._final_selection

    def get_final_sample_report(self) -> pd.DataFrame:
        """
        Final selection as a table: the log-posterior in the LLK column, then one column per parameter
        """
        self._check_finalized()
        names = self.model.get_parameter_names()
        data = np.array([s.parms for s in self._final_selection])
        report = pd.DataFrame(data, columns=names)
        report.insert(0, 'LLK', [s.llk for s in self._final_selection])
        return report

    def export_metropolis_hastings_sample(self, filename):
        """Write the final selection to a CSV file"""
        self.get_final_sample_report().to_csv(filename, index=False)

    def get_parameter_estimates(self) -> MonteCarloEstimate:
        self._check_finalized()
        return self._mcmc_estimate

    def get_final_parameter_estimates(self) -> np.ndarray:
        """Posterior means of the parameters"""
        return self.get_parameter_estimates().get_mean()

    def get_parameter_covariance_matrix(self) -> np.ndarray:
        return self.get_parameter_estimates().get_variance()

    def get_log_pseudomarginal_likelihood(self) -> float:
        self._check_finalized()
        return self._lpml

    def get_summary(self) -> pd.DataFrame:
        """Posterior mean, variance, standard deviation, 95% credible bounds and ESS of each parameter"""
        estimate = self.get_parameter_estimates()
        lower, upper = estimate.get_confidence_interval_bounds(0.95)
        summary = pd.DataFrame({
            'mean': estimate.get_mean(),
            'variance': np.diag(estimate.get_variance()),
            'std': np.sqrt(np.diag(estimate.get_variance())),
            'q2.5': lower,
            'q97.5': upper,
            'ess': effective_sample_size(estimate.get_realizations()),
        }, index=self.model.get_parameter_names())
        summary.index.name = 'parameter'
        return summary

    def get_convergence_status_report(self) -> pd.DataFrame:
        records = [
            ('Status', self.status.value),
            ('Number of samples in the chain', len(self._chain)),
            ('Acceptance rate', self.acceptance_rate),
        ]
        if self.status is ChainStatus.FINALIZED:
            ess = effective_sample_size(self._mcmc_estimate.get_realizations())
            records += [
                ('Number of samples in the final selection', len(self._final_selection)),
                ('Minimum effective sample size', float(np.min(ess))),
                ('Log Pseudomarginal Likelihood', self._lpml),
            ]
        return pd.DataFrame(records, columns=['Element', 'Value'])

    def __repr__(self):
        return (f"MetropolisHastingsAlgorithm(status={self.status.value}, "
                f"samples={len(self._chain)}, "
                f"acceptance_rate={self.acceptance_rate:.3f})")
