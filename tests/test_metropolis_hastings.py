import logging
import math

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from conftest import FailingModel, FlatModel, NanModel, SpikeModel, TruncatedModel
from mhmcmc import (ChainState, ChainStatus, GaussianDistribution, InvalidConfigurationError,
                    MetropolisHastingsAlgorithm, MetropolisHastingsCompatibleModel, MetropolisHastingsParameters,
                    MetropolisHastingsSample, NotFinalizedError, PriorDistribution, UnregisteredParameterError,
                    calculate_log_pseudomarginal_likelihood)
from mhmcmc.example import RandomInterceptModel, simulate_random_intercept_data
from mhmcmc.metropolis_hastings import _accept, _balance_variance


def _finalized(model, parameters, seed=1):
    algorithm = MetropolisHastingsAlgorithm(model, parameters, seed=seed)
    algorithm.do_estimation()
    return algorithm


# ---------------- Posterior evaluation ---------------- #

def test_log_posterior_decomposition(gaussian_model, gaussian_data):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model)
    gaussian_model.set_prior_distributions(algorithm.get_prior_handler())
    parms = np.array([3.0, 16.0])
    expected = (np.sum(stats.norm.logpdf(gaussian_data, loc=3.0, scale=4.0))
                + stats.norm.logpdf(3.0, scale=1000.0)
                + stats.invgamma.logpdf(16.0, 0.001, scale=0.001))
    assert algorithm.log_posterior(parms) == pytest.approx(expected)
    # the subject-by-subject default gives the same log-likelihood as the vectorized override
    assert MetropolisHastingsCompatibleModel.get_log_likelihood(gaussian_model, parms) == \
        pytest.approx(gaussian_model.get_log_likelihood(parms))


def test_log_posterior_is_exact_across_calls(gaussian_model):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model)
    gaussian_model.set_prior_distributions(algorithm.get_prior_handler())
    first = algorithm.log_posterior([2.5, 12.0])
    algorithm.log_posterior([10.0, 3.0])
    assert algorithm.log_posterior([2.5, 12.0]) == first


def test_log_posterior_of_hierarchical_model():
    y, groups = simulate_random_intercept_data(4, 5, 5.0, 2.0, 1.0, np.random.default_rng(3))
    model = RandomInterceptModel(y, groups)
    algorithm = MetropolisHastingsAlgorithm(model)
    handler = algorithm.get_prior_handler()
    model.set_prior_distributions(handler)
    parms = np.array([5.0, 1.0, 2.0, 0.5, -1.0, 1.5, -0.2])
    expected = (model.get_log_likelihood(parms)
                + np.sum(stats.norm.logpdf(parms[3:], scale=2.0))
                + stats.norm.logpdf(5.0, scale=1000.0)
                + 2.0 * stats.uniform.logpdf(1.0, scale=100.0))
    assert algorithm.log_posterior(parms) == pytest.approx(expected)
    assert algorithm.log_posterior(parms) == pytest.approx(model.get_log_likelihood(parms)
                                                           + handler.get_log_probability_density(parms)
                                                           + handler.get_log_probability_density_of_random_effects(parms))


def test_zero_likelihood_gives_minus_infinity():
    model = TruncatedModel()
    algorithm = MetropolisHastingsAlgorithm(model)
    model.set_prior_distributions(algorithm.get_prior_handler())
    assert algorithm.log_posterior([2.0, 0.0]) == -math.inf
    assert algorithm.log_posterior([0.5, 0.0]) == pytest.approx(3 * math.log(0.5) + 2 * math.log(1 / 20))


def test_nan_likelihood_gives_minus_infinity():
    model = NanModel()
    algorithm = MetropolisHastingsAlgorithm(model)
    model.set_prior_distributions(algorithm.get_prior_handler())
    assert algorithm.log_posterior([-1.0, 0.0]) == -math.inf


def test_outside_prior_support_gives_minus_infinity(gaussian_model):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model)
    gaussian_model.set_prior_distributions(algorithm.get_prior_handler())
    assert algorithm.log_posterior([3.0, -1.0]) == -math.inf


# ---------------- Initialization ---------------- #

def test_initialization_without_grid_is_deterministic(gaussian_model):
    parameters = MetropolisHastingsParameters(n_iterations=100, n_burn_in=10, n_initial_grid=0)
    samples = []
    for seed in (1, 2):
        algorithm = MetropolisHastingsAlgorithm(gaussian_model, parameters, seed=seed)
        state_before = algorithm.rng.bit_generator.state
        samples.append(algorithm.initialize())
        assert algorithm.rng.bit_generator.state == state_before
    np.testing.assert_array_equal(samples[0].parms, samples[1].parms)
    assert samples[0].llk == samples[1].llk
    np.testing.assert_array_equal(samples[0].parms, gaussian_model.get_starting_parm_est(0.01).get_mean())


def test_grid_is_at_least_as_good_as_mean_point(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=11)
    first = algorithm.initialize()
    mean = gaussian_model.get_starting_parm_est(small_parameters.coef_var).get_mean()
    assert first.llk >= algorithm.log_posterior(mean)
    assert math.isfinite(first.llk)


def test_grid_tie_keeps_first_maximum(small_parameters):
    model = FlatModel(mean=[1.0, -1.0])
    algorithm = MetropolisHastingsAlgorithm(model, small_parameters, seed=5)
    first = algorithm.initialize()
    np.testing.assert_array_equal(first.parms, [1.0, -1.0])


def test_infeasible_starting_distribution(small_parameters):
    algorithm = MetropolisHastingsAlgorithm(FlatModel(mean=[20.0, 20.0]), small_parameters, seed=5)
    with pytest.raises(InvalidConfigurationError, match="finite"):
        algorithm.initialize()
    assert algorithm.status is ChainStatus.INITIALIZING


def test_missing_prior_is_reported(small_parameters):
    class PartialModel(FlatModel):
        def set_prior_distributions(self, handler):
            handler.add_fixed_effect_distribution(PriorDistribution('uniform', low=-10.0, high=10.0), 0)

    algorithm = MetropolisHastingsAlgorithm(PartialModel(), small_parameters)
    with pytest.raises(UnregisteredParameterError) as excinfo:
        algorithm.initialize()
    assert excinfo.value.index == 1
    assert algorithm.status is ChainStatus.INITIALIZING


def test_parameter_names_must_match_dimension(small_parameters):
    class UnnamedModel(FlatModel):
        def get_effect_list(self):
            return ['b0']

    with pytest.raises(InvalidConfigurationError, match="names 1 parameters"):
        MetropolisHastingsAlgorithm(UnnamedModel(), small_parameters).initialize()


def test_priors_registered_by_caller_are_kept(small_parameters):
    model = FlatModel()
    algorithm = MetropolisHastingsAlgorithm(model, small_parameters, seed=1)
    model.set_prior_distributions(algorithm.get_prior_handler())
    algorithm.initialize()
    assert len(algorithm.get_prior_handler()) == 2


# ---------------- Acceptance rule ---------------- #

@pytest.mark.parametrize("seed", range(20))
def test_non_decreasing_proposal_is_always_accepted(seed):
    rng = np.random.default_rng(seed)
    assert _accept(-1.0, -1.0, rng)
    assert _accept(0.0, -5.0, rng)


def test_non_finite_proposal_is_rejected_without_random_draw():
    rng = np.random.default_rng(0)
    state = rng.bit_generator.state
    assert not _accept(-math.inf, -1.0, rng)
    assert not _accept(math.nan, -1.0, rng)
    assert rng.bit_generator.state == state


def test_acceptance_probability():
    rng = np.random.default_rng(42)
    accepted = np.mean([_accept(math.log(0.25), 0.0, rng) for _ in range(20000)])
    assert accepted == pytest.approx(0.25, abs=0.02)


def test_single_step_in_isolation(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=3)
    first = algorithm.initialize()
    state = ChainState(current=first, sampler=algorithm.state.sampler)
    sample, accepted = algorithm.step(state)
    assert state.trials == 1
    assert state.successes == int(accepted)
    assert state.current is sample
    assert (sample is first) != accepted
    # the chain itself does not grow
    assert len(algorithm.get_chain()) == 1


def test_step_requires_initialization(gaussian_model):
    with pytest.raises(InvalidConfigurationError):
        MetropolisHastingsAlgorithm(gaussian_model).step()


# ---------------- Chain driver ---------------- #

def test_status_transitions(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=1)
    assert algorithm.status is ChainStatus.INITIALIZING
    assert math.isnan(algorithm.acceptance_rate)
    algorithm.initialize()
    assert algorithm.status is ChainStatus.WARMING_UP
    algorithm.run()
    assert algorithm.status is ChainStatus.SAMPLING
    assert not algorithm.is_convergence_achieved()
    algorithm.release_final_sample_selection()
    assert algorithm.status is ChainStatus.FINALIZED
    assert algorithm.is_convergence_achieved()
    assert 'finalized' in repr(algorithm)


def test_chain_length_and_values(gaussian_model, small_parameters):
    algorithm = _finalized(gaussian_model, small_parameters)
    chain = algorithm.get_chain()
    assert len(chain) == small_parameters.n_iterations
    assert all(math.isfinite(s.llk) for s in chain)
    assert 0.0 < algorithm.acceptance_rate < 1.0


def test_adaptation_only_during_warm_up(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=2)
    algorithm.initialize()
    algorithm.run()
    history = algorithm.state.adaptation_history
    assert [iteration for iteration, _, _ in history] == [50, 100, 150, 200]
    for _, rate, factor in history:
        if rate > 0.40:
            assert factor == pytest.approx(1.44)
        elif rate < 0.30:
            assert factor == pytest.approx(0.64)
        else:
            assert factor == 1.0


def test_proposal_is_frozen_after_warm_up(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=2)
    algorithm.initialize()
    variances = []
    original = algorithm.state.sampler.set_variance

    def recording_set_variance(covariance):
        variances.append(len(algorithm.get_chain()))
        original(covariance)

    algorithm.state.sampler.set_variance = recording_set_variance
    algorithm.run()
    assert all(n <= small_parameters.n_warm_up + 1 for n in variances)


def test_no_warm_up(gaussian_model):
    parameters = MetropolisHastingsParameters(n_iterations=300, n_burn_in=0, thinning=3, n_initial_grid=10)
    algorithm = _finalized(gaussian_model, parameters)
    assert algorithm.state.adaptation_history == []
    assert len(algorithm.get_final_sample_selection()) == 100


def test_calls_in_wrong_state(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=1)
    with pytest.raises(InvalidConfigurationError):
        algorithm.run()
    with pytest.raises(InvalidConfigurationError):
        algorithm.release_final_sample_selection()
    algorithm.initialize()
    with pytest.raises(InvalidConfigurationError):
        algorithm.initialize()
    with pytest.raises(InvalidConfigurationError):
        algorithm.set_simulation_parameters(MetropolisHastingsParameters())
    with pytest.raises(InvalidConfigurationError):
        algorithm.release_final_sample_selection()
    algorithm.run()
    with pytest.raises(InvalidConfigurationError):
        algorithm.run()


def test_finalized_outputs_before_release(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=1)
    algorithm.initialize()
    algorithm.run()
    for getter in (algorithm.get_final_sample_selection, algorithm.get_final_sample_report,
                   algorithm.get_parameter_estimates, algorithm.get_final_parameter_estimates,
                   algorithm.get_log_pseudomarginal_likelihood, algorithm.get_summary):
        with pytest.raises(NotFinalizedError):
            getter()
    assert len(algorithm.get_convergence_status_report()) == 3


def test_set_simulation_parameters_before_start(gaussian_model, small_parameters):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model)
    algorithm.set_simulation_parameters(small_parameters)
    assert algorithm.get_simulation_parameters() is small_parameters


def test_finalization_is_idempotent(gaussian_model, small_parameters):
    algorithm = _finalized(gaussian_model, small_parameters)
    report1 = algorithm.get_final_sample_report()
    selection = algorithm.get_final_sample_selection()
    assert algorithm.release_final_sample_selection() is selection
    report2 = algorithm.get_final_sample_report()
    assert report1.to_string() == report2.to_string()


def test_final_selection_drops_burn_in_and_thins(gaussian_model, small_parameters):
    algorithm = _finalized(gaussian_model, small_parameters)
    selection = algorithm.get_final_sample_selection()
    assert isinstance(selection, tuple)
    assert len(selection) == small_parameters.n_retained == 100
    assert selection == algorithm.get_chain()[200::4]


def test_final_sample_report(gaussian_model, small_parameters, tmp_path):
    algorithm = _finalized(gaussian_model, small_parameters)
    report = algorithm.get_final_sample_report()
    assert list(report.columns) == ['LLK', 'mu', 'sigma2']
    assert len(report) == 100
    selection = algorithm.get_final_sample_selection()
    assert report['LLK'].iloc[0] == selection[0].llk
    assert report['sigma2'].iloc[-1] == selection[-1].parms[1]

    filename = tmp_path / 'sample.csv'
    algorithm.export_metropolis_hastings_sample(filename)
    exported = pd.read_csv(filename)
    assert list(exported.columns) == ['LLK', 'mu', 'sigma2']
    np.testing.assert_allclose(exported.to_numpy(), report.to_numpy())


def test_summary_and_estimates(gaussian_model, small_parameters):
    algorithm = _finalized(gaussian_model, small_parameters)
    summary = algorithm.get_summary()
    assert list(summary.index) == ['mu', 'sigma2']
    assert list(summary.columns) == ['mean', 'variance', 'std', 'q2.5', 'q97.5', 'ess']
    np.testing.assert_allclose(summary['mean'].to_numpy(), algorithm.get_final_parameter_estimates())
    np.testing.assert_allclose(summary['variance'].to_numpy(), np.diag(algorithm.get_parameter_covariance_matrix()))
    assert np.all(summary['q2.5'] <= summary['q97.5'])
    assert np.all(np.isfinite(summary['ess']) & (summary['ess'] > 0))

    report = algorithm.get_convergence_status_report()
    assert list(report.columns) == ['Element', 'Value']
    assert len(report) == 6


def test_lpml_of_final_selection(gaussian_model, small_parameters):
    algorithm = _finalized(gaussian_model, small_parameters)
    expected = calculate_log_pseudomarginal_likelihood(gaussian_model,
                                                       [s.parms for s in algorithm.get_final_sample_selection()])
    assert algorithm.get_log_pseudomarginal_likelihood() == expected
    assert math.isfinite(expected)


def test_same_seed_same_chain(gaussian_model, small_parameters):
    chain_a = _finalized(gaussian_model, small_parameters, seed=123).get_chain()
    chain_b = _finalized(gaussian_model, small_parameters, seed=123).get_chain()
    chain_c = _finalized(gaussian_model, small_parameters, seed=124).get_chain()
    np.testing.assert_array_equal([s.parms for s in chain_a], [s.parms for s in chain_b])
    assert not np.array_equal([s.parms for s in chain_a], [s.parms for s in chain_c])


def test_chain_stays_in_support(small_parameters):
    algorithm = _finalized(TruncatedModel(), small_parameters)
    assert all(s.parms[0] <= 1.0 for s in algorithm.get_chain())
    algorithm = _finalized(NanModel(), small_parameters)
    assert all(s.parms[0] >= 0.0 for s in algorithm.get_chain())
    assert all(math.isfinite(s.llk) for s in algorithm.get_chain())


def test_model_exception_propagates():
    parameters = MetropolisHastingsParameters(n_iterations=100, n_burn_in=10, n_initial_grid=0)
    algorithm = MetropolisHastingsAlgorithm(FailingModel(), parameters, seed=1)
    algorithm.initialize()
    with pytest.raises(RuntimeError, match="likelihood evaluation failed"):
        algorithm.run()


def test_stalled_chain_is_reported(caplog):
    parameters = MetropolisHastingsParameters(n_iterations=300, n_burn_in=100, thinning=1, n_initial_grid=20,
                                              max_consecutive_rejections=50)
    caplog.set_level(logging.WARNING, logger='mhmcmc')
    algorithm = MetropolisHastingsAlgorithm(SpikeModel(), parameters, seed=1, logger_prefix='[chain 1]')
    algorithm.do_estimation()
    warnings = [r for r in caplog.records if 'No proposal accepted' in r.getMessage()]
    assert len(warnings) == 1
    assert warnings[0].getMessage().startswith('[chain 1]')
    assert algorithm.acceptance_rate == 0.0
    assert all(np.array_equal(s.parms, [0.0, 0.0]) for s in algorithm.get_chain())


def test_verbose_logs_adaptation_at_info(gaussian_model, small_parameters, caplog):
    caplog.set_level(logging.INFO, logger='mhmcmc')
    _finalized(gaussian_model, small_parameters)
    assert not any('acceptance rate is' in r.getMessage() for r in caplog.records)
    caplog.clear()
    MetropolisHastingsAlgorithm(gaussian_model, small_parameters, seed=1, verbose=True).do_estimation()
    assert any('acceptance rate is' in r.getMessage() for r in caplog.records)


def test_variance_balancing(gaussian_model, small_parameters):
    parameters = small_parameters.copy(balance_variance=True)
    algorithm = _finalized(gaussian_model, parameters, seed=8)
    assert len(algorithm.get_chain()) == parameters.n_iterations
    assert len(algorithm.get_final_sample_selection()) == parameters.n_retained
    # same starting sample, but the balancing stage consumes random numbers and rescales the proposal
    unbalanced = _finalized(gaussian_model, small_parameters, seed=8)
    np.testing.assert_array_equal(algorithm.get_chain()[0].parms, unbalanced.get_chain()[0].parms)
    assert not np.array_equal(algorithm.get_chain()[-1].parms, unbalanced.get_chain()[-1].parms)


def test_balancing_scales_each_variance_separately():
    model = FlatModel()
    algorithm = MetropolisHastingsAlgorithm(model)
    model.set_prior_distributions(algorithm.get_prior_handler())
    first = MetropolisHastingsSample(np.zeros(2), algorithm.log_posterior(np.zeros(2)))
    # tiny steps in b0 are always accepted, huge steps in b1 almost always leave [-10, 10]
    sampler = GaussianDistribution(np.zeros(2), [1e-6, 1e6])
    rates = _balance_variance(first, sampler, algorithm.log_posterior, n_sweeps=25, interval=10,
                              rng=np.random.default_rng(4))
    assert rates[0] == 1.0
    assert rates[1] < 0.45
    # adjusted after sweeps 10 and 20 only
    np.testing.assert_allclose(np.diag(sampler.get_variance()), [1e-6 * 1.44 ** 2, 1e6 * 0.64 ** 2])
    assert sampler.get_variance()[0, 1] == 0.0
    np.testing.assert_array_equal(first.parms, [0.0, 0.0])


def test_balancing_recovers_from_a_badly_scaled_sampler(gaussian_model):
    algorithm = MetropolisHastingsAlgorithm(gaussian_model)
    gaussian_model.set_prior_distributions(algorithm.get_prior_handler())
    start = gaussian_model.get_starting_parm_est(0.01).get_mean()
    first = MetropolisHastingsSample(start, algorithm.log_posterior(start))
    sampler = GaussianDistribution(start, [1e-6, 1e3])
    rates = _balance_variance(first, sampler, algorithm.log_posterior, n_sweeps=5000, interval=50,
                              rng=np.random.default_rng(9))
    variance = np.diag(sampler.get_variance())
    assert np.all((rates > 0.2) & (rates < 0.8))
    assert 0.05 < variance[0] < 10.0
    assert 2.0 < variance[1] < 300.0


# ---------------- Statistical scenarios ---------------- #

@pytest.mark.slow
def test_gaussian_posterior_recovery(gaussian_model):
    parameters = MetropolisHastingsParameters(n_iterations=25000, n_burn_in=5000, thinning=2, n_initial_grid=1000)
    algorithm = _finalized(gaussian_model, parameters, seed=2024)
    assert len(algorithm.get_final_sample_selection()) == 10000
    mu, sigma2 = algorithm.get_final_parameter_estimates()
    # mu has a nearly flat prior, so sigma2 | y is close to InvGamma(0.001 + (n - 1) / 2, 0.001 + S / 2)
    expected_sigma2 = (0.001 + 0.5 * 99 * 16.0) / (0.001 + 49.5 - 1.0)
    assert abs(mu - 3.0) < 0.5
    assert abs(sigma2 - 16.0) < 0.5
    assert abs(sigma2 - expected_sigma2) < 0.5
    assert 0.2 < algorithm.acceptance_rate < 0.5


@pytest.mark.slow
def test_starting_grid_does_not_change_the_posterior(gaussian_model):
    parameters = MetropolisHastingsParameters(n_iterations=25000, n_burn_in=5000, thinning=2, n_initial_grid=0)
    without_grid = _finalized(gaussian_model, parameters, seed=7).get_final_parameter_estimates()
    with_grid = _finalized(gaussian_model, parameters.copy(n_initial_grid=1000),
                           seed=7).get_final_parameter_estimates()
    assert abs(without_grid[0] - with_grid[0]) < 0.3
    assert abs(without_grid[1] - with_grid[1]) < 1.0


@pytest.mark.slow
def test_hierarchical_model_on_grouped_data():
    y, groups = simulate_random_intercept_data(10, 10, 5.0, 3.0, 1.0, np.random.default_rng(99))
    parameters = MetropolisHastingsParameters(n_iterations=20000, n_burn_in=5000, thinning=10, n_initial_grid=500)
    algorithm = _finalized(RandomInterceptModel(y, groups), parameters, seed=3)
    summary = algorithm.get_summary()
    assert abs(summary.loc['sigma_e', 'mean'] - 1.0) < 0.4
    assert summary.loc['sigma_u', 'mean'] > 1.0
