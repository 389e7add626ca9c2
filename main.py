"""
Metropolis-Hastings Benchmarks
Format: Setup -> Run Metropolis-Hastings -> Report -> Plot
"""
import logging
import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

from mhmcmc import MetropolisHastingsAlgorithm, MetropolisHastingsParameters, compare_models
from mhmcmc.example import GaussianModel, RandomInterceptModel, simulate_gaussian_data, simulate_random_intercept_data
from mhmcmc.plotting import plot_pair, plot_posterior, plot_trace

logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(name)s | %(message)s')
os.makedirs('results', exist_ok=True)

rng = np.random.default_rng(20240324)


# ========================================================================================================
# Benchmark 1: Gaussian mean and variance
# ========================================================================================================
print("\n" + "="*100)
print("Benchmark 1: Gaussian mean and variance, 100 draws from N(3, 16)")
print("="*100)

y = simulate_gaussian_data(100, 3.0, 16.0, rng)
parameters = MetropolisHastingsParameters(n_iterations=55000, n_burn_in=5000, thinning=5, n_initial_grid=1000)
mh = MetropolisHastingsAlgorithm(GaussianModel(y), parameters, seed=1)
mh.do_estimation()

print(mh.get_summary().to_string())
print(mh.get_convergence_status_report().to_string(index=False))
mh.export_metropolis_hastings_sample('results/gaussian_sample.csv')

fig = plot_trace(mh)
fig.savefig('results/gaussian_trace.png', dpi=150, bbox_inches='tight')
plt.close(fig)
fig = plot_pair(mh, 'mu', 'sigma2')
fig.savefig('results/gaussian_posterior.png', dpi=200, bbox_inches='tight')
plt.close(fig)


# ========================================================================================================
# Benchmark 2: Random intercept against fixed intercept
# ========================================================================================================
print("\n" + "="*100)
print("Benchmark 2: Random intercept model against its non-hierarchical version")
print("="*100)

y, groups = simulate_random_intercept_data(n_groups=10, n_per_group=10, mu=5.0, sigma_u=3.0, sigma_e=1.0, rng=rng)
parameters = MetropolisHastingsParameters(n_iterations=60000, n_burn_in=10000, thinning=10, n_initial_grid=1000,
                                          balance_variance=True)
algorithms = {}
for name, hierarchical in (('random_intercept', True), ('fixed_intercept', False)):
    algorithms[name] = MetropolisHastingsAlgorithm(RandomInterceptModel(y, groups, hierarchical=hierarchical),
                                                   parameters, seed=2, logger_prefix=f'[{name}]')
    algorithms[name].do_estimation()
    print(f"\n{name}")
    print(algorithms[name].get_summary().to_string())

print("\nModel comparison")
print(compare_models(algorithms).to_string(index=False))

fig = plot_posterior(algorithms['random_intercept'], ['mu', 'sigma_e', 'sigma_u'])
fig.savefig('results/random_intercept_posterior.png', dpi=200, bbox_inches='tight')
plt.close(fig)

print(f"\n✓ Results saved in {os.path.abspath('results')}")
