"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Trace plots, marginal posteriors and pairwise scatter of a Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
"""
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np


def _select(names: Sequence[str], parameters: Optional[Sequence[str]]):
    if parameters is None:
        return list(range(len(names)))
    missing = [p for p in parameters if p not in names]
    if missing:
        raise ValueError(f"Unknown parameters: {missing}")
    return [list(names).index(p) for p in parameters]


def _style(ax):
    ax.grid(True, alpha=0.2, linestyle='--', linewidth=0.5)
    ax.set_facecolor('#f8f9fa')


def plot_trace(algorithm, parameters: Optional[Sequence[str]] = None):
    """
    Trace of the complete chain, one panel per parameter, with the burn-in boundary

    Parameters
    ----------
    algorithm : MetropolisHastingsAlgorithm
        estimation whose chain has been run
    parameters : sequence of str, optional
        names of the parameters to plot; all of them if None

    Returns
    ----------
    fig : matplotlib.figure.Figure
    """
    names = algorithm.model.get_parameter_names()
    selected = _select(names, parameters)
    chain = np.array([s.parms for s in algorithm.get_chain()])
    n_burn_in = algorithm.get_simulation_parameters().n_burn_in

    fig, axes = plt.subplots(len(selected), 1, figsize=(10, 2.5 * len(selected)), sharex=True, squeeze=False)
    for ax, j in zip(axes[:, 0], selected):
        ax.plot(chain[:, j], color='#3498db', linewidth=0.5)
        ax.axvline(n_burn_in, color='#e74c3c', linestyle='--', linewidth=1.0, label='End of burn-in')
        ax.set_ylabel(names[j], fontsize=12, fontweight='bold')
        _style(ax)
    axes[0, 0].legend(fontsize=10, framealpha=0.9)
    axes[-1, 0].set_xlabel('Iteration', fontsize=12, fontweight='bold')
    fig.tight_layout()
    return fig


def plot_posterior(algorithm, parameters: Optional[Sequence[str]] = None, bins: int = 50):
    """Histograms of the marginal posteriors of the final selection, posterior mean marked"""
    names = algorithm.model.get_parameter_names()
    selected = _select(names, parameters)
    realizations = algorithm.get_parameter_estimates().get_realizations()
    means = algorithm.get_final_parameter_estimates()

    fig, axes = plt.subplots(1, len(selected), figsize=(5 * len(selected), 4), squeeze=False)
    for ax, j in zip(axes[0], selected):
        ax.hist(realizations[:, j], bins=bins, color='#3498db', alpha=0.7, density=True)
        ax.axvline(means[j], color='#e74c3c', linewidth=1.5, label='Posterior mean')
        ax.set_xlabel(names[j], fontsize=12, fontweight='bold')
        _style(ax)
    axes[0, 0].set_ylabel('Density', fontsize=12, fontweight='bold')
    axes[0, 0].legend(fontsize=10, framealpha=0.9)
    fig.tight_layout()
    return fig


def plot_pair(algorithm, x: str, y: str):
    """Scatter of two parameters over the final selection"""
    names = algorithm.model.get_parameter_names()
    i, j = _select(names, [x, y])
    realizations = algorithm.get_parameter_estimates().get_realizations()

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.scatter(realizations[:, i], realizations[:, j], c='#3498db', s=3, alpha=0.5, edgecolors='none',
               label='Posterior Samples')
    ax.set_xlabel(x, fontsize=16, fontweight='bold')
    ax.set_ylabel(y, fontsize=16, fontweight='bold')
    ax.legend(fontsize=14, framealpha=0.9)
    _style(ax)
    fig.tight_layout()
    return fig
