"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Samples and chain state
------------------------------------------------------------------------------------------------------------------------
"""
import enum
import math
from dataclasses import dataclass, field

import numpy as np

from mhmcmc.utils import GaussianDistribution


class ChainStatus(enum.Enum):
    INITIALIZING = 'initializing'
    WARMING_UP = 'warming_up'
    SAMPLING = 'sampling'
    FINALIZED = 'finalized'


class MetropolisHastingsSample:
    """
    One link of the Markov chain: a parameter vector and its log-posterior

    The parameter vector is copied and flagged read-only. Samples are ordered by log-posterior.
    """
    __slots__ = ('parms', 'llk')

    def __init__(self, parms, llk: float):
        parms = np.array(parms, dtype=float)
        parms.setflags(write=False)
        self.parms = parms
        self.llk = float(llk)

    def __lt__(self, other):
        return self.llk < other.llk

    def __repr__(self):
        return f"MetropolisHastingsSample(llk={self.llk}, parms={self.parms})"


@dataclass
class ChainState:
    """
    Mutable state threaded through the iterations of one chain

    Attributes
    ----------
    current : MetropolisHastingsSample
        last sample of the chain
    sampler : GaussianDistribution
        random walk proposal; its mean is not used, only its covariance
    trials, successes : int
        counters over the whole run
    batch_trials, batch_successes : int
        counters since the last adjustment of the proposal covariance
    consecutive_rejections : int
        rejections since the last accepted proposal
    adaptation_history : list of (iteration, batch acceptance rate, variance factor)
    """
    current: MetropolisHastingsSample
    sampler: GaussianDistribution
    trials: int = 0
    successes: int = 0
    batch_trials: int = 0
    batch_successes: int = 0
    consecutive_rejections: int = 0
    adaptation_history: list = field(default_factory=list)

    @property
    def acceptance_rate(self) -> float:
        return self.successes / self.trials if self.trials else math.nan

    @property
    def batch_acceptance_rate(self) -> float:
        return self.batch_successes / self.batch_trials if self.batch_trials else math.nan

    def record(self, accepted: bool):
        self.trials += 1
        self.batch_trials += 1
        if accepted:
            self.successes += 1
            self.batch_successes += 1
            self.consecutive_rejections = 0
        else:
            self.consecutive_rejections += 1

    def reset_batch(self):
        self.batch_trials = 0
        self.batch_successes = 0
