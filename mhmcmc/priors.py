"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Registry of the prior distributions

Each parameter index maps to exactly one prior entry. A fixed-effect entry holds a PriorDistribution. A random-effect
entry holds the individual (zero-mean Gaussian) prior of one realization and a reference to the hyper-prior of the
standard deviation, which is itself registered as a fixed effect. Several random effects can share a hyper-prior.
------------------------------------------------------------------------------------------------------------------------
"""
import enum
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
from scipy import stats

from mhmcmc.exceptions import InvalidConfigurationError, UnregisteredParameterError
from mhmcmc.utils import GaussianDistribution

logger = logging.getLogger(__name__)


class PriorType(enum.Enum):
    FIXED = 'fixed'
    RANDOM_EFFECT = 'random_effect'


@dataclass(frozen=True)
class PriorEntry:
    index: int
    distribution: object
    prior_type: PriorType = PriorType.FIXED
    std_prior: Optional[object] = None
    std_index: Optional[int] = None

    @property
    def is_random_effect(self) -> bool:
        return self.prior_type is PriorType.RANDOM_EFFECT


class MetropolisHastingsPriorHandler:
    """
    Prior distributions of the fixed and random parameters
    """

    def __init__(self):
        self._entries: Dict[int, PriorEntry] = {}
        self._random_effect_arrays = None

    def _check_index(self, index: int):
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise InvalidConfigurationError(f"Parameter index must be an integer, got {index!r}")
        if index < 0:
            raise InvalidConfigurationError(f"Parameter index must be non-negative, got {index}")
        if index in self._entries:
            raise InvalidConfigurationError(f"Parameter index {index} already has a prior distribution: "
                                            f"{self._entries[index].distribution}")

    def add_fixed_effect_distribution(self, distribution, index: int):
        """
        Add the prior distribution of a fixed-effect parameter

        Parameters
        ----------
        distribution : PriorDistribution
            anything with pdf, log_pdf and random_realization methods
        index : int
            index of the parameter in the parameter vector
        """
        self._check_index(index)
        self._entries[int(index)] = PriorEntry(int(index), distribution)
        logger.debug("Fixed-effect prior %s registered at index %d", distribution, index)

    def add_random_effect_standard_deviation(self, individual_prior: GaussianDistribution, std_prior, index: int):
        """
        Add a random effect whose standard deviation follows the std_prior hyper-prior

        The hyper-prior must have been registered with add_fixed_effect_distribution. Its index in the parameter
        vector holds the standard deviation that scales the individual prior of this random effect.

        Parameters
        ----------
        individual_prior : GaussianDistribution
            univariate Gaussian prior of the realization; only its mean is used
        std_prior : PriorDistribution
            registered prior of the random effect standard deviation
        index : int
            index of the random effect realization in the parameter vector
        """
        std_index = self._find_index_of(std_prior)
        if std_index is None:
            raise UnregisteredParameterError(std_prior, f"The hyper-prior {std_prior} of the random effect at index "
                                                        f"{index} must be registered as a fixed effect first")
        if individual_prior.n_dim != 1:
            raise InvalidConfigurationError("The individual prior of a random effect must be univariate")
        self._check_index(index)
        self._entries[int(index)] = PriorEntry(int(index), individual_prior, PriorType.RANDOM_EFFECT,
                                               std_prior, std_index)
        logger.debug("Random-effect prior registered at index %d with standard deviation at index %d", index, std_index)
        self._random_effect_arrays = None

    def _find_index_of(self, distribution) -> Optional[int]:
        for index, entry in self._entries.items():
            if entry.distribution is distribution and not entry.is_random_effect:
                return index
        return None

    def get_prior(self, index: int) -> PriorEntry:
        try:
            return self._entries[index]
        except KeyError:
            raise UnregisteredParameterError(index) from None

    @property
    def indices(self) -> List[int]:
        return sorted(self._entries)

    @property
    def random_effect_indices(self) -> List[int]:
        return [i for i in self.indices if self._entries[i].is_random_effect]

    def check_coverage(self, n_parms: int):
        """Make sure the indices 0 to n_parms - 1, and only them, have a prior distribution"""
        for i in range(n_parms):
            if i not in self._entries:
                raise UnregisteredParameterError(i)
        extra = [i for i in self._entries if i >= n_parms]
        if extra:
            raise InvalidConfigurationError(f"Priors registered for indices {extra} beyond the parameter vector "
                                            f"of length {n_parms}")

    def get_log_probability_density(self, parms: np.ndarray) -> float:
        """
        Log density of the fixed-effect parameters with respect to their priors

        Random effects are excluded. A zero density returns -inf immediately.
        """
        log_prob = 0.0
        for index, entry in self._entries.items():
            if entry.is_random_effect:
                continue
            this_log_prob = float(entry.distribution.log_pdf(parms[index]))
            if not this_log_prob > -math.inf:   # zero density or nan
                return -math.inf
            log_prob += this_log_prob
        return log_prob

    def get_log_probability_density_of_random_effects(self, parms: np.ndarray) -> float:
        """
        Log density of the random effects given the realized standard deviations

        A non-positive standard deviation or a zero density returns -inf.
        """
        if self._random_effect_arrays is None:
            entries = [e for e in self._entries.values() if e.is_random_effect]
            self._random_effect_arrays = (np.array([e.index for e in entries], dtype=int),
                                          np.array([e.std_index for e in entries], dtype=int),
                                          np.array([e.distribution.get_mean()[0] for e in entries], dtype=float))
        indices, std_indices, means = self._random_effect_arrays
        if indices.size == 0:
            return 0.0
        parms = np.asarray(parms, dtype=float)
        std = parms[std_indices]
        if not np.all(std > 0.0):
            return -math.inf
        log_prob = float(np.sum(stats.norm.logpdf(parms[indices], loc=means, scale=std)))
        return log_prob if log_prob > -math.inf else -math.inf

    def get_random_realization(self, rng: np.random.Generator) -> np.ndarray:
        """
        Draw a full parameter vector from the priors

        The hyper-priors are drawn first so that the random effects use the realized standard deviations.
        """
        n_parms = max(self._entries) + 1 if self._entries else 0
        realized = np.zeros(n_parms)
        for index, entry in self._entries.items():
            if not entry.is_random_effect:
                realized[index] = entry.distribution.random_realization(rng)
        for index, entry in self._entries.items():
            if entry.is_random_effect:
                std = max(float(realized[entry.std_index]), 0.0)
                realized[index] = entry.distribution.get_mean()[0] + std * rng.standard_normal()
        return realized

    def is_empty(self) -> bool:
        return not self._entries

    def clear(self):
        self._entries.clear()
        self._random_effect_arrays = None

    def __len__(self):
        return len(self._entries)

    def __contains__(self, index):
        return index in self._entries

    def __repr__(self):
        lines = [f"  {i}: {self._entries[i].prior_type.value} {self._entries[i].distribution}" for i in self.indices]
        return f"MetropolisHastingsPriorHandler({len(self)} priors):\n" + "\n".join(lines)
