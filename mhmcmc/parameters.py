"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Simulation parameters of the Markov chain
------------------------------------------------------------------------------------------------------------------------
"""
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping, Optional

from mhmcmc.exceptions import InvalidConfigurationError


@dataclass(frozen=True)
class MetropolisHastingsParameters:
    """
    Settings of a Metropolis-Hastings run, validated at construction and read-only afterwards

    Attributes
    ----------
    n_iterations : int
        total number of samples in the chain, the starting sample included
    n_burn_in : int
        number of leading samples discarded from the final selection
    thinning : int
        one sample every `thinning` is kept in the final selection
    n_initial_grid : int
        number of random candidates evaluated to find the starting sample; 0 starts from the mean of the
        starting distribution
    n_warm_up : int or None
        number of iterations during which the proposal covariance is adapted; defaults to n_burn_in
    adaptation_interval : int
        number of iterations between two adjustments of the proposal covariance
    target_acceptance : float
        acceptance rate aimed at during the warm-up
    acceptance_tolerance : float
        half-width of the band around target_acceptance within which the covariance is left unchanged
    coef_var : float
        coefficient of variation given to the model to build the starting distribution
    balance_variance : bool
        balance the proposal variances parameter by parameter before the warm-up
    max_consecutive_rejections : int
        number of consecutive rejections after which a stalled chain is reported
    """
    n_iterations: int = 510000
    n_burn_in: int = 10000
    thinning: int = 50
    n_initial_grid: int = 10000
    n_warm_up: Optional[int] = None
    adaptation_interval: int = 100
    target_acceptance: float = 0.35
    acceptance_tolerance: float = 0.05
    coef_var: float = 0.01
    balance_variance: bool = False
    max_consecutive_rejections: int = field(default=100000)

    def __post_init__(self):
        if self.n_warm_up is None:
            object.__setattr__(self, 'n_warm_up', self.n_burn_in)
        self.validate()

    def validate(self):
        """Raise InvalidConfigurationError naming the first violated constraint"""
        for name in ('n_iterations', 'n_burn_in', 'thinning', 'n_initial_grid', 'n_warm_up',
                     'adaptation_interval', 'max_consecutive_rejections'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidConfigurationError(f"{name} must be an integer, got {value!r}")
        if self.n_iterations < 1:
            raise InvalidConfigurationError(f"n_iterations must be at least 1, got {self.n_iterations}")
        if self.n_burn_in < 0:
            raise InvalidConfigurationError(f"n_burn_in must be non-negative, got {self.n_burn_in}")
        if self.n_burn_in >= self.n_iterations:
            raise InvalidConfigurationError(f"n_burn_in ({self.n_burn_in}) must be smaller than n_iterations "
                                            f"({self.n_iterations})")
        if self.thinning < 1:
            raise InvalidConfigurationError(f"thinning must be at least 1, got {self.thinning}")
        if self.n_initial_grid < 0:
            raise InvalidConfigurationError(f"n_initial_grid must be non-negative, got {self.n_initial_grid}")
        if not 0 <= self.n_warm_up <= self.n_burn_in:
            raise InvalidConfigurationError(f"n_warm_up ({self.n_warm_up}) must lie between 0 and n_burn_in "
                                            f"({self.n_burn_in}) so that the retained samples come from a frozen "
                                            f"proposal")
        if self.adaptation_interval < 1:
            raise InvalidConfigurationError(f"adaptation_interval must be at least 1, got {self.adaptation_interval}")
        if not 0.0 < self.target_acceptance < 1.0:
            raise InvalidConfigurationError(f"target_acceptance must lie in (0, 1), got {self.target_acceptance}")
        if not 0.0 <= self.acceptance_tolerance < min(self.target_acceptance, 1.0 - self.target_acceptance):
            raise InvalidConfigurationError(f"acceptance_tolerance {self.acceptance_tolerance} is incompatible with "
                                            f"target_acceptance {self.target_acceptance}")
        if not self.coef_var > 0.0:
            raise InvalidConfigurationError(f"coef_var must be positive, got {self.coef_var}")
        if self.max_consecutive_rejections < 1:
            raise InvalidConfigurationError(f"max_consecutive_rejections must be at least 1, got "
                                            f"{self.max_consecutive_rejections}")

    @property
    def n_retained(self) -> int:
        """Number of samples in the final selection"""
        return len(range(self.n_burn_in, self.n_iterations, self.thinning))

    @classmethod
    def from_dict(cls, settings: Mapping[str, Any]) -> 'MetropolisHastingsParameters':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise InvalidConfigurationError(f"Unknown simulation parameters: {unknown}")
        return cls(**settings)

    def copy(self, **changes) -> 'MetropolisHastingsParameters':
        # a warm-up tied to the burn-in follows it
        if 'n_burn_in' in changes and 'n_warm_up' not in changes and self.n_warm_up == self.n_burn_in:
            changes['n_warm_up'] = None
        return replace(self, **changes)
