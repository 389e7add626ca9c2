"""
------------------------------------------------------------------------------------------------------------------------
mhmcmc - Metropolis-Hastings estimation
------------------------------------------------------------------------------------------------------------------------
Exceptions raised by the estimation engine.

Numerical degeneracies (a zero likelihood, a non-finite log-posterior) are not exceptions: they are absorbed by the
accept/reject decision. Everything below signals a configuration or usage error and aborts the call.
------------------------------------------------------------------------------------------------------------------------
"""


class MetropolisHastingsError(Exception):
    """Base class for all errors raised by mhmcmc"""


class UnregisteredParameterError(MetropolisHastingsError, KeyError):
    """A parameter index has no prior distribution registered"""

    def __init__(self, index, message: str = None):
        self.index = index
        if message is None:
            message = f"No prior distribution is registered for parameter index {index}"
        super().__init__(message)

    def __str__(self):
        # KeyError would otherwise quote the message
        return self.args[0]


class InvalidConfigurationError(MetropolisHastingsError, ValueError):
    """The simulation parameters, the priors or the call sequence are invalid"""


class NotFinalizedError(MetropolisHastingsError, RuntimeError):
    """A finalized-only output was requested before the final sample selection was released"""
