"""
Exceptions raised by the tfdyn optimisation engine.
"""


class TFDynError(Exception):
    """Base class for all tfdyn errors."""


class MissingParameterKey(TFDynError, KeyError):
    """A parameter name required by the model is absent from a vector or from the bounds."""

    def __str__(self):
        # KeyError quotes its message; keep it readable in logs.
        return Exception.__str__(self)


class DegenerateSeriesError(TFDynError, ValueError):
    """A TF-TG pair carries fewer than two pseudotime samples (or ragged channels)."""


class BoundsInfeasible(TFDynError, ValueError):
    """Some lower bound exceeds its upper bound."""


class WorkerFailure(TFDynError, RuntimeError):
    """
    One or more finite-difference tasks failed inside the gradient estimator.

    Attributes:
        failures (list[tuple[str, str]]): (parameter name, repr of the exception) per failed task.
    """

    def __init__(self, message, failures=None):
        super().__init__(message)
        self.failures = list(failures or [])

    def __reduce__(self):
        return self.__class__, (self.args[0], self.failures)
