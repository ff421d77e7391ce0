"""Exception taxonomy raised by the CNF layers."""

from __future__ import annotations


class CNFError(Exception):
    """Base class for every error raised by :mod:`cnflow`."""


class ShapeMismatchError(CNFError, ValueError):
    """A tensor reaching the layer does not have the shape the flow expects.

    Raised when the dynamics changes the shape of its input, when an augmented
    state does not carry ``d + K`` rows, when a flat parameter vector does not
    match the dynamics, or when a probe does not match the data.
    """


class SolverDivergenceError(CNFError, RuntimeError):
    """The ODE solve finished with non-finite values in the augmented state."""


class DimensionInferenceError(CNFError, ValueError):
    """No base distribution was given and the input size of the dynamics is unknown."""


class NonFiniteLogDensityError(CNFError, ArithmeticError):
    """The combined log-density contains NaN or infinite entries."""
