"""Shared interfaces for the CNF layers.

===================================================================================
SUBMODULE STRUCTURE
===================================================================================

config.py:
    SolverConfig - Frozen dataclass with torchdiffeq settings
      - method, rtol, atol, options
      - adjoint (bool) plus adjoint_* overrides for the backward solve
      - solve_kwargs() -> keyword arguments for odeint / odeint_adjoint
    FlowConfig - Frozen dataclass describing a layer and its dynamics
      - dim, hidden_dim, depth, activation, dropout
      - t0, t1 (time span), trace_method, noise, regularize, check_finite
      - solver: SolverConfig

errors.py:
    CNFError - Root of the taxonomy
    ShapeMismatchError - Dynamics/augmented-state/parameter/probe shape errors
    SolverDivergenceError - Non-finite state after the solve
    DimensionInferenceError - Base distribution cannot be built at construction
    NonFiniteLogDensityError - NaN/Inf in the combined log-density

===================================================================================
DESIGN PRINCIPLES
===================================================================================

1. Immutability: config dataclasses are frozen
2. Errors double as builtin types (ValueError, RuntimeError, ArithmeticError)
   so callers catching the builtin still see them
3. Solver failures raised by torchdiffeq are never wrapped
===================================================================================
"""

from .config import FlowConfig, SolverConfig
from .errors import (
    CNFError,
    DimensionInferenceError,
    NonFiniteLogDensityError,
    ShapeMismatchError,
    SolverDivergenceError,
)

__all__ = [
    "FlowConfig",
    "SolverConfig",
    "CNFError",
    "DimensionInferenceError",
    "NonFiniteLogDensityError",
    "ShapeMismatchError",
    "SolverDivergenceError",
]
