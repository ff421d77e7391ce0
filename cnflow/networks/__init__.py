"""Continuous normalizing flow layers.

===================================================================================
OVERVIEW
===================================================================================
A CNF transforms data x into a base variable z through the flow of an ODE
dz/dt = f(z, θ) and tracks the density with the instantaneous change of
variables formula d(log p)/dt = -tr(∂f/∂z). The layers here solve the
augmented system [z; Δlogp; (λ₁; λ₂)] with torchdiffeq and return

    log p(x) = log p_base(z(t1)) - Δlogp

===================================================================================
SUBMODULE STRUCTURE
===================================================================================

cnf.py:
    AugmentedDynamics - Right-hand side of the augmented ODE
    ContinuousNormalizingFlow - Generic layer parameterized by a TraceStrategy
    FFJORD / StochasticTraceCNF - Hutchinson trace by default
    ExactTraceCNF - Exact Jacobian trace
    DeterministicCNF - Deprecated exact-trace layer returning only log p(x)

trace.py:
    pullback(f, z) → (output, vjp operator)
    jacobian(f, z) → (output, (d, d) or (d, d, batch) Jacobian)
    ExactTrace / HutchinsonTrace - TraceStrategy implementations
    sample_probe(like, noise) - Gaussian or Rademacher probe

mlp.py:
    MLP - Smooth-activation backbone for the dynamics

===================================================================================
KEY ALGORITHMS
===================================================================================

Exact trace:
    - d reverse passes with one-hot cotangents assemble the Jacobian
    - trace = diagonal sum per batch column

Hutchinson trace:
    - tr(J) ≈ eᵀ J e, E[e eᵀ] = I, one reverse pass per evaluation
    - one probe per forward call, reused by every solver step

Regularization (optional):
    - λ₁ = ∫ ‖f‖² dt, λ₂ = ∫ ‖Jᵀe‖ dt

===================================================================================
CONSTRAINTS & ASSUMPTIONS
===================================================================================

1. Data is column-major (d, batch); dynamics modules are batch-first
2. Dynamics must not mix batch elements (no batch norm)
3. Time is not an input of the dynamics (autonomous flow)
4. Parameters are read-only during a forward call
===================================================================================
"""

from __future__ import annotations

from .cnf import (
    AugmentedDynamics,
    ContinuousNormalizingFlow,
    DeterministicCNF,
    ExactTraceCNF,
    FFJORD,
    StochasticTraceCNF,
    evaluate_dynamics,
    infer_input_dim,
)
from .mlp import MLP
from .trace import (
    ExactTrace,
    HutchinsonTrace,
    TraceStrategy,
    jacobian,
    pullback,
    resolve_trace_strategy,
    sample_probe,
)

__all__ = [
    "AugmentedDynamics",
    "ContinuousNormalizingFlow",
    "DeterministicCNF",
    "ExactTraceCNF",
    "FFJORD",
    "StochasticTraceCNF",
    "evaluate_dynamics",
    "infer_input_dim",
    "MLP",
    "ExactTrace",
    "HutchinsonTrace",
    "TraceStrategy",
    "jacobian",
    "pullback",
    "resolve_trace_strategy",
    "sample_probe",
]
