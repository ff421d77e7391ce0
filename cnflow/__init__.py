"""cnflow: continuous normalizing flow layers for PyTorch.

===================================================================================
ARCHITECTURE
===================================================================================

    cnflow/
    ├── interfaces/   Config dataclasses and the error taxonomy
    ├── networks/     CNF layers, trace strategies, MLP dynamics
    └── utils/        Config loading, logging, flat parameters, batched linalg

Pipeline of one forward call:

    dynamics → AugmentedDynamics → torchdiffeq solve → final state → log p(x)
===================================================================================
"""

from .interfaces import (
    CNFError,
    DimensionInferenceError,
    FlowConfig,
    NonFiniteLogDensityError,
    ShapeMismatchError,
    SolverConfig,
    SolverDivergenceError,
)
from .networks import (
    ContinuousNormalizingFlow,
    DeterministicCNF,
    ExactTraceCNF,
    FFJORD,
    MLP,
    StochasticTraceCNF,
)

__version__ = "0.1.0"

__all__ = [
    "CNFError",
    "DimensionInferenceError",
    "FlowConfig",
    "NonFiniteLogDensityError",
    "ShapeMismatchError",
    "SolverConfig",
    "SolverDivergenceError",
    "ContinuousNormalizingFlow",
    "DeterministicCNF",
    "ExactTraceCNF",
    "FFJORD",
    "MLP",
    "StochasticTraceCNF",
]
