"""Configuration interfaces and data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class SolverConfig:
    """Settings forwarded to the torchdiffeq integrator.

    ``adjoint=True`` solves with :func:`torchdiffeq.odeint_adjoint`, which
    recomputes the trajectory backward in time during the gradient pass and
    keeps memory constant in the number of solver steps. ``adjoint=False``
    backpropagates through the solver's own operations.
    """

    method: str = "dopri5"
    rtol: float = 1e-5
    atol: float = 1e-5
    adjoint: bool = True
    options: Mapping[str, Any] | None = None
    adjoint_method: str | None = None
    adjoint_rtol: float | None = None
    adjoint_atol: float | None = None
    adjoint_options: Mapping[str, Any] | None = None

    def solve_kwargs(self, include_adjoint: bool = True) -> dict[str, Any]:
        """Keyword arguments for ``odeint`` (or ``odeint_adjoint`` when ``include_adjoint``)."""
        kwargs: dict[str, Any] = {
            "method": self.method,
            "rtol": self.rtol,
            "atol": self.atol,
        }
        if self.options:
            kwargs["options"] = dict(self.options)
        if not (self.adjoint and include_adjoint):
            return kwargs
        if self.adjoint_method is not None:
            kwargs["adjoint_method"] = self.adjoint_method
        if self.adjoint_rtol is not None:
            kwargs["adjoint_rtol"] = self.adjoint_rtol
        if self.adjoint_atol is not None:
            kwargs["adjoint_atol"] = self.adjoint_atol
        if self.adjoint_options:
            kwargs["adjoint_options"] = dict(self.adjoint_options)
        return kwargs

    def __getitem__(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)


@dataclass(frozen=True)
class FlowConfig:
    """Hyperparameter bundle describing a CNF layer and its dynamics network."""

    dim: int = 1
    hidden_dim: int = 32
    depth: int = 2
    activation: str = "tanh"
    dropout: float = 0.0
    t0: float = 0.0
    t1: float = 1.0
    trace_method: str = "hutchinson"
    noise: str = "gaussian"
    regularize: bool = False
    check_finite: bool = True
    solver: SolverConfig = field(default_factory=SolverConfig)

    @property
    def tspan(self) -> tuple[float, float]:
        return (self.t0, self.t1)

    def __getitem__(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)
