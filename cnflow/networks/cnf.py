"""Continuous normalizing flow layers with exact or Hutchinson Jacobian traces."""

from __future__ import annotations

import math
import warnings
from typing import Optional, Sequence, Tuple

import torch
import torch.nn as nn
from torch.distributions import Distribution, MultivariateNormal
from torch.func import functional_call
from torchdiffeq import odeint, odeint_adjoint

from ..interfaces.config import SolverConfig
from ..interfaces.errors import (
    DimensionInferenceError,
    NonFiniteLogDensityError,
    ShapeMismatchError,
    SolverDivergenceError,
)
from ..utils.linalg import batched_norm
from ..utils.log import get_logger
from ..utils.parameters import load_flat_parameters, unflatten_parameters
from .trace import NOISE_TYPES, TraceStrategy, resolve_trace_strategy, sample_probe

logger = get_logger(__name__)


def evaluate_dynamics(
    dynamics: nn.Module, z: torch.Tensor, params: Optional[torch.Tensor] = None
) -> torch.Tensor:
    """Apply a batch-first dynamics module to a column-major state.

    ``z`` is either a vector ``(d,)`` or a batch ``(d, batch)``; the module sees
    ``(d,)`` or ``(batch, d)``. When ``params`` is given, the module is evaluated
    functionally with that flat parameter vector instead of its own weights.
    """
    inp = z.transpose(0, 1) if z.dim() == 2 else z
    if params is None:
        out = dynamics(inp)
    else:
        out = functional_call(dynamics, unflatten_parameters(dynamics, params), (inp,))
    return out.transpose(0, 1) if z.dim() == 2 else out


def _distribution_reference(distribution: Distribution) -> Tuple[torch.dtype, torch.device]:
    """Dtype and device a user distribution evaluates in.

    Read from its first tensor attribute, or from a single draw when it holds none
    directly (e.g. a ``TransformedDistribution``).
    """
    for value in vars(distribution).values():
        if isinstance(value, torch.Tensor) and value.is_floating_point():
            return value.dtype, value.device
    with torch.no_grad():
        draw = distribution.sample()
    return draw.dtype, draw.device


def infer_input_dim(dynamics: nn.Module) -> int:
    """Return the ``in_features`` of the first layer that declares one.

    Raises:
        DimensionInferenceError: No submodule exposes ``in_features``.
    """
    for module in dynamics.modules():
        in_features = getattr(module, "in_features", None)
        if isinstance(in_features, int) and in_features > 0:
            return in_features
    raise DimensionInferenceError(
        f"Cannot infer the input dimensionality of {type(dynamics).__name__}; "
        "pass base_distribution explicitly"
    )


class AugmentedDynamics(nn.Module):
    """
    Right-hand side of the augmented CNF system ``u = [z; Δlogp; (λ₁; λ₂)]``.

    Computes::

        dz/dt    = f(z, θ)
        dΔlogp/dt = -tr(∂f/∂z)
        dλ₁/dt   = Σ_i f_i(z, θ)²        (regularized only)
        dλ₂/dt   = ‖Jᵀe‖                 (regularized only)

    The accumulator rows of ``u`` are read by nobody: their derivative does not
    depend on their own value. ``t`` is ignored since the dynamics are autonomous.

    **Memory Ownership**:
    - Owns: nothing beyond a reference to the dynamics module
    - Borrowed: probe and flat parameters, fixed for one integration and dropped
      with this object at the end of the forward call

    **Attributes**:
        dynamics (nn.Module): Batch-first velocity network
        strategy (TraceStrategy): Exact or Hutchinson trace capability
        data_dim (int): Number of data rows d
        regularize (bool): Whether λ₁, λ₂ rows are present
        n_accumulators (int): K = 3 if regularized else 1
        nfe (int): Number of right-hand-side evaluations so far

    **Error Behavior**:
    - Raises ShapeMismatchError if ``u`` does not have ``d + K`` rows or if the
      dynamics changes the state shape
    """

    def __init__(
        self,
        dynamics: nn.Module,
        strategy: TraceStrategy,
        *,
        data_dim: int,
        regularize: bool = False,
        probe: Optional[torch.Tensor] = None,
        params: Optional[torch.Tensor] = None,
    ) -> None:
        super().__init__()
        if regularize and probe is None:
            raise ValueError("Regularized dynamics need a probe for the Jacobian-vector-product norm")
        self.dynamics = dynamics
        self.strategy = strategy
        self.data_dim = data_dim
        self.regularize = regularize
        self.n_accumulators = 3 if regularize else 1
        self._probe = probe
        self._params = params
        self.nfe = 0

    def velocity(self, z: torch.Tensor) -> torch.Tensor:
        return evaluate_dynamics(self.dynamics, z, self._params)

    def forward(self, t: torch.Tensor, u: torch.Tensor) -> torch.Tensor:
        k = self.n_accumulators
        if u.dim() != 2 or u.size(0) != self.data_dim + k:
            raise ShapeMismatchError(
                f"Augmented state has shape {tuple(u.shape)}; expected {self.data_dim} data rows "
                f"plus {k} accumulator row(s)"
            )
        z = u[:-k]
        velocity, tr, jt_probe = self.strategy(self.velocity, z, self._probe)
        self.nfe += 1
        if not self.regularize:
            return torch.cat([velocity, -tr], dim=0)
        kinetic = torch.sum(velocity ** 2, dim=0, keepdim=True)
        return torch.cat([velocity, -tr, kinetic, batched_norm(jt_probe)], dim=0)


class ContinuousNormalizingFlow(nn.Module):
    """
    Continuous normalizing flow layer computing ``log p(x)`` through an ODE solve.

    Integrates the augmented system of :class:`AugmentedDynamics` from ``t0`` to
    ``t1`` starting at ``u0 = [x; 0]`` and applies the instantaneous change of
    variables formula::

        log p(x) = log p_base(z(t1)) - Δlogp,    Δlogp = -∫ tr(∂f/∂z) dt

    Data is column-major: a batch is a ``(d, batch)`` tensor, one sample per column.

    **Attributes**:
        dynamics (nn.Module): Batch-first velocity network; its parameters are the
            layer's trainable weights
        tspan (tuple[float, float]): Integration bounds ``(t0, t1)``
        trace_strategy (TraceStrategy): Default trace capability
        base_distribution (Distribution): Density of ``z(t1)``
        solver (SolverConfig): torchdiffeq settings
        regularize (bool): Default for accumulating λ₁, λ₂
        noise (str): Probe distribution used when no probe is supplied
        check_finite (bool): Raise NonFiniteLogDensityError on NaN/Inf outputs

    **Error Behavior**:
    - DimensionInferenceError at construction when no base distribution is given
      and the dynamics has no ``in_features``
    - ShapeMismatchError before the solve when shapes disagree
    - SolverDivergenceError when the solve ends with non-finite values
    - torchdiffeq exceptions (e.g. ``underflow in dt``) propagate unchanged

    **Usage Example**::

        dynamics = nn.Sequential(nn.Linear(2, 32), nn.Tanh(), nn.Linear(32, 2))
        flow = FFJORD(dynamics, (0.0, 1.0))
        x = torch.randn(2, 128)                 # (d, batch)
        logpx, lam1, lam2 = flow(x, regularize=True)
        loss = (-logpx + 0.1 * lam1 + lam2).mean()
        loss.backward()
    """

    def __init__(
        self,
        dynamics: nn.Module,
        tspan: Sequence[float] = (0.0, 1.0),
        *,
        trace_method: str | TraceStrategy = "hutchinson",
        base_distribution: Optional[Distribution] = None,
        solver: Optional[SolverConfig] = None,
        params: Optional[torch.Tensor] = None,
        regularize: bool = False,
        noise: str = "gaussian",
        check_finite: bool = True,
    ) -> None:
        super().__init__()
        if len(tspan) != 2:
            raise ValueError(f"tspan must hold exactly two time points, received {tspan!r}")
        t0, t1 = float(tspan[0]), float(tspan[1])
        if not (math.isfinite(t0) and math.isfinite(t1)):
            raise ValueError(f"tspan must be finite, received {tspan!r}")
        if noise not in NOISE_TYPES:
            raise ValueError(f"Unknown probe noise '{noise}'. Choose one of: {', '.join(NOISE_TYPES)}")
        self.dynamics = dynamics
        if params is not None:
            load_flat_parameters(dynamics, params)
        self.tspan = (t0, t1)
        self.trace_strategy = resolve_trace_strategy(trace_method)
        self.solver = solver or SolverConfig()
        self.regularize = regularize
        self.noise = noise
        self.check_finite = check_finite
        self._user_base: Optional[Distribution] = base_distribution
        if base_distribution is None:
            # Standard normal kept as buffers so it follows .to() with the layer.
            dim = infer_input_dim(dynamics)
            self.register_buffer("base_loc", torch.zeros(dim))
            self.register_buffer("base_scale_tril", torch.eye(dim))
            self._base_reference = None
        else:
            self._base_reference = _distribution_reference(base_distribution)

    @property
    def base_distribution(self) -> Distribution:
        """Density of ``z(t1)``; the default is an identity-covariance normal."""
        if self._user_base is not None:
            return self._user_base
        return self._default_base(self.base_loc.dtype, self.base_loc.device)

    def _default_base(self, dtype: torch.dtype, device: torch.device) -> MultivariateNormal:
        return MultivariateNormal(
            self.base_loc.to(dtype=dtype, device=device),
            scale_tril=self.base_scale_tril.to(dtype=dtype, device=device),
            validate_args=False,
        )

    def extra_repr(self) -> str:
        return (
            f"tspan={self.tspan}, trace={self.trace_strategy.name}, regularize={self.regularize}, "
            f"method={self.solver.method}, adjoint={self.solver.adjoint}"
        )

    def _check_inputs(self, x: torch.Tensor, params: Optional[torch.Tensor]) -> None:
        if x.dim() != 2:
            raise ShapeMismatchError(f"Expected data of shape (d,) or (d, batch), received {tuple(x.shape)}")
        event_shape = self.base_distribution.event_shape
        if len(event_shape) == 1 and event_shape[0] != x.size(0):
            raise ShapeMismatchError(
                f"Data has {x.size(0)} rows but the base distribution is {event_shape[0]}-dimensional"
            )
        with torch.no_grad():
            v = evaluate_dynamics(self.dynamics, x, params)
        if v.shape != x.shape:
            raise ShapeMismatchError(
                f"Dynamics maps shape {tuple(x.shape)} to {tuple(v.shape)}; CNF dynamics must preserve shape"
            )

    def _resolve_probe(
        self, x: torch.Tensor, probe: Optional[torch.Tensor], squeeze: bool
    ) -> torch.Tensor:
        if probe is None:
            return sample_probe(x, self.noise)
        if squeeze and probe.dim() == 1:
            probe = probe.unsqueeze(1)
        if probe.shape != x.shape:
            raise ShapeMismatchError(
                f"Probe shape {tuple(probe.shape)} does not match data shape {tuple(x.shape)}"
            )
        return probe.detach().to(dtype=x.dtype, device=x.device)

    def _solve(self, func: AugmentedDynamics, u0: torch.Tensor, params: Optional[torch.Tensor]) -> torch.Tensor:
        t = torch.tensor(self.tspan, dtype=u0.dtype, device=u0.device)
        if self.solver.adjoint:
            kwargs = self.solver.solve_kwargs()
            if params is not None:
                kwargs["adjoint_params"] = (params,)
            traj = odeint_adjoint(func, u0, t, **kwargs)
        else:
            traj = odeint(func, u0, t, **self.solver.solve_kwargs())
        return traj[-1]

    def _integrate(
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor],
        probe: Optional[torch.Tensor],
        regularize: bool,
        strategy: TraceStrategy,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Build the augmented state, solve it, and split the final state.

        **Parameters**:
            x (Tensor): Data, shape (d, batch)
            params (Tensor | None): Optional flat parameter vector for the dynamics
            probe (Tensor | None): Hutchinson probe, shape (d, batch); only used when the
                strategy or regularization needs one
            regularize (bool): Accumulate λ₁, λ₂
            strategy (TraceStrategy): Trace capability for this call

        **Returns**:
            Tuple[Tensor, Tensor, Tensor, Tensor]: ``(z, delta_logp, lam1, lam2)`` with
            shapes (d, batch), (1, batch), (batch,), (batch,)
        """
        d, batch = x.shape
        k = 3 if regularize else 1
        with torch.no_grad():
            accumulators = torch.zeros(k, batch, dtype=x.dtype, device=x.device)
        u0 = torch.cat([x, accumulators], dim=0)

        t0, t1 = self.tspan
        if t0 == t1:
            # Degenerate span: the flow is the identity and nothing accumulates.
            u_final = u0
        else:
            func = AugmentedDynamics(
                self.dynamics,
                strategy,
                data_dim=d,
                regularize=regularize,
                probe=probe,
                params=params,
            )
            logger.debug(
                "Solving augmented CNF system: d=%d batch=%d K=%d trace=%s method=%s adjoint=%s",
                d,
                batch,
                k,
                strategy.name,
                self.solver.method,
                self.solver.adjoint,
            )
            u_final = self._solve(func, u0, params)
            logger.debug("Augmented solve finished after %d function evaluations", func.nfe)
            if not torch.isfinite(u_final).all():
                logger.error("ODE solve over %s produced non-finite state values", self.tspan)
                raise SolverDivergenceError(
                    f"ODE solve over tspan={self.tspan} with method '{self.solver.method}' "
                    "produced non-finite values in the augmented state"
                )

        z = u_final[:d]
        delta_logp = u_final[d:d + 1]
        if regularize:
            lam1 = u_final[d + 1]
            lam2 = u_final[d + 2]
        else:
            with torch.no_grad():
                lam1 = torch.zeros(batch, dtype=x.dtype, device=x.device)
                lam2 = torch.zeros(batch, dtype=x.dtype, device=x.device)
        return z, delta_logp, lam1, lam2

    def base_log_prob(self, z: torch.Tensor) -> torch.Tensor:
        """Base log-density of every column of ``z`` as a ``(1, batch)`` row.

        The default normal is evaluated in the dtype and device of ``z``. A user
        distribution is evaluated in its own dtype and device and the result is
        returned in those of ``z``. Distributions with scalar events are treated
        as i.i.d. per coordinate.
        """
        batch = z.size(1)
        value = z.transpose(0, 1)
        if self._user_base is None:
            distribution = self._default_base(value.dtype, value.device)
        else:
            distribution = self._user_base
            dtype, device = self._base_reference
            value = value.to(dtype=dtype, device=device)
        logpz = distribution.log_prob(value)
        return logpz.reshape(batch, -1).sum(dim=1).reshape(1, batch).to(dtype=z.dtype, device=z.device)

    def forward(
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor] = None,
        probe: Optional[torch.Tensor] = None,
        *,
        regularize: Optional[bool] = None,
        trace_method: Optional[str | TraceStrategy] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Compute the model log-density of ``x`` and the regularization terms.

        **Parameters**:
            x (Tensor): Data of shape (d, batch), or a single sample of shape (d,)
            params (Tensor | None): Flat parameter vector evaluated in place of the
                dynamics' own weights (gradients flow to it)
            probe (Tensor | None): Fixed probe shaped like ``x``. Drawn from ``noise``
                when omitted and needed. Ignored by the exact strategy unless regularizing.
            regularize (bool | None): Override the layer default
            trace_method (str | TraceStrategy | None): Override the layer's strategy

        **Returns**:
            Tuple[Tensor, Tensor, Tensor]: ``(logpx, lam1, lam2)`` of shapes (1, batch),
            (batch,), (batch,); scalars for a vector input. ``lam1``/``lam2`` are zeros
            when not regularizing.

        **Error Behavior**:
            - ShapeMismatchError, SolverDivergenceError, NonFiniteLogDensityError
        """
        return self._log_density(x, params, probe, regularize, trace_method)

    def _log_density(
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor],
        probe: Optional[torch.Tensor],
        regularize: Optional[bool],
        trace_method: Optional[str | TraceStrategy],
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        squeeze = x.dim() == 1
        if squeeze:
            x = x.unsqueeze(1)
        self._check_inputs(x, params)
        regularize = self.regularize if regularize is None else regularize
        strategy = self.trace_strategy if trace_method is None else resolve_trace_strategy(trace_method)
        if strategy.requires_probe or regularize:
            probe = self._resolve_probe(x, probe, squeeze)
        else:
            probe = None

        z, delta_logp, lam1, lam2 = self._integrate(x, params, probe, regularize, strategy)
        if self.check_finite and not torch.isfinite(z).all():
            logger.error("Transformed state contains non-finite values")
            raise NonFiniteLogDensityError(
                "Cannot evaluate the base log-density: the transformed state contains NaN or infinite values"
            )
        logpx = self.base_log_prob(z) - delta_logp
        if self.check_finite and not torch.isfinite(logpx).all():
            logger.error("Log-density contains non-finite values")
            raise NonFiniteLogDensityError("Computed log-density contains NaN or infinite values")
        if squeeze:
            return logpx.reshape(()), lam1.reshape(()), lam2.reshape(())
        return logpx, lam1, lam2

    def log_prob(
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor] = None,
        probe: Optional[torch.Tensor] = None,
        *,
        trace_method: Optional[str | TraceStrategy] = None,
    ) -> torch.Tensor:
        """Log-density only, without regularization terms."""
        return self._log_density(x, params, probe, False, trace_method)[0]

    def flow(
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor] = None,
        probe: Optional[torch.Tensor] = None,
        *,
        trace_method: Optional[str | TraceStrategy] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Transform data through the flow and return ``(z(t1), Δlogp)``.

        Shapes are (d, batch) and (1, batch), or (d,) and a scalar for a vector input.
        Running a second layer over the reversed span ``(t1, t0)`` from ``z(t1)``
        recovers ``x`` and a ``Δlogp`` of opposite sign.
        """
        squeeze = x.dim() == 1
        if squeeze:
            x = x.unsqueeze(1)
        self._check_inputs(x, params)
        strategy = self.trace_strategy if trace_method is None else resolve_trace_strategy(trace_method)
        probe = self._resolve_probe(x, probe, squeeze) if strategy.requires_probe else None
        z, delta_logp, _, _ = self._integrate(x, params, probe, False, strategy)
        if squeeze:
            return z.squeeze(1), delta_logp.reshape(())
        return z, delta_logp

    @torch.no_grad()
    def sample(self, n: int, params: Optional[torch.Tensor] = None) -> torch.Tensor:
        """
        Draw ``n`` samples from the model, returned column-major as (d, n).

        Samples ``z ~ p_base`` and integrates the plain dynamics backward over
        ``(t1, t0)``; no trace is needed for generation.
        """
        z = self.base_distribution.sample((n,)).reshape(n, -1).transpose(0, 1).contiguous()
        reference = next(self.dynamics.parameters(), None)
        if reference is not None:
            z = z.to(dtype=reference.dtype, device=reference.device)
        t0, t1 = self.tspan
        if t0 == t1:
            return z
        if params is not None:
            params = params.to(dtype=z.dtype, device=z.device)
        t = torch.tensor((t1, t0), dtype=z.dtype, device=z.device)
        traj = odeint(
            lambda _t, state: evaluate_dynamics(self.dynamics, state, params),
            z,
            t,
            **self.solver.solve_kwargs(include_adjoint=False),
        )
        return traj[-1]


class FFJORD(ContinuousNormalizingFlow):
    """
    Scalable CNF using the Hutchinson trace estimator (Grathwohl et al., 2018).

    Pass ``trace_method="exact"`` (or per call) for the exact Jacobian trace.
    """

    def __init__(
        self,
        dynamics: nn.Module,
        tspan: Sequence[float] = (0.0, 1.0),
        *,
        trace_method: str | TraceStrategy = "hutchinson",
        **kwargs,
    ) -> None:
        super().__init__(dynamics, tspan, trace_method=trace_method, **kwargs)


StochasticTraceCNF = FFJORD


class ExactTraceCNF(ContinuousNormalizingFlow):
    """CNF computing the exact Jacobian trace with d reverse passes per evaluation."""

    def __init__(self, dynamics: nn.Module, tspan: Sequence[float] = (0.0, 1.0), **kwargs) -> None:
        super().__init__(dynamics, tspan, trace_method="exact", **kwargs)


class DeterministicCNF(ExactTraceCNF):
    """Deprecated exact-trace layer returning only the log-density.

    Use ``FFJORD(dynamics, tspan, trace_method="exact")`` instead.
    """

    def __init__(self, dynamics: nn.Module, tspan: Sequence[float] = (0.0, 1.0), **kwargs) -> None:
        message = (
            "DeterministicCNF is deprecated in favor of FFJORD. "
            "Use FFJORD with trace_method='exact' instead."
        )
        warnings.warn(message, DeprecationWarning, stacklevel=2)
        logger.warning(message)
        super().__init__(dynamics, tspan, **kwargs)

    def forward(  # type: ignore[override]
        self,
        x: torch.Tensor,
        params: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        return self._log_density(x, params, None, False, None)[0]
