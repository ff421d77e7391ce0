"""Jacobian-trace strategies used by the augmented CNF dynamics."""

from __future__ import annotations

from typing import Callable, NamedTuple, Optional, Tuple

import torch

from ..interfaces.errors import ShapeMismatchError
from ..utils.linalg import batched_trace, trace

VectorFn = Callable[[torch.Tensor], torch.Tensor]
VJP = Callable[[torch.Tensor], torch.Tensor]

NOISE_TYPES = ("gaussian", "rademacher")


def pullback(f: VectorFn, z: torch.Tensor) -> Tuple[torch.Tensor, VJP]:
    """
    Evaluate ``f`` at ``z`` and return the output with its vector-Jacobian operator.

    **Parameters**:
        f (Callable): Differentiable map whose output has the same shape as ``z``.
        z (Tensor): Evaluation point. Detached and marked ``requires_grad`` when it is
            not already part of a graph (the solver may hand over plain tensors).

    **Returns**:
        Tuple[Tensor, Callable]: ``(y, vjp)`` where ``vjp(u)`` returns ``uᵀ ∂f/∂z``
        shaped like ``z``. The product is built with ``create_graph=True`` so it stays
        differentiable w.r.t. the parameters of ``f``; ``vjp`` may be called repeatedly.

    **Error Behavior**:
        - Outputs disconnected from ``z`` yield a zero product instead of raising.
    """
    with torch.enable_grad():
        if not z.requires_grad:
            z = z.detach().requires_grad_(True)
        y = f(z)

    def vjp(cotangent: torch.Tensor) -> torch.Tensor:
        if not y.requires_grad:
            return torch.zeros_like(z)
        with torch.enable_grad():
            grad = torch.autograd.grad(
                y, z, grad_outputs=cotangent, create_graph=True, retain_graph=True, allow_unused=True
            )[0]
        if grad is None:
            return torch.zeros_like(z)
        return grad

    return y, vjp


def jacobian(f: VectorFn, z: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Materialize the Jacobian of ``f`` with one reverse pass per output row.

    **Parameters**:
        f (Callable): Map preserving the shape of its input. Batch columns must not
            interact (row ``i`` of the cotangent only probes column-local derivatives).
        z (Tensor): Either a vector ``(d,)`` or a column-major batch ``(d, batch)``.

    **Returns**:
        Tuple[Tensor, Tensor]: ``(y, jac)`` with ``jac`` of shape ``(d, d)`` for a
        vector and ``(d, d, batch)`` for a batch, ``jac[i, j, b] = ∂y_i/∂z_j`` at column b.

    **Time Complexity**: d reverse passes through ``f``.

    **Error Behavior**:
        - Raises ShapeMismatchError if ``f`` changes the shape of ``z``.
    """
    y, vjp = pullback(f, z)
    if y.shape != z.shape:
        raise ShapeMismatchError(
            f"Dynamics output shape {tuple(y.shape)} does not match input shape {tuple(z.shape)}"
        )
    rows = []
    for i in range(y.size(0)):
        # One-hot cotangents are constants; only the dynamics carries gradients.
        with torch.no_grad():
            basis = torch.zeros_like(y)
            basis[i] = 1.0
        rows.append(vjp(basis))
    return y, torch.stack(rows, dim=0)


def sample_probe(
    like: torch.Tensor,
    noise: str = "gaussian",
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """Draw a Hutchinson probe with the shape, dtype and device of ``like``.

    Args:
        like: Tensor whose shape the probe copies.
        noise: ``"gaussian"`` for standard-normal entries or ``"rademacher"`` for ±1.
        generator: Optional generator for reproducible draws.

    Returns:
        A tensor ``e`` with ``E[e eᵀ] = I`` that carries no gradient history.
    """

    if noise == "gaussian":
        return torch.randn(like.shape, generator=generator, dtype=like.dtype, device=like.device)
    if noise == "rademacher":
        bits = torch.randint(0, 2, like.shape, generator=generator, device=like.device)
        return bits.to(like.dtype) * 2 - 1
    raise ValueError(f"Unknown probe noise '{noise}'. Choose one of: {', '.join(NOISE_TYPES)}")


class TraceResult(NamedTuple):
    velocity: torch.Tensor
    trace: torch.Tensor
    jt_probe: Optional[torch.Tensor]


class TraceStrategy:
    """Capability computing ``v = f(z)`` together with ``tr(∂v/∂z)``.

    ``trace`` is a ``(1, batch)`` row for batched input and a ``(1,)`` tensor for
    a vector. ``jt_probe`` is ``Jᵀe`` when a probe is given, otherwise ``None``.
    """

    name = "base"
    requires_probe = False

    def __call__(self, f: VectorFn, z: torch.Tensor, probe: Optional[torch.Tensor] = None) -> TraceResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ExactTrace(TraceStrategy):
    """Exact trace from the materialized Jacobian; cost grows linearly with d."""

    name = "exact"

    def __call__(self, f: VectorFn, z: torch.Tensor, probe: Optional[torch.Tensor] = None) -> TraceResult:
        velocity, jac = jacobian(f, z)
        if jac.dim() == 3:
            tr = batched_trace(jac)
        else:
            tr = trace(jac).reshape(1)
        jt_probe = None
        if probe is not None:
            # Jᵀe from the Jacobian already in hand; no extra reverse pass.
            equation = "ib,ijb->jb" if jac.dim() == 3 else "i,ij->j"
            jt_probe = torch.einsum(equation, probe, jac)
        return TraceResult(velocity, tr, jt_probe)


class HutchinsonTrace(TraceStrategy):
    """
    Unbiased stochastic trace: ``tr(J) ≈ eᵀ J e`` with ``E[e eᵀ] = I``.

    One vector-Jacobian product per evaluation, independent of d. The same probe
    must be reused for every solver step of one integration; the estimate is only
    exact in expectation over fresh probes drawn across forward calls.
    """

    name = "hutchinson"
    requires_probe = True

    def __call__(self, f: VectorFn, z: torch.Tensor, probe: Optional[torch.Tensor] = None) -> TraceResult:
        if probe is None:
            raise ValueError("The Hutchinson estimator needs a probe tensor shaped like the state")
        velocity, vjp = pullback(f, z)
        if velocity.shape != z.shape:
            raise ShapeMismatchError(
                f"Dynamics output shape {tuple(velocity.shape)} does not match input shape {tuple(z.shape)}"
            )
        jt_probe = vjp(probe)
        tr = torch.sum(jt_probe * probe, dim=0, keepdim=True)
        return TraceResult(velocity, tr, jt_probe)


TRACE_STRATEGIES: dict[str, type[TraceStrategy]] = {
    ExactTrace.name: ExactTrace,
    HutchinsonTrace.name: HutchinsonTrace,
}


def resolve_trace_strategy(method: str | TraceStrategy) -> TraceStrategy:
    """Return a strategy instance for a name (``"exact"``/``"hutchinson"``) or pass one through."""

    if isinstance(method, TraceStrategy):
        return method
    try:
        return TRACE_STRATEGIES[method]()
    except KeyError:
        raise ValueError(
            f"Unknown trace method '{method}'. Choose one of: {', '.join(TRACE_STRATEGIES)}"
        ) from None
