"""Batched linear-algebra helpers for column-major ``(d, batch)`` tensors."""

from __future__ import annotations

import torch


def batched_norm(x: torch.Tensor) -> torch.Tensor:
    """Euclidean norm of every column of ``x``, returned as a ``(1, batch)`` row."""

    return torch.sqrt(torch.sum(x ** 2, dim=0, keepdim=True))


def trace(jac: torch.Tensor) -> torch.Tensor:
    """Trace of a single ``(d, d)`` Jacobian.

    A one-dimensional Jacobian has a single entry, so the trace is its sum.
    """

    if jac.dim() != 2 or jac.size(0) != jac.size(1):
        raise ValueError(f"Expected a square matrix, received shape {tuple(jac.shape)}")
    if jac.size(0) == 1:
        return jac.sum()
    return torch.diagonal(jac).sum()


def batched_trace(jac: torch.Tensor) -> torch.Tensor:
    """Per-column trace of a ``(d, d, batch)`` Jacobian stack.

    Args:
        jac: Tensor where ``jac[i, j, b]`` holds ``∂v_i/∂z_j`` for batch column ``b``.

    Returns:
        Tensor of shape ``(1, batch)``.
    """

    if jac.dim() != 3 or jac.size(0) != jac.size(1):
        raise ValueError(f"Expected a (d, d, batch) tensor, received shape {tuple(jac.shape)}")
    # diagonal over the two leading dims yields (batch, d)
    return torch.diagonal(jac, dim1=0, dim2=1).sum(dim=-1).reshape(1, jac.size(2))
