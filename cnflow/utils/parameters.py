"""Flat parameter-vector helpers for dynamics modules."""

from __future__ import annotations

import torch
import torch.nn as nn
from torch.nn.utils import parameters_to_vector, vector_to_parameters

from ..interfaces.errors import ShapeMismatchError


def count_parameters(module: nn.Module) -> int:
    """Return the number of scalar trainable weights held by ``module``."""

    return sum(p.numel() for p in module.parameters())


def flatten_parameters(module: nn.Module) -> torch.Tensor:
    """Concatenate every parameter of ``module`` into a detached 1-D tensor.

    Entries follow ``module.named_parameters()`` order, which is the layout
    :func:`unflatten_parameters` expects.
    """

    return parameters_to_vector(module.parameters()).detach().clone()


def _check_length(module: nn.Module, flat: torch.Tensor) -> None:
    expected = count_parameters(module)
    if flat.dim() != 1 or flat.numel() != expected:
        raise ShapeMismatchError(
            f"Flat parameter vector has shape {tuple(flat.shape)}; "
            f"the dynamics holds {expected} parameters"
        )


def unflatten_parameters(module: nn.Module, flat: torch.Tensor) -> dict[str, torch.Tensor]:
    """Split ``flat`` into views shaped like the parameters of ``module``.

    The views stay attached to ``flat`` in the autograd graph, so a
    :func:`torch.func.functional_call` with the returned mapping propagates
    gradients back to the flat vector.
    """

    _check_length(module, flat)
    params: dict[str, torch.Tensor] = {}
    offset = 0
    for name, param in module.named_parameters():
        n = param.numel()
        params[name] = flat[offset:offset + n].view_as(param)
        offset += n
    return params


def load_flat_parameters(module: nn.Module, flat: torch.Tensor) -> None:
    """Copy the values of ``flat`` into the parameters of ``module`` in place."""

    _check_length(module, flat)
    reference = next(module.parameters(), None)
    if reference is None:
        return
    with torch.no_grad():
        vector_to_parameters(flat.detach().to(reference), module.parameters())
