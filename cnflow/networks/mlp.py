"""Helper MLP used as the default CNF dynamics network."""

from __future__ import annotations

from typing import Sequence

import torch
import torch.nn as nn

_ACTIVATIONS: dict[str, type[nn.Module]] = {
    "tanh": nn.Tanh,
    "softplus": nn.Softplus,
    "elu": nn.ELU,
    "silu": nn.SiLU,
    "relu": nn.ReLU,
}


def activation_factory(name: str) -> type[nn.Module]:
    try:
        return _ACTIVATIONS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown activation '{name}'. Choose one of: {', '.join(sorted(_ACTIVATIONS))}"
        ) from None


class MLP(nn.Module):
    """Fully connected network mapping ``(batch, in_dim)`` to ``(batch, out_dim)``.

    Smooth activations (``tanh``, ``softplus``) are preferred for CNF dynamics:
    the trace computation differentiates the network twice during training.
    """

    def __init__(
        self,
        in_dim: int,
        out_dim: int,
        hidden_dim: int = 64,
        depth: int = 3,
        dropout_p: float = 0.0,
        activation: str = "tanh",
        final_activation: bool = False,
    ) -> None:
        super().__init__()
        self.in_features = in_dim
        self.out_features = out_dim
        self.layers = nn.Sequential(
            *self._build_layers(
                in_dim, out_dim, hidden_dim, depth, dropout_p, activation_factory(activation), final_activation
            )
        )

    def _build_layers(
        self,
        in_dim: int,
        out_dim: int,
        hidden_dim: int,
        depth: int,
        dropout_p: float,
        act: type[nn.Module],
        final_activation: bool,
    ) -> Sequence[nn.Module]:
        modules: list[nn.Module] = []
        dims = [in_dim] + [hidden_dim] * max(depth - 1, 0) + [out_dim]
        n_layers = len(dims) - 1
        for idx, (src, dst) in enumerate(zip(dims[:-1], dims[1:])):
            modules.append(nn.Linear(src, dst))
            if idx < n_layers - 1:
                modules.append(act())
                if dropout_p > 0.0:
                    modules.append(nn.Dropout(dropout_p))
            elif final_activation:
                modules.append(act())
        return modules

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.layers(x)
