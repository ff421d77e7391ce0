"""Utilities that bridge a FlowConfig with the CNF layers."""

from __future__ import annotations

from typing import Optional

import torch.nn as nn
from torch.distributions import Distribution

from ..interfaces.config import FlowConfig
from ..networks.cnf import ContinuousNormalizingFlow
from ..networks.mlp import MLP


def build_dynamics(config: FlowConfig) -> MLP:
    """Instantiate the default MLP velocity field described by ``config``."""

    return MLP(
        config.dim,
        config.dim,
        hidden_dim=config.hidden_dim,
        depth=config.depth,
        dropout_p=config.dropout,
        activation=config.activation,
    )


def build_flow(
    config: FlowConfig,
    dynamics: Optional[nn.Module] = None,
    base_distribution: Optional[Distribution] = None,
) -> ContinuousNormalizingFlow:
    """Construct a CNF layer from ``config``.

    Args:
        config: Flow hyperparameters, usually from :func:`~cnflow.utils.config.load_config`.
        dynamics: Optional velocity network; defaults to :func:`build_dynamics`.
        base_distribution: Optional base density; defaults to a standard normal.

    Returns:
        A layer using ``config.trace_method`` as its trace strategy.
    """

    return ContinuousNormalizingFlow(
        dynamics if dynamics is not None else build_dynamics(config),
        config.tspan,
        trace_method=config.trace_method,
        base_distribution=base_distribution,
        solver=config.solver,
        regularize=config.regularize,
        noise=config.noise,
        check_finite=config.check_finite,
    )
