"""Shared utilities for configuration, logging, parameters and linear algebra.

===================================================================================
SUBMODULE STRUCTURE
===================================================================================

paths.py:
    project_root() → repository root
    default_config_path() → <project_root>/config.yml

config.py:
    load_config(path=None) → FlowConfig from YAML
    solver_config_from_mapping(raw) → SolverConfig
    Handles defaults and type coercion

log.py:
    get_logger(name) → logger under the "cnflow" namespace
    configure_logging(level) → installs a rich RichHandler once

linalg.py:
    batched_norm(x) → (1, batch) column norms
    trace(J) → scalar trace of a (d, d) Jacobian
    batched_trace(J) → (1, batch) traces of a (d, d, batch) stack

parameters.py:
    flatten_parameters(module) → flat 1-D tensor
    unflatten_parameters(module, flat) → name → view mapping for functional_call
    load_flat_parameters(module, flat) → in-place copy
    count_parameters(module) → int

modeling.py:
    build_dynamics(config) → MLP velocity field
    build_flow(config, dynamics=None, base_distribution=None) → CNF layer
===================================================================================
"""

from .config import load_config, solver_config_from_mapping
from .linalg import batched_norm, batched_trace, trace
from .log import configure_logging, get_logger
from .parameters import (
    count_parameters,
    flatten_parameters,
    load_flat_parameters,
    unflatten_parameters,
)
from .paths import default_config_path, project_root

__all__ = [
    "load_config",
    "solver_config_from_mapping",
    "batched_norm",
    "batched_trace",
    "trace",
    "configure_logging",
    "get_logger",
    "count_parameters",
    "flatten_parameters",
    "load_flat_parameters",
    "unflatten_parameters",
    "default_config_path",
    "project_root",
]
