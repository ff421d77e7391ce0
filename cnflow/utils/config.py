"""Configuration loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from ..interfaces.config import FlowConfig, SolverConfig
from .log import get_logger
from .paths import default_config_path

logger = get_logger(__name__)


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _optional_mapping(value: Any) -> Mapping[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected a mapping of solver options, received {value!r}")
    return dict(value)


def solver_config_from_mapping(raw: Mapping[str, Any]) -> SolverConfig:
    """Build a :class:`SolverConfig` from the ``solver`` section of a config file."""

    defaults = SolverConfig()
    adjoint_method = raw.get("adjoint_method")
    return SolverConfig(
        method=str(raw.get("method", defaults.method)),
        rtol=float(raw.get("rtol", defaults.rtol)),
        atol=float(raw.get("atol", defaults.atol)),
        adjoint=bool(raw.get("adjoint", defaults.adjoint)),
        options=_optional_mapping(raw.get("options")),
        adjoint_method=str(adjoint_method) if adjoint_method is not None else None,
        adjoint_rtol=_optional_float(raw.get("adjoint_rtol")),
        adjoint_atol=_optional_float(raw.get("adjoint_atol")),
        adjoint_options=_optional_mapping(raw.get("adjoint_options")),
    )


def load_config(path: str | Path | None = None) -> FlowConfig:
    """Load a flow configuration from ``config.yml``.

    Args:
        path: Optional path override. Defaults to ``<project_root>/config.yml``.

    Returns:
        A :class:`~cnflow.interfaces.config.FlowConfig` populated from YAML.
    """

    config_path = Path(path) if path else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found at {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw: Mapping[str, Any] = yaml.safe_load(handle) or {}

    flow = raw.get("flow", {}) or {}
    defaults = FlowConfig()
    tspan = flow.get("tspan", [defaults.t0, defaults.t1])
    if len(tspan) != 2:
        raise ValueError(f"flow.tspan must hold exactly two values, received {tspan!r}")

    config = FlowConfig(
        dim=int(flow.get("dim", defaults.dim)),
        hidden_dim=int(flow.get("hidden_dim", defaults.hidden_dim)),
        depth=int(flow.get("depth", defaults.depth)),
        activation=str(flow.get("activation", defaults.activation)),
        dropout=float(flow.get("dropout", defaults.dropout)),
        t0=float(tspan[0]),
        t1=float(tspan[1]),
        trace_method=str(flow.get("trace_method", defaults.trace_method)),
        noise=str(flow.get("noise", defaults.noise)),
        regularize=bool(flow.get("regularize", defaults.regularize)),
        check_finite=bool(flow.get("check_finite", defaults.check_finite)),
        solver=solver_config_from_mapping(raw.get("solver", {}) or {}),
    )
    logger.debug("Loaded flow configuration from %s: %s", config_path, config)
    return config
