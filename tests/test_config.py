# tests/test_config.py
"""Tests for configuration loading and config-driven construction."""

from pathlib import Path

import pytest
import torch

from cnflow.interfaces.config import FlowConfig, SolverConfig
from cnflow.networks.cnf import ContinuousNormalizingFlow
from cnflow.networks.mlp import MLP
from cnflow.networks.trace import ExactTrace, HutchinsonTrace
from cnflow.utils.config import load_config, solver_config_from_mapping
from cnflow.utils.modeling import build_dynamics, build_flow
from cnflow.utils.paths import default_config_path, project_root


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class TestSolverConfig:
    """Tests for solver keyword assembly."""

    def test_defaults(self):
        config = SolverConfig()
        assert config.method == "dopri5"
        assert config.adjoint is True
        assert config.solve_kwargs() == {"method": "dopri5", "rtol": 1e-5, "atol": 1e-5}

    def test_adjoint_keys_included(self):
        config = SolverConfig(adjoint_method="rk4", adjoint_rtol=1e-3, adjoint_options={"step_size": 0.1})
        kwargs = config.solve_kwargs()
        assert kwargs["adjoint_method"] == "rk4"
        assert kwargs["adjoint_rtol"] == 1e-3
        assert kwargs["adjoint_options"] == {"step_size": 0.1}
        assert "adjoint_atol" not in kwargs

    def test_adjoint_keys_dropped_for_plain_solve(self):
        config = SolverConfig(adjoint_method="rk4", options={"step_size": 0.5})
        kwargs = config.solve_kwargs(include_adjoint=False)
        assert "adjoint_method" not in kwargs
        assert kwargs["options"] == {"step_size": 0.5}

    def test_adjoint_keys_dropped_without_adjoint(self):
        config = SolverConfig(adjoint=False, adjoint_method="rk4")
        assert "adjoint_method" not in config.solve_kwargs()

    def test_mapping_access(self):
        config = SolverConfig(rtol=1e-3)
        assert config["rtol"] == 1e-3
        assert config.get("missing", 7) == 7

    def test_from_mapping(self):
        config = solver_config_from_mapping({"method": "rk4", "rtol": "1e-4", "adjoint": False})
        assert config.method == "rk4"
        assert config.rtol == pytest.approx(1e-4)
        assert config.adjoint is False

    def test_from_mapping_rejects_non_mapping_options(self):
        with pytest.raises(ValueError, match="mapping"):
            solver_config_from_mapping({"options": [1, 2]})


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_full_file(self, temp_dir):
        path = _write(
            temp_dir / "config.yml",
            """
flow:
  dim: 3
  hidden_dim: 16
  depth: 3
  activation: softplus
  tspan: [0.0, 2.5]
  trace_method: exact
  noise: rademacher
  regularize: true
solver:
  method: rk4
  rtol: 1.0e-4
  atol: 1.0e-6
  adjoint: false
  options:
    step_size: 0.1
""",
        )
        config = load_config(path)
        assert config.dim == 3
        assert config.hidden_dim == 16
        assert config.activation == "softplus"
        assert config.tspan == (0.0, 2.5)
        assert config.trace_method == "exact"
        assert config.noise == "rademacher"
        assert config.regularize is True
        assert config.solver.method == "rk4"
        assert config.solver.adjoint is False
        assert config.solver.options == {"step_size": 0.1}

    def test_empty_file_gives_defaults(self, temp_dir):
        config = load_config(_write(temp_dir / "empty.yml", ""))
        assert config == FlowConfig()

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "nope.yml")

    def test_bad_tspan(self, temp_dir):
        path = _write(temp_dir / "bad.yml", "flow:\n  tspan: [0.0, 1.0, 2.0]\n")
        with pytest.raises(ValueError, match="tspan"):
            load_config(path)

    def test_repository_config(self):
        assert default_config_path() == project_root() / "config.yml"
        config = load_config()
        assert config.dim == 2
        assert config.solver.method == "dopri5"


class TestModeling:
    """Tests for building dynamics and layers from a FlowConfig."""

    def test_build_dynamics(self):
        dynamics = build_dynamics(FlowConfig(dim=3, hidden_dim=8, depth=2))
        assert isinstance(dynamics, MLP)
        assert dynamics(torch.randn(5, 3)).shape == (5, 3)

    def test_build_flow(self):
        config = FlowConfig(dim=2, hidden_dim=8, t0=0.0, t1=0.5, trace_method="exact", regularize=True)
        flow = build_flow(config)
        assert isinstance(flow, ContinuousNormalizingFlow)
        assert isinstance(flow.trace_strategy, ExactTrace)
        assert flow.tspan == (0.0, 0.5)
        assert flow.regularize is True
        _, lam1, _ = flow(torch.randn(2, 3))
        assert lam1.shape == (3,)

    def test_build_flow_with_custom_dynamics(self, mlp_dynamics):
        flow = build_flow(FlowConfig(dim=2), dynamics=mlp_dynamics)
        assert flow.dynamics is mlp_dynamics
        assert isinstance(flow.trace_strategy, HutchinsonTrace)


class TestMLP:
    """Tests for the default dynamics network."""

    @pytest.mark.parametrize("activation", ["tanh", "softplus", "elu", "silu", "relu", "Tanh"])
    def test_activations(self, activation):
        net = MLP(2, 2, hidden_dim=4, depth=2, activation=activation)
        assert net(torch.randn(3, 2)).shape == (3, 2)

    def test_layer_count(self):
        net = MLP(2, 2, hidden_dim=4, depth=3, dropout_p=0.1)
        linears = [m for m in net.modules() if isinstance(m, torch.nn.Linear)]
        assert len(linears) == 3
        assert net.in_features == 2

    def test_final_activation(self):
        net = MLP(1, 1, hidden_dim=4, depth=2, activation="tanh", final_activation=True)
        assert isinstance(net.layers[-1], torch.nn.Tanh)

    def test_unknown_activation(self):
        with pytest.raises(ValueError, match="Unknown activation"):
            MLP(2, 2, activation="gelu2")
