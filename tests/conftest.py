# tests/conftest.py
"""Shared fixtures for CNF layer tests."""

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import torch
import torch.nn as nn

from cnflow.interfaces.config import SolverConfig


@pytest.fixture(autouse=True)
def seed() -> None:
    """Seed torch before every test."""
    torch.manual_seed(1999)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def tanh_dynamics() -> nn.Module:
    """Single dense layer with tanh, mapping R^1 to R^1."""
    return nn.Sequential(nn.Linear(1, 1), nn.Tanh())


@pytest.fixture
def mlp_dynamics() -> nn.Module:
    """Small two-dimensional smooth velocity field."""
    return nn.Sequential(nn.Linear(2, 8), nn.Tanh(), nn.Linear(8, 2))


@pytest.fixture
def linear_weight() -> torch.Tensor:
    """Fixed matrix A for linear dynamics dz/dt = A z."""
    return torch.tensor([[0.3, -0.2], [0.5, -0.4]])


@pytest.fixture
def linear_dynamics(linear_weight: torch.Tensor) -> nn.Module:
    """Bias-free linear dynamics whose Jacobian is ``linear_weight`` everywhere."""
    layer = nn.Linear(2, 2, bias=False)
    with torch.no_grad():
        layer.weight.copy_(linear_weight)
    return layer


@pytest.fixture
def tight_solver() -> SolverConfig:
    """Solver settings for tests comparing against closed forms."""
    return SolverConfig(method="dopri5", rtol=1e-7, atol=1e-9, adjoint=False)
