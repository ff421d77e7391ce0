# tests/test_utils.py
"""Tests for flat parameter helpers and logging setup."""

import logging

import pytest
import torch
import torch.nn as nn
from rich.logging import RichHandler

from cnflow.interfaces.errors import ShapeMismatchError
from cnflow.utils.log import configure_logging, get_logger
from cnflow.utils.parameters import (
    count_parameters,
    flatten_parameters,
    load_flat_parameters,
    unflatten_parameters,
)


class TestFlatParameters:
    """Tests for flattening and restoring module weights."""

    def test_count(self, mlp_dynamics):
        assert count_parameters(mlp_dynamics) == 2 * 8 + 8 + 8 * 2 + 2

    def test_flatten_is_detached_copy(self, mlp_dynamics):
        flat = flatten_parameters(mlp_dynamics)
        assert flat.shape == (count_parameters(mlp_dynamics),)
        assert not flat.requires_grad
        flat.zero_()
        assert mlp_dynamics[0].weight.abs().sum() > 0

    def test_unflatten_order_and_shapes(self, mlp_dynamics):
        flat = flatten_parameters(mlp_dynamics)
        params = unflatten_parameters(mlp_dynamics, flat)
        assert list(params) == [name for name, _ in mlp_dynamics.named_parameters()]
        for name, param in mlp_dynamics.named_parameters():
            assert torch.equal(params[name], param.detach())

    def test_unflatten_keeps_graph(self, mlp_dynamics):
        flat = flatten_parameters(mlp_dynamics).requires_grad_(True)
        params = unflatten_parameters(mlp_dynamics, flat)
        sum(p.sum() for p in params.values()).backward()
        assert torch.equal(flat.grad, torch.ones_like(flat))

    def test_load_round_trip(self, mlp_dynamics):
        flat = torch.arange(count_parameters(mlp_dynamics), dtype=torch.float32)
        load_flat_parameters(mlp_dynamics, flat)
        assert torch.equal(flatten_parameters(mlp_dynamics), flat)

    @pytest.mark.parametrize("shape", [(3,), (2, 19)])
    def test_wrong_shape(self, mlp_dynamics, shape):
        with pytest.raises(ShapeMismatchError):
            unflatten_parameters(mlp_dynamics, torch.zeros(shape))
        with pytest.raises(ShapeMismatchError):
            load_flat_parameters(mlp_dynamics, torch.zeros(shape))

    def test_parameterless_module(self):
        load_flat_parameters(nn.Tanh(), torch.zeros(0))
        assert unflatten_parameters(nn.Tanh(), torch.zeros(0)) == {}


class TestLogging:
    """Tests for the rich-backed package logger."""

    def test_namespacing(self):
        assert get_logger("trace").name == "cnflow.trace"
        assert get_logger("cnflow.networks.cnf").name == "cnflow.networks.cnf"
        assert get_logger("cnflow").name == "cnflow"

    def test_configure_is_idempotent(self):
        logger = configure_logging("DEBUG")
        configure_logging("WARNING")
        handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
        assert len(handlers) == 1
        assert logger.level == logging.WARNING
        assert logger.propagate is False
