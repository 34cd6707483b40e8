import logging

import numpy as np
import pytest
import torch

from tensornet.errors import ShapeError, StateError
from tensornet.nn import Linear
from tensornet.tensor import Tensor
from tests.utils import make_tensor, make_torch, tdata, assert_close, linear_to_torch


def test_construction_shapes_and_zero_init(seeded):
    layer = Linear(3, 2)
    w, b, gw, gb = layer.get_parameters()

    assert w is layer.weights and b is layer.bias
    assert gw is layer.grad_weights and gb is layer.grad_bias
    assert w.shape == (3, 2) and gw.shape == (3, 2)
    assert b.shape == (1, 2) and gb.shape == (1, 2)
    assert np.all(tdata(b) == 0)
    assert np.all(tdata(gw) == 0) and np.all(tdata(gb) == 0)
    assert not np.all(tdata(w) == 0)


def test_construction_is_reproducible_with_generator():
    a = Linear(4, 3, generator=np.random.default_rng(5))
    b = Linear(4, 3, generator=np.random.default_rng(5))
    assert a.weights.equal(b.weights)


@pytest.mark.parametrize("in_f, out_f", [(0, 2), (3, 0), (-1, 1)])
def test_construction_rejects_non_positive_features(in_f, out_f):
    with pytest.raises(ValueError):
        Linear(in_f, out_f)


def test_forward_with_known_weights():
    layer = Linear(3, 2)
    W = np.array([[1., 2.], [3., 4.], [5., 6.]], dtype=np.float32)
    layer.weights.copy_(make_tensor(W))
    layer.bias.fill(0)

    out = layer.forward(Tensor.from_data([[1., 2., 3.]]))

    assert out.shape == (1, 2)
    assert np.array_equal(tdata(out), np.array([[1., 2., 3.]], dtype=np.float32) @ W)


def test_forward_single_row_adds_bias_without_broadcast(caplog):
    layer = Linear(2, 2)
    layer.weights.fill(0)
    layer.bias.copy_(Tensor.from_data([[1., -1.]]))

    with caplog.at_level(logging.INFO, logger="tensornet.nn"):
        out = layer(Tensor.from_data([[3., 4.]]))

    assert out.equal(Tensor.from_data([[1., -1.]]))
    assert not any("broadcasting bias" in r.getMessage() for r in caplog.records)


def test_forward_batch_broadcasts_bias_and_logs(caplog):
    layer = Linear(2, 3)
    layer.weights.fill(0)
    layer.bias.copy_(Tensor.from_data([[1., 2., 3.]]))

    with caplog.at_level(logging.INFO, logger="tensornet.nn"):
        out = layer(Tensor((4, 2)))

    assert out.shape == (4, 3)
    assert np.array_equal(tdata(out), np.tile([[1., 2., 3.]], (4, 1)).astype(np.float32))
    assert any("broadcasting bias" in r.getMessage() for r in caplog.records)
    assert layer.bias.shape == (1, 3)


@pytest.mark.parametrize("shape", [(2, 4), (3,), (1, 2, 3)])
def test_forward_rejects_bad_input(shape):
    layer = Linear(3, 2)
    with pytest.raises(ShapeError):
        layer.forward(Tensor(shape))


def test_forward_caches_a_copy_of_input(rng):
    layer = Linear(3, 2, generator=rng)
    x = make_tensor(rng.normal(size=(2, 3)))
    layer.forward(x)
    x.fill(0)
    g = make_tensor(np.ones((2, 2)))
    layer.backward(g)
    assert not np.all(tdata(layer.grad_weights) == 0)


def test_backward_before_forward_raises():
    layer = Linear(3, 2)
    with pytest.raises(StateError):
        layer.backward(Tensor((1, 2)))


def test_backward_rejects_mismatched_grad_output(rng):
    layer = Linear(3, 2, generator=rng)
    layer.forward(make_tensor(rng.normal(size=(4, 3))))
    for shape in [(4, 3), (5, 2), (2,)]:
        with pytest.raises(ShapeError):
            layer.backward(Tensor(shape))
    assert np.all(tdata(layer.grad_weights) == 0)


def test_forward_backward_matches_torch(rng):
    layer = Linear(5, 3, generator=rng)
    layer.bias.copy_(make_tensor(rng.normal(size=(1, 3))))
    lt = linear_to_torch(layer)

    x_np = rng.normal(size=(4, 5)).astype(np.float32)
    g_np = rng.normal(size=(4, 3)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    yt = lt(xt)
    yt.backward(torch.tensor(g_np))

    y = layer.forward(make_tensor(x_np))
    grad_input = layer.backward(make_tensor(g_np))

    assert_close(y, yt.detach().numpy())
    assert_close(grad_input, xt.grad.numpy())
    assert_close(layer.grad_weights, lt.weight.grad.numpy().T)
    assert_close(layer.grad_bias, lt.bias.grad.numpy().reshape(1, -1))


@pytest.mark.parametrize("batch", [1, 2, 7])
def test_gradient_shapes_match_parameters(rng, batch):
    layer = Linear(4, 6, generator=rng)
    layer.forward(make_tensor(rng.normal(size=(batch, 4))))
    grad_input = layer.backward(make_tensor(rng.normal(size=(batch, 6))))

    assert grad_input.shape == (batch, 4)
    assert layer.grad_weights.shape == layer.weights.shape
    assert layer.grad_bias.shape == layer.bias.shape


def test_backward_writes_into_registered_gradient_buffers(rng):
    layer = Linear(3, 2, generator=rng)
    gw, gb = layer.grad_weights, layer.grad_bias
    gw_buf, gb_buf = gw.data, gb.data

    layer.forward(make_tensor(rng.normal(size=(3, 3))))
    layer.backward(make_tensor(rng.normal(size=(3, 2))))

    assert layer.grad_weights is gw and layer.grad_bias is gb
    assert gw.data is gw_buf and gb.data is gb_buf
    assert not np.all(tdata(gw) == 0)


def test_backward_overwrites_previous_gradients(rng):
    layer = Linear(3, 2, generator=rng)
    x = make_tensor(rng.normal(size=(2, 3)))
    g = make_tensor(rng.normal(size=(2, 2)))

    layer.forward(x)
    layer.backward(g)
    first = layer.grad_weights.copy()
    layer.forward(x)
    layer.backward(g)

    assert layer.grad_weights.equal(first)


def test_zero_grad_only_touches_gradients(rng):
    layer = Linear(3, 2, generator=rng)
    layer.forward(make_tensor(rng.normal(size=(2, 3))))
    layer.backward(make_tensor(rng.normal(size=(2, 2))))
    w = layer.weights.copy()

    layer.zero_grad()
    assert np.all(tdata(layer.grad_weights) == 0)
    assert np.all(tdata(layer.grad_bias) == 0)
    assert layer.weights.equal(w)

    layer.zero_grad()
    assert np.all(tdata(layer.grad_weights) == 0)
    # cached input survives zero_grad
    layer.backward(make_tensor(np.ones((2, 2))))


def test_float64_layer():
    layer = Linear(2, 2, dtype="float64")
    out = layer(Tensor((3, 2), dtype="float64"))
    assert out.dtype == np.float64
    assert layer.grad_weights.dtype == np.float64
