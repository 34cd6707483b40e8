import logging

import numpy as np
import pytest

from tensornet.checkpoint import load_checkpoint, save_checkpoint
from tensornet.data import DataLoader, TensorDataset
from tensornet.errors import ShapeError, StateError
from tensornet.nn import Linear, MSELoss, ReLU, Sequential
from tensornet.optim import SGD, Adam
from tensornet.tensor import Tensor
from tensornet.training import evaluate, fit, train_step
from tests.utils import make_tensor, tdata


def _regression_data(rng, n=64):
    x_np = rng.normal(size=(n, 3)).astype(np.float32)
    w_np = np.array([[1.5], [-2.0], [0.5]], dtype=np.float32)
    y_np = x_np @ w_np + 0.25
    return make_tensor(x_np), make_tensor(y_np)


def test_dataset_and_loader_batches(rng):
    x, y = _regression_data(rng, n=10)
    ds = TensorDataset(x, y)
    assert len(ds) == 10
    xi, yi = ds[3]
    assert xi.shape == (1, 3) and yi.shape == (1, 1)
    assert np.array_equal(tdata(xi), tdata(x)[3:4])

    loader = DataLoader(ds, batch_size=4)
    batches = list(loader)
    assert len(loader) == 3
    assert [b[0].shape[0] for b in batches] == [4, 4, 2]
    assert np.array_equal(np.concatenate([tdata(b[0]) for b in batches]), tdata(x))

    assert len(DataLoader(ds, batch_size=4, drop_last=True)) == 2
    assert len(list(DataLoader(ds, batch_size=4, drop_last=True))) == 2


def test_loader_shuffle_is_reproducible(rng):
    x, y = _regression_data(rng, n=12)
    ds = TensorDataset(x, y)
    a = [tdata(b[0]) for b in DataLoader(ds, batch_size=5, shuffle=True, generator=np.random.default_rng(3))]
    b = [tdata(b[0]) for b in DataLoader(ds, batch_size=5, shuffle=True, generator=np.random.default_rng(3))]
    assert all(np.array_equal(p, q) for p, q in zip(a, b))
    assert sorted(np.concatenate(a)[:, 0]) == sorted(tdata(x)[:, 0])


def test_dataset_rejects_mismatched_lengths():
    with pytest.raises(ShapeError):
        TensorDataset(Tensor((3, 2)), Tensor((4, 1)))


def test_train_step_reduces_loss(rng):
    x, y = _regression_data(rng)
    model = Linear(3, 1, generator=rng)
    opt = SGD(model.get_parameters(), lr=0.1)
    loss_fn = MSELoss()

    first = train_step(model, loss_fn, opt, x, y)
    for _ in range(50):
        last = train_step(model, loss_fn, opt, x, y)
    assert last < first * 0.1


def test_fit_learns_linear_map_and_logs(rng, caplog):
    x, y = _regression_data(rng)
    loader = DataLoader(TensorDataset(x, y), batch_size=16, shuffle=True, generator=rng)
    model = Sequential(Linear(3, 1, generator=rng))
    opt = SGD(model.get_parameters(), lr=0.1, momentum=0.5)

    with caplog.at_level(logging.INFO, logger="tensornet.training"):
        history = fit(model, loader, MSELoss(), opt, num_epochs=30, val_loader=loader)

    assert len(history["train_loss"]) == 30
    assert history["val_loss"][-1] < 1e-3
    np.testing.assert_allclose(tdata(model[0].weights).ravel(), [1.5, -2.0, 0.5], atol=2e-2)
    assert any("Epoch 30/30" in r.getMessage() for r in caplog.records)


def test_evaluate_does_not_change_parameters(rng):
    x, y = _regression_data(rng, n=8)
    model = Sequential(Linear(3, 4, generator=rng), ReLU(), Linear(4, 1, generator=rng))
    before = model.state_dict()
    evaluate(model, DataLoader(TensorDataset(x, y), batch_size=3), MSELoss())
    after = model.state_dict()
    assert all(np.array_equal(before[k], after[k]) for k in before)


def test_checkpoint_roundtrip(rng, tmp_path):
    x, y = _regression_data(rng, n=16)
    model = Sequential(Linear(3, 4, generator=rng), ReLU(), Linear(4, 1, generator=rng))
    opt = Adam(model.get_parameters(), lr=1e-2)
    loss_fn = MSELoss()
    for _ in range(3):
        train_step(model, loss_fn, opt, x, y)

    path = tmp_path / "ckpt.pkl"
    save_checkpoint(str(path), model, opt, epoch=3)

    other = Sequential(Linear(3, 4), ReLU(), Linear(4, 1))
    other_opt = Adam(other.get_parameters())
    epoch = load_checkpoint(str(path), other, other_opt)

    assert epoch == 3
    assert other[0].weights.equal(model[0].weights)
    assert other[2].bias.equal(model[2].bias)

    train_step(model, loss_fn, opt, x, y)
    train_step(other, loss_fn, other_opt, x, y)
    assert other[0].weights.allclose(model[0].weights, atol=1e-6)


def test_train_step_rejects_target_of_other_dtype(rng):
    x, _ = _regression_data(rng, n=4)
    y = Tensor.from_data(rng.normal(size=(4, 1)))
    assert y.dtype == np.float64

    model = Linear(3, 1, generator=rng)
    w = model.weights.copy()
    opt = SGD(model.get_parameters(), lr=0.1)
    loss_fn = MSELoss()
    with pytest.raises(TypeError):
        train_step(model, loss_fn, opt, x, y)
    with pytest.raises(StateError):
        loss_fn.backward()
    assert model.weights.equal(w)
