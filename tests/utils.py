import numpy as np
import torch

from tensornet.tensor import Tensor

ATOL = 1e-6
RTOL = 1e-5


def tdata(t: Tensor):
    return t.numpy()


def make_tensor(x_np: np.ndarray, dtype=np.float32) -> Tensor:
    return Tensor.from_data(np.asarray(x_np, dtype=dtype), dtype=dtype)


def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)


def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = a.numpy() if isinstance(a, Tensor) else np.asarray(a)
    b = b.numpy() if isinstance(b, Tensor) else np.asarray(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"


def linear_to_torch(layer) -> torch.nn.Linear:
    """Build a torch Linear holding the same weights as a tensornet Linear."""
    lt = torch.nn.Linear(layer.in_features, layer.out_features)
    with torch.no_grad():
        lt.weight.copy_(torch.tensor(layer.weights.numpy().T))
        lt.bias.copy_(torch.tensor(layer.bias.numpy().reshape(-1)))
    return lt
