"""
tensornet: a minimal neural-network engine on NumPy.

Tensors with shape-checked linear algebra, layers with hand-derived
backward passes, and optimizers that update parameters in place.
"""

from tensornet import config
from tensornet.errors import RegistrationError, ShapeError, StateError, TensorNetError
from tensornet.tensor import Tensor

__version__ = "0.1.0"
__all__ = [
    "Tensor",
    "config",
    "TensorNetError",
    "ShapeError",
    "StateError",
    "RegistrationError",
]
