import logging
from typing import Any, Dict, List, Optional

import numpy as np

from tensornet.errors import ShapeError, StateError
from tensornet.tensor import Tensor

logger = logging.getLogger(__name__)


class Layer:
    """
    Base class for all layers.

    A layer implements an explicit forward pass and a hand-derived backward
    pass. There is no computation graph: ``backward`` uses whatever the most
    recent ``forward`` cached, writes parameter gradients into the layer's
    gradient buffers and returns the gradient with respect to its input.

    Subclasses with learnable parameters register them in
    ``self._parameters`` and their gradients in ``self._gradients`` under the
    same names, in matching order.
    """
    def __init__(self) -> None:
        """
        Initialize a layer with no parameters.

        Attributes
        ----------
        _parameters : dict[str, Tensor]
            Learnable parameters, by name.
        _gradients : dict[str, Tensor]
            Gradient buffers, keyed like ``_parameters``.
        """
        self._parameters = {}
        self._gradients = {}

    def forward(self, input: Tensor) -> Tensor:
        raise NotImplementedError

    def backward(self, grad_output: Tensor) -> Tensor:
        raise NotImplementedError

    def __call__(self, input: Tensor) -> Tensor:
        return self.forward(input)

    def get_parameters(self) -> List[Tensor]:
        """
        Return parameters followed by their gradients.

        Returns
        -------
        list[Tensor]
            ``[p_0, ..., p_{n-1}, g_0, ..., g_{n-1}]`` where ``g_i`` is the
            gradient buffer of ``p_i``. These are the layer's own tensors, not
            copies; optimizers rely on both the identity and the order.
        """
        return list(self._parameters.values()) + list(self._gradients.values())

    def zero_grad(self) -> None:
        """Reset every gradient buffer to zero. Parameters are untouched."""
        for grad in self._gradients.values():
            grad.fill(0)

    def state_dict(self) -> Dict[str, np.ndarray]:
        """
        Return a mapping of parameter names to **copies** of their values.

        Gradients and cached activations are not included.
        """
        return {name: param.numpy() for name, param in self._parameters.items()}

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load parameter values in place.

        Parameters
        ----------
        state_dict : dict
            Mapping produced by :meth:`state_dict`.

        Raises
        ------
        KeyError
            If a parameter is missing from ``state_dict``.
        ShapeError
            If a stored array does not match its parameter's shape. All
            entries are checked before any parameter is written.
        """
        values = {}
        for name, param in self._parameters.items():
            if name not in state_dict:
                raise KeyError(f"{name} not found in state_dict")
            value = Tensor.from_data(state_dict[name], dtype=param.dtype)
            if value.shape != param.shape:
                raise ShapeError(f"{name}: expected shape {param.shape}, got {value.shape}")
            values[name] = value

        for name, value in values.items():
            self._parameters[name].copy_(value)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Linear(Layer):
    """
    Fully-connected linear layer.

    Computes ``y = x @ W + b`` with ``W`` of shape ``(in_features, out_features)``
    and ``b`` of shape ``(1, out_features)``.

    Parameters
    ----------
    in_features : int
        Number of input features.
    out_features : int
        Number of output features.
    generator : numpy.random.Generator, optional
        Source for weight initialization. Defaults to the process-wide
        generator in :mod:`tensornet.config`.
    dtype : {None, 'float32', 'float64'}, optional
        Parameter dtype. Defaults to the configured default dtype.

    Notes
    -----
    Weights are drawn from ``N(0, 2 / in_features)`` (He initialization);
    the bias and both gradient buffers start at zero.
    """
    def __init__(
        self,
        in_features: int,
        out_features: int,
        generator: Optional[np.random.Generator] = None,
        dtype: Optional[Any] = None,
    ) -> None:
        super().__init__()
        if in_features <= 0 or out_features <= 0:
            raise ValueError(f"Feature counts must be positive, got ({in_features}, {out_features})")
        self.in_features = in_features
        self.out_features = out_features

        gain = (2. / in_features) ** 0.5
        self.weights = Tensor((in_features, out_features), dtype=dtype).random(scale=gain, generator=generator)
        self.bias = Tensor((1, out_features), dtype=dtype)
        self.grad_weights = Tensor((in_features, out_features), dtype=dtype)
        self.grad_bias = Tensor((1, out_features), dtype=dtype)
        self._input = None

        self._parameters["weights"] = self.weights
        self._parameters["bias"] = self.bias
        self._gradients["weights"] = self.grad_weights
        self._gradients["bias"] = self.grad_bias

    def __repr__(self):
        return f"{self.__class__.__name__}(in_features={self.in_features}, out_features={self.out_features})"

    def forward(self, input: Tensor) -> Tensor:
        """
        Parameters
        ----------
        input : Tensor
            Input of shape ``(batch, in_features)``.

        Returns
        -------
        Tensor
            Output of shape ``(batch, out_features)``.

        Raises
        ------
        ShapeError
            If ``input`` is not 2-D or its trailing dimension is not
            ``in_features``.

        Notes
        -----
        The bias is added directly when its shape already equals the output
        shape (batch of one). Otherwise it is broadcast to the output shape
        first, and an INFO record is logged. A copy of ``input`` is cached for
        :meth:`backward`.
        """
        if input.ndim != 2 or input.shape[1] != self.in_features:
            raise ShapeError(f"Linear expects input of shape (batch, {self.in_features}), got {input.shape}")

        output = input.matmul(self.weights)
        if output.same_shape(self.bias):
            output = output.add(self.bias)
        else:
            logger.info("Linear.forward: broadcasting bias %s to %s", self.bias.shape, output.shape)
            output = output.add(self.bias.broadcast_to(output.shape))

        self._input = input.copy()
        return output

    def backward(self, grad_output: Tensor) -> Tensor:
        """
        Propagate ``grad_output`` through the layer.

        Parameters
        ----------
        grad_output : Tensor
            Gradient of the loss w.r.t. this layer's output, shape
            ``(batch, out_features)`` with the batch size of the last forward.

        Returns
        -------
        Tensor
            Gradient w.r.t. the input, shape ``(batch, in_features)``.

        Raises
        ------
        StateError
            If :meth:`forward` has not been called.
        ShapeError
            If ``grad_output`` has the wrong shape.

        Notes
        -----
        ``grad_weights = x^T @ grad_output`` and
        ``grad_bias = sum(grad_output, axis=0)``. Both are written into the
        existing gradient buffers (overwriting, not accumulating).
        """
        if self._input is None:
            raise StateError("Linear.backward called before forward")
        expected = (self._input.shape[0], self.out_features)
        if grad_output.shape != expected:
            raise ShapeError(f"Linear.backward expects grad_output of shape {expected}, got {grad_output.shape}")

        grad_weights = self._input.transpose().matmul(grad_output)
        grad_bias = grad_output.sum(0).reshape(1, self.out_features)
        grad_input = grad_output.matmul(self.weights.transpose())

        self.grad_weights.copy_(grad_weights)
        self.grad_bias.copy_(grad_bias)
        return grad_input


class ReLU(Layer):
    """Element-wise ReLU activation: ``max(0, x)``."""
    def __init__(self) -> None:
        super().__init__()
        self._mask = None

    def forward(self, input: Tensor) -> Tensor:
        self._mask = Tensor.from_data(input.data > 0, dtype=input.dtype)
        return input.mul(self._mask)

    def backward(self, grad_output: Tensor) -> Tensor:
        if self._mask is None:
            raise StateError("ReLU.backward called before forward")
        return grad_output.mul(self._mask)


class Tanh(Layer):
    """Element-wise hyperbolic tangent activation."""
    def __init__(self) -> None:
        super().__init__()
        self._output = None

    def forward(self, input: Tensor) -> Tensor:
        self._output = Tensor.from_data(np.tanh(input.data), dtype=input.dtype)
        return self._output.copy()

    def backward(self, grad_output: Tensor) -> Tensor:
        # d/dx tanh(x) = 1 - tanh(x)^2
        if self._output is None:
            raise StateError("Tanh.backward called before forward")
        return grad_output.mul(1 - self._output.mul(self._output))


class Sequential(Layer):
    """
    A sequential container of layers.

    ``forward`` feeds the output of each layer into the next; ``backward``
    walks the layers in reverse, feeding each layer's input gradient to its
    predecessor.

    Examples
    --------
    >>> model = Sequential(Linear(4, 8), ReLU(), Linear(8, 1))
    >>> y = model(x)
    """
    def __init__(self, *layers: Layer) -> None:
        super().__init__()
        self.layers = list(layers)

    def forward(self, input: Tensor) -> Tensor:
        for layer in self.layers:
            input = layer(input)
        return input

    def backward(self, grad_output: Tensor) -> Tensor:
        for layer in reversed(self.layers):
            grad_output = layer.backward(grad_output)
        return grad_output

    def get_parameters(self) -> List[Tensor]:
        """
        Return all parameters of all layers, then all gradients in the same order.

        The result keeps the parameters-then-gradients layout of
        :meth:`Layer.get_parameters`, so it can be handed to an optimizer
        directly.
        """
        params, grads = [], []
        for layer in self.layers:
            layer_tensors = layer.get_parameters()
            half = len(layer_tensors) // 2
            params.extend(layer_tensors[:half])
            grads.extend(layer_tensors[half:])
        return params + grads

    def zero_grad(self) -> None:
        for layer in self.layers:
            layer.zero_grad()

    def state_dict(self) -> Dict[str, np.ndarray]:
        """Parameter copies keyed ``"<index>.<name>"``, e.g. ``"0.weights"``."""
        state = {}
        for i, layer in enumerate(self.layers):
            for name, value in layer.state_dict().items():
                state[f"{i}.{name}"] = value
        return state

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        for i, layer in enumerate(self.layers):
            prefix = f"{i}."
            layer.load_state_dict({
                k[len(prefix):]: v
                for k, v in state_dict.items()
                if k.startswith(prefix)
            })

    def __getitem__(self, idx: int) -> Layer:
        return self.layers[idx]

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self):
        lines = [f"{self.__class__.__name__}("]
        for i, layer in enumerate(self.layers):
            lines.append(f"  ({i}): {layer!r}")
        lines.append(")")
        return "\n".join(lines)


class MSELoss:
    """
    Mean squared error loss with an explicit backward pass.

    ``forward(prediction, target)`` returns ``mean((prediction - target)^2)``
    as a float and remembers the difference; ``backward()`` returns the
    gradient w.r.t. ``prediction``, ``2 * (prediction - target) / N``.
    """
    def __init__(self) -> None:
        self._diff = None

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def __call__(self, prediction: Tensor, target: Tensor) -> float:
        return self.forward(prediction, target)

    def forward(self, prediction: Tensor, target: Tensor) -> float:
        if not prediction.same_shape(target):
            raise ShapeError(f"MSELoss shape mismatch: {prediction.shape} vs {target.shape}")
        self._diff = prediction.sub(target)
        return float(np.mean(self._diff.data ** 2))

    def backward(self) -> Tensor:
        if self._diff is None:
            raise StateError("MSELoss.backward called before forward")
        return self._diff.mul(2.0 / self._diff.size)
