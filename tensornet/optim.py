import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from tensornet.errors import RegistrationError, ShapeError
from tensornet.tensor import Tensor

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base class for all optimizers.

    An optimizer keeps two parallel lists, parameters and their gradients,
    and updates the parameters in place from the gradients. It never rebinds,
    reshapes or reallocates a registered tensor; it only writes the values in
    its buffer.

    Parameters
    ----------
    params : sequence of Tensor, optional
        Tensors to register immediately, laid out as for
        :meth:`add_parameters`.

    Notes
    -----
    - Pairing convention: each registration list holds the parameters in its
      first half and their gradients in its second half, in matching order.
      :meth:`tensornet.nn.Layer.get_parameters` returns exactly this layout,
      so ``opt.add_parameters(layer.get_parameters())`` is the usual call.
    - Per-parameter state (momentum buffers etc.) is kept in ``self.state``,
      keyed by the parameter's position.
    """
    # Keys of per-parameter state entries that hold parameter-shaped arrays.
    _state_buffers = ()

    def __init__(self, params: Optional[Sequence[Tensor]] = None) -> None:
        self.params = []
        self.grads = []
        self.state = {}
        if params is not None:
            self.add_parameters(params)

    def add_parameters(self, tensors: Sequence[Tensor]) -> None:
        """
        Register parameter/gradient pairs.

        Parameters
        ----------
        tensors : sequence of Tensor
            ``[p_0, ..., p_{n-1}, g_0, ..., g_{n-1}]``.

        Raises
        ------
        RegistrationError
            If ``tensors`` is empty or has odd length, contains a non-tensor,
            repeats a tensor, or includes a tensor that is already
            registered. Nothing is registered in that case.

        Notes
        -----
        Shape agreement between a parameter and its gradient is not checked
        here; a mismatch surfaces as :class:`ShapeError` from :meth:`step`.
        """
        tensors = list(tensors)
        if not tensors or len(tensors) % 2 != 0:
            raise RegistrationError(
                f"Expected an even, non-zero number of tensors (parameters then gradients), got {len(tensors)}"
            )
        for t in tensors:
            if not isinstance(t, Tensor):
                raise RegistrationError(f"Expected Tensor, got {type(t).__name__}")

        seen = {id(t) for t in self.params} | {id(t) for t in self.grads}
        for t in tensors:
            if id(t) in seen:
                raise RegistrationError(f"Tensor of shape {t.shape} is already registered")
            seen.add(id(t))

        half = len(tensors) // 2
        self.params.extend(tensors[:half])
        self.grads.extend(tensors[half:])
        logger.debug("%s: registered %d parameter(s), %d total", self.__class__.__name__, half, len(self.params))

    def pairs(self) -> List[Tuple[Tensor, Tensor]]:
        """Return the registered ``(parameter, gradient)`` pairs in order."""
        return list(zip(self.params, self.grads))

    def zero_grad(self) -> None:
        """
        Reset every registered gradient to zero.

        Parameters are not touched. Calling it repeatedly is harmless.
        """
        for g in self.grads:
            g.fill(0)

    def step(self) -> None:
        """
        Perform a single optimization step.

        Subclasses must implement this method to update each parameter in
        place from its paired gradient, without writing the gradient.
        """
        raise NotImplementedError

    def _checked_pairs(self) -> List[Tuple[Tensor, Tensor]]:
        pairs = self.pairs()
        for i, (p, g) in enumerate(pairs):
            if not p.same_shape(g):
                raise ShapeError(f"Parameter {i} has shape {p.shape} but its gradient has shape {g.shape}")
        return pairs

    def state_dict(self) -> Dict[str, Any]:
        """
        Return the optimizer state as a Python dictionary.

        Returns
        -------
        dict
            Dictionary containing:
            - ``"hyperparams"``: optimizer hyperparameters (subclass-defined)
            - ``"state"``: per-parameter state entries aligned with ``self.params``
        """
        return {
            "hyperparams": self._get_hyperparams(),
            "state": [
                self._serialize_param_state(i) if i in self.state else None
                for i in range(len(self.params))
            ],
        }

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load optimizer state from a dictionary produced by :meth:`state_dict`.

        Raises
        ------
        RegistrationError
            If the number of state entries differs from the number of
            registered parameters.
        ShapeError
            If a stored buffer does not have its parameter's shape.

        Notes
        -----
        Assumes the same tensors are registered in the same order as when the
        state was saved. Every entry is checked before hyperparameters or
        state are replaced.
        """
        entries = state_dict["state"]
        if len(entries) != len(self.params):
            raise RegistrationError(
                f"state_dict holds {len(entries)} parameter entries, optimizer has {len(self.params)}"
            )
        for i, s in enumerate(entries):
            if s is None:
                continue
            for key in self._state_buffers:
                value = s.get(key)
                if value is not None and np.shape(value) != self.params[i].shape:
                    raise ShapeError(
                        f"State '{key}' of parameter {i} has shape {np.shape(value)}, "
                        f"expected {self.params[i].shape}"
                    )

        self._set_hyperparams(state_dict["hyperparams"])
        self.state = {}
        for i, s in enumerate(entries):
            if s is not None:
                self._deserialize_param_state(i, s)

    def _get_hyperparams(self) -> Dict[str, Any]:
        """Return optimizer hyperparameters for serialization."""
        return {}

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        """Restore optimizer hyperparameters from a state dict."""
        raise NotImplementedError

    def _serialize_param_state(self, i: int) -> Dict[str, Any]:
        """Serialize the state of parameter ``i``."""
        raise NotImplementedError

    def _deserialize_param_state(self, i: int, state: Dict[str, Any]) -> None:
        """Load the state of parameter ``i``."""
        raise NotImplementedError

    def __repr__(self):
        hp = ", ".join(f"{k}={v}" for k, v in self._get_hyperparams().items())
        return f"{self.__class__.__name__}({hp})"


class SGD(Optimizer):
    """
    Stochastic Gradient Descent (SGD) optimizer with optional momentum, dampening,
    weight decay, and Nesterov momentum.

    With the defaults the update is plain ``p := p - lr * g``.

    Parameters
    ----------
    params : sequence of Tensor, optional
        Parameters then gradients, see :meth:`Optimizer.add_parameters`.
    lr : float, default=0.01
        Learning rate.
    momentum : float, default=0.0
        Momentum factor.
    dampening : float, default=0.0
        Dampening for momentum.
    weight_decay : float, default=0.0
        L2 penalty (added to the gradient).
    nesterov : bool, default=False
        If True, enables Nesterov momentum (requires ``momentum > 0``).

    Notes
    -----
    - This follows the PyTorch-style update: weight decay is applied by adding
      ``weight_decay * p`` to a copy of the gradient, never to the gradient
      buffer itself.
    - Momentum buffers are stored in ``self.state[i]``.
    """
    _state_buffers = ("momentum_buffer",)

    def __init__(
        self,
        params: Optional[Sequence[Tensor]] = None,
        lr: float = 0.01,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
    ) -> None:
        if lr < 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if momentum < 0:
            raise ValueError(f"Invalid momentum value: {momentum}")
        if weight_decay < 0:
            raise ValueError(f"Invalid weight_decay value: {weight_decay}")
        if nesterov and (momentum <= 0 or dampening != 0):
            raise ValueError("Nesterov momentum requires a momentum and zero dampening")
        super().__init__(params)
        self.lr = lr
        self.momentum = momentum
        self.dampening = dampening
        self.weight_decay = weight_decay
        self.nesterov = nesterov

    def step(self) -> None:
        """Update parameters in-place using SGD."""
        for i, (p, g) in enumerate(self._checked_pairs()):
            if self.weight_decay == 0 and self.momentum == 0:
                p.data -= self.lr * g.data
                continue

            d_p = g.data.copy()

            if self.weight_decay > 0:
                d_p += self.weight_decay * p.data

            if self.momentum > 0:
                buf = self.state.get(i)
                if buf is None:
                    buf = d_p.copy()
                else:
                    buf *= self.momentum
                    buf += (1 - self.dampening) * d_p
                self.state[i] = buf

                if self.nesterov:
                    d_p += self.momentum * buf
                else:
                    d_p = buf

            p.data -= self.lr * d_p

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "momentum": self.momentum,
            "dampening": self.dampening,
            "weight_decay": self.weight_decay,
            "nesterov": self.nesterov,
        }

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.momentum = hyperparams["momentum"]
        self.dampening = hyperparams["dampening"]
        self.weight_decay = hyperparams["weight_decay"]
        self.nesterov = hyperparams["nesterov"]

    def _serialize_param_state(self, i: int) -> Dict[str, Any]:
        return {"momentum_buffer": self.state[i].copy()}

    def _deserialize_param_state(self, i: int, state: Dict[str, Any]) -> None:
        if state["momentum_buffer"] is not None:
            self.state[i] = np.array(state["momentum_buffer"], dtype=self.params[i].dtype)


class Adam(Optimizer):
    """
    Adam optimizer with optional weight decay and AMSGrad.

    Parameters
    ----------
    params : sequence of Tensor, optional
        Parameters then gradients, see :meth:`Optimizer.add_parameters`.
    lr : float, default=0.001
        Learning rate.
    betas : tuple[float, float], default=(0.9, 0.999)
        Coefficients used for computing running averages of gradient and its square.
    eps : float, default=1e-8
        Term added to the denominator for numerical stability.
    weight_decay : float, default=0.0
        L2 penalty added to the gradient (coupled weight decay).
    amsgrad : bool, default=False
        If True, uses the AMSGrad variant.

    Notes
    -----
    State per parameter: ``step``, ``exp_avg`` (m), ``exp_avg_sq`` (v), and
    optionally ``max_exp_avg_sq``.
    """
    _state_buffers = ("exp_avg", "exp_avg_sq", "max_exp_avg_sq")

    def __init__(
        self,
        params: Optional[Sequence[Tensor]] = None,
        lr: float = 0.001,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
        amsgrad: bool = False,
    ) -> None:
        if lr < 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if not (0.0 <= betas[0] < 1.0 and 0.0 <= betas[1] < 1.0):
            raise ValueError(f"Invalid beta parameters: {betas}")
        super().__init__(params)
        self.lr = lr
        self.betas = tuple(betas)
        self.eps = eps
        self.weight_decay = weight_decay
        self.amsgrad = amsgrad

    def step(self) -> None:
        """Update parameters in-place using Adam."""
        beta1, beta2 = self.betas
        for i, (p, g) in enumerate(self._checked_pairs()):
            if i not in self.state:
                self.state[i] = {
                    "step": 0,
                    "exp_avg": np.zeros_like(p.data),
                    "exp_avg_sq": np.zeros_like(p.data),
                }
                if self.amsgrad:
                    self.state[i]["max_exp_avg_sq"] = np.zeros_like(p.data)

            state = self.state[i]
            d_p = g.data.copy()

            if self.weight_decay != 0:
                d_p += self.weight_decay * p.data

            exp_avg = state["exp_avg"]
            exp_avg_sq = state["exp_avg_sq"]

            state["step"] += 1
            step = state["step"]

            exp_avg[:] = beta1 * exp_avg + (1 - beta1) * d_p
            exp_avg_sq[:] = beta2 * exp_avg_sq + (1 - beta2) * d_p**2
            bias_correction1 = 1 - beta1 ** step
            bias_correction2 = 1 - beta2 ** step

            exp_avg_hat = exp_avg / bias_correction1
            if self.amsgrad:
                max_exp_avg_sq = state["max_exp_avg_sq"]
                np.maximum(max_exp_avg_sq, exp_avg_sq, out=max_exp_avg_sq)
                denom = (max_exp_avg_sq / bias_correction2) ** 0.5 + self.eps
            else:
                denom = (exp_avg_sq / bias_correction2) ** 0.5 + self.eps

            p.data -= self.lr * exp_avg_hat / denom

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "betas": self.betas,
            "eps": self.eps,
            "weight_decay": self.weight_decay,
            "amsgrad": self.amsgrad,
        }

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.betas = tuple(hyperparams["betas"])
        self.eps = hyperparams["eps"]
        self.weight_decay = hyperparams["weight_decay"]
        self.amsgrad = hyperparams["amsgrad"]

    def _serialize_param_state(self, i: int) -> Dict[str, Any]:
        s = self.state[i]
        result = {
            "step": s["step"],
            "exp_avg": s["exp_avg"].copy(),
            "exp_avg_sq": s["exp_avg_sq"].copy(),
        }
        if self.amsgrad and "max_exp_avg_sq" in s:
            result["max_exp_avg_sq"] = s["max_exp_avg_sq"].copy()
        return result

    def _deserialize_param_state(self, i: int, s: Dict[str, Any]) -> None:
        dtype = self.params[i].dtype
        self.state[i] = {
            "step": int(s["step"]),
            "exp_avg": np.array(s["exp_avg"], dtype=dtype),
            "exp_avg_sq": np.array(s["exp_avg_sq"], dtype=dtype),
        }
        if self.amsgrad and s.get("max_exp_avg_sq") is not None:
            self.state[i]["max_exp_avg_sq"] = np.array(s["max_exp_avg_sq"], dtype=dtype)
