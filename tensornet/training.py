import logging
from typing import Any, Dict, List, Optional

from tensornet.tensor import Tensor

logger = logging.getLogger(__name__)


def train_step(
    model: Any,
    loss_fn: Any,
    optimizer: Any,
    x: Tensor,
    y: Tensor,
) -> float:
    """
    Run one forward/backward/update cycle on a single batch.

    The order is ``zero_grad -> forward -> loss -> backward -> step``.

    Parameters
    ----------
    model : Layer
        Model to train. Must implement ``forward``, ``backward`` and
        ``zero_grad``.
    loss_fn : MSELoss or compatible
        Callable ``(pred, target) -> float`` with a ``backward()`` returning
        the gradient w.r.t. ``pred``.
    optimizer : Optimizer
        Optimizer holding the model's parameters.
    x, y : Tensor
        Input batch and target batch.

    Returns
    -------
    float
        The batch loss (computed before the update).
    """
    optimizer.zero_grad()
    out = model(x)
    loss = loss_fn(out, y)
    model.backward(loss_fn.backward())
    optimizer.step()
    return loss


def train_one_epoch(
    model: Any,
    dataloader: Any,
    loss_fn: Any,
    optimizer: Any,
) -> float:
    """
    Train a model for one epoch.

    Returns
    -------
    float
        Mean loss over the epoch (weighted by batch size).
    """
    total_loss = 0.
    total_samples = 0

    for x, y in dataloader:
        loss = train_step(model, loss_fn, optimizer, x, y)

        bs = x.shape[0]
        total_loss += loss * bs
        total_samples += bs

    return total_loss / max(1, total_samples)


def evaluate(
    model: Any,
    dataloader: Any,
    loss_fn: Any,
) -> float:
    """
    Evaluate a model without touching its gradients or parameters.

    Returns
    -------
    float
        Mean loss over the evaluation set (weighted by batch size).
    """
    total_loss = 0.
    total_samples = 0

    for x, y in dataloader:
        out = model(x)
        loss = loss_fn(out, y)

        bs = x.shape[0]
        total_loss += loss * bs
        total_samples += bs

    return total_loss / max(1, total_samples)


def fit(
    model: Any,
    train_loader: Any,
    loss_fn: Any,
    optimizer: Any,
    num_epochs: int = 10,
    val_loader: Optional[Any] = None,
) -> Dict[str, List[Optional[float]]]:
    """
    Train a model for multiple epochs with optional validation.

    Parameters
    ----------
    model : Layer
        Model to train.
    train_loader : DataLoader
        Training data loader yielding batches ``(x, y)``.
    loss_fn : MSELoss or compatible
        Loss with an explicit ``backward``.
    optimizer : Optimizer
        Optimizer used for parameter updates.
    num_epochs : int, default=10
        Number of epochs to train.
    val_loader : DataLoader or None, default=None
        Optional validation loader.

    Returns
    -------
    dict
        Per-epoch history with keys ``"train_loss"`` and ``"val_loss"``
        (``None`` entries when no validation loader is given).

    Notes
    -----
    One INFO record is logged per epoch on the ``tensornet.training`` logger.
    """
    history = {
        "train_loss": [],
        "val_loss": [],
    }

    for epoch in range(num_epochs):
        train_loss = train_one_epoch(model, train_loader, loss_fn, optimizer)
        val_loss = evaluate(model, val_loader, loss_fn) if val_loader is not None else None

        history["train_loss"].append(train_loss)
        history["val_loss"].append(val_loss)

        if val_loss is not None:
            logger.info("Epoch %d/%d, Train: %.4f  Val: %.4f", epoch + 1, num_epochs, train_loss, val_loss)
        else:
            logger.info("Epoch %d/%d, Train: %.4f", epoch + 1, num_epochs, train_loss)

    return history
