import logging
import pickle
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def save_checkpoint(
    path: str,
    model: Any,
    optimizer: Optional[Any] = None,
    epoch: Optional[int] = None,
) -> None:
    """
    Pickle a model's state dict, and optionally an optimizer's, to ``path``.

    Parameters
    ----------
    path : str
        Destination file; overwritten if it exists.
    model : Layer
        Source of the ``"model"`` entry (its ``state_dict()``).
    optimizer : Optimizer or None, default=None
        Source of the ``"optimizer"`` entry. Omitted when None.
    epoch : int or None, default=None
        Stored under ``"epoch"``. Omitted when None.

    Notes
    -----
    State dicts hold parameter values and optimizer buffers only. Gradient
    buffers and the inputs cached by ``forward`` are not saved, so a resumed
    run must do a forward pass before calling ``backward``.
    """
    payload: Dict[str, Any] = {"model": model.state_dict()}
    if optimizer is not None:
        payload["optimizer"] = optimizer.state_dict()
    if epoch is not None:
        payload["epoch"] = epoch

    with open(path, "wb") as f:
        pickle.dump(payload, f)
    logger.debug("Saved checkpoint to %s (%s)", path, ", ".join(payload))


def load_checkpoint(
    path: str,
    model: Any,
    optimizer: Optional[Any] = None,
) -> Optional[int]:
    """
    Restore a checkpoint written by :func:`save_checkpoint`.

    Values are copied into the tensors ``model`` already owns rather than
    replacing them, so an optimizer registered on ``model.get_parameters()``
    before the call keeps updating the same buffers afterwards. The model is
    restored before the optimizer; each ``load_state_dict`` validates its
    whole input before writing anything.

    Returns
    -------
    int or None
        The stored epoch, or None if the checkpoint has none.

    Raises
    ------
    KeyError, ShapeError
        From ``model.load_state_dict`` on a missing or misshaped parameter.
    RegistrationError, ShapeError
        From ``optimizer.load_state_dict`` when the stored state does not
        match the registered parameters.

    Notes
    -----
    :mod:`pickle` can execute arbitrary code; load trusted files only.
    """
    with open(path, "rb") as f:
        payload = pickle.load(f)

    model.load_state_dict(payload["model"])
    if optimizer is not None and "optimizer" in payload:
        optimizer.load_state_dict(payload["optimizer"])
    logger.debug("Loaded checkpoint from %s", path)

    return payload.get("epoch")
