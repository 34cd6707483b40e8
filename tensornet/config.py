import contextlib
from typing import Iterator, Optional, Union

import numpy as np

_SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))

_default_dtype = np.dtype(np.float32)
"""numpy.dtype: dtype used by tensors created without an explicit ``dtype``."""

_generator = np.random.default_rng()
"""numpy.random.Generator: process-wide source for :meth:`Tensor.random`.

Unseeded by default, so results are not reproducible across runs until
:func:`manual_seed` is called (or an explicit generator is passed).
"""


def normalize_dtype(dtype: Optional[Union[str, type, np.dtype]]) -> np.dtype:
    """
    Resolve a dtype specifier to one of the supported float dtypes.

    Parameters
    ----------
    dtype : str, type, numpy.dtype or None
        ``None`` selects the current default dtype.

    Returns
    -------
    numpy.dtype
        ``float32`` or ``float64``.

    Raises
    ------
    TypeError
        If ``dtype`` is not a supported floating point type.
    """
    if dtype is None:
        return _default_dtype
    dt = np.dtype(dtype)
    if dt not in _SUPPORTED_DTYPES:
        raise TypeError(f"Unsupported dtype: {dt} (expected float32 or float64)")
    return dt


def get_default_dtype() -> np.dtype:
    """Return the dtype used for new tensors."""
    return _default_dtype


def set_default_dtype(dtype: Union[str, type, np.dtype]) -> None:
    """Set the dtype used for new tensors (``float32`` or ``float64``)."""
    global _default_dtype
    _default_dtype = normalize_dtype(dtype)


class default_dtype(contextlib.ContextDecorator):
    """
    Context manager that temporarily changes the default dtype.

    Examples
    --------
    >>> with default_dtype("float64"):
    ...     t = Tensor((2, 2))
    >>> t.dtype
    dtype('float64')
    """
    def __init__(self, dtype: Union[str, type, np.dtype]) -> None:
        self.dtype = normalize_dtype(dtype)

    def __enter__(self):
        self.prev = get_default_dtype()
        set_default_dtype(self.dtype)

    def __exit__(self, *args):
        set_default_dtype(self.prev)


def manual_seed(seed: int) -> np.random.Generator:
    """
    Re-seed the process-wide generator.

    Returns
    -------
    numpy.random.Generator
        The freshly seeded generator.
    """
    global _generator
    _generator = np.random.default_rng(seed)
    return _generator


def get_generator() -> np.random.Generator:
    """Return the process-wide random generator."""
    return _generator


@contextlib.contextmanager
def fork_rng(seed: int) -> Iterator[np.random.Generator]:
    """
    Temporarily replace the process-wide generator with a seeded one.

    The previous generator (and its state) is restored on exit.
    """
    global _generator
    prev = _generator
    _generator = np.random.default_rng(seed)
    try:
        yield _generator
    finally:
        _generator = prev
