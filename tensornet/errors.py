class TensorNetError(Exception):
    """Base class for all errors raised by tensornet."""


class ShapeError(TensorNetError, ValueError):
    """
    Raised when operand shapes are structurally incompatible.

    Covers matmul inner-dimension mismatches, elementwise ops on unequal
    shapes, reshapes that change the element count, transposes of
    unsupported rank and invalid broadcast targets. It is always raised
    before any buffer is written, so the operands are left unchanged.
    """


class StateError(TensorNetError, RuntimeError):
    """Raised when a layer is used out of order, e.g. ``backward`` before ``forward``."""


class RegistrationError(TensorNetError, ValueError):
    """Raised when tensors are registered with an optimizer incorrectly."""
