from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from tensornet import config
from tensornet.errors import ShapeError

_Number = Union[int, float, np.floating]


def _check_shape(shape: Sequence[int]) -> Tuple[int, ...]:
    """
    Validate a dimension list and return it as a tuple.

    Parameters
    ----------
    shape : sequence of int
        Candidate shape.

    Returns
    -------
    tuple of int
        The validated shape.

    Raises
    ------
    ShapeError
        If ``shape`` is empty or any dimension is not a positive integer.
        Zero-sized tensors are not supported.
    """
    try:
        dims = tuple(shape)
    except TypeError:
        raise ShapeError(f"Shape must be a sequence of ints, got {shape!r}") from None
    if not dims:
        raise ShapeError("Shape must have at least one dimension")
    for d in dims:
        if isinstance(d, (bool, np.bool_)) or not isinstance(d, (int, np.integer)):
            raise ShapeError(f"Dimensions must be integers, got {shape!r}")
        if d <= 0:
            raise ShapeError(f"Dimensions must be positive, got {shape!r}")
    return tuple(int(d) for d in dims)


def _unpack_shape(shape: Tuple[Any, ...]) -> Tuple[Any, ...]:
    """Accept both ``f(2, 3)`` and ``f((2, 3))`` call styles."""
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        return tuple(shape[0])
    return shape


class Tensor:
    """
    An N-dimensional numeric array with shape-checked operations.

    The tensor owns a C-contiguous (row-major) NumPy buffer whose size always
    equals the product of its shape. Unlike NumPy, elementwise operations do
    not broadcast implicitly: shapes must match exactly, and callers that
    want replication ask for it with :meth:`broadcast_to`.

    Notes
    -----
    - DType is ``float32`` or ``float64``; see :mod:`tensornet.config`.
    - Every operation either mutates ``self`` (``fill``, ``random``,
      ``reshape``, ``copy_``, in-place arithmetic) or returns a newly
      allocated tensor. No tensor ever shares storage with another.
    - Shape errors are raised before any buffer is written.
    """
    def __init__(
        self,
        shape: Sequence[int],
        dtype: Optional[Union[str, type, np.dtype]] = None,
    ) -> None:
        """
        Allocate a zero-filled tensor.

        Parameters
        ----------
        shape : sequence of int
            Dimension sizes. Must be non-empty and strictly positive.
        dtype : {None, 'float32', 'float64'}, optional
            Element type. ``None`` selects :func:`config.get_default_dtype`.

        Attributes
        ----------
        data : numpy.ndarray
            The owned, contiguous buffer. Optimizers write into it in place;
            it is never rebound by tensornet itself except by ``reshape``,
            which keeps the same memory.

        Raises
        ------
        ShapeError
            If ``shape`` is empty or contains a non-positive dimension.
        TypeError
            If ``dtype`` is not a supported float type.

        Examples
        --------
        >>> Tensor((2, 3)).shape
        (2, 3)
        >>> Tensor([0, 3])
        Traceback (most recent call last):
            ...
        tensornet.errors.ShapeError: Dimensions must be positive, got [0, 3]
        """
        dims = _check_shape(shape)
        self.data = np.zeros(dims, dtype=config.normalize_dtype(dtype))

    @classmethod
    def from_data(
        cls,
        data: Any,
        dtype: Optional[Union[str, type, np.dtype]] = None,
    ) -> "Tensor":
        """
        Create a tensor holding a copy of array-like ``data``.

        Parameters
        ----------
        data : Any
            Nested lists, a NumPy array or a scalar. Scalars become shape
            ``(1,)``.
        dtype : {None, 'float32', 'float64'}, optional
            Element type. If None and ``data`` is a float64 array, float64 is
            kept; otherwise the default dtype is used.

        Returns
        -------
        Tensor
            A tensor that does not alias ``data``.

        Examples
        --------
        >>> Tensor.from_data([[1, 2], [3, 4]]).shape
        (2, 2)
        """
        if dtype is None and isinstance(data, np.ndarray) and data.dtype == np.float64:
            dtype = np.float64
        arr = np.array(data, dtype=config.normalize_dtype(dtype), order="C", copy=True)
        if arr.ndim == 0:
            arr = arr.reshape(1)
        _check_shape(arr.shape)

        out = cls.__new__(cls)
        out.data = arr
        return out

    @classmethod
    def zeros(cls, *shape: int, dtype: Optional[Union[str, type, np.dtype]] = None) -> "Tensor":
        """Create a zero-filled tensor; accepts ``zeros(2, 3)`` or ``zeros((2, 3))``."""
        return cls(_unpack_shape(shape), dtype=dtype)

    @classmethod
    def full(
        cls,
        shape: Sequence[int],
        value: _Number,
        dtype: Optional[Union[str, type, np.dtype]] = None,
    ) -> "Tensor":
        """Create a tensor with every element set to ``value``."""
        out = cls(shape, dtype=dtype)
        out.fill(value)
        return out

    @classmethod
    def rand(
        cls,
        *shape: int,
        scale: float = 1.0,
        generator: Optional[np.random.Generator] = None,
        dtype: Optional[Union[str, type, np.dtype]] = None,
    ) -> "Tensor":
        """
        Create a tensor with values sampled from ``N(0, scale^2)``.

        See :meth:`random` for the sampling and seeding rules.
        """
        out = cls(_unpack_shape(shape), dtype=dtype)
        return out.random(scale=scale, generator=generator)

    @property
    def shape(self) -> Tuple[int, ...]:
        """tuple of int: The tensor's shape."""
        return self.data.shape

    @property
    def dtype(self) -> np.dtype:
        """numpy.dtype: The element type."""
        return self.data.dtype

    @property
    def ndim(self) -> int:
        """int: The number of dimensions."""
        return self.data.ndim

    @property
    def size(self) -> int:
        """int: Total number of elements."""
        return self.data.size

    @property
    def T(self) -> "Tensor":
        """Tensor: Materialized transpose (rank 2 only)."""
        return self.transpose()

    def fill(self, value: _Number) -> "Tensor":
        """Set every element to ``value`` in place and return ``self``."""
        self.data.fill(value)
        return self

    def random(
        self,
        scale: float = 1.0,
        generator: Optional[np.random.Generator] = None,
    ) -> "Tensor":
        """
        Overwrite every element with a sample from ``N(0, scale^2)``.

        Parameters
        ----------
        scale : float, default=1.0
            Standard deviation of the distribution.
        generator : numpy.random.Generator, optional
            Source of randomness. If omitted, the process-wide generator from
            :func:`config.get_generator` is used, which is unseeded unless
            :func:`config.manual_seed` has been called.

        Returns
        -------
        Tensor
            ``self``.
        """
        gen = generator if generator is not None else config.get_generator()
        self.data[...] = gen.standard_normal(self.shape, dtype=self.dtype) * scale
        return self

    def reshape(self, *shape: int) -> "Tensor":
        """
        Reinterpret the buffer under a new shape, in place.

        The element order is unchanged and no data is copied. Unlike NumPy,
        ``-1`` is not accepted: every dimension must be given explicitly.

        Parameters
        ----------
        shape : int
            The new shape, variadic (``reshape(3, 2)``) or as one sequence
            (``reshape((3, 2))``).

        Returns
        -------
        Tensor
            ``self``, now with the new shape.

        Raises
        ------
        ShapeError
            If the new shape is invalid or its element count differs from
            ``self.size``.

        Examples
        --------
        >>> x = Tensor.from_data([[1, 2, 3], [4, 5, 6]])
        >>> x.reshape(3, 2).shape
        (3, 2)
        """
        dims = _check_shape(_unpack_shape(shape))
        if int(np.prod(dims)) != self.size:
            raise ShapeError(f"Cannot reshape {self.shape} ({self.size} elements) into {dims}")
        self.data = self.data.reshape(dims)
        return self

    def transpose(self) -> "Tensor":
        """
        Return a new tensor with the two dimensions swapped.

        Only rank-2 tensors are supported; the result is a materialized copy,
        not a view.

        Raises
        ------
        ShapeError
            If ``self.ndim != 2``.
        """
        if self.ndim != 2:
            raise ShapeError(f"transpose requires a 2-D tensor, got shape {self.shape}")
        return Tensor._wrap(np.ascontiguousarray(self.data.T))

    def matmul(self, other: "Tensor") -> "Tensor":
        """
        2-D matrix multiplication ``(m, k) @ (k, n) -> (m, n)``.

        Parameters
        ----------
        other : Tensor
            Right-hand operand, rank 2, same dtype.

        Returns
        -------
        Tensor
            New tensor of shape ``(self.shape[0], other.shape[1])``.

        Raises
        ------
        ShapeError
            If either operand is not rank 2 or the inner dimensions differ.
        TypeError
            If the operands have different dtypes.

        Notes
        -----
        Products are accumulated in the operands' dtype by NumPy's
        ``matmul``; there is no wider accumulator for ``float32``.

        Examples
        --------
        >>> a = Tensor.zeros(2, 3)
        >>> b = Tensor.zeros(3, 4)
        >>> a.matmul(b).shape
        (2, 4)
        """
        other = self._coerce(other)
        if self.ndim != 2 or other.ndim != 2:
            raise ShapeError(f"matmul requires 2-D tensors, got {self.shape} and {other.shape}")
        if self.shape[1] != other.shape[0]:
            raise ShapeError(f"matmul inner dimensions differ: {self.shape} @ {other.shape}")
        return Tensor._wrap(np.matmul(self.data, other.data))

    def add(self, other: Union["Tensor", _Number]) -> "Tensor":
        """
        Elementwise addition.

        Shapes must be identical; nothing is broadcast implicitly. Use
        :meth:`broadcast_to` first when replication is intended. Python
        scalars are accepted and applied to every element.

        Raises
        ------
        ShapeError
            If ``other`` is a tensor of a different shape.
        TypeError
            If ``other`` is a tensor of a different dtype.
        """
        return Tensor._wrap(self.data + self._operand(other))

    def sub(self, other: Union["Tensor", _Number]) -> "Tensor":
        """Elementwise subtraction; same shape rule as :meth:`add`."""
        return Tensor._wrap(self.data - self._operand(other))

    def mul(self, other: Union["Tensor", _Number]) -> "Tensor":
        """Elementwise multiplication; same shape rule as :meth:`add`."""
        return Tensor._wrap(self.data * self._operand(other))

    def sum(self, axis: int) -> "Tensor":
        """
        Sum along ``axis``, keeping the rank.

        Parameters
        ----------
        axis : int
            Axis to reduce, in ``[-ndim, ndim)``.

        Returns
        -------
        Tensor
            New tensor whose ``axis`` has size 1.

        Raises
        ------
        ShapeError
            If ``axis`` is out of bounds.

        Examples
        --------
        >>> x = Tensor.from_data([[1., 2.], [3., 4.]])
        >>> x.sum(0).numpy()
        array([[4., 6.]], dtype=float32)
        """
        if isinstance(axis, bool) or not isinstance(axis, (int, np.integer)):
            raise ShapeError(f"axis must be an integer, got {axis!r}")
        if not -self.ndim <= axis < self.ndim:
            raise ShapeError(f"axis {axis} is out of bounds for shape {self.shape}")
        return Tensor._wrap(np.sum(self.data, axis=int(axis), keepdims=True))

    def broadcast_to(self, shape: Sequence[int]) -> "Tensor":
        """
        Replicate values along size-1 axes to produce ``shape``.

        Dimensions are aligned from the trailing end. Each source dimension
        must be 1 or equal to the matching target dimension, and the source
        rank must not exceed the target rank. The result is a new,
        materialized tensor.

        Parameters
        ----------
        shape : sequence of int
            Target shape.

        Raises
        ------
        ShapeError
            If the shapes are not broadcast-compatible.

        Examples
        --------
        >>> b = Tensor.from_data([[1., 2.]])
        >>> b.broadcast_to((3, 2)).shape
        (3, 2)
        """
        target = _check_shape(shape)
        if self.ndim > len(target):
            raise ShapeError(f"Cannot broadcast {self.shape} to lower rank {target}")
        for src, dst in zip(reversed(self.shape), reversed(target)):
            if src != 1 and src != dst:
                raise ShapeError(f"Cannot broadcast {self.shape} to {target}")
        return Tensor._wrap(np.broadcast_to(self.data, target))

    def copy_(self, other: "Tensor") -> "Tensor":
        """
        Overwrite this tensor's values with ``other``'s, in place.

        The buffer is kept (so references held elsewhere stay valid); values
        are cast to ``self.dtype``.

        Raises
        ------
        ShapeError
            If the shapes differ.
        """
        other = self._coerce(other, check_dtype=False)
        if other.shape != self.shape:
            raise ShapeError(f"copy_ shape mismatch: {self.shape} <- {other.shape}")
        self.data[...] = other.data
        return self

    def copy(self) -> "Tensor":
        """Return a deep copy."""
        return Tensor._wrap(self.data.copy())

    def numpy(self) -> np.ndarray:
        """Return a copy of the buffer as a NumPy array."""
        return self.data.copy()

    def take(self, indices: Union[Sequence[int], np.ndarray]) -> "Tensor":
        """
        Gather rows along axis 0 into a new tensor.

        Raises
        ------
        ShapeError
            If ``indices`` is empty.
        TypeError
            If ``indices`` are not integers.
        IndexError
            If an index is out of range.
        """
        idx = np.asarray(indices).reshape(-1)
        if idx.size == 0:
            raise ShapeError("take requires at least one index")
        if not np.issubdtype(idx.dtype, np.integer):
            raise TypeError(f"take requires integer indices, got dtype {idx.dtype}")
        return Tensor._wrap(np.take(self.data, idx, axis=0))

    def same_shape(self, other: "Tensor") -> bool:
        """Return whether ``other`` has exactly this tensor's shape."""
        return self.shape == other.shape

    def equal(self, other: "Tensor") -> bool:
        """Return True if shapes and all values are identical."""
        return self.same_shape(other) and bool(np.array_equal(self.data, other.data))

    def allclose(self, other: "Tensor", rtol: float = 1e-5, atol: float = 1e-8) -> bool:
        """Return True if shapes match and values agree within tolerance."""
        return self.same_shape(other) and bool(np.allclose(self.data, other.data, rtol=rtol, atol=atol))

    def __matmul__(self, other: "Tensor") -> "Tensor":
        return self.matmul(other)

    def __add__(self, other: Union["Tensor", _Number]) -> "Tensor":
        return self.add(other)

    def __radd__(self, other: _Number) -> "Tensor":
        return self.add(other)

    def __sub__(self, other: Union["Tensor", _Number]) -> "Tensor":
        return self.sub(other)

    def __rsub__(self, other: _Number) -> "Tensor":
        return Tensor._wrap(self._operand(other) - self.data)

    def __mul__(self, other: Union["Tensor", _Number]) -> "Tensor":
        return self.mul(other)

    def __rmul__(self, other: _Number) -> "Tensor":
        return self.mul(other)

    def __neg__(self) -> "Tensor":
        return Tensor._wrap(-self.data)

    def __iadd__(self, other: Union["Tensor", _Number]) -> "Tensor":
        self.data += self._operand(other)
        return self

    def __isub__(self, other: Union["Tensor", _Number]) -> "Tensor":
        self.data -= self._operand(other)
        return self

    def __imul__(self, other: Union["Tensor", _Number]) -> "Tensor":
        self.data *= self._operand(other)
        return self

    def __len__(self) -> int:
        return self.shape[0]

    def __repr__(self) -> str:
        """
        Returns a readable string representation of the tensor.

        Examples
        --------
        >>> print(Tensor.from_data([[1, 2], [3, 4]]))
        tensor([[1., 2.],
                [3., 4.]], dtype=float32)
        """
        data_str = np.array2string(self.data, separator=', ', prefix='tensor(')
        return f"tensor({data_str}, dtype={self.data.dtype})"

    def _operand(self, other: Union["Tensor", _Number]) -> Any:
        """Return the raw value to combine elementwise with ``self.data``."""
        if isinstance(other, Tensor):
            self._coerce(other)
            if other.shape != self.shape:
                raise ShapeError(
                    f"Elementwise operation requires identical shapes, got {self.shape} and {other.shape}"
                )
            return other.data
        if isinstance(other, (int, float, np.integer, np.floating)) and not isinstance(other, bool):
            return self.data.dtype.type(other)
        raise TypeError(f"Unsupported operand type: {type(other).__name__}")

    def _coerce(self, other: Any, check_dtype: bool = True) -> "Tensor":
        if not isinstance(other, Tensor):
            raise TypeError(f"Expected a Tensor, got {type(other).__name__}")
        if check_dtype and other.dtype != self.dtype:
            raise TypeError(f"dtype mismatch: {self.dtype} and {other.dtype}")
        return other

    @staticmethod
    def _wrap(data: np.ndarray) -> "Tensor":
        """Wrap a computed array, copying it unless it is already an owned, writable C array."""
        out = Tensor.__new__(Tensor)
        out.data = np.require(data, requirements=["C", "O", "W"])
        return out
