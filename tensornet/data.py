from typing import Iterator, Optional, Tuple

import numpy as np

from tensornet import config
from tensornet.errors import ShapeError
from tensornet.tensor import Tensor


class TensorDataset:
    """
    Dataset wrapping one or more tensors.

    Each sample is obtained by taking the same row of every tensor.

    Parameters
    ----------
    *tensors : Tensor
        One or more tensors with the same size in dimension 0.

    Raises
    ------
    ShapeError
        If no tensors are given or their leading dimensions differ.
    """
    def __init__(self, *tensors: Tensor) -> None:
        if not tensors:
            raise ShapeError("TensorDataset needs at least one tensor")
        if any(len(t) != len(tensors[0]) for t in tensors):
            raise ShapeError(f"Leading dimensions differ: {[t.shape for t in tensors]}")
        self.tensors = tensors

    def __getitem__(self, idx: int) -> Tuple[Tensor, ...]:
        """Return the sample tuple at index ``idx``; each row keeps a leading dim of 1."""
        return tuple(t.take([idx]) for t in self.tensors)

    def __len__(self) -> int:
        """Return number of samples."""
        return len(self.tensors[0])


class DataLoader:
    """
    Simple data loader providing batching and optional shuffling.

    Yields tuples of tensors, one per dataset tensor, each holding up to
    ``batch_size`` rows.

    Parameters
    ----------
    dataset : TensorDataset
        Dataset to iterate over.
    batch_size : int, default=1
        Number of samples per batch.
    shuffle : bool, default=False
        If True, shuffles indices at the start of each iteration.
    drop_last : bool, default=False
        If True, drops the last incomplete batch.
    generator : numpy.random.Generator, optional
        Source for shuffling. Defaults to the process-wide generator.
    """
    def __init__(
        self,
        dataset: TensorDataset,
        batch_size: int = 1,
        shuffle: bool = False,
        drop_last: bool = False,
        generator: Optional[np.random.Generator] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.dataset = dataset
        self.batch_size = batch_size
        self.shuffle = shuffle
        self.drop_last = drop_last
        self.generator = generator

    def __iter__(self) -> Iterator[Tuple[Tensor, ...]]:
        n = len(self.dataset)
        indices = np.arange(n)
        if self.shuffle:
            gen = self.generator if self.generator is not None else config.get_generator()
            gen.shuffle(indices)

        for start in range(0, n, self.batch_size):
            batch = indices[start:start + self.batch_size]
            if self.drop_last and len(batch) < self.batch_size:
                return
            yield tuple(t.take(batch) for t in self.dataset.tensors)

    def __len__(self) -> int:
        n = len(self.dataset)
        if self.drop_last:
            return n // self.batch_size
        return (n + self.batch_size - 1) // self.batch_size
