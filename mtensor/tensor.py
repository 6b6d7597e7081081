"""Strided float32 tensors with autograd bookkeeping."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import as_strided

_DTYPE = np.float32


def row_major_stride(shape: Sequence[int]) -> tuple[int, ...]:
    """Return the element strides of a densely packed row-major layout."""
    strides = []
    step = 1
    for dim in reversed(shape):
        strides.append(step)
        step *= int(dim)
    return tuple(reversed(strides))


def is_valid_shape(shape: Sequence[int]) -> bool:
    """A shape is valid when it is non-empty and every dimension is positive."""
    return len(shape) > 0 and all(int(dim) > 0 for dim in shape)


class Operation(ABC):
    """A node of the gradient graph that produced a tensor."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.operands: list[Tensor] = []

    @abstractmethod
    def forward(self, operands: Sequence["Tensor"]) -> "Tensor":
        """Compute the result of the operation on ``operands``."""

    @abstractmethod
    def backward(self, diff_loss_out: "Tensor") -> None:
        """Propagate ``diff_loss_out`` into the gradients of the operands."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class Tensor:
    """A view of shape, strides and offset over a flat float32 storage."""

    def __init__(
        self,
        storage: np.ndarray,
        shape: Sequence[int],
        offset: int = 0,
        stride: Optional[Sequence[int]] = None,
        grad_fn: Optional[Operation] = None,
        requires_grad: bool = False,
        is_contiguous: bool = True,
    ) -> None:
        self.shape = tuple(int(dim) for dim in shape)
        if stride is None:
            if not is_valid_shape(self.shape):
                raise ValueError("error : invalid shape is given")
            self.stride = row_major_stride(self.shape)
        else:
            self.stride = tuple(int(step) for step in stride)
        self.storage = np.asarray(storage, dtype=_DTYPE).reshape(-1)
        self.offset = int(offset)
        self.grad_fn = grad_fn
        self.requires_grad = bool(requires_grad)
        self.is_contiguous = bool(is_contiguous)
        self.grad: Optional[Tensor] = None
        self._name = ""

    @property
    def name(self) -> str:
        return self._name or f"Tensor#{id(self)}"

    @name.setter
    def name(self, value: str) -> None:
        self._name = value

    @classmethod
    def _allocate(cls, shape: Sequence[int]) -> tuple[tuple[int, ...], int]:
        shape = tuple(int(dim) for dim in shape)
        if not is_valid_shape(shape):
            raise ValueError("error : invalid shape is given")
        return shape, math.prod(shape)

    @classmethod
    def from_data(
        cls, data: Iterable[float], shape: Sequence[int], requires_grad: bool = False
    ) -> "Tensor":
        """Copy row-major ``data`` into a new contiguous tensor of ``shape``."""
        shape, numel = cls._allocate(shape)
        flat = np.array(data, dtype=_DTYPE).reshape(-1)
        if flat.size != numel:
            raise ValueError(
                f"error : {flat.size} values given for a tensor of {numel} elements"
            )
        return cls(flat, shape, requires_grad=requires_grad)

    @classmethod
    def from_function(
        cls,
        init_fn: Callable[[int], float],
        shape: Sequence[int],
        requires_grad: bool = False,
    ) -> "Tensor":
        """Fill a new tensor with ``init_fn(i)`` for each flat index ``i``."""
        shape, numel = cls._allocate(shape)
        flat = np.fromiter((init_fn(i) for i in range(numel)), dtype=_DTYPE, count=numel)
        return cls(flat, shape, requires_grad=requires_grad)

    @classmethod
    def zeros(cls, shape: Sequence[int], requires_grad: bool = False) -> "Tensor":
        shape, numel = cls._allocate(shape)
        return cls(np.zeros(numel, dtype=_DTYPE), shape, requires_grad=requires_grad)

    @classmethod
    def ones(cls, shape: Sequence[int], requires_grad: bool = False) -> "Tensor":
        shape, numel = cls._allocate(shape)
        return cls(np.ones(numel, dtype=_DTYPE), shape, requires_grad=requires_grad)

    @classmethod
    def randn(
        cls,
        shape: Sequence[int],
        mean: float = 0.0,
        stddev: float = 1.0,
        seed: int = -1,
        requires_grad: bool = False,
    ) -> "Tensor":
        """Normally distributed values; a seed of -1 draws fresh entropy."""
        shape, numel = cls._allocate(shape)
        rng = np.random.default_rng(None if seed == -1 else seed)
        values = rng.normal(mean, stddev, numel).astype(_DTYPE)
        return cls(values, shape, requires_grad=requires_grad)

    @classmethod
    def rand(
        cls,
        shape: Sequence[int],
        lower_bound: float = 0.0,
        upper_bound: float = 1.0,
        seed: int = -1,
        requires_grad: bool = False,
    ) -> "Tensor":
        """Uniform values in [lower_bound, upper_bound); seed -1 is unseeded."""
        shape, numel = cls._allocate(shape)
        rng = np.random.default_rng(None if seed == -1 else seed)
        values = rng.uniform(lower_bound, upper_bound, numel).astype(_DTYPE)
        # float32 rounding may land exactly on the upper bound
        if upper_bound > lower_bound:
            values = np.minimum(
                values, np.nextafter(_DTYPE(upper_bound), _DTYPE(lower_bound))
            )
        return cls(values, shape, requires_grad=requires_grad)

    def numel(self) -> int:
        return math.prod(self.shape)

    def is_leaf(self) -> bool:
        return self.grad_fn is None

    def _view(self, writeable: bool = False) -> np.ndarray:
        itemsize = self.storage.itemsize
        return as_strided(
            self.storage[self.offset:],
            shape=self.shape,
            strides=tuple(step * itemsize for step in self.stride),
            writeable=writeable,
        )

    def numpy(self) -> np.ndarray:
        """Return the logical contents as a fresh numpy array."""
        return np.array(self._view(), dtype=_DTYPE, copy=True)

    def __repr__(self) -> str:
        return (
            f"Tensor(name={self.name!r}, shape={self.shape}, stride={self.stride},"
            f" requires_grad={self.requires_grad},\n{self.numpy()})"
        )


def accumulate_grad(tensor: Tensor, diff: Tensor) -> None:
    """Add ``diff`` into ``tensor.grad``, creating a contiguous copy if absent."""
    if tuple(diff.shape) != tuple(tensor.shape):
        raise ValueError(
            f"error : gradient of shape {diff.shape} does not match tensor of shape {tensor.shape}"
        )
    if tensor.grad is None:
        tensor.grad = Tensor(diff.numpy().reshape(-1), diff.shape)
        return
    target = tensor.grad._view(writeable=True)
    target += diff.numpy()