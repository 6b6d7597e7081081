"""Element-wise comparisons and binary extrema with broadcasting.

Comparisons produce 1.0 where the relation holds and 0.0 elsewhere.
None of these operations can propagate gradients.
"""

from __future__ import annotations

import numpy as np

from mtensor.arithmetic import BinaryOperation
from mtensor.tensor import Tensor

__all__ = ["Eq", "Ne", "Ge", "Gt", "Le", "Lt", "Max", "Min"]


class _NonDifferentiable(BinaryOperation):
    """A binary operation whose backward pass always fails."""

    _backward_message = "Backward is not implemented"

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Eq(_NonDifferentiable):
    """1.0 where x == y."""

    _backward_message = "Backward is not implemented for eq() '=' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x == y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Ne(_NonDifferentiable):
    """1.0 where x != y."""

    _backward_message = "Backward is not implemented for Ne() '!=' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x != y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Ge(_NonDifferentiable):
    """1.0 where x >= y."""

    _backward_message = "Backward is not implemented for Ge() '>=' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x >= y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Gt(_NonDifferentiable):
    """1.0 where x > y."""

    _backward_message = "Backward is not implemented for Gt() '>' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x > y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Le(_NonDifferentiable):
    """1.0 where x <= y."""

    _backward_message = "Backward is not implemented for Le() '<=' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x <= y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Lt(_NonDifferentiable):
    """1.0 where x < y."""

    _backward_message = "Backward is not implemented for Lt() '<' "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x < y).astype(np.float32)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Max(_NonDifferentiable):
    """Element-wise maximum of x and y."""

    _backward_message = "Backward is not implemented for binary max() "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.maximum(x, y)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)


class Min(_NonDifferentiable):
    """Element-wise minimum of x and y."""

    _backward_message = "Backward is not implemented for binary min() "

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return np.minimum(x, y)

    def backward(self, diff_loss_out: Tensor) -> None:
        raise RuntimeError(self._backward_message)