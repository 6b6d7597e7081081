"""Element-wise binary arithmetic with broadcasting and gradients."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from mtensor.tensor import Operation, Tensor, accumulate_grad

_DTYPE = np.float32


def _from_array(values: np.ndarray) -> Tensor:
    values = np.ascontiguousarray(values, dtype=_DTYPE)
    return Tensor(values.reshape(-1), values.shape)


class _Expand(Operation):
    """Broadcast view of a tensor; its gradient sums back over expanded axes."""

    _count = 0

    def __init__(self, shape: Sequence[int], inc_counter: bool = False) -> None:
        super().__init__()
        self.target_shape = tuple(int(dim) for dim in shape)
        if inc_counter:
            self.name = f"Expand{_Expand._count}"
            _Expand._count += 1

    def forward(self, operands: Sequence[Tensor]) -> Tensor:
        return _expand(operands[0], self.target_shape)

    def backward(self, diff_loss_out: Tensor) -> None:
        source = self.operands[0]
        diff = diff_loss_out.numpy()
        lead = diff.ndim - len(source.shape)
        if lead:
            diff = diff.sum(axis=tuple(range(lead)))
        axes = tuple(
            axis
            for axis, (src_dim, dim) in enumerate(zip(source.shape, diff.shape))
            if src_dim == 1 and dim != 1
        )
        if axes:
            diff = diff.sum(axis=axes, keepdims=True)
        accumulate_grad(source, _from_array(diff))


def _expand(tensor: Tensor, shape: tuple[int, ...]) -> Tensor:
    if tensor.shape == shape:
        return tensor
    lead = len(shape) - len(tensor.shape)
    strides = [0] * lead
    for src_dim, src_step, dim in zip(tensor.shape, tensor.stride, shape[lead:]):
        strides.append(0 if src_dim == 1 and dim != 1 else src_step)
    grad_fn = None
    if tensor.requires_grad:
        grad_fn = _Expand(shape, inc_counter=True)
        grad_fn.operands = [tensor]
    return Tensor(
        tensor.storage,
        shape,
        offset=tensor.offset,
        stride=strides,
        grad_fn=grad_fn,
        requires_grad=tensor.requires_grad,
        is_contiguous=False,
    )


def broadcast(tensor_a: Tensor, tensor_b: Tensor) -> tuple[Tensor, Tensor]:
    """Return views of both tensors expanded to their common shape."""
    if tensor_a.shape == tensor_b.shape:
        return tensor_a, tensor_b
    try:
        shape = tuple(int(d) for d in np.broadcast_shapes(tensor_a.shape, tensor_b.shape))
    except ValueError as exc:
        raise ValueError(
            f"error : shapes {tensor_a.shape} and {tensor_b.shape} cannot be broadcast"
        ) from exc
    return _expand(tensor_a, shape), _expand(tensor_b, shape)


class BinaryOperation(Operation):
    """Base for element-wise operations on two broadcast operands."""

    _count = 0

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls._count = 0

    def __init__(self, inc_counter: bool = False) -> None:
        super().__init__()
        if inc_counter:
            cls = type(self)
            self.name = f"{cls.__name__}{cls._count}"
            cls._count += 1

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def forward(self, operands: Sequence[Tensor]) -> Tensor:
        try:
            if len(operands) < 2:
                raise ValueError("two operands are required")
            x, y = broadcast(operands[0], operands[1])
            with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                values = np.asarray(self._apply(x.numpy(), y.numpy()), dtype=_DTYPE)
            grad_fn = None
            requires_grad = x.requires_grad or y.requires_grad
            if requires_grad:
                grad_fn = type(self)(inc_counter=True)
                grad_fn.operands = [x, y]
            return Tensor(
                np.ascontiguousarray(values).reshape(-1),
                x.shape,
                grad_fn=grad_fn,
                requires_grad=requires_grad,
            )
        except Exception as exc:
            raise RuntimeError(f"error : {type(self).__name__}() {exc}") from exc


class Add(BinaryOperation):
    """x + y."""

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return x + y

    def backward(self, diff_loss_out: Tensor) -> None:
        x, y = self.operands
        accumulate_grad(x, diff_loss_out)
        accumulate_grad(y, diff_loss_out)


class Sub(BinaryOperation):
    """x - y."""

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return x - y

    def backward(self, diff_loss_out: Tensor) -> None:
        x, y = self.operands
        accumulate_grad(x, diff_loss_out)
        accumulate_grad(y, _from_array(-diff_loss_out.numpy()))


class Mul(BinaryOperation):
    """x * y."""

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return x * y

    def backward(self, diff_loss_out: Tensor) -> None:
        x, y = self.operands
        diff = diff_loss_out.numpy()
        x_values, y_values = x.numpy(), y.numpy()
        accumulate_grad(x, _from_array(y_values * diff))
        accumulate_grad(y, _from_array(x_values * diff))


class Div(BinaryOperation):
    """x / y."""

    def _apply(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return x / y

    def backward(self, diff_loss_out: Tensor) -> None:
        x, y = self.operands
        diff = diff_loss_out.numpy()
        x_values, y_values = x.numpy(), y.numpy()
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            diff_x = (1.0 / y_values) * diff
            diff_y = (-x_values / (y_values * y_values)) * diff
        accumulate_grad(x, _from_array(diff_x))
        accumulate_grad(y, _from_array(diff_y))