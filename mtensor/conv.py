"""N-dimensional convolution (cross-correlation) operations on tensors."""

from __future__ import annotations

import itertools
from typing import Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from mtensor.tensor import Operation, Tensor, accumulate_grad

__all__ = ["ConvNd", "Conv1d", "Conv2d", "Conv3d", "convolve"]

_DTYPE = np.float32


def _check_geometry(
    spatial: int,
    strides: Sequence[int],
    padding_l: Sequence[int],
    padding_r: Sequence[int],
) -> None:
    for label, values in (
        ("strides", strides),
        ("padding_l", padding_l),
        ("padding_r", padding_r),
    ):
        if len(values) != spatial:
            raise ValueError(
                f"{label} must have {spatial} entries, got {len(values)}"
            )
    if any(step <= 0 for step in strides):
        raise ValueError("strides must be positive")
    if any(pad < 0 for pad in (*padding_l, *padding_r)):
        raise ValueError("padding must not be negative")


def _pad(src: np.ndarray, padding_l: Sequence[int], padding_r: Sequence[int]) -> np.ndarray:
    return np.pad(src, [(0, 0), (0, 0)] + list(zip(padding_l, padding_r)))


def convolve(
    src: np.ndarray,
    weights: np.ndarray,
    bias: Optional[np.ndarray],
    strides: Sequence[int],
    padding_l: Sequence[int],
    padding_r: Sequence[int],
) -> np.ndarray:
    """Cross-correlate ``src`` (B, C, *S) with ``weights`` (OC, C, *K).

    Zero padding is applied on each side of the spatial axes, and ``bias``
    (OC,) is added to every output position when given.
    """
    src = np.asarray(src, dtype=_DTYPE)
    weights = np.asarray(weights, dtype=_DTYPE)
    spatial = src.ndim - 2
    if spatial < 1 or weights.ndim != src.ndim:
        raise ValueError(
            f"src and weights must have the same rank of at least 3, "
            f"got {src.ndim} and {weights.ndim}"
        )
    strides = tuple(int(step) for step in strides)
    padding_l = tuple(int(pad) for pad in padding_l)
    padding_r = tuple(int(pad) for pad in padding_r)
    _check_geometry(spatial, strides, padding_l, padding_r)
    if src.shape[1] != weights.shape[1]:
        raise ValueError(
            f"src has {src.shape[1]} channels but weights expect {weights.shape[1]}"
        )

    kernel = weights.shape[2:]
    padded = _pad(src, padding_l, padding_r)
    for size, k in zip(padded.shape[2:], kernel):
        if size < k:
            raise ValueError("kernel is larger than the padded input")

    spatial_axes = tuple(range(2, 2 + spatial))
    windows = sliding_window_view(padded, kernel, axis=spatial_axes)
    windows = windows[
        (slice(None), slice(None)) + tuple(slice(None, None, step) for step in strides)
    ]
    kernel_axes = list(range(2 + spatial, 2 + 2 * spatial))
    result = np.tensordot(
        windows, weights, axes=([1] + kernel_axes, [1] + list(spatial_axes))
    )
    result = np.moveaxis(result, -1, 1)

    if bias is not None:
        bias = np.asarray(bias, dtype=_DTYPE)
        if bias.ndim != 1 or bias.shape[0] != weights.shape[0]:
            raise ValueError(
                f"bias must have shape ({weights.shape[0]},), got {bias.shape}"
            )
        result = result + bias.reshape((1, -1) + (1,) * spatial)

    return np.ascontiguousarray(result, dtype=_DTYPE)


def _convolve_backward(
    src: np.ndarray,
    weights: np.ndarray,
    diff: np.ndarray,
    strides: Sequence[int],
    padding_l: Sequence[int],
    padding_r: Sequence[int],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Gradients of a convolution with respect to src, weights and bias."""
    spatial = src.ndim - 2
    spatial_axes = list(range(2, 2 + spatial))
    padded = _pad(src, padding_l, padding_r)
    grad_padded = np.zeros_like(padded)
    grad_weights = np.zeros_like(weights)
    out_dims = diff.shape[2:]

    for offset in itertools.product(*(range(k) for k in weights.shape[2:])):
        region = (slice(None), slice(None)) + tuple(
            slice(start, start + step * (count - 1) + 1, step)
            for start, step, count in zip(offset, strides, out_dims)
        )
        tap = weights[(slice(None), slice(None)) + offset]
        grad_padded[region] += np.moveaxis(
            np.tensordot(diff, tap, axes=([1], [0])), -1, 1
        )
        grad_weights[(slice(None), slice(None)) + offset] = np.tensordot(
            diff, padded[region], axes=([0] + spatial_axes, [0] + spatial_axes)
        )

    crop = (slice(None), slice(None)) + tuple(
        slice(pad, pad + size) for pad, size in zip(padding_l, src.shape[2:])
    )
    grad_src = grad_padded[crop]
    grad_bias = diff.sum(axis=tuple([0] + spatial_axes))
    return grad_src, grad_weights, grad_bias


def _from_array(values: np.ndarray) -> Tensor:
    values = np.ascontiguousarray(values, dtype=_DTYPE)
    return Tensor(values.reshape(-1), values.shape)


class ConvNd(Operation):
    """Convolution over a fixed number of spatial dimensions.

    Operands are ``(src, weights)`` or ``(src, weights, bias)``.
    """

    _spatial_dims = 0
    _layout = ""
    _weights_layout = ""
    _count = 0

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls._count = 0

    def __init__(
        self,
        strides: Sequence[int],
        padding_l: Sequence[int],
        padding_r: Sequence[int],
        inc_counter: bool = False,
    ) -> None:
        super().__init__()
        cls = type(self)
        if cls._spatial_dims == 0:
            raise TypeError("ConvNd is a base class; use Conv1d, Conv2d or Conv3d")
        label = cls.__name__
        dims = cls._spatial_dims
        strides = tuple(int(step) for step in strides)
        padding_l = tuple(int(pad) for pad in padding_l)
        padding_r = tuple(int(pad) for pad in padding_r)
        if len(strides) != dims or any(step < 0 for step in strides):
            raise ValueError(f"error : {label}() invalid strides were given")
        if len(padding_l) != dims or any(pad < 0 for pad in padding_l):
            raise ValueError(f"error : {label}() invalid padding_l was given")
        if len(padding_r) != dims or any(pad < 0 for pad in padding_r):
            raise ValueError(f"error : {label}() invalid padding_r was given")
        self.strides = strides
        self.padding_l = padding_l
        self.padding_r = padding_r
        if inc_counter:
            self.name = f"{label}{cls._count}"
            cls._count += 1

    def _validate(self, operands: Sequence[Tensor]) -> None:
        dims = type(self)._spatial_dims
        if len(operands) < 2:
            raise ValueError(" in_tensor and weights are both required ")
        src, weights = operands[0], operands[1]
        bias = operands[2] if len(operands) > 2 else None
        if (
            len(src.shape) != dims + 2
            or len(weights.shape) != dims + 2
            or (bias is not None and len(bias.shape) != 1)
        ):
            raise ValueError(
                f" in_tensor and weights must be of shape {self._layout} "
                f"while bias must be 1d tensor "
            )
        if src.shape[1] != weights.shape[1]:
            raise ValueError(
                f" in_tensor and weights must have same channels number "
                f"(if in_tensor is {self._layout} then weights must be "
                f"{self._weights_layout}) ! "
            )
        if bias is not None and bias.shape[0] != weights.shape[0]:
            raise ValueError(
                f" bias and weights must have same out_channels number "
                f"(if bias is (OC) then weights must be {self._weights_layout}) ! "
            )

    def forward(self, operands: Sequence[Tensor]) -> Tensor:
        label = type(self).__name__
        try:
            self._validate(operands)
            src, weights = operands[0], operands[1]
            bias = operands[2] if len(operands) > 2 else None
            values = convolve(
                src.numpy(),
                weights.numpy(),
                None if bias is None else bias.numpy(),
                self.strides,
                self.padding_l,
                self.padding_r,
            )
            grad_fn = None
            requires_grad = src.requires_grad
            if requires_grad:
                grad_fn = type(self)(
                    self.strides, self.padding_l, self.padding_r, inc_counter=True
                )
                grad_fn.operands = [src, weights] if bias is None else [src, weights, bias]
            return Tensor(
                values.reshape(-1),
                values.shape,
                grad_fn=grad_fn,
                requires_grad=requires_grad,
            )
        except Exception as exc:
            raise ValueError(
                f"error: {label}() was not possible for in_tensor: {exc}"
            ) from exc

    def backward(self, diff_loss_out: Tensor) -> None:
        src, weights = self.operands[0], self.operands[1]
        grad_src, grad_weights, grad_bias = _convolve_backward(
            src.numpy(),
            weights.numpy(),
            diff_loss_out.numpy(),
            self.strides,
            self.padding_l,
            self.padding_r,
        )
        accumulate_grad(src, _from_array(grad_src))
        accumulate_grad(weights, _from_array(grad_weights))
        if len(self.operands) > 2:
            accumulate_grad(self.operands[2], _from_array(grad_bias))


class Conv1d(ConvNd):
    """Convolution of (B, C, W) inputs with (OC, C, KW) weights."""

    _spatial_dims = 1
    _layout = "(B,C,T)"
    _weights_layout = "(OC,C,KW)"


class Conv2d(ConvNd):
    """Convolution of (B, C, H, W) inputs with (OC, C, KH, KW) weights."""

    _spatial_dims = 2
    _layout = "(B,C,H,W)"
    _weights_layout = "(OC,C,KH,KW)"


class Conv3d(ConvNd):
    """Convolution of (B, C, D, H, W) inputs with (OC, C, KD, KH, KW) weights."""

    _spatial_dims = 3
    _layout = "(B,C,D,H,W)"
    _weights_layout = "(OC,C,KD,KH,KW)"