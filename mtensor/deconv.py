"""N-dimensional transposed convolution (deconvolution) operations on tensors."""

from __future__ import annotations

import itertools
from typing import Optional, Sequence

import numpy as np

from mtensor.conv import _check_geometry, _from_array
from mtensor.tensor import Operation, Tensor, accumulate_grad

__all__ = ["DeconvNd", "Deconv1d", "Deconv2d", "Deconv3d", "deconvolve"]

_DTYPE = np.float32


def _regions(
    kernel: Sequence[int], strides: Sequence[int], in_dims: Sequence[int]
):
    """Yield each kernel offset with the output region its taps scatter into."""
    for offset in itertools.product(*(range(k) for k in kernel)):
        region = (slice(None), slice(None)) + tuple(
            slice(start, start + step * (count - 1) + 1, step)
            for start, step, count in zip(offset, strides, in_dims)
        )
        yield offset, region


def deconvolve(
    src: np.ndarray,
    weights: np.ndarray,
    bias: Optional[np.ndarray],
    strides: Sequence[int],
    padding_l: Sequence[int],
    padding_r: Sequence[int],
) -> np.ndarray:
    """Transposed convolution of ``src`` (B, C, *S) with ``weights`` (OC, C, *K).

    Each output dimension is ``(S - 1) * stride - padding_l - padding_r + K``;
    ``bias`` (OC,) is added to every output position when given.
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
    in_dims = src.shape[2:]
    full_dims = tuple(
        (size - 1) * step + k for size, step, k in zip(in_dims, strides, kernel)
    )
    out_dims = tuple(
        full - pl - pr for full, pl, pr in zip(full_dims, padding_l, padding_r)
    )
    if any(dim <= 0 for dim in out_dims):
        raise ValueError(f"padding leaves an empty output of shape {out_dims}")

    full = np.zeros((src.shape[0], weights.shape[0]) + full_dims, dtype=_DTYPE)
    for offset, region in _regions(kernel, strides, in_dims):
        tap = weights[(slice(None), slice(None)) + offset]
        full[region] += np.moveaxis(np.tensordot(src, tap, axes=([1], [1])), -1, 1)

    crop = (slice(None), slice(None)) + tuple(
        slice(pl, pl + size) for pl, size in zip(padding_l, out_dims)
    )
    result = full[crop]

    if bias is not None:
        bias = np.asarray(bias, dtype=_DTYPE)
        if bias.ndim != 1 or bias.shape[0] != weights.shape[0]:
            raise ValueError(
                f"bias must have shape ({weights.shape[0]},), got {bias.shape}"
            )
        result = result + bias.reshape((1, -1) + (1,) * spatial)

    return np.ascontiguousarray(result, dtype=_DTYPE)


def _deconvolve_backward(
    src: np.ndarray,
    weights: np.ndarray,
    diff: np.ndarray,
    strides: Sequence[int],
    padding_l: Sequence[int],
    padding_r: Sequence[int],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Gradients of a transposed convolution for src, weights and bias."""
    spatial = src.ndim - 2
    spatial_axes = list(range(2, 2 + spatial))
    diff_full = np.pad(diff, [(0, 0), (0, 0)] + list(zip(padding_l, padding_r)))
    grad_src = np.zeros_like(src)
    grad_weights = np.zeros_like(weights)

    for offset, region in _regions(weights.shape[2:], strides, src.shape[2:]):
        tap = weights[(slice(None), slice(None)) + offset]
        window = diff_full[region]
        grad_src += np.moveaxis(np.tensordot(window, tap, axes=([1], [0])), -1, 1)
        grad_weights[(slice(None), slice(None)) + offset] = np.tensordot(
            window, src, axes=([0] + spatial_axes, [0] + spatial_axes)
        )

    grad_bias = diff.sum(axis=tuple([0] + spatial_axes))
    return grad_src, grad_weights, grad_bias


class DeconvNd(Operation):
    """Transposed convolution over a fixed number of spatial dimensions.

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
            raise TypeError(
                "DeconvNd is a base class; use Deconv1d, Deconv2d or Deconv3d"
            )
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
            values = deconvolve(
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
                grad_fn.operands = (
                    [src, weights] if bias is None else [src, weights, bias]
                )
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
        grad_src, grad_weights, grad_bias = _deconvolve_backward(
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


class Deconv1d(DeconvNd):
    """Transposed convolution of (B, C, W) inputs with (OC, C, KW) weights."""

    _spatial_dims = 1
    _layout = "(B,C,T)"
    _weights_layout = "(OC,C,KW)"


class Deconv2d(DeconvNd):
    """Transposed convolution of (B, C, H, W) inputs with (OC, C, KH, KW) weights."""

    _spatial_dims = 2
    _layout = "(B,C,H,W)"
    _weights_layout = "(OC,C,KH,KW)"


class Deconv3d(DeconvNd):
    """Transposed convolution of (B, C, D, H, W) inputs with (OC, C, KD, KH, KW) weights."""

    _spatial_dims = 3
    _layout = "(B,C,D,H,W)"
    _weights_layout = "(OC,C,KD,KH,KW)"