import numpy as np
import pytest

from mtensor.conv import convolve
from mtensor.deconv import (
    Deconv1d,
    Deconv2d,
    Deconv3d,
    DeconvNd,
    deconvolve,
)
from mtensor.tensor import Tensor


def _first_batch(tensor):
    return Tensor.from_data(tensor.numpy()[0:1].reshape(-1), (1,) + tensor.shape[1:], True)


def test_deconv1d_stride_three_repeats_input():
    src = _first_batch(Tensor.randn((5, 1, 5), 0.0, 1.0, 42, True))
    weights = Tensor.ones((1, 1, 3), True)
    out = Deconv1d((3,), (0,), (0,)).forward([src, weights])
    assert out.shape == (1, 1, 15)
    expected = np.repeat(src.numpy(), 3, axis=2)
    np.testing.assert_allclose(out.numpy(), expected, rtol=1e-6)


def test_deconv2d_channel_mismatch_raises():
    src = Tensor.randn((3, 2, 5, 5), 0.0, 1.0, 42, True)
    weights = Tensor.ones((3, 4, 3, 3), True)
    with pytest.raises(ValueError, match="same channels number"):
        Deconv2d((2, 2), (0, 0), (0, 0)).forward([src, weights])


def test_deconv3d_output_shape_with_bias():
    src = Tensor.randn((3, 2, 5, 5, 5), 0.0, 1.0, 42, True)
    weights = Tensor.randn((3, 2, 3, 3, 3), 0.0, 1.0, 42, True)
    bias = Tensor.randn((3,), 0.0, 1.0, 42, True)
    out = Deconv3d((2, 2, 2), (0, 0, 0), (0, 0, 0)).forward([src, weights, bias])
    assert out.shape == (3, 3, 11, 11, 11)
    assert out.requires_grad
    assert out.grad_fn.name.startswith("Deconv3d")


def test_pinned_values():
    src = np.array([[[1.0, 2.0]]], dtype=np.float32)
    np.testing.assert_allclose(
        deconvolve(src, np.ones((1, 1, 2), np.float32), None, (1,), (0,), (0,)),
        [[[1.0, 3.0, 2.0]]],
    )
    np.testing.assert_allclose(
        deconvolve(src, np.ones((1, 1, 3), np.float32), None, (2,), (0,), (0,)),
        [[[1.0, 1.0, 3.0, 2.0, 2.0]]],
    )
    np.testing.assert_allclose(
        deconvolve(src, np.ones((1, 1, 3), np.float32), None, (2,), (1,), (1,)),
        [[[1.0, 3.0, 2.0]]],
    )
    np.testing.assert_allclose(
        deconvolve(
            src, np.ones((1, 1, 2), np.float32), np.array([10.0], np.float32),
            (1,), (0,), (0,),
        ),
        [[[11.0, 13.0, 12.0]]],
    )


@pytest.mark.parametrize(
    "strides,pl,pr",
    [((1, 1), (0, 0), (0, 0)), ((2, 3), (1, 0), (0, 2)), ((2, 2), (1, 1), (1, 1))],
)
def test_adjoint_of_convolution(strides, pl, pr):
    rng = np.random.default_rng(0)
    x = rng.normal(size=(2, 3, 4, 5)).astype(np.float32)
    w = rng.normal(size=(4, 3, 3, 2)).astype(np.float32)
    out = deconvolve(x, w, None, strides, pl, pr)
    y = rng.normal(size=out.shape).astype(np.float32)
    conv_y = convolve(y, np.swapaxes(w, 0, 1), None, strides, pl, pr)
    assert conv_y.shape == x.shape
    assert np.isclose(np.sum(out * y), np.sum(x * conv_y), rtol=1e-4)


def test_backward_pinned_gradients():
    src = Tensor.from_data([1.0, 2.0], (1, 1, 2), True)
    weights = Tensor.from_data([1.0, 1.0], (1, 1, 2), True)
    bias = Tensor.from_data([0.5], (1,), True)
    out = Deconv1d((1,), (0,), (0,)).forward([src, weights, bias])
    np.testing.assert_allclose(out.numpy(), [[[1.5, 3.5, 2.5]]])
    out.grad_fn.backward(Tensor.ones((1, 1, 3)))
    np.testing.assert_allclose(src.grad.numpy(), [[[2.0, 2.0]]])
    np.testing.assert_allclose(weights.grad.numpy(), [[[3.0, 3.0]]])
    np.testing.assert_allclose(bias.grad.numpy(), [3.0])
    out.grad_fn.backward(Tensor.ones((1, 1, 3)))
    np.testing.assert_allclose(src.grad.numpy(), [[[4.0, 4.0]]])


def test_backward_src_gradient_matches_convolution():
    rng = np.random.default_rng(1)
    src = Tensor.from_data(rng.normal(size=2 * 2 * 3 * 3), (2, 2, 3, 3), True)
    weights = Tensor.from_data(rng.normal(size=3 * 2 * 2 * 2), (3, 2, 2, 2), True)
    op = Deconv2d((2, 1), (1, 0), (0, 1))
    out = op.forward([src, weights])
    diff_values = rng.normal(size=out.shape).astype(np.float32)
    out.grad_fn.backward(Tensor.from_data(diff_values.reshape(-1), out.shape))
    expected = convolve(
        diff_values, np.swapaxes(weights.numpy(), 0, 1), None, (2, 1), (1, 0), (0, 1)
    )
    np.testing.assert_allclose(src.grad.numpy(), expected, rtol=1e-4, atol=1e-5)
    assert weights.grad.shape == weights.shape


def test_no_grad_when_source_does_not_require_it():
    src = Tensor.ones((1, 1, 2))
    weights = Tensor.ones((1, 1, 2), True)
    out = Deconv1d((1,), (0,), (0,)).forward([src, weights])
    assert out.grad_fn is None
    assert out.requires_grad is False


@pytest.mark.parametrize(
    "args,message",
    [
        (((1, 1), (0,), (0,)), "invalid strides"),
        (((-1,), (0,), (0,)), "invalid strides"),
        (((1,), (-1,), (0,)), "invalid padding_l"),
        (((1,), (0,), (0, 0)), "invalid padding_r"),
    ],
)
def test_constructor_rejects_invalid_geometry(args, message):
    with pytest.raises(ValueError, match=message):
        Deconv1d(*args)


def test_base_class_cannot_be_instantiated():
    with pytest.raises(TypeError):
        DeconvNd((1,), (0,), (0,))


def test_bias_mismatch_raises():
    src = Tensor.ones((1, 2, 4), True)
    weights = Tensor.ones((3, 2, 2), True)
    bias = Tensor.ones((2,), True)
    with pytest.raises(ValueError, match="out_channels"):
        Deconv1d((1,), (0,), (0,)).forward([src, weights, bias])


def test_wrong_rank_raises():
    src = Tensor.ones((1, 2, 4, 4), True)
    weights = Tensor.ones((3, 2, 2, 2), True)
    with pytest.raises(ValueError, match="must be of shape"):
        Deconv1d((1,), (0,), (0,)).forward([src, weights])


def test_excessive_padding_raises():
    src = np.ones((1, 1, 1), np.float32)
    weights = np.ones((1, 1, 2), np.float32)
    with pytest.raises(ValueError):
        deconvolve(src, weights, None, (1,), (1,), (1,))


def test_counter_names_increase():
    src = Tensor.ones((1, 1, 2), True)
    weights = Tensor.ones((1, 1, 2))
    op = Deconv1d((1,), (0,), (0,))
    first = op.forward([src, weights]).grad_fn.name
    second = op.forward([src, weights]).grad_fn.name
    assert first.startswith("Deconv1d") and second.startswith("Deconv1d")
    assert int(second[len("Deconv1d"):]) == int(first[len("Deconv1d"):]) + 1