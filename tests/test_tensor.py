import numpy as np
import pytest

from mtensor.tensor import (
    Operation,
    Tensor,
    accumulate_grad,
    is_valid_shape,
    row_major_stride,
)


class _Identity(Operation):
    def forward(self, operands):
        out = Tensor(operands[0].storage, operands[0].shape, grad_fn=self, requires_grad=True)
        self.operands = list(operands)
        return out

    def backward(self, diff_loss_out):
        accumulate_grad(self.operands[0], diff_loss_out)


def test_row_major_stride():
    assert row_major_stride([2, 3, 4]) == (12, 4, 1)
    assert row_major_stride([5]) == (1,)


@pytest.mark.parametrize(
    "shape,expected",
    [([2, 3], True), ([], False), ([2, 0], False), ([-1, 3], False)],
)
def test_is_valid_shape(shape, expected):
    assert is_valid_shape(shape) is expected


def test_invalid_shape_raises():
    with pytest.raises(ValueError):
        Tensor.zeros([2, 0])
    with pytest.raises(ValueError):
        Tensor.ones([])


def test_init_tensor_rand_case():
    t = Tensor.rand([2, 2, 3, 5], 2, 10)
    assert t.shape == (2, 2, 3, 5)
    assert t.numel() == 60
    assert t.stride == (30, 15, 5, 1)
    values = t.numpy()
    assert values.min() >= 2 and values.max() < 10
    assert t.is_leaf()
    assert not t.requires_grad


def test_zeros_and_ones():
    assert np.array_equal(Tensor.zeros([2, 3]).numpy(), np.zeros((2, 3)))
    ones = Tensor.ones([4], requires_grad=True)
    assert np.array_equal(ones.numpy(), np.ones(4))
    assert ones.requires_grad


def test_from_function_uses_flat_index():
    t = Tensor.from_function(lambda i: float(i), [2, 3])
    assert t.numpy().tolist() == [[0, 1, 2], [3, 4, 5]]


def test_from_data_roundtrip_and_size_check():
    t = Tensor.from_data([1, 2, 3, 4, 5, 6], [3, 2])
    assert t.numpy().tolist() == [[1, 2], [3, 4], [5, 6]]
    with pytest.raises(ValueError):
        Tensor.from_data([1, 2, 3], [2, 2])


def test_seeded_random_is_reproducible():
    a = Tensor.randn([3, 4], 0.0, 1.0, 42)
    b = Tensor.randn([3, 4], 0.0, 1.0, 42)
    assert np.array_equal(a.numpy(), b.numpy())
    c = Tensor.rand([3, 4], 0, 1, 7)
    d = Tensor.rand([3, 4], 0, 1, 7)
    assert np.array_equal(c.numpy(), d.numpy())


def test_strided_view_reads_storage():
    storage = np.arange(6, dtype=np.float32)
    transposed = Tensor(storage, [3, 2], 0, [1, 3], is_contiguous=False)
    assert transposed.numpy().tolist() == [[0, 3], [1, 4], [2, 5]]
    narrowed = Tensor(storage, [1, 3], 3, [3, 1])
    assert narrowed.numpy().tolist() == [[3, 4, 5]]


def test_name_default_and_override():
    t = Tensor.zeros([1])
    assert t.name.startswith("Tensor#")
    t.name = "weights"
    assert t.name == "weights"
    t.name = ""
    assert t.name.startswith("Tensor#")


def test_accumulate_grad_twice():
    x = Tensor.rand([2, 2], 0, 1, 42, True)
    op = _Identity("Identity0")
    out = op.forward([x])
    assert not out.is_leaf()
    diff = Tensor.ones([2, 2])
    out.grad_fn.backward(diff)
    out.grad_fn.backward(diff)
    assert np.array_equal(x.grad.numpy(), np.full((2, 2), 2.0))
    assert x.grad.storage is not diff.storage


def test_accumulate_grad_shape_mismatch():
    x = Tensor.zeros([2, 2])
    with pytest.raises(ValueError):
        accumulate_grad(x, Tensor.ones([4]))