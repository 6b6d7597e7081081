# mtensor

`mtensor` is a small tensor library built on NumPy. A tensor is a strided
view (shape, stride and offset) over a flat float32 storage. Operations
record how each result was made. Gradients can then be sent back through
that record. The graph of tensors and operations can also be exported as an
HTML page.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Tensors

`mtensor.tensor.Tensor` has these attributes:

- `shape`, `stride` and `offset`
- `storage`
- `requires_grad`
- `grad_fn`, the operation that produced the tensor, or `None`
- `grad`, the accumulated gradient, or `None`
- `is_contiguous`
- `name`, which defaults to `Tensor#<id>`

These class methods create tensors:

```python
from mtensor.tensor import Tensor

a = Tensor.ones([2, 4, 4], requires_grad=True)
b = Tensor.zeros([2, 4, 4])
c = Tensor.randn([2, 4, 4], mean=0.0, stddev=1.0, seed=42, requires_grad=True)
d = Tensor.rand([2, 2, 3, 5], lower_bound=2.0, upper_bound=10.0, seed=42)
e = Tensor.from_function(lambda i: float(i), [3, 5])
f = Tensor.from_data([1, 2, 3, 4, 5, 6], [2, 3])

print(c.numel())    # 32
print(c.is_leaf())  # True: not produced by an operation
print(f.numpy())    # a fresh NumPy copy of the logical contents
```

A shape must be non-empty, and every dimension must be positive. Otherwise a
`ValueError` is raised. `from_data` also raises `ValueError` when the number
of values does not match the shape.

With a `seed` the random values are reproducible. A seed of `-1` (the
default) draws fresh entropy. `rand` returns values in
`[lower_bound, upper_bound)`.

`mtensor.tensor` also provides these helpers:

- `row_major_stride(shape)`
- `is_valid_shape(shape)`
- `accumulate_grad(tensor, diff)`: adds `diff` into `tensor.grad`. It creates
  a contiguous copy if there is no gradient yet, and raises `ValueError` if
  the shapes differ.

`Operation` is the abstract base for every operation. It has a `name`, a
list of `operands`, and `forward(operands)` and `backward(diff_loss_out)`
methods.

## Arithmetic and broadcasting

`mtensor.arithmetic` provides `Add`, `Sub`, `Mul` and `Div`, which are
subclasses of `BinaryOperation`.

`forward` broadcasts its two operands to a common shape. The result requires
gradients if either operand does. In that case the result's `grad_fn` is a
new operation named after its class and a running count, such as `Sub0`.
Any failure is raised as a `RuntimeError`.

`backward` adds the gradient into both operands. If an operand already has a
gradient, the new one is summed into it. When an operand was broadcast, the
gradient lands on the broadcast view that the operation recorded.

```python
from mtensor.tensor import Tensor
from mtensor.arithmetic import Sub, broadcast

x = Tensor.randn([2, 4, 4], 0.0, 1.0, 42, True)
y = Tensor.randn([2, 4, 4], 0.0, 2.0, 42, True)

out = Sub().forward([x, y])
out.grad_fn.backward(Tensor.ones([2, 4, 4]))
print(x.grad.numpy()[0, 0])  # [1. 1. 1. 1.]
print(y.grad.numpy()[0, 0])  # [-1. -1. -1. -1.]

wide, narrow = broadcast(Tensor.ones([2, 2, 2]), Tensor.ones([2, 2, 1]))
print(narrow.shape, narrow.stride)  # (2, 2, 2) (2, 1, 0)
```

`broadcast(tensor_a, tensor_b)` returns views expanded to the common shape,
and raises `ValueError` when the shapes are incompatible.

## Comparisons and element-wise extrema

`mtensor.comparison` provides these operations:

- `Eq`, `Ne`, `Ge`, `Gt`, `Le` and `Lt` give 1.0 where the relation holds
  and 0.0 elsewhere.
- `Max` and `Min` take the element-wise maximum and minimum.

They broadcast in the same way as the arithmetic operations. None of them
supports a backward pass: `backward` raises `RuntimeError`.

## Convolution and transposed convolution

`mtensor.conv` provides `Conv1d`, `Conv2d` and `Conv3d`. `mtensor.deconv`
provides `Deconv1d`, `Deconv2d` and `Deconv3d`. Each is constructed from
`strides`, `padding_l` and `padding_r`, with one entry per spatial
dimension; negative values are rejected with `ValueError`.

`forward` takes `[src, weights]` or `[src, weights, bias]`, with these
shapes:

- `src`: `(B, C, *spatial)`
- `weights`: `(OC, C, *kernel)`
- `bias`: `(OC,)`

Invalid shapes raise `ValueError`.

`backward` accumulates gradients into the source, the weights and, if there
is one, the bias.

Output sizes:

- convolution: `(S - K + padding_l + padding_r) // stride + 1`
- transposed convolution: `(S - 1) * stride - padding_l - padding_r + K`

```python
from mtensor.tensor import Tensor
from mtensor.conv import Conv2d
from mtensor.deconv import Deconv1d

src = Tensor.randn([1, 3, 6, 6], 0.0, 1.0, 42, True)
weights = Tensor.randn([2, 3, 2, 2], 0.0, 1.0, 42, True)
bias = Tensor.ones([2], True)

out = Conv2d([1, 1], [0, 0], [0, 0]).forward([src, weights, bias])
print(out.shape)  # (1, 2, 5, 5)

up = Deconv1d([3], [0], [0]).forward([
    Tensor.randn([1, 1, 5], 0.0, 1.0, 42, True),
    Tensor.ones([1, 1, 3], True),
])
print(up.shape)   # (1, 1, 15)
```

`convolve(src, weights, bias, strides, padding_l, padding_r)` and
`deconvolve(...)` do the same computation directly on NumPy arrays.

## Exporting the gradient graph

`mtensor.graph.GradGraph` walks back from a root tensor through each
`grad_fn` and its operands.

`to_json()` returns a dictionary with two keys:

- `"graph_data"`: the nodes and edges of the graph.
- `"general"`: summary figures. These are total allocated memory, memory
  saved by views that share storage, and the number of tensors, of tensors
  that require gradients, and of operations.

`export_to(file)` writes the page produced by `render_html(data)`.

```python
from mtensor.graph import GradGraph

graph = GradGraph(out)
data = graph.to_json()
graph.export_to("graph.html")
```

`shape_to_str([2, 3])` gives `"(2, 3 )"`. `mem_to_human(2048)` gives
`"2.00 KB"`.

## What this package does not do

It covers only tensors, binary arithmetic, comparisons, convolutions and
graph export. There are no view operations other than broadcasting, and no
reductions, matrix multiplication, softmax, pooling, normalization or
element-wise functions such as `exp` or `tanh`.

Backward passes are per-operation: calling `grad_fn.backward` does not
travel further up the graph on its own.

The exported HTML page loads `cytoscape.min.js`, `dagre.min.js` and
`cytoscape-dagre.min.js` from the directory it is saved in. The package does
not supply these scripts.

## Running the tests

```
pytest
```