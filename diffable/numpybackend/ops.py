"""NumPy Operations.

This module implements operations for `numpybackend.array.Array` values
along with helpers registering them into a `GraphBuilder`:

    >>> from diffable import graph_builder
    >>> from diffable.numpybackend import Array, Context, ops
    >>>
    >>> builder = graph_builder.GraphBuilder(Array)
    >>> x = builder.create_input("x", (4, 3))
    >>> w = builder.create_weights("w", (3, 1))
    >>> y = builder.create_input("y", (4, 1))
    >>> loss = ops.reduce_mean(builder, ops.square(builder, ops.subtract(builder, ops.matmul(builder, x, w), y)))
    >>>
    >>> g = builder.build(Context())

To allow for uniform manipulation, we define the following operation groups:

1. BinaryOp: element-wise operations taking two arrays of the same shape
2. UnaryOp: element-wise operations taking a single array
3. AxisOp: reductions projecting an array over one or more axes
4. MatMulOp: product of two matrices

Each group reads the forward and backward functions from a table. Add
entries to the tables to support more operations.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeAlias

import numpy as np

from ..graph_builder import GraphBuilder
from ..node import Node
from ..operation import ValidationError
from .array import Array, Shape

Axis: TypeAlias = int | tuple[int, ...] | None
"""Type alias for axis specifications in reductions (None means all axes)."""


@dataclass(frozen=True)
class Context:
    """Execution context for NumPy operations.

    Attributes
    ----------
        errors: how to handle floating-point errors while running the
            operations, passed to `np.errstate` (e.g., "raise", "warn",
            "ignore").
    """

    errors: str = "raise"

    def errstate(self) -> np.errstate:
        """Return the np.errstate context manager for this context."""
        return np.errstate(all=self.errors)  # type: ignore[arg-type]


def _errstate(context: Any) -> np.errstate:
    return context.errstate() if isinstance(context, Context) else np.errstate()


def _check_arity(descriptors: Sequence[Shape], count: int) -> None:
    if len(descriptors) != count:
        raise ValidationError(f"expected {count} operand(s), got {len(descriptors)}")


# Element-wise binary operations

_BinaryForwardFunc: TypeAlias = Callable[[np.ndarray, np.ndarray], np.ndarray]
_BinaryBackwardFunc: TypeAlias = Callable[
    [np.ndarray, np.ndarray, np.ndarray, np.ndarray], tuple[np.ndarray, np.ndarray]
]


def _add_grad(a: np.ndarray, b: np.ndarray, out: np.ndarray, g: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return g, g


def _subtract_grad(a: np.ndarray, b: np.ndarray, out: np.ndarray, g: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return g, -g


def _multiply_grad(a: np.ndarray, b: np.ndarray, out: np.ndarray, g: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return g * b, g * a


def _divide_grad(a: np.ndarray, b: np.ndarray, out: np.ndarray, g: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    return g / b, -g * out / b


def _maximum_grad(a: np.ndarray, b: np.ndarray, out: np.ndarray, g: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    # ties go to the left operand
    left = a >= b
    return g * left, g * ~left


_binary_operations: dict[str, tuple[_BinaryForwardFunc, _BinaryBackwardFunc]] = {
    "add": (np.add, _add_grad),
    "subtract": (np.subtract, _subtract_grad),
    "multiply": (np.multiply, _multiply_grad),
    "divide": (np.divide, _divide_grad),
    "maximum": (np.maximum, _maximum_grad),
}
"""Maps the name of a binary op to its forward and backward functions.

The backward function receives both operands, the output value and the
output gradient, and returns the gradient contributions of both operands.
"""


class BinaryOp:
    """Element-wise operation on two arrays of the same shape."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._forward, self._backward = _binary_operations[name]

    def validate(self, descriptors: Sequence[Shape]) -> Shape:
        """Require two operands with the same shape."""
        _check_arity(descriptors, 2)
        left, right = descriptors
        if tuple(left) != tuple(right):
            raise ValidationError(f"shape mismatch: {tuple(left)} != {tuple(right)}")
        return tuple(left)

    def forward(self, context: Any, inputs: Sequence[Array], output: Array) -> None:
        """Compute the output value in place."""
        with _errstate(context):
            self._forward(inputs[0].value, inputs[1].value, out=output.value)  # type: ignore[call-arg]

    def backward(self, context: Any, output: Array, inputs: Sequence[Array]) -> None:
        """Accumulate the gradient contributions of both operands."""
        assert output.grad is not None
        left, right = inputs
        with _errstate(context):
            dleft, dright = self._backward(left.value, right.value, output.value, output.grad)
            left.accumulate_grad(dleft)
            right.accumulate_grad(dright)

    def __repr__(self) -> str:
        return self.name


# Element-wise unary operations

_UnaryForwardFunc: TypeAlias = Callable[[np.ndarray], np.ndarray]
_UnaryBackwardFunc: TypeAlias = Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray]


_unary_operations: dict[str, tuple[_UnaryForwardFunc, _UnaryBackwardFunc]] = {
    "negative": (np.negative, lambda x, out, g: -g),
    "exp": (np.exp, lambda x, out, g: g * out),
    "log": (np.log, lambda x, out, g: g / x),
    "square": (np.square, lambda x, out, g: 2.0 * g * x),
    "tanh": (np.tanh, lambda x, out, g: g * (1.0 - out * out)),
    "relu": (lambda x, out: np.maximum(x, 0.0, out=out), lambda x, out, g: g * (x > 0.0)),
}
"""Maps the name of a unary op to its forward and backward functions.

The backward function receives the operand, the output value and the
output gradient, and returns the gradient contribution of the operand.
"""


class UnaryOp:
    """Element-wise operation on a single array."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._forward, self._backward = _unary_operations[name]

    def validate(self, descriptors: Sequence[Shape]) -> Shape:
        """Require a single operand and preserve its shape."""
        _check_arity(descriptors, 1)
        return tuple(descriptors[0])

    def forward(self, context: Any, inputs: Sequence[Array], output: Array) -> None:
        """Compute the output value in place."""
        with _errstate(context):
            self._forward(inputs[0].value, out=output.value)  # type: ignore[call-arg]

    def backward(self, context: Any, output: Array, inputs: Sequence[Array]) -> None:
        """Accumulate the gradient contribution of the operand."""
        assert output.grad is not None
        (operand,) = inputs
        with _errstate(context):
            operand.accumulate_grad(self._backward(operand.value, output.value, output.grad))

    def __repr__(self) -> str:
        return self.name


# Reductions


def _normalize_axis(shape: Shape, axis: Axis) -> tuple[int, ...]:
    """Return the sorted tuple of non-negative axes to reduce over."""
    if axis is None:
        return tuple(range(len(shape)))
    axes = (axis,) if isinstance(axis, int) else tuple(axis)
    normalized: set[int] = set()
    for ax in axes:
        if not -len(shape) <= ax < len(shape):
            raise ValidationError(f"axis {ax} out of range for shape {shape}")
        normalized.add(ax % len(shape))
    if len(normalized) != len(axes):
        raise ValidationError(f"repeated axis in {axes}")
    return tuple(sorted(normalized))


class AxisOp:
    """Reduction of an array over one or more axes.

    Args:
        name: either "reduce_sum" or "reduce_mean".
        axis: the axes to reduce over (None means all axes).
    """

    def __init__(self, name: str, axis: Axis = None) -> None:
        if name not in ("reduce_sum", "reduce_mean"):
            raise ValueError(f"numpybackend: unsupported axis operation: {name}")
        self.name = name
        self.axis = axis

    def validate(self, descriptors: Sequence[Shape]) -> Shape:
        """Require a single operand and drop the reduced axes from its shape."""
        _check_arity(descriptors, 1)
        shape = tuple(descriptors[0])
        axes = _normalize_axis(shape, self.axis)
        return tuple(size for index, size in enumerate(shape) if index not in axes)

    def forward(self, context: Any, inputs: Sequence[Array], output: Array) -> None:
        """Compute the reduction in place."""
        value = inputs[0].value
        axes = _normalize_axis(value.shape, self.axis)
        with _errstate(context):
            if self.name == "reduce_sum":
                np.sum(value, axis=axes, out=output.value)
            else:
                np.mean(value, axis=axes, out=output.value)

    def backward(self, context: Any, output: Array, inputs: Sequence[Array]) -> None:
        """Spread the output gradient back over the reduced axes."""
        assert output.grad is not None
        (operand,) = inputs
        axes = _normalize_axis(operand.value.shape, self.axis)
        with _errstate(context):
            grad = np.broadcast_to(np.expand_dims(output.grad, axes), operand.value.shape)
            if self.name == "reduce_mean":
                count = int(np.prod([operand.value.shape[ax] for ax in axes]))
                grad = grad / max(count, 1)
            operand.accumulate_grad(grad)

    def __repr__(self) -> str:
        return f"{self.name}[axis={self.axis}]"


# Matrix product


class MatMulOp:
    """Product of two matrices of shapes (m, k) and (k, n)."""

    name = "matmul"

    def validate(self, descriptors: Sequence[Shape]) -> Shape:
        """Require two matrices with compatible inner dimensions."""
        _check_arity(descriptors, 2)
        left, right = (tuple(d) for d in descriptors)
        if len(left) != 2 or len(right) != 2:
            raise ValidationError(f"expected matrices, got {left} and {right}")
        if left[1] != right[0]:
            raise ValidationError(f"inner dimensions differ: {left} and {right}")
        return (left[0], right[1])

    def forward(self, context: Any, inputs: Sequence[Array], output: Array) -> None:
        """Compute the matrix product in place."""
        with _errstate(context):
            np.matmul(inputs[0].value, inputs[1].value, out=output.value)

    def backward(self, context: Any, output: Array, inputs: Sequence[Array]) -> None:
        """Accumulate the gradients of both matrices."""
        assert output.grad is not None
        left, right = inputs
        with _errstate(context):
            left.accumulate_grad(output.grad @ right.value.T)
            right.accumulate_grad(left.value.T @ output.grad)

    def __repr__(self) -> str:
        return self.name


# Builder helpers


def add(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the element-wise sum of two arrays."""
    return builder.create_result(BinaryOp("add"), [left, right])


def subtract(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the element-wise difference of two arrays."""
    return builder.create_result(BinaryOp("subtract"), [left, right])


def multiply(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the element-wise product of two arrays."""
    return builder.create_result(BinaryOp("multiply"), [left, right])


def divide(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the element-wise quotient of two arrays."""
    return builder.create_result(BinaryOp("divide"), [left, right])


def maximum(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the element-wise maximum of two arrays."""
    return builder.create_result(BinaryOp("maximum"), [left, right])


def negative(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise negation of an array."""
    return builder.create_result(UnaryOp("negative"), [node])


def exp(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise exponential of an array."""
    return builder.create_result(UnaryOp("exp"), [node])


def log(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise natural logarithm of an array."""
    return builder.create_result(UnaryOp("log"), [node])


def square(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise square of an array."""
    return builder.create_result(UnaryOp("square"), [node])


def tanh(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise hyperbolic tangent of an array."""
    return builder.create_result(UnaryOp("tanh"), [node])


def relu(builder: GraphBuilder[Array], node: Node) -> Node:
    """Register the element-wise rectified linear unit of an array."""
    return builder.create_result(UnaryOp("relu"), [node])


def reduce_sum(builder: GraphBuilder[Array], node: Node, axis: Axis = None) -> Node:
    """Register the sum of an array over the given axes."""
    return builder.create_result(AxisOp("reduce_sum", axis), [node])


def reduce_mean(builder: GraphBuilder[Array], node: Node, axis: Axis = None) -> Node:
    """Register the mean of an array over the given axes."""
    return builder.create_result(AxisOp("reduce_mean", axis), [node])


def matmul(builder: GraphBuilder[Array], left: Node, right: Node) -> Node:
    """Register the product of two matrices."""
    return builder.create_result(MatMulOp(), [left, right])
