"""Pure-Python scalar values.

This module provides `Float`, a value type implementing the `tensor.Tensor`
protocol for plain Python floats, along with a handful of operations. It is
mostly useful for examples and tests, where hand-verified derivatives are
easy to write down.

The descriptor of a `Float` carries no information, hence we use `None`.

    >>> from diffable import graph_builder, scalar
    >>>
    >>> builder = graph_builder.GraphBuilder(scalar.Float)
    >>> a = builder.create_input("a", None)
    >>> b = builder.create_input("b", None)
    >>> w = builder.create_weights("w", None)
    >>> c = builder.create_result(scalar.multiply, [a, b])
    >>> d = builder.create_result(scalar.multiply, [w, c])
    >>> e = builder.create_result(scalar.add, [d, b])
    >>> f = builder.create_result(scalar.add, [e, a])
    >>>
    >>> g = builder.build()
    >>> g.store_input("a", scalar.Float(3.0))
    >>> g.store_input("b", scalar.Float(2.0))
    >>> g.store_weights("w", scalar.Float(5.0))
    >>> g.forward()
    35.0
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Sequence

from .operation import DiffableOperation, ValidationError


class Float:
    """A scalar value with an optional gradient.

    Args:
        value: the forward value.
        grad: the gradient, None when no gradient storage exists.
    """

    def __init__(self, value: float = 0.0, grad: float | None = None) -> None:
        self.value = float(value)
        self.grad = grad

    @classmethod
    def new(cls, descriptor: Any, requires_grad: bool) -> Float:
        """Allocate a zero value, with a zero gradient if requested."""
        return cls(0.0, 0.0 if requires_grad else None)

    def scalar(self) -> float | None:
        """Return the forward value."""
        return self.value

    def copy_values_into(self, dest: Float) -> None:
        """Copy the forward value into `dest`."""
        dest.value = self.value

    def zero_grad(self) -> None:
        """Reset the gradient, if any, to zero."""
        if self.grad is not None:
            self.grad = 0.0

    def set_grad_unit(self) -> None:
        """Set the gradient to one."""
        self.grad = 1.0

    def accumulate_grad(self, delta: float) -> None:
        """Add `delta` to the gradient, if any."""
        if self.grad is not None:
            self.grad += delta

    def __repr__(self) -> str:
        return f"Float(value={self.value}, grad={self.grad})"


def _validate_binary(descriptors: Sequence[Any]) -> None:
    if len(descriptors) != 2:
        raise ValidationError(f"expected 2 operands, got {len(descriptors)}")
    return None


def _forward_add(_: Any, inputs: Sequence[Float], output: Float) -> None:
    output.value = inputs[0].value + inputs[1].value


def _backward_add(_: Any, output: Float, inputs: Sequence[Float]) -> None:
    assert output.grad is not None
    for node in inputs:
        node.accumulate_grad(output.grad)


def _forward_subtract(_: Any, inputs: Sequence[Float], output: Float) -> None:
    output.value = inputs[0].value - inputs[1].value


def _backward_subtract(_: Any, output: Float, inputs: Sequence[Float]) -> None:
    assert output.grad is not None
    inputs[0].accumulate_grad(output.grad)
    inputs[1].accumulate_grad(-output.grad)


def _forward_multiply(_: Any, inputs: Sequence[Float], output: Float) -> None:
    output.value = inputs[0].value * inputs[1].value


def _backward_multiply(_: Any, output: Float, inputs: Sequence[Float]) -> None:
    assert output.grad is not None
    left, right = inputs
    left.accumulate_grad(output.grad * right.value)
    right.accumulate_grad(output.grad * left.value)


add = DiffableOperation("add", _validate_binary, _forward_add, _backward_add)
"""Sum of two scalars."""

subtract = DiffableOperation("subtract", _validate_binary, _forward_subtract, _backward_subtract)
"""Difference of two scalars."""

multiply = DiffableOperation("multiply", _validate_binary, _forward_multiply, _backward_multiply)
"""Product of two scalars."""
