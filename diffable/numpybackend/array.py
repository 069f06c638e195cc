"""NumPy-backed values.

The `Array` type implements the `tensor.Tensor` protocol on top of
`np.ndarray`. Its descriptor is the shape of the array, a tuple of
integers, which the operations in `numpybackend.ops` use to validate
their operands while building the graph.

Values are always stored as float64 arrays. There is no broadcasting:
copying a value into a slot requires the shapes to match exactly.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import TypeAlias

import numpy as np
from numpy.typing import ArrayLike

Shape: TypeAlias = tuple[int, ...]
"""Descriptor of an Array."""


class ShapeMismatch(ValueError):
    """Raised when copying a value into an array with a different shape."""


class Array:
    """A float64 array with an optional gradient of the same shape.

    Args:
        value: anything `np.asarray` accepts.
        grad: the gradient, None when no gradient storage exists.
    """

    def __init__(self, value: ArrayLike, grad: np.ndarray | None = None) -> None:
        self.value = np.array(value, dtype=np.float64)
        self.grad = grad
        if grad is not None and grad.shape != self.value.shape:
            raise ShapeMismatch(f"numpybackend: gradient shape {grad.shape} != value shape {self.value.shape}")

    @classmethod
    def new(cls, descriptor: Shape, requires_grad: bool) -> Array:
        """Allocate zeros of the given shape, with a zero gradient if requested."""
        shape = tuple(descriptor)
        return cls(np.zeros(shape), np.zeros(shape) if requires_grad else None)

    @property
    def shape(self) -> Shape:
        """The shape of the array."""
        return self.value.shape

    def scalar(self) -> float | None:
        """Return the value as a float when the array holds a single element."""
        if self.value.size != 1:
            return None
        return float(self.value.reshape(()))

    def copy_values_into(self, dest: Array) -> None:
        """Copy the forward value into `dest` in place.

        Raises
        ------
            ShapeMismatch: if the shapes differ.
        """
        if dest.value.shape != self.value.shape:
            raise ShapeMismatch(f"numpybackend: cannot copy shape {self.value.shape} into {dest.value.shape}")
        np.copyto(dest.value, self.value)

    def zero_grad(self) -> None:
        """Fill the gradient, if any, with zeros."""
        if self.grad is not None:
            self.grad.fill(0.0)

    def set_grad_unit(self) -> None:
        """Fill the gradient with ones, allocating it if needed."""
        if self.grad is None:
            self.grad = np.ones_like(self.value)
            return
        self.grad.fill(1.0)

    def accumulate_grad(self, delta: np.ndarray) -> None:
        """Add `delta` to the gradient, if any."""
        if self.grad is not None:
            self.grad += delta

    def __repr__(self) -> str:
        return f"Array(value={self.value!r}, grad={self.grad!r})"
