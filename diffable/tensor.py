"""Value Type Capability Contract.

The engine never inspects numbers. It only needs a value type implementing
the small set of capabilities described by the `Tensor` protocol below:

1. construction from a descriptor, with or without gradient storage
2. extraction of a scalar (to report the root's forward value)
3. copy of the forward value into another instance
4. reset of the gradient to the additive identity
5. seeding of the gradient with the multiplicative identity

The descriptor is a lightweight, value-free description of a node (e.g., a
shape tuple) used by operations to validate their operands while the graph
is being built, that is, before any storage exists.

See `diffable.scalar` and `diffable.numpybackend` for concrete value types.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Protocol, TypeVar, runtime_checkable

D = TypeVar("D")
"""Type of the descriptor associated with a value type."""

T = TypeVar("T", bound="Tensor")
"""Type of a value implementing the Tensor protocol."""


@runtime_checkable
class Tensor(Protocol):
    """Capabilities the engine requires from a value type."""

    @classmethod
    def new(cls: type[T], descriptor: Any, requires_grad: bool) -> T:
        """Allocate a value for the given descriptor.

        Gradient storage is only allocated when `requires_grad` is true.
        """
        ...  # pragma: no cover

    def scalar(self) -> float | None:
        """Return the forward value as a scalar or None when not a scalar."""
        ...  # pragma: no cover

    def copy_values_into(self: T, dest: T) -> None:
        """Copy the forward value into `dest` without touching its gradient."""
        ...  # pragma: no cover

    def zero_grad(self) -> None:
        """Reset the gradient to the additive identity, if allocated."""
        ...  # pragma: no cover

    def set_grad_unit(self) -> None:
        """Set the gradient to the multiplicative identity."""
        ...  # pragma: no cover
