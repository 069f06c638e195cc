"""Operation Capability Contract and Operation Queues.

An operation is anything implementing the `Operation` protocol:

1. `validate` checks the operand descriptors and returns the output
descriptor, raising `ValidationError` on arity or shape mismatch. The
builder calls it while the graph is being constructed, so malformed graphs
fail before any storage is allocated.

2. `forward` computes the output value from the input values.

3. `backward` accumulates the gradient of the output into each input
gradient. It must add and never assign, since a node consumed by several
operations receives one contribution per consumer.

Every call receives the execution context owned by the graph (e.g., scratch
buffers or error-handling policies). The engine treats it as opaque.

Callers that prefer plain functions to classes may bundle three callables
using `DiffableOperation`:

    >>> from diffable import operation
    >>>
    >>> def validate(descriptors):
    ...     if len(descriptors) != 2:
    ...         raise operation.ValidationError("expected two operands")
    ...     return descriptors[0]
    >>>
    >>> add = operation.DiffableOperation(
    ...     name="add",
    ...     validate=validate,
    ...     forward=forward_add,
    ...     backward=backward_add,
    ... )

The builder compiles the graph into two `OperationQueue`: the forward queue,
in topological order, and the backward queue, which is the exact reverse
of the forward queue.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol, Sequence, overload, runtime_checkable

from .node import Node


class ValidationError(Exception):
    """Raised by an operation when its operands are not valid."""


@runtime_checkable
class Operation(Protocol):
    """Capabilities the engine requires from an operation."""

    def validate(self, descriptors: Sequence[Any]) -> Any:
        """Return the output descriptor or raise ValidationError."""
        ...  # pragma: no cover

    def forward(self, context: Any, inputs: Sequence[Any], output: Any) -> None:
        """Compute the output value from the input values."""
        ...  # pragma: no cover

    def backward(self, context: Any, output: Any, inputs: Sequence[Any]) -> None:
        """Accumulate the output gradient into the input gradients."""
        ...  # pragma: no cover


ValidateFunc = Callable[[Sequence[Any]], Any]
ForwardFunc = Callable[[Any, Sequence[Any], Any], None]
BackwardFunc = Callable[[Any, Any, Sequence[Any]], None]


@dataclass(frozen=True)
class DiffableOperation:
    """Adapter that transforms three callables into an Operation.

    Attributes
    ----------
        name: name used when printing queues and errors.
        validate: computes the output descriptor.
        forward: computes the output value.
        backward: accumulates the gradients.
    """

    name: str
    validate: ValidateFunc
    forward: ForwardFunc
    backward: BackwardFunc

    def __repr__(self) -> str:
        """Return the operation name."""
        return self.name


_: Operation = DiffableOperation("noop", lambda d: None, lambda c, i, o: None, lambda c, o, i: None)


def operation_name(op: Any) -> str:
    """Return a human readable name for the given operation."""
    name = getattr(op, "name", None)
    return name if isinstance(name, str) and name else type(op).__name__


@dataclass(frozen=True)
class Entry:
    """A single step of an operation queue.

    Attributes
    ----------
        operation: the operation to invoke.
        inputs: the parent nodes, in the order the operation expects them.
        output: the node computed by the operation.
        flags: debug flags (see `diffable.compileflags`) of the output node.
    """

    operation: Any
    inputs: tuple[Node, ...]
    output: Node
    flags: int = 0

    def __repr__(self) -> str:
        """Return an SSA representation of the entry."""
        args = ", ".join(repr(node) for node in self.inputs)
        return f"{self.output!r} = {operation_name(self.operation)}({args})"


class OperationQueue:
    """Ordered, immutable sequence of entries."""

    def __init__(self, entries: Sequence[Entry] = ()) -> None:
        self._entries = tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    @overload
    def __getitem__(self, index: int) -> Entry: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Entry, ...]: ...

    def __getitem__(self, index: int | slice) -> Entry | tuple[Entry, ...]:
        return self._entries[index]

    def __eq__(self, other: Any) -> bool:
        """Queues are equal when they contain the same entries in the same order."""
        if not isinstance(other, OperationQueue):
            return NotImplemented
        return self._entries == other._entries

    def reversed(self) -> OperationQueue:
        """Return a new queue containing the same entries in reverse order."""
        return OperationQueue(self._entries[::-1])

    def __repr__(self) -> str:
        """Return the SSA representation of the queue, one entry per line."""
        return "\n".join(repr(entry) for entry in self._entries)

    def __str__(self) -> str:
        return repr(self)
