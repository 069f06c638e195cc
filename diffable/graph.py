"""Compiled Graph Executor.

A `Graph` is the executable artifact produced by `GraphBuilder.build`. It
owns one storage slot per node, the forward and backward operation queues,
the named tables of inputs and weights, and the execution context.

Typical usage looks like this:

    >>> g = builder.build()
    >>> g.store_input("x", scalar.Float(3.0))
    >>> g.store_weights("w", scalar.Float(0.5))
    >>> g.zero_grads()
    >>> loss = g.forward()
    >>> g.backward()
    >>> g.weights("w").grad
    3.0

Forward and Backward Passes
---------------------------

The forward pass replays the forward queue, which is topologically sorted,
so every operation runs after all the operations computing its operands.

The backward pass seeds the gradient of the root with the multiplicative
identity and replays the backward queue, which is the exact reverse of the
forward queue. Therefore, when an operation propagates the gradient of its
output, all the consumers of that output have already contributed to it.

Operations accumulate into gradients. Each backward pass first resets the
gradients of the operation outputs, so it adds exactly one gradient to each
weight: callers must call `zero_grads` between successive backward passes
unless they want the weight gradients to add up.

Access Discipline
-----------------

While running an entry, the executor borrows the input slots as shared and
the output slot as exclusive (forward), or the input slots as exclusive and
the output slot as shared (backward). The builder guarantees that the slots
of an entry are pairwise distinct, so borrows never conflict. The arena
nonetheless tracks borrows and raises `BorrowError` on conflict, which would
indicate a defect in the builder.

Debugging
---------

Like the rest of the engine, the graph honours the flags defined by the
`diffable.compileflags` package (TRACE, BREAK and DUMP). Flags may be set
for the whole graph or per node using `GraphBuilder.tracepoint` and
`GraphBuilder.breakpoint`.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Generic, Iterator, Sequence, TypeVar

from . import compileflags
from .node import Node
from .operation import Entry, OperationQueue

T = TypeVar("T")
"""Type of the values stored inside the graph."""


class GraphRuntimeError(Exception):
    """Base class for errors raised while using a compiled graph."""


class NameNotFound(GraphRuntimeError, KeyError):
    """Raised when an input or weight name is not known to the graph."""

    def __str__(self) -> str:
        # KeyError quotes its argument, which is not what we want here
        return str(self.args[0]) if self.args else ""


class ScalarNotAvailable(GraphRuntimeError):
    """Raised when the value of the root cannot be converted to a scalar."""


class BorrowError(GraphRuntimeError):
    """Raised when a slot is borrowed in a conflicting way."""


class _Borrow:
    """Context manager holding the borrows of a single queue entry."""

    def __init__(self, arena: _Arena, shared: Sequence[Node], exclusive: Sequence[Node]) -> None:
        self.arena = arena
        self.shared = shared
        self.exclusive = exclusive

    def __enter__(self) -> _Borrow:
        acquired: list[tuple[int, bool]] = []
        try:
            for node in self.shared:
                self.arena._acquire(node.index, False)
                acquired.append((node.index, False))
            for node in self.exclusive:
                self.arena._acquire(node.index, True)
                acquired.append((node.index, True))
        except BorrowError:
            for index, exclusive in acquired:
                self.arena._release(index, exclusive)
            raise
        return self

    def __exit__(self, *exc: Any) -> None:
        for node in self.shared:
            self.arena._release(node.index, False)
        for node in self.exclusive:
            self.arena._release(node.index, True)


class _Arena(Generic[T]):
    """Storage slots indexed by node, with borrow tracking."""

    def __init__(self, slots: Sequence[T]) -> None:
        self.slots = list(slots)
        self._readers = [0] * len(self.slots)
        self._writer = [False] * len(self.slots)

    def __len__(self) -> int:
        return len(self.slots)

    def __getitem__(self, node: Node) -> T:
        return self.slots[node.index]

    def __iter__(self) -> Iterator[T]:
        return iter(self.slots)

    def _acquire(self, index: int, exclusive: bool) -> None:
        if self._writer[index]:
            raise BorrowError(f"graph: slot n{index} is already borrowed as exclusive")
        if exclusive:
            if self._readers[index] > 0:
                raise BorrowError(f"graph: slot n{index} is already borrowed as shared")
            self._writer[index] = True
        else:
            self._readers[index] += 1

    def _release(self, index: int, exclusive: bool) -> None:
        if exclusive:
            self._writer[index] = False
        else:
            self._readers[index] -= 1

    def borrow(self, shared: Sequence[Node] = (), exclusive: Sequence[Node] = ()) -> _Borrow:
        """Borrow the given slots for the duration of a `with` block.

        Raises
        ------
            BorrowError: if a slot is already borrowed exclusively or if
                an exclusive borrow targets a slot already borrowed.
        """
        return _Borrow(self, shared, exclusive)


def _print_entry(entry: Entry) -> None:
    """Print an entry before running it."""
    print(f"# {entry!r}")


def _print_slot(node: Node, value: Any) -> None:
    """Print a slot after running an entry."""
    print(f"# {node!r}:")
    print("\n".join("#     " + line for line in repr(value).splitlines()))


class Graph(Generic[T]):
    """Executable computation graph.

    Do not construct directly: use `GraphBuilder.build`.

    Attributes
    ----------
        flags: bitmask containing debug flags (e.g., compileflags.TRACE)
            set by default using the `DIFFABLE_ENGINE_FLAGS` environment
            variable as documented by the `compileflags` package docs.
    """

    def __init__(
        self,
        slots: Sequence[T],
        root: Node,
        inputs: Mapping[str, Node],
        weights: Mapping[str, Node],
        forward_queue: OperationQueue,
        backward_queue: OperationQueue,
        context: Any = None,
        flags: int = compileflags.defaults,
    ) -> None:
        self._arena: _Arena[T] = _Arena(slots)
        self._root = root
        self._inputs = inputs
        self._weights = weights
        self._forward = forward_queue
        self._backward = backward_queue
        self._context = context
        self.flags = flags

    @property
    def root(self) -> Node:
        """The output node of the graph."""
        return self._root

    @property
    def context(self) -> Any:
        """The execution context passed to every operation."""
        return self._context

    @property
    def forward_queue(self) -> OperationQueue:
        """The operations run by `forward`, in execution order."""
        return self._forward

    @property
    def backward_queue(self) -> OperationQueue:
        """The operations run by `backward`, in execution order."""
        return self._backward

    def __len__(self) -> int:
        return len(self._arena)

    def forward(self) -> float:
        """Run the forward pass and return the scalar value of the root.

        Raises
        ------
            ScalarNotAvailable: if the root value is not a scalar.
        """
        self._dump("forward", self._forward)
        for entry in self._forward:
            self._begin(entry)
            with self._arena.borrow(shared=entry.inputs, exclusive=(entry.output,)):
                inputs = [self._arena[node] for node in entry.inputs]
                entry.operation.forward(self._context, inputs, self._arena[entry.output])
            self._end(entry, (entry.output,))

        value = self._arena[self._root].scalar()  # type: ignore[attr-defined]
        if value is None:
            raise ScalarNotAvailable(f"graph: root {self._root!r} does not hold a scalar value")
        return value

    def backward(self) -> None:
        """Run the backward pass accumulating gradients from the root.

        The gradients of operation outputs only hold the contributions of
        the current pass, while leaf gradients add up across passes.
        """
        for entry in self._backward:
            self._arena[entry.output].zero_grad()  # type: ignore[attr-defined]
        self._arena[self._root].set_grad_unit()  # type: ignore[attr-defined]
        self._dump("backward", self._backward)
        for entry in self._backward:
            self._begin(entry)
            with self._arena.borrow(shared=(entry.output,), exclusive=entry.inputs):
                inputs = [self._arena[node] for node in entry.inputs]
                entry.operation.backward(self._context, self._arena[entry.output], inputs)
            self._end(entry, entry.inputs)

    def zero_grads(self) -> None:
        """Reset the gradient of every slot to the additive identity."""
        for slot in self._arena:
            slot.zero_grad()  # type: ignore[attr-defined]

    def _dump(self, name: str, queue: OperationQueue) -> None:
        if self.flags & compileflags.DUMP != 0:
            print(f"# === {name} ===")
            print(str(queue))
            print("")

    def _begin(self, entry: Entry) -> None:
        if (self.flags | entry.flags) & compileflags.TRACE != 0:
            _print_entry(entry)

    def _end(self, entry: Entry, written: Sequence[Node]) -> None:
        flags = self.flags | entry.flags
        if flags & compileflags.TRACE != 0:
            for node in written:
                _print_slot(node, self._arena[node])
            print("")
        if flags & compileflags.BREAK != 0:
            input("# graph: press any key to continue...")
            print("")

    @staticmethod
    def _lookup(table: Mapping[str, Node], kind: str, name: str) -> Node:
        try:
            return table[name]
        except KeyError:
            raise NameNotFound(f"graph: unknown {kind}: '{name}'") from None

    def store_input(self, name: str, value: T) -> None:
        """Copy the forward value of `value` into the named input.

        Raises
        ------
            NameNotFound: if there is no input with the given name.
        """
        node = self._lookup(self._inputs, "input", name)
        value.copy_values_into(self._arena[node])  # type: ignore[attr-defined]

    def store_weights(self, name: str, value: T) -> None:
        """Copy the forward value of `value` into the named weights.

        The gradient of the weights is left untouched.

        Raises
        ------
            NameNotFound: if there are no weights with the given name.
        """
        node = self._lookup(self._weights, "weights", name)
        value.copy_values_into(self._arena[node])  # type: ignore[attr-defined]

    def input(self, name: str) -> T:
        """Return the slot of the named input."""
        return self._arena[self._lookup(self._inputs, "input", name)]

    def weights(self, name: str) -> T:
        """Return the slot of the named weights.

        The returned value is the slot itself, so optimizers may update
        the weights in place.
        """
        return self._arena[self._lookup(self._weights, "weights", name)]

    def value(self, node: Node) -> T:
        """Return the slot of an arbitrary node."""
        if not 0 <= node.index < len(self._arena):
            raise IndexError(f"graph: unknown node: {node!r}")
        return self._arena[node]

    def input_names(self) -> list[str]:
        """Return the sorted names of all the inputs."""
        return sorted(self._inputs)

    def weight_names(self) -> list[str]:
        """Return the sorted names of all the weights."""
        return sorted(self._weights)
