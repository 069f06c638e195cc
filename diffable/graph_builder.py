"""Computation Graph Building.

This module allows to build a computation graph incrementally and to
compile it into an executable `graph.Graph`.

The builder registers three kinds of nodes:

1. inputs: named leaves that do not require a gradient
2. weights: named leaves that require a gradient (trainable parameters)
3. results: the output of an operation applied to existing nodes

Here's an example of what you can do with this module:

    >>> from diffable import graph_builder, scalar
    >>>
    >>> builder = graph_builder.GraphBuilder(scalar.Float)
    >>> x = builder.create_input("x", None)
    >>> w = builder.create_weights("w", None)
    >>> y = builder.create_result(scalar.multiply, [w, x])
    >>>
    >>> g = builder.build()

Two-Phase Design
----------------

Each node carries a *descriptor* rather than a value. When registering
a result, the builder gathers the descriptors of the operands and asks
the operation to validate them and to compute the output descriptor. Only
when compiling the graph do we allocate values, using the descriptors.

Therefore, a malformed graph fails while it is being built, before any
storage exists and before the first execution.

Invariants
----------

1. Edges only go from existing nodes to the node being created, so the
graph is acyclic by construction.

2. An operation cannot use the same node twice as operand. During the
backward pass the operation mutates the gradient of each operand, hence
aliasing two operands would require two exclusive borrows of the same slot.

3. Compiling requires exactly one root, that is, exactly one node that
is not consumed by any operation. The root must require a gradient
(i.e., it cannot be an input) and cannot be a weight.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, Sequence, TypeVar

from . import compileflags, graph, linearize
from .node import Node
from .operation import Entry, OperationQueue, ValidationError, operation_name

T = TypeVar("T")
"""Type of the values stored inside the compiled graph."""


class GraphBuildError(Exception):
    """Base class for errors raised while building a graph."""


class DuplicateName(GraphBuildError):
    """Raised when an input or weight name has already been registered."""


class UnknownNode(GraphBuildError):
    """Raised when a node handle does not belong to the builder."""


class AliasedInputs(GraphBuildError):
    """Raised when an operation would use the same node twice as operand."""


class InvalidOperands(GraphBuildError):
    """Raised when an operation rejects the descriptors of its operands."""


class RootCountError(GraphBuildError):
    """Raised when compiling a graph that does not have exactly one root."""


class RootIsInput(GraphBuildError):
    """Raised when the root of the graph does not require a gradient."""


class RootIsWeights(GraphBuildError):
    """Raised when the root of the graph is a weight."""


@dataclass
class NodeRecord:
    """Construction-time information about a node.

    Attributes
    ----------
        descriptor: value-free description of the node value.
        requires_grad: whether the node needs gradient storage.
        name: the name of inputs and weights, None for results.
        operation: the operation computing the node, None for leaves.
        parents: the operands of the operation, empty for leaves.
        flags: debug flags (see `diffable.compileflags`).
    """

    descriptor: Any
    requires_grad: bool
    name: str | None = None
    operation: Any = None
    parents: tuple[Node, ...] = ()
    flags: int = 0


@dataclass
class GraphBuilder(Generic[T]):
    """Mutable structure used to construct a graph.

    Args:
        tensor_type: value type implementing the `tensor.Tensor` protocol,
            used to allocate the storage slots when compiling.
    """

    tensor_type: type[T]
    _records: list[NodeRecord] = field(default_factory=list, init=False, repr=False)
    _roots: set[Node] = field(default_factory=set, init=False, repr=False)
    _inputs: dict[str, Node] = field(default_factory=dict, init=False, repr=False)
    _weights: dict[str, Node] = field(default_factory=dict, init=False, repr=False)

    def __len__(self) -> int:
        return len(self._records)

    def _record(self, node: Node) -> NodeRecord:
        if not isinstance(node, Node) or not 0 <= node.index < len(self._records):
            raise UnknownNode(f"graph_builder: unknown node: {node!r}")
        return self._records[node.index]

    def _create_node(self, record: NodeRecord) -> Node:
        node = Node(len(self._records))
        for parent in record.parents:
            self._roots.discard(parent)
        self._records.append(record)
        self._roots.add(node)
        return node

    def _check_name(self, name: str) -> None:
        if name in self._inputs or name in self._weights:
            raise DuplicateName(f"graph_builder: duplicate name: '{name}'")

    def create_input(self, name: str, descriptor: Any) -> Node:
        """Register an input node that does not require a gradient.

        Raises
        ------
            DuplicateName: if `name` is already used by an input or weight.
        """
        self._check_name(name)
        node = self._create_node(NodeRecord(descriptor=descriptor, requires_grad=False, name=name))
        self._inputs[name] = node
        return node

    def create_weights(self, name: str, descriptor: Any) -> Node:
        """Register a trainable weights node that requires a gradient.

        Raises
        ------
            DuplicateName: if `name` is already used by an input or weight.
        """
        self._check_name(name)
        node = self._create_node(NodeRecord(descriptor=descriptor, requires_grad=True, name=name))
        self._weights[name] = node
        return node

    def create_result(self, operation: Any, inputs: Sequence[Node]) -> Node:
        """Register the result of applying `operation` to `inputs`.

        The builder is not modified when this method raises.

        Raises
        ------
            UnknownNode: if an input does not belong to this builder.
            AliasedInputs: if the same node appears twice in `inputs`.
            InvalidOperands: if `inputs` is empty or the operation
                rejects the descriptors of the inputs.
        """
        parents = tuple(inputs)
        records = [self._record(node) for node in parents]

        if len(set(parents)) != len(parents):
            raise AliasedInputs(
                f"graph_builder: {operation_name(operation)}: operands would alias on backward: {list(parents)}"
            )

        if not parents:
            raise InvalidOperands(f"graph_builder: {operation_name(operation)}: at least one operand is required")

        try:
            descriptor = operation.validate([record.descriptor for record in records])
        except ValidationError as exc:
            raise InvalidOperands(f"graph_builder: {operation_name(operation)}: {exc}") from exc

        return self._create_node(
            NodeRecord(
                descriptor=descriptor,
                requires_grad=True,
                operation=operation,
                parents=parents,
            )
        )

    def descriptor(self, node: Node) -> Any:
        """Return the descriptor of the given node."""
        return self._record(node).descriptor

    def requires_grad(self, node: Node) -> bool:
        """Return whether the given node requires a gradient."""
        return self._record(node).requires_grad

    def parents(self, node: Node) -> tuple[Node, ...]:
        """Return the parents of the given node."""
        return self._record(node).parents

    def roots(self) -> list[Node]:
        """Return the nodes not consumed by any operation, sorted by index."""
        return sorted(self._roots)

    def tracepoint(self, node: Node) -> Node:
        """Mark the node as a tracepoint and return it.

        While executing the graph, we print the node before and
        after running the operation that computes it.
        """
        self._record(node).flags |= compileflags.TRACE
        return node

    def breakpoint(self, node: Node) -> Node:
        """Mark the node as a breakpoint and return it.

        The breakpoint causes the graph to trace the node and to
        wait for the user after running the operation computing it.
        """
        self._record(node).flags |= compileflags.TRACE | compileflags.BREAK
        return node

    def _sort(self) -> list[Node]:
        leaves = list(self._inputs.values()) + list(self._weights.values())
        parents = {Node(index): record.parents for index, record in enumerate(self._records)}
        return linearize.nodes(leaves, parents)

    def _queue(self, order: Sequence[Node]) -> OperationQueue:
        entries: list[Entry] = []
        for node in order:
            record = self._records[node.index]
            if record.operation is not None:
                entries.append(Entry(record.operation, record.parents, node, record.flags))
        return OperationQueue(entries)

    def build(self, context: Any = None, flags: int = compileflags.defaults) -> graph.Graph[T]:
        """Compile the builder into an executable graph.

        Args:
            context: execution context passed to every operation.
            flags: debug flags for the whole graph (default: the flags
                read from the `DIFFABLE_ENGINE_FLAGS` environment variable).

        Raises
        ------
            RootCountError: if the graph does not have exactly one root.
            RootIsInput: if the root does not require a gradient.
            RootIsWeights: if the root is a weight.
            ValueError: if the graph contains a cycle, which is a defect
                of the builder since the API cannot create cycles.
        """
        # 1. make sure the root is well defined
        if len(self._roots) != 1:
            raise RootCountError(f"graph_builder: expected exactly one root, found {self.roots()}")
        (root,) = self._roots
        record = self._records[root.index]
        if not record.requires_grad:
            raise RootIsInput(f"graph_builder: root {root!r} is the input '{record.name}'")
        if record.name in self._weights:
            raise RootIsWeights(f"graph_builder: root {root!r} is the weights '{record.name}'")

        # 2. sort once and derive both queues from the same order
        order = self._sort()
        forward = self._queue(order)
        backward = forward.reversed()

        # 3. allocate one slot per node
        slots = [self.tensor_type.new(r.descriptor, r.requires_grad) for r in self._records]  # type: ignore[attr-defined]

        # 4. freeze the name tables
        return graph.Graph(
            slots=slots,
            root=root,
            inputs=MappingProxyType(dict(self._inputs)),
            weights=MappingProxyType(dict(self._weights)),
            forward_queue=forward,
            backward_queue=backward,
            context=context,
            flags=flags,
        )
