"""Tests for the diffable.graph_builder module."""

# SPDX-License-Identifier: Apache-2.0

import pytest

from diffable import compileflags, graph_builder, operation, scalar
from diffable.node import Node


def _single_operand(descriptors):
    if len(descriptors) != 1:
        raise operation.ValidationError(f"expected 1 operand, got {len(descriptors)}")
    return descriptors[0]


identity = operation.DiffableOperation(
    name="identity",
    validate=_single_operand,
    forward=lambda ctx, inputs, output: inputs[0].copy_values_into(output),
    backward=lambda ctx, output, inputs: inputs[0].accumulate_grad(output.grad),
)


def test_create_leaves():
    """Test that inputs and weights get increasing handles and flags."""
    builder = graph_builder.GraphBuilder(scalar.Float)

    a = builder.create_input("a", None)
    w = builder.create_weights("w", None)

    assert a == Node(0)
    assert w == Node(1)
    assert len(builder) == 2
    assert not builder.requires_grad(a)
    assert builder.requires_grad(w)
    assert builder.parents(a) == ()
    assert builder.roots() == [a, w]


def test_create_result_updates_roots():
    """Test that a result replaces its parents in the root set."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.create_input("b", None)
    c = builder.create_input("c", None)

    d = builder.create_result(scalar.add, [a, b])

    assert builder.roots() == [c, d]
    assert builder.parents(d) == (a, b)
    assert builder.requires_grad(d)

    e = builder.create_result(scalar.multiply, [d, c])

    assert builder.roots() == [e]


def test_duplicate_names():
    """Make sure names are unique across inputs and weights."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    builder.create_input("a", None)

    with pytest.raises(graph_builder.DuplicateName):
        builder.create_input("a", None)

    with pytest.raises(graph_builder.DuplicateName):
        builder.create_weights("a", None)

    builder.create_weights("w", None)
    with pytest.raises(graph_builder.DuplicateName, match="'w'"):
        builder.create_input("w", None)

    assert len(builder) == 2


def test_aliased_inputs():
    """Make sure an operation cannot use the same node twice."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)

    with pytest.raises(graph_builder.AliasedInputs):
        builder.create_result(scalar.multiply, [a, a])

    assert len(builder) == 1
    assert builder.roots() == [a]


def test_invalid_operands():
    """Make sure validation failures do not mutate the builder."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.create_input("b", None)
    c = builder.create_input("c", None)

    with pytest.raises(graph_builder.InvalidOperands, match="expected 2 operands") as excinfo:
        builder.create_result(scalar.add, [a, b, c])

    assert isinstance(excinfo.value.__cause__, operation.ValidationError)
    assert len(builder) == 3
    assert builder.roots() == [a, b, c]


def test_empty_operands():
    """Make sure a result always has at least one parent."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    builder.create_input("a", None)

    with pytest.raises(graph_builder.InvalidOperands, match="at least one operand"):
        builder.create_result(identity, [])


def test_unknown_node():
    """Make sure we reject handles not created by the builder."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)

    with pytest.raises(graph_builder.UnknownNode):
        builder.create_result(identity, [Node(7)])

    with pytest.raises(graph_builder.UnknownNode):
        builder.descriptor(Node(-1))

    assert builder.descriptor(a) is None


def test_descriptor_is_computed_by_validate():
    """Test that the output descriptor comes from the operation."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", "shape-of-a")
    b = builder.create_result(identity, [a])
    assert builder.descriptor(b) == "shape-of-a"


def test_build_rejects_two_roots():
    """Building a graph with two disconnected roots fails."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.create_input("b", None)
    c = builder.create_input("c", None)
    d = builder.create_input("d", None)
    builder.create_result(scalar.add, [a, b])
    builder.create_result(scalar.add, [c, d])

    with pytest.raises(graph_builder.RootCountError):
        builder.build()


def test_build_rejects_empty_builder():
    """Building a graph without nodes fails."""
    with pytest.raises(graph_builder.RootCountError):
        graph_builder.GraphBuilder(scalar.Float).build()


def test_build_rejects_weights_root():
    """Building with a weight as the sole root fails."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    builder.create_weights("w", None)

    with pytest.raises(graph_builder.RootIsWeights):
        builder.build()


def test_build_rejects_input_root():
    """Building with an input as the sole root fails."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    builder.create_input("x", None)

    with pytest.raises(graph_builder.RootIsInput):
        builder.build()


def test_errors_share_base_class():
    """Make sure callers can catch every construction error at once."""
    for exc in (
        graph_builder.AliasedInputs,
        graph_builder.DuplicateName,
        graph_builder.InvalidOperands,
        graph_builder.RootCountError,
        graph_builder.RootIsInput,
        graph_builder.RootIsWeights,
        graph_builder.UnknownNode,
    ):
        assert issubclass(exc, graph_builder.GraphBuildError)


def test_build_queues():
    """Test the forward queue is topologically sorted and backward is its reverse."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.create_input("b", None)
    w = builder.create_weights("w", None)
    c = builder.create_result(scalar.multiply, [a, b])
    d = builder.create_result(scalar.multiply, [w, c])
    e = builder.create_result(scalar.add, [d, b])
    f = builder.create_result(scalar.add, [e, a])

    g = builder.build()

    forward = list(g.forward_queue)
    assert [entry.output for entry in forward] == [c, d, e, f]
    assert list(g.backward_queue) == forward[::-1]

    # every operand is a leaf or the output of an earlier entry
    computed = {a, b, w}
    for entry in forward:
        assert all(node in computed for node in entry.inputs)
        assert entry.output not in computed
        computed.add(entry.output)

    assert g.root == f
    assert len(g) == 7
    assert g.input_names() == ["a", "b"]
    assert g.weight_names() == ["w"]


def test_build_queue_representation():
    """Test the SSA representation of the queues."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    w = builder.create_weights("w", None)
    b = builder.create_result(scalar.multiply, [w, a])
    builder.create_result(identity, [b])

    g = builder.build()

    assert str(g.forward_queue) == "n2 = multiply(n1, n0)\nn3 = identity(n2)"
    assert str(g.backward_queue) == "n3 = identity(n2)\nn2 = multiply(n1, n0)"


def test_build_allocates_slots_from_descriptors():
    """Test that slots have gradient storage only when required."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    w = builder.create_weights("w", None)
    b = builder.create_result(scalar.multiply, [a, w])

    g = builder.build()

    assert g.value(a).grad is None
    assert g.value(w).grad == 0.0
    assert g.value(b).grad == 0.0


def test_build_cycle_is_fatal():
    """Test that a corrupted builder containing a cycle cannot be compiled."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.create_result(identity, [a])
    c = builder.create_result(identity, [b])
    builder.create_result(identity, [c])

    # This isn't possible with the API but we're testing error detection
    builder._records[b.index].parents = (a, c)

    with pytest.raises(ValueError, match="cycle detected"):
        builder.build()


def test_debug_flags():
    """Test that tracepoint and breakpoint flags reach the queue."""
    builder = graph_builder.GraphBuilder(scalar.Float)
    a = builder.create_input("a", None)
    b = builder.tracepoint(builder.create_result(identity, [a]))
    c = builder.breakpoint(builder.create_result(identity, [b]))

    g = builder.build(flags=0)

    assert g.flags == 0
    first, second = g.forward_queue
    assert first.output == b and first.flags == compileflags.TRACE
    assert second.output == c and second.flags == compileflags.TRACE | compileflags.BREAK
