"""Tests for the diffable.numpybackend.ops module."""

# SPDX-License-Identifier: Apache-2.0

import numpy as np
import pytest

from diffable import graph_builder
from diffable.numpybackend import Array, Context, ops


def _numeric_gradient(func, x, eps=1e-6):
    """Compute the central finite-difference gradient of func at x."""
    grad = np.zeros_like(x)
    for index in np.ndindex(x.shape):
        bumped = x.copy()
        bumped[index] += eps
        up = func(bumped)
        bumped[index] -= 2 * eps
        down = func(bumped)
        grad[index] = (up - down) / (2 * eps)
    return grad


def _run(build, weights):
    """Build a graph with the given weights, run both passes, return the graph."""
    builder = graph_builder.GraphBuilder(Array)
    nodes = {name: builder.create_weights(name, value.shape) for name, value in weights.items()}
    build(builder, **nodes)
    g = builder.build(Context(), flags=0)
    for name, value in weights.items():
        g.store_weights(name, Array(value))
    g.zero_grads()
    g.forward()
    g.backward()
    return g


def _check_gradients(build, weights):
    """Compare the engine gradients with finite differences."""
    g = _run(build, weights)
    for name, value in weights.items():

        def func(x, name=name, value=value):
            g.store_weights(name, Array(x))
            rv = g.forward()
            g.store_weights(name, Array(value))
            return rv

        expected = _numeric_gradient(func, value)
        np.testing.assert_allclose(g.weights(name).grad, expected, rtol=1e-5, atol=1e-6)


_rng = np.random.default_rng(seed=7)
_a = _rng.uniform(0.5, 2.0, size=(2, 3))
_b = _rng.uniform(0.5, 2.0, size=(2, 3))


@pytest.mark.parametrize("helper", [ops.add, ops.subtract, ops.multiply, ops.divide, ops.maximum])
def test_binary_gradients(helper):
    """Test the gradients of element-wise binary operations."""

    def build(builder, a, b):
        ops.reduce_sum(builder, helper(builder, a, b))

    _check_gradients(build, {"a": _a, "b": _b})


@pytest.mark.parametrize("helper", [ops.negative, ops.exp, ops.log, ops.square, ops.tanh, ops.relu])
def test_unary_gradients(helper):
    """Test the gradients of element-wise unary operations."""

    def build(builder, a, c):
        ops.reduce_sum(builder, ops.multiply(builder, helper(builder, a), c))

    _check_gradients(build, {"a": _a if helper is ops.log else _a - 1.0, "c": _b})


@pytest.mark.parametrize("axis", [None, 0, 1, -1, (0, 1)])
def test_reduction_gradients(axis):
    """Test the gradients of reductions over several axes."""

    def build(builder, a, c):
        mean = ops.reduce_mean(builder, a, axis=axis)
        ops.reduce_sum(builder, ops.multiply(builder, ops.square(builder, mean), c))

    shape = np.zeros((2, 3)).mean(axis=axis).shape
    _check_gradients(build, {"a": _a, "c": np.full(shape, 1.5)})


def test_matmul_gradients():
    """Test the gradients of the matrix product."""

    def build(builder, x, w):
        ops.reduce_sum(builder, ops.tanh(builder, ops.matmul(builder, x, w)))

    _check_gradients(build, {"x": _a, "w": _b.T})


def test_linear_regression_loss():
    """Test the mean squared error of a linear model and its gradient."""
    x = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    y = np.array([[1.0], [2.0], [3.0]])
    w = np.array([[0.5], [-0.25]])

    builder = graph_builder.GraphBuilder(Array)
    xn = builder.create_input("x", x.shape)
    yn = builder.create_input("y", y.shape)
    wn = builder.create_weights("w", w.shape)
    err = ops.subtract(builder, ops.matmul(builder, xn, wn), yn)
    ops.reduce_mean(builder, ops.square(builder, err))
    g = builder.build(Context(), flags=0)

    g.store_input("x", Array(x))
    g.store_input("y", Array(y))
    g.store_weights("w", Array(w))
    g.zero_grads()

    residual = x @ w - y
    assert g.forward() == pytest.approx(float(np.mean(residual**2)))

    g.backward()
    np.testing.assert_allclose(g.weights("w").grad, 2.0 * x.T @ residual / len(x))
    assert g.input("x").grad is None


def test_shape_validation():
    """Make sure malformed graphs fail while being built."""
    builder = graph_builder.GraphBuilder(Array)
    a = builder.create_input("a", (2, 3))
    b = builder.create_input("b", (3, 2))
    c = builder.create_input("c", (3,))
    d = builder.create_input("d", (2, 3))

    with pytest.raises(graph_builder.InvalidOperands, match=r"add: shape mismatch: \(2, 3\) != \(3, 2\)"):
        ops.add(builder, a, b)

    with pytest.raises(graph_builder.InvalidOperands, match="matmul: inner dimensions differ"):
        ops.matmul(builder, a, d)

    with pytest.raises(graph_builder.InvalidOperands, match="matmul: expected matrices"):
        ops.matmul(builder, b, c)

    with pytest.raises(graph_builder.InvalidOperands, match="exp: expected 1 operand"):
        builder.create_result(ops.UnaryOp("exp"), [a, d])

    with pytest.raises(graph_builder.InvalidOperands, match="reduce_sum: axis 2 out of range"):
        ops.reduce_sum(builder, a, axis=2)

    with pytest.raises(graph_builder.InvalidOperands, match="repeated axis"):
        ops.reduce_mean(builder, a, axis=(0, -2))

    assert len(builder) == 4
    assert builder.descriptor(ops.matmul(builder, a, b)) == (2, 2)
    assert builder.descriptor(ops.reduce_sum(builder, c)) == ()


def test_context_controls_floating_point_errors():
    """Test that the context decides how to handle floating point errors."""

    def build(errors):
        builder = graph_builder.GraphBuilder(Array)
        a = builder.create_weights("a", ())
        ops.log(builder, a)
        g = builder.build(Context(errors=errors), flags=0)
        g.store_weights("a", Array(0.0))
        return g

    with pytest.raises(FloatingPointError):
        build("raise").forward()

    assert build("ignore").forward() == -np.inf


def test_unknown_axis_operation():
    """Make sure we only support known reductions."""
    with pytest.raises(ValueError):
        ops.AxisOp("reduce_max")


def test_context_controls_reduction_backward():
    """Test that the mean gradient is scaled under the context error policy."""

    def build(errors):
        builder = graph_builder.GraphBuilder(Array)
        a = builder.create_weights("a", (2,))
        c = builder.create_weights("c", ())
        ops.multiply(builder, ops.reduce_mean(builder, a), c)
        g = builder.build(Context(errors=errors), flags=0)
        g.store_weights("a", Array(np.ones(2)))
        g.store_weights("c", Array(np.full((), 5e-324)))
        g.zero_grads()
        g.forward()
        return g

    # halving the smallest subnormal underflows
    with pytest.raises(FloatingPointError, match="underflow"):
        build("raise").backward()

    g = build("ignore")
    g.backward()
    np.testing.assert_array_equal(g.weights("a").grad, np.zeros(2))
    assert g.weights("c").grad == 1.0
