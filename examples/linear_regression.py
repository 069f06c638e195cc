"""Fit a linear model with gradient descent using the NumPy backend.

Run with DIFFABLE_ENGINE_FLAGS=dump to print the operation queues.
"""

import numpy as np

from diffable import graph_builder
from diffable.numpybackend import Array, Context, ops

rng = np.random.default_rng(seed=42)

# y = x @ [2, -3] + 0.5 + noise
samples = 64
x = rng.normal(size=(samples, 2))
y = x @ np.array([[2.0], [-3.0]]) + 0.5 + rng.normal(scale=0.01, size=(samples, 1))

# ---------------------------------------------------------------------------
# Graph: loss = mean((x @ w + b * ones - y) ** 2)
# ---------------------------------------------------------------------------

builder = graph_builder.GraphBuilder(Array)

xn = builder.create_input("x", x.shape)
yn = builder.create_input("y", y.shape)
ones = builder.create_input("ones", y.shape)
w = builder.create_weights("w", (2, 1))
b = builder.create_weights("b", (1, 1))

prediction = ops.add(builder, ops.matmul(builder, xn, w), ops.matmul(builder, ones, b))
loss = ops.reduce_mean(builder, ops.square(builder, ops.subtract(builder, prediction, yn)))

g = builder.build(Context())

g.store_input("x", Array(x))
g.store_input("y", Array(y))
g.store_input("ones", Array(np.ones(y.shape)))

# ---------------------------------------------------------------------------
# Training loop
# ---------------------------------------------------------------------------

learning_rate = 0.1
for step in range(200):
    g.zero_grads()
    value = g.forward()
    g.backward()
    for name in g.weight_names():
        slot = g.weights(name)
        slot.value -= learning_rate * slot.grad
    if step % 50 == 0:
        print(f"step {step}: loss {value:.6f}")

np.testing.assert_allclose(g.weights("w").value, [[2.0], [-3.0]], atol=0.05)
np.testing.assert_allclose(g.weights("b").value, [[0.5]], atol=0.05)
print(g.weights("w").value.ravel(), g.weights("b").value.ravel())
