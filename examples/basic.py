"""Build ((w * (a * b)) + b) + a with scalar values and evaluate it."""

from diffable import graph_builder, scalar

builder = graph_builder.GraphBuilder(scalar.Float)

a = builder.create_input("a", None)
b = builder.create_input("b", None)
w = builder.create_weights("w", None)

c = builder.create_result(scalar.multiply, [a, b])
d = builder.create_result(scalar.multiply, [w, c])
e = builder.create_result(scalar.add, [d, b])
builder.create_result(scalar.add, [e, a])

g = builder.build()

g.store_input("a", scalar.Float(3.0))
g.store_input("b", scalar.Float(2.0))
g.store_weights("w", scalar.Float(5.0))

out = g.forward()
assert out == 35.0
print(out)

# ---------------------------------------------------------------------------
# Gradients
# ---------------------------------------------------------------------------

g.zero_grads()
g.forward()
g.backward()

# f = w*a*b + b + a, hence df/dw = a*b
assert g.weights("w").grad == 6.0
print(g.weights("w"))
