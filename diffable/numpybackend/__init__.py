"""NumPy-specific backend.

Modules:
    array: the Array value type.
    ops: operations on Array values and builder helpers.
"""

# SPDX-License-Identifier: Apache-2.0

from .array import Array, Shape, ShapeMismatch
from .ops import AxisOp, BinaryOp, Context, MatMulOp, UnaryOp

__all__ = [
    "Array",
    "AxisOp",
    "BinaryOp",
    "Context",
    "MatMulOp",
    "Shape",
    "ShapeMismatch",
    "UnaryOp",
]
