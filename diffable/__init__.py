"""The diffable package implements a reverse-mode automatic differentiation engine.

Callers describe a computation as a DAG using a `GraphBuilder`, then
compile it into a `Graph` that runs the forward and backward passes.

Modules:
    compileflags: Common definitions of flags influencing the engine.
    graph: Compiled graph execution.
    graph_builder: Graph construction and validation.
    linearize: Topological sorting.
    node: Node handles.
    numpybackend: NumPy value type and operations.
    operation: Operation capability contract and operation queues.
    scalar: Pure-Python scalar value type and operations.
    tensor: Value type capability contract.
"""

# SPDX-License-Identifier: Apache-2.0

from .graph import BorrowError, Graph, GraphRuntimeError, NameNotFound, ScalarNotAvailable
from .graph_builder import (
    AliasedInputs,
    DuplicateName,
    GraphBuildError,
    GraphBuilder,
    InvalidOperands,
    RootCountError,
    RootIsInput,
    RootIsWeights,
    UnknownNode,
)
from .node import Node
from .operation import DiffableOperation, Entry, Operation, OperationQueue, ValidationError
from .tensor import Tensor

__all__ = [
    "AliasedInputs",
    "BorrowError",
    "DiffableOperation",
    "DuplicateName",
    "Entry",
    "Graph",
    "GraphBuildError",
    "GraphBuilder",
    "GraphRuntimeError",
    "InvalidOperands",
    "NameNotFound",
    "Node",
    "Operation",
    "OperationQueue",
    "RootCountError",
    "RootIsInput",
    "RootIsWeights",
    "ScalarNotAvailable",
    "Tensor",
    "UnknownNode",
    "ValidationError",
]
