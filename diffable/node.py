"""Node handles.

A `Node` identifies a position in the computation graph using a dense
integer index assigned by the builder in creation order. The same handle
addresses the node's storage slot once the graph has been compiled.

Handles are never reused within a builder, however, handles created by
distinct builders may share the same index. The builder rejects handles
whose index it does not know.
"""

# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Node:
    """Opaque handle identifying a graph node.

    Attributes
    ----------
        index: dense index of the node inside its builder.
    """

    index: int

    def __repr__(self) -> str:
        """Return the SSA name of the node (e.g., `n3`)."""
        return f"n{self.index}"
