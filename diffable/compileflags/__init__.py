"""
Debug flags shared by the graph builder and the graph executor.

Flags are plain bits combined with `|`. A graph takes its flags from
`defaults` unless `GraphBuilder.build` receives explicit ones, and single
nodes may add more through `GraphBuilder.tracepoint` and `breakpoint`.
"""

# SPDX-License-Identifier: Apache-2.0

from typing import Callable
import os


TRACE = 1 << 0
"""Print each entry and the slots it wrote."""

BREAK = 1 << 1
"""Wait for the user after running each entry."""

DUMP = 1 << 2
"""Print the whole operation queue before each pass."""

_flagnames: dict[str, int] = {
    "break": BREAK,
    "dump": DUMP,
    "trace": TRACE,
}


def from_environ(
    varname: str = "DIFFABLE_ENGINE_FLAGS",
    getenv: Callable[[str], str | None] = os.getenv,
) -> int:
    """Parse a comma separated list of flag names from the environment.

    Names are case-insensitive and surrounding blanks are stripped, so
    `DIFFABLE_ENGINE_FLAGS="Dump, trace"` yields `DUMP | TRACE`. Names
    that match no flag are skipped, and an unset variable yields zero.

    Arguments
    ---------
    varname: the environment variable holding the list.
    getenv: the lookup function, replaceable in tests.
    """
    flags: int = 0
    for value in (getenv(varname) or "").split(","):
        flags |= _flagnames.get(value.strip().lower(), 0)
    return flags


defaults = from_environ()
"""Flags in effect when none are passed explicitly, read at import time."""
