"""Cycle detection for datatype links.

Pure functions, no infrastructure dependencies. The link graph is passed in
as reverse adjacency ("linked from"): for every datatype, the set of
datatypes holding a link *into* it. Structural (owned) edges are not part of
this graph.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TypeAlias

LinkedFrom: TypeAlias = Mapping[int, Iterable[int]]


def would_create_cycle(linked_from: LinkedFrom, local_id: int, remote_id: int) -> bool:
    """Return True if adding the link ``local_id -> remote_id`` closes a cycle.

    The candidate edge is added to a working copy of *linked_from*. Starting
    from every datatype that links into *remote_id*, the linked-from chain is
    walked upward; arriving back at *remote_id* means rendering *remote_id*
    would eventually render itself.

    The walk keeps a visited set, so it terminates even when *linked_from*
    already contains a cycle. The caller's mapping is never modified.

    Examples:
        >>> would_create_cycle({2: {1}, 3: {2}}, 3, 1)
        True
        >>> would_create_cycle({2: {1}, 3: {2}}, 1, 4)
        False
    """
    if local_id == remote_id:
        return True

    graph: dict[int, set[int]] = {node: set(sources) for node, sources in linked_from.items()}
    graph.setdefault(remote_id, set()).add(local_id)

    stack: list[int] = list(graph[remote_id])
    visited: set[int] = set()
    while stack:
        current = stack.pop()
        if current == remote_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(s for s in graph.get(current, ()) if s not in visited)

    return False
