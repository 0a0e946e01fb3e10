"""SchemaGraph — one consistent NetworkX snapshot of the datatype graph.

Two directed graphs are built from the active ``datatype_edges`` rows:

- ``structural``: parent -> child ownership edges.
- ``links``: local -> remote link edges, with ``multiple_allowed`` and the
  edge row id as attributes.

Snapshots are loaded from the connection of the caller's transaction so the
validation reads and the following writes see the same state. At registry
scale (hundreds to low thousands of datatypes) a full load stays cheap.
:class:`GraphEngine` keeps a lazily built snapshot for read-only queries
outside a transaction; the registry invalidates it at the end of every
transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import networkx as nx
from sqlalchemy import select

from schemalink.infrastructure.database.schema import datatype_edges, datatypes

if TYPE_CHECKING:
    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine

_Graph: TypeAlias = nx.DiGraph


class SchemaGraph:
    """Read-only view over structural and link edges at one point in time."""

    def __init__(self, structural: _Graph, links: _Graph) -> None:
        self.structural = structural
        self.links = links

    @classmethod
    def load(cls, conn: Connection) -> SchemaGraph:
        """Build a snapshot from active rows visible to *conn*.

        All datatypes are added first so isolated types are visible to
        ancestry and cycle queries.
        """
        structural: _Graph = nx.DiGraph()
        links: _Graph = nx.DiGraph()

        for row in conn.execute(
            select(
                datatypes.c.id,
                datatypes.c.name,
                datatypes.c.is_template,
                datatypes.c.grandparent_id,
                datatypes.c.metadata_for_id,
            ).where(datatypes.c.deleted_at.is_(None))
        ):
            attrs = {
                "name": row.name,
                "is_template": bool(row.is_template),
                "grandparent_id": row.grandparent_id or row.id,
                "metadata_for_id": row.metadata_for_id,
            }
            structural.add_node(row.id, **attrs)
            links.add_node(row.id, **attrs)

        for row in conn.execute(select(datatype_edges).where(datatype_edges.c.deleted_at.is_(None))):
            if row.is_link:
                links.add_edge(
                    row.ancestor_id,
                    row.descendant_id,
                    edge_id=row.id,
                    multiple_allowed=bool(row.multiple_allowed),
                )
            else:
                structural.add_edge(row.ancestor_id, row.descendant_id, edge_id=row.id)

        return cls(structural, links)

    # ------------------------------------------------------------------
    # Node queries
    # ------------------------------------------------------------------

    def __contains__(self, datatype_id: object) -> bool:
        return datatype_id in self.structural

    def node(self, datatype_id: int) -> dict[str, Any]:
        """Attributes of *datatype_id* (empty dict if unknown)."""
        if datatype_id not in self.structural:
            return {}
        return dict(self.structural.nodes[datatype_id])

    def is_top_level(self, datatype_id: int) -> bool:
        """True if *datatype_id* has no structural parent."""
        return self.structural.in_degree(datatype_id) == 0

    def get_ancestry_chain(self, datatype_id: int) -> list[int]:
        """Structural ancestors of *datatype_id*, nearest first, ending at its root.

        A datatype has at most one structural parent; the walk stops on a
        repeated node so a malformed chain cannot loop.
        """
        chain: list[int] = []
        seen: set[int] = {datatype_id}
        current = datatype_id
        while current in self.structural:
            parents = list(self.structural.predecessors(current))
            if not parents or parents[0] in seen:
                break
            current = parents[0]
            seen.add(current)
            chain.append(current)
        return chain

    def root_of(self, datatype_id: int) -> int:
        """The top-level datatype that structurally owns *datatype_id*."""
        chain = self.get_ancestry_chain(datatype_id)
        return chain[-1] if chain else datatype_id

    # ------------------------------------------------------------------
    # Link queries
    # ------------------------------------------------------------------

    def get_link_targets(self, datatype_id: int) -> set[int]:
        """Datatypes that *datatype_id* links to."""
        if datatype_id not in self.links:
            return set()
        return set(self.links.successors(datatype_id))

    def get_reverse_link_sources(self, datatype_id: int) -> set[int]:
        """Datatypes that link into *datatype_id*."""
        if datatype_id not in self.links:
            return set()
        return set(self.links.predecessors(datatype_id))

    def has_link(self, local_id: int, remote_id: int) -> bool:
        return self.links.has_edge(local_id, remote_id)

    def link_edge(self, local_id: int, remote_id: int) -> dict[str, Any] | None:
        """Attributes of the active link ``local_id -> remote_id``, or None."""
        if not self.links.has_edge(local_id, remote_id):
            return None
        return dict(self.links.edges[local_id, remote_id])

    def linked_from(self, *, exclude: tuple[int, int] | None = None) -> dict[int, set[int]]:
        """Reverse adjacency of the link graph, optionally without one edge.

        *exclude* is a ``(local, remote)`` pair treated as already removed,
        used when a link is being replaced in the same request.
        """
        result: dict[int, set[int]] = {}
        for local_id, remote_id in self.links.edges():
            if exclude is not None and (local_id, remote_id) == exclude:
                continue
            result.setdefault(remote_id, set()).add(local_id)
        return result

    def link_cycles(self, *, limit: int = 10) -> list[list[int]]:
        """Up to *limit* simple cycles made of link edges alone."""
        cycles: list[list[int]] = []
        for cycle in nx.simple_cycles(self.links):
            cycles.append(cycle)
            if len(cycles) >= limit:
                break
        return cycles


class GraphEngine:
    """Lazy-loading snapshot for read paths outside a transaction."""

    def __init__(self, db: Engine) -> None:
        self._db = db
        self._graph: SchemaGraph | None = None

    @property
    def graph(self) -> SchemaGraph:
        """Return the snapshot, building from DB on first access."""
        if self._graph is None:
            with self._db.connect() as conn:
                self._graph = SchemaGraph.load(conn)
        return self._graph

    def invalidate(self) -> None:
        """Clear the cached snapshot, forcing rebuild on next access."""
        self._graph = None
