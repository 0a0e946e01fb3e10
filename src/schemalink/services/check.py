"""CheckService — read-only integrity report over the committed link graph.

Follows the linter pattern: each category returns a list of issue dicts and
nothing is modified. Categories:

- ``ancestor_link``: a datatype links to one of its structural ancestors.
- ``duplicate_link``: more than one active link per ordered pair.
- ``link_cycle``: link edges alone form a cycle.
- ``cardinality``: a single-record link holds several record links.
- ``orphan_record_link``: a record link without an active datatype link.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from schemalink.infrastructure.database.schema import datarecords, datatype_edges, record_links
from schemalink.infrastructure.graph.engine import SchemaGraph
from schemalink.services.base import BaseService
from schemalink.services.result import ServiceResult

if TYPE_CHECKING:
    from sqlalchemy import Connection

# ---------------------------------------------------------------------------
# Issue severity and category constants
# ---------------------------------------------------------------------------

SEVERITY_ERROR = "error"

CAT_ANCESTOR_LINK = "ancestor_link"
CAT_DUPLICATE_LINK = "duplicate_link"
CAT_LINK_CYCLE = "link_cycle"
CAT_CARDINALITY = "cardinality"
CAT_ORPHAN_RECORD_LINK = "orphan_record_link"

MAX_REPORTED_CYCLES = 10


class CheckService(BaseService):
    """Reports link-graph invariant violations."""

    def check(self) -> ServiceResult:
        """Report integrity issues without modifying anything."""
        issues: list[dict[str, Any]] = []
        with self._registry.engine.connect() as conn:
            graph = SchemaGraph.load(conn)
            issues.extend(self._check_ancestor_links(graph))
            issues.extend(self._check_duplicate_links(conn))
            issues.extend(self._check_link_cycles(graph))
            issues.extend(self._check_cardinality(conn))
            issues.extend(self._check_orphan_record_links(conn))

        errors = sum(1 for i in issues if i["severity"] == SEVERITY_ERROR)
        return ServiceResult(
            ok=True,
            op="check",
            data={"issues": issues, "count": len(issues), "errors": errors},
        )

    # ------------------------------------------------------------------
    # Datatype level
    # ------------------------------------------------------------------

    @staticmethod
    def _check_ancestor_links(graph: SchemaGraph) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        for local_id, remote_id in sorted(graph.links.edges()):
            if remote_id in graph.get_ancestry_chain(local_id):
                issues.append(
                    {
                        "category": CAT_ANCESTOR_LINK,
                        "severity": SEVERITY_ERROR,
                        "datatype_id": local_id,
                        "message": f"Datatype {local_id} links to its ancestor {remote_id}",
                    }
                )
        return issues

    @staticmethod
    def _check_duplicate_links(conn: Connection) -> list[dict[str, Any]]:
        rows = conn.execute(
            select(
                datatype_edges.c.ancestor_id,
                datatype_edges.c.descendant_id,
                func.count().label("n"),
            )
            .where(datatype_edges.c.is_link == 1, datatype_edges.c.deleted_at.is_(None))
            .group_by(datatype_edges.c.ancestor_id, datatype_edges.c.descendant_id)
            .having(func.count() > 1)
        ).fetchall()
        return [
            {
                "category": CAT_DUPLICATE_LINK,
                "severity": SEVERITY_ERROR,
                "datatype_id": r.ancestor_id,
                "message": (
                    f"{r.n} active links from datatype {r.ancestor_id} to {r.descendant_id}"
                ),
            }
            for r in rows
        ]

    @staticmethod
    def _check_link_cycles(graph: SchemaGraph) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        for cycle in graph.link_cycles(limit=MAX_REPORTED_CYCLES):
            path = " -> ".join(str(n) for n in [*cycle, cycle[0]])
            issues.append(
                {
                    "category": CAT_LINK_CYCLE,
                    "severity": SEVERITY_ERROR,
                    "datatype_id": min(cycle),
                    "message": f"Link cycle: {path}",
                }
            )
        return issues

    # ------------------------------------------------------------------
    # Record level
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cardinality(conn: Connection) -> list[dict[str, Any]]:
        ancestor = aliased(datarecords)
        descendant = aliased(datarecords)
        rows = conn.execute(
            select(
                record_links.c.ancestor_id,
                descendant.c.datatype_id,
                func.count().label("n"),
            )
            .select_from(
                record_links.join(ancestor, record_links.c.ancestor_id == ancestor.c.id)
                .join(descendant, record_links.c.descendant_id == descendant.c.id)
                .join(
                    datatype_edges,
                    (datatype_edges.c.ancestor_id == ancestor.c.datatype_id)
                    & (datatype_edges.c.descendant_id == descendant.c.datatype_id),
                )
            )
            .where(
                record_links.c.deleted_at.is_(None),
                datatype_edges.c.is_link == 1,
                datatype_edges.c.multiple_allowed == 0,
                datatype_edges.c.deleted_at.is_(None),
            )
            .group_by(record_links.c.ancestor_id, descendant.c.datatype_id)
            .having(func.count() > 1)
        ).fetchall()
        return [
            {
                "category": CAT_CARDINALITY,
                "severity": SEVERITY_ERROR,
                "record_id": r.ancestor_id,
                "message": (
                    f"Datarecord {r.ancestor_id} links to {r.n} datarecords of datatype "
                    f"{r.datatype_id}, which allows only one"
                ),
            }
            for r in rows
        ]

    @staticmethod
    def _check_orphan_record_links(conn: Connection) -> list[dict[str, Any]]:
        ancestor = aliased(datarecords)
        descendant = aliased(datarecords)
        active_edge = (
            select(datatype_edges.c.id)
            .where(
                datatype_edges.c.ancestor_id == ancestor.c.datatype_id,
                datatype_edges.c.descendant_id == descendant.c.datatype_id,
                datatype_edges.c.is_link == 1,
                datatype_edges.c.deleted_at.is_(None),
            )
            .exists()
        )
        rows = conn.execute(
            select(
                record_links.c.id,
                record_links.c.ancestor_id,
                record_links.c.descendant_id,
                ancestor.c.datatype_id.label("ancestor_type_id"),
                descendant.c.datatype_id.label("descendant_type_id"),
            )
            .select_from(
                record_links.join(ancestor, record_links.c.ancestor_id == ancestor.c.id).join(
                    descendant, record_links.c.descendant_id == descendant.c.id
                )
            )
            .where(record_links.c.deleted_at.is_(None), ~active_edge)
            .order_by(record_links.c.id)
        ).fetchall()
        return [
            {
                "category": CAT_ORPHAN_RECORD_LINK,
                "severity": SEVERITY_ERROR,
                "record_id": r.ancestor_id,
                "message": (
                    f"Record link {r.ancestor_id} -> {r.descendant_id} has no active link "
                    f"from datatype {r.ancestor_type_id} to {r.descendant_type_id}"
                ),
            }
            for r in rows
        ]
