"""Tests for CheckService — link-graph integrity report."""

from __future__ import annotations

from schemalink.infrastructure.registry import Registry
from schemalink.services.check import (
    CAT_ANCESTOR_LINK,
    CAT_CARDINALITY,
    CAT_LINK_CYCLE,
    CAT_ORPHAN_RECORD_LINK,
    CheckService,
)
from schemalink.services.datatype_links import DatatypeLinkService
from schemalink.services.record_links import RecordLinkService
from tests.conftest import add_datatype, add_link, add_record, add_record_link


def _categories(registry: Registry) -> list[str]:
    result = CheckService(registry).check()
    assert result.ok
    return [issue["category"] for issue in result.data["issues"]]


class TestCheck:
    def test_clean_registry(self, registry: Registry) -> None:
        result = CheckService(registry).check()
        assert result.ok
        assert result.data == {"issues": [], "count": 0, "errors": 0}

    def test_state_built_by_services_is_clean(self, registry: Registry) -> None:
        a = add_datatype(registry.engine, "A")
        b = add_datatype(registry.engine, "B")
        assert DatatypeLinkService(registry).set_datatype_link(
            a.id, a.slot_ids[0], new_remote_id=b.id
        ).ok
        ra = add_record(registry.engine, a.id)
        rb = add_record(registry.engine, b.id)
        assert RecordLinkService(registry).sync_record_links(ra, a.id, b.id, {rb}).ok

        assert _categories(registry) == []

    def test_link_cycle(self, registry: Registry) -> None:
        a = add_datatype(registry.engine, "A")
        b = add_datatype(registry.engine, "B")
        add_link(registry.engine, a.id, b.id)
        add_link(registry.engine, b.id, a.id)

        assert _categories(registry) == [CAT_LINK_CYCLE]

    def test_link_to_ancestor(self, registry: Registry) -> None:
        parent = add_datatype(registry.engine, "Parent")
        child = add_datatype(registry.engine, "Child", parent_id=parent.id)
        add_link(registry.engine, child.id, parent.id)

        assert _categories(registry) == [CAT_ANCESTOR_LINK]

    def test_cardinality_breach(self, registry: Registry) -> None:
        a = add_datatype(registry.engine, "A")
        b = add_datatype(registry.engine, "B")
        add_link(registry.engine, a.id, b.id, multiple_allowed=False)
        ra = add_record(registry.engine, a.id)
        add_record_link(registry.engine, ra, add_record(registry.engine, b.id))
        add_record_link(registry.engine, ra, add_record(registry.engine, b.id))

        result = CheckService(registry).check()

        assert [i["category"] for i in result.data["issues"]] == [CAT_CARDINALITY]
        assert result.data["issues"][0]["record_id"] == ra

    def test_orphan_record_link(self, registry: Registry) -> None:
        a = add_datatype(registry.engine, "A")
        b = add_datatype(registry.engine, "B")
        add_record_link(
            registry.engine, add_record(registry.engine, a.id), add_record(registry.engine, b.id)
        )

        result = CheckService(registry).check()

        assert [i["category"] for i in result.data["issues"]] == [CAT_ORPHAN_RECORD_LINK]
        assert result.data["errors"] == 1
