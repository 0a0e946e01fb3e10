"""Pluggy hook specifications for link-graph change notifications.

Four events are dispatched after a mutation commits. Consumers own cache
invalidation and any other downstream rebuild; a failing consumer never
rolls back the mutation that triggered it.
"""

from __future__ import annotations

import pluggy

hookspec = pluggy.HookspecMarker("schemalink")


class SchemalinkHookSpec:
    """Hook specifications for the schemalink plugin system."""

    @hookspec
    def datatype_modified(self, datatype_id: int, clear_record_cache: bool) -> None:
        """Called after a datatype gained or lost a link."""

    @hookspec
    def datatype_link_status_changed(
        self,
        root_datatype_id: int,
        new_remote_id: int | None,
        previous_remote_id: int | None,
    ) -> None:
        """Called after a link was created, replaced or removed."""

    @hookspec
    def record_modified(self, record_id: int) -> None:
        """Called once per affected root record after record links changed."""

    @hookspec
    def record_link_status_changed(self, record_ids: list[int], remote_datatype_id: int) -> None:
        """Called once per batch of root records whose linked records changed."""
