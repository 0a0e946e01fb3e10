"""Enums shared across the link-graph services."""

from __future__ import annotations

from enum import StrEnum


class SyncMode(StrEnum):
    """How ``sync_record_links`` treats existing links missing from the desired set."""

    FULL_SYNC = "full_sync"
    ADD_ONLY = "add_only"


class LayoutType(StrEnum):
    """Layout flavours. Links may only be edited on ``master`` layouts."""

    MASTER = "master"
    SEARCH_RESULTS = "search_results"
    TABLE = "table"


class LinkRole(StrEnum):
    """Which side of a link edge a record sits on for one call."""

    ANCESTOR = "ancestor"
    DESCENDANT = "descendant"


class Hook(StrEnum):
    """Notification hook names dispatched through the event bus."""

    DATATYPE_MODIFIED = "datatype_modified"
    DATATYPE_LINK_STATUS_CHANGED = "datatype_link_status_changed"
    RECORD_MODIFIED = "record_modified"
    RECORD_LINK_STATUS_CHANGED = "record_link_status_changed"
