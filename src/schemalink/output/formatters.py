"""Rendering of ServiceResult for the terminal (text) or for machines (--json)."""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from schemalink.services.result import ServiceResult


def _compact(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return _json.dumps(value, separators=(",", ":"))
    return str(value)


def _field_lines(data: dict[str, Any]) -> list[str]:
    """``  key: value`` per entry; integrity issues get one line each, last."""
    lines = [f"  {key}: {_compact(value)}" for key, value in data.items() if key != "issues"]
    lines.extend(
        f"  [{issue['severity']}] {issue['category']}: {issue['message']}"
        for issue in data.get("issues", [])
    )
    return lines


def format_result(result: ServiceResult, *, json_output: bool = False) -> str:
    """Format a ServiceResult for display.

    Text mode starts with ``OK: <op>`` or ``ERROR: <op>: [<code>] <message>``,
    followed by the result data or the error detail.
    """
    if json_output:
        return result.model_dump_json(indent=2)
    if result.ok:
        return "\n".join([f"OK: {result.op}", *_field_lines(result.data)])
    if result.error is None:
        return f"ERROR: {result.op}: Unknown error"
    head = f"ERROR: {result.op}: [{result.error.code}] {result.error.message}"
    return "\n".join([head, *_field_lines(result.error.detail)])
