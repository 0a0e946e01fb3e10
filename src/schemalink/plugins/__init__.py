"""Change notification layer — plugin system via pluggy.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints.
INVARIANT: Notification failures are logged, never errors.
"""

from schemalink.plugins.event_bus import ChangeEvent, EventBus
from schemalink.plugins.manager import PluginManager

__all__ = ["ChangeEvent", "EventBus", "PluginManager"]
