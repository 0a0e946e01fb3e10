"""Notification consumers: registration and entry-point discovery.

Third-party consumers are installed packages exposing an object in the
``schemalink.plugins`` entry-point group. Built-in consumers (cache
invalidation) are registered by the registry.
"""

from __future__ import annotations

import inspect
import logging

import pluggy

from schemalink.plugins.hookspecs import SchemalinkHookSpec

PROJECT_NAME = "schemalink"
ENTRY_POINT_GROUP = "schemalink.plugins"

logger = logging.getLogger(__name__)


class PluginManager:
    """Holds the notification consumers and exposes their hook relay."""

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(SchemalinkHookSpec)
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def hook(self) -> pluggy.HookRelay:
        return self._pm.hook

    def discover_and_load(self) -> list[str]:
        """Load entry-point consumers and return every registered name.

        A consumer shipped as a class is instantiated first. Hook
        implementations that match no notification are rejected by
        pluggy's ``check_pending``.
        """
        count = self._pm.load_setuptools_entrypoints(ENTRY_POINT_GROUP)
        if count:
            logger.debug("Loaded %d consumer(s) from %s", count, ENTRY_POINT_GROUP)
        self._instantiate_classes()
        self._pm.check_pending()
        self._loaded = True
        return self.list_plugin_names()

    def register_plugin(self, plugin: object, name: str | None = None) -> None:
        name = name or type(plugin).__name__
        self._pm.register(plugin, name=name)
        logger.debug("Registered notification consumer %s", name)

    def unregister(self, plugin: object) -> None:
        self._pm.unregister(plugin)

    def get_plugins(self) -> list[object]:
        return list(self._pm.get_plugins())

    def list_plugin_names(self) -> list[str]:
        return [self._pm.get_name(p) or type(p).__name__ for p in self._pm.get_plugins()]

    def _instantiate_classes(self) -> None:
        # Hooks called on a registered class would run with ``self`` unbound.
        for plugin in self.get_plugins():
            if not inspect.isclass(plugin) or not self._implements_any_hook(plugin):
                continue
            name = self._pm.get_name(plugin) or plugin.__name__
            self._pm.unregister(plugin)
            try:
                instance = plugin()
            except Exception:
                logger.warning("Could not instantiate consumer %s, skipped", name, exc_info=True)
                continue
            self._pm.register(instance, name=name)

    def _implements_any_hook(self, cls: type) -> bool:
        return any(
            self._pm.parse_hookimpl_opts(cls, attr) is not None
            for attr in dir(cls)
            if not attr.startswith("_")
        )
