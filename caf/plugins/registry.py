"""Registry mapping resource type tags to handler instances.

Thread-safe: all registry operations are protected by a lock.
"""

import threading

from caf.exceptions import NotFoundError, PluginError
from caf.handlers import BUILTIN_HANDLERS
from caf.handlers.base import HandlerContext, ResourceHandler


class HandlerRegistry:
    """Tagged dispatch table from resource type to handler.

    Usage:
        registry = create_registry(ctx)
        handler = registry.get("mcp")
        handler.install(resource, targets, options)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, ResourceHandler] = {}
        self._owners: dict[str, str | None] = {}

    def register(self, handler: ResourceHandler, plugin_id: str | None = None) -> None:
        """Register a handler under its ``type``.

        Args:
            handler: Object satisfying the ResourceHandler protocol
            plugin_id: Owning plugin, None for built-in handlers

        Raises:
            PluginError: If the object is not a handler or its type is taken
        """
        if not isinstance(handler, ResourceHandler):
            raise PluginError(f"{handler!r} does not implement the resource handler interface")
        with self._lock:
            if handler.type in self._handlers:
                owner = self._owners.get(handler.type) or "built-in"
                raise PluginError(
                    f"Handler for resource type '{handler.type}' is already registered ({owner})"
                )
            self._handlers[handler.type] = handler
            self._owners[handler.type] = plugin_id

    def unregister(self, resource_type: str) -> ResourceHandler | None:
        with self._lock:
            self._owners.pop(resource_type, None)
            return self._handlers.pop(resource_type, None)

    def get(self, resource_type: str) -> ResourceHandler:
        """Get the handler for a resource type.

        Raises:
            NotFoundError: If no handler is registered for the type
        """
        with self._lock:
            if resource_type not in self._handlers:
                available = ", ".join(self._handlers) if self._handlers else "none"
                raise NotFoundError(
                    f"No handler registered for '{resource_type}'. Available: {available}"
                )
            return self._handlers[resource_type]

    def has(self, resource_type: str) -> bool:
        with self._lock:
            return resource_type in self._handlers

    def types(self) -> list[str]:
        with self._lock:
            return list(self._handlers)

    def owner(self, resource_type: str) -> str | None:
        with self._lock:
            return self._owners.get(resource_type)

    # --- Test utilities for registry isolation ---

    def snapshot(self) -> tuple[dict[str, ResourceHandler], dict[str, str | None]]:
        with self._lock:
            return self._handlers.copy(), self._owners.copy()

    def restore(self, snapshot: tuple[dict[str, ResourceHandler], dict[str, str | None]]) -> None:
        handlers, owners = snapshot
        with self._lock:
            self._handlers.clear()
            self._handlers.update(handlers)
            self._owners.clear()
            self._owners.update(owners)


def create_registry(ctx: HandlerContext, include_builtins: bool = True) -> HandlerRegistry:
    """Create a registry, populated with the built-in handlers by default."""
    registry = HandlerRegistry()
    if include_builtins:
        for factory in BUILTIN_HANDLERS.values():
            registry.register(factory(ctx))
    return registry
