"""Handler registry and third-party plugin loading."""

from caf.plugins.loader import LoadedPlugin, PluginContext, PluginLoader
from caf.plugins.manager import PluginManager
from caf.plugins.manifest import PluginManifest, load_manifest, validate_manifest
from caf.plugins.registry import HandlerRegistry, create_registry

__all__ = [
    "HandlerRegistry",
    "LoadedPlugin",
    "PluginContext",
    "PluginLoader",
    "PluginManager",
    "PluginManifest",
    "create_registry",
    "load_manifest",
    "validate_manifest",
]
