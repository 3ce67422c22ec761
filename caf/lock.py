"""Lock file: the persisted ledger of installed resources and plugins.

The ledger lives at ``<root>/.coding-agent-fabric/lock.json`` for the scope
it tracks. Resource entries are keyed ``<type>:<name>`` so the same name can
exist under different resource types. Kind-specific fields (a skill's
folder hash, a subagent's format, ...) are stored next to the shared fields
and carried through unchanged.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from caf.constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_NAMING_STRATEGY,
    LOCK_FILE_NAME,
    LOCK_VERSION,
)
from caf.env import Environment
from caf.exceptions import FabricIOError, LockFileError, NotFoundError
from caf.models import Installation, Scope, SourceType
from caf.utils import atomic_write_text, utc_now

logger = logging.getLogger(__name__)

# Shared entry fields; everything else in an entry is a kind-specific extension
_CORE_FIELDS = {
    "type",
    "name",
    "version",
    "handler",
    "source",
    "sourceType",
    "sourceUrl",
    "installedAt",
    "updatedAt",
    "installedFor",
    "history",
}


def resource_key(resource_type: str, name: str) -> str:
    return f"{resource_type}:{name}"


@dataclass
class LockEntry:
    """One installed resource as recorded in the ledger."""

    type: str
    name: str
    version: str | None = None
    handler: str = ""
    source: str = ""
    source_type: SourceType | None = None
    source_url: str = ""
    installed_at: str = ""
    updated_at: str = ""
    installed_for: list[Installation] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return resource_key(self.type, self.name)

    def snapshot(self) -> dict[str, Any]:
        """Serialized state without history, as pushed onto ``history``."""
        data = self.to_dict()
        data.pop("history", None)
        return data

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "name": self.name,
        }
        if self.version is not None:
            data["version"] = self.version
        data.update(
            {
                "handler": self.handler or self.type,
                "source": self.source,
                "sourceType": self.source_type.value if self.source_type else None,
                "sourceUrl": self.source_url,
                "installedAt": self.installed_at,
                "updatedAt": self.updated_at,
                "installedFor": [i.to_dict() for i in self.installed_for],
            }
        )
        for key, value in self.extra.items():
            if key not in _CORE_FIELDS:
                data[key] = value
        data["history"] = list(self.history)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockEntry":
        try:
            source_type = SourceType(data["sourceType"]) if data.get("sourceType") else None
            return cls(
                type=data["type"],
                name=data["name"],
                version=data.get("version"),
                handler=data.get("handler", data["type"]),
                source=data.get("source", ""),
                source_type=source_type,
                source_url=data.get("sourceUrl", ""),
                installed_at=data.get("installedAt", ""),
                updated_at=data.get("updatedAt", ""),
                installed_for=[Installation.from_dict(i) for i in data.get("installedFor", [])],
                history=list(data.get("history", [])),
                extra={k: v for k, v in data.items() if k not in _CORE_FIELDS},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LockFileError(f"Malformed lock entry {data!r}: {e}")

    def installations_for(self, agent: str, scope: Scope | None = None) -> list[Installation]:
        return [
            i for i in self.installed_for
            if i.agent == agent and (scope is None or i.scope == scope)
        ]


@dataclass
class PluginEntry:
    """A third-party plugin recorded in the ledger."""

    id: str
    name: str
    version: str
    resource_type: str
    path: str
    source: str = ""
    supported_agents: list[str] = field(default_factory=list)
    installed_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "resourceType": self.resource_type,
            "path": self.path,
            "source": self.source,
            "supportedAgents": list(self.supported_agents),
            "installedAt": self.installed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginEntry":
        try:
            return cls(
                id=data["id"],
                name=data.get("name", data["id"]),
                version=data.get("version", ""),
                resource_type=data["resourceType"],
                path=data.get("path", ""),
                source=data.get("source", ""),
                supported_agents=list(data.get("supportedAgents", [])),
                installed_at=data.get("installedAt", ""),
            )
        except (KeyError, TypeError) as e:
            raise LockFileError(f"Malformed plugin entry {data!r}: {e}")


@dataclass
class LockConfig:
    """Ledger-level settings stored inside the lock file."""

    preferred_agents: list[str] = field(default_factory=list)
    default_scope: Scope = Scope.PROJECT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    update_strategy: str = "manual"
    naming_strategy: str = DEFAULT_NAMING_STRATEGY

    def to_dict(self) -> dict[str, Any]:
        return {
            "preferredAgents": list(self.preferred_agents),
            "defaultScope": self.default_scope.value,
            "historyLimit": self.history_limit,
            "updateStrategy": self.update_strategy,
            "namingStrategy": self.naming_strategy,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockConfig":
        return cls(
            preferred_agents=list(data.get("preferredAgents", [])),
            default_scope=Scope(data.get("defaultScope", Scope.PROJECT.value)),
            history_limit=int(data.get("historyLimit", DEFAULT_HISTORY_LIMIT)),
            update_strategy=data.get("updateStrategy", "manual"),
            naming_strategy=data.get("namingStrategy", DEFAULT_NAMING_STRATEGY),
        )


@dataclass
class LockFile:
    """In-memory form of lock.json."""

    version: int = LOCK_VERSION
    last_updated: str = ""
    config: LockConfig = field(default_factory=LockConfig)
    plugins: dict[str, PluginEntry] = field(default_factory=dict)
    resources: dict[str, LockEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "config": self.config.to_dict(),
            "plugins": {pid: p.to_dict() for pid, p in self.plugins.items()},
            "resources": {key: e.to_dict() for key, e in self.resources.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockFile":
        if not isinstance(data, dict):
            raise LockFileError("Lock file must contain a JSON object")
        version = data.get("version")
        if version != LOCK_VERSION:
            raise LockFileError(
                f"Unsupported lock file version {version!r}. Expected {LOCK_VERSION}"
            )
        resources: dict[str, LockEntry] = {}
        for raw in (data.get("resources") or {}).values():
            entry = LockEntry.from_dict(raw)
            resources[entry.key] = entry
        try:
            config = LockConfig.from_dict(data.get("config") or {})
        except (TypeError, ValueError) as e:
            raise LockFileError(f"Malformed lock config: {e}")
        return cls(
            version=version,
            last_updated=data.get("lastUpdated", ""),
            config=config,
            plugins={
                pid: PluginEntry.from_dict(raw) for pid, raw in (data.get("plugins") or {}).items()
            },
            resources=resources,
        )


class LockManager:
    """Reads and writes the ledger for one scope.

    Every mutating method loads the file if needed and saves it afterwards.
    There is no inter-process locking: two concurrent invocations against the
    same project can overwrite each other's changes.
    """

    def __init__(self, env: Environment, scope: Scope = Scope.PROJECT) -> None:
        self.scope = scope
        self._path = env.state_dir_for(scope) / LOCK_FILE_NAME
        self._lock: LockFile | None = None

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> LockFile:
        """Load the ledger, starting an empty one when the file is missing.

        Raises:
            LockFileError: If the file is malformed or has another version
        """
        if not self._path.exists():
            logger.debug("No lock file at %s, starting empty ledger", self._path)
            self._lock = LockFile(last_updated=utc_now())
            return self._lock

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise LockFileError(f"Failed to parse {self._path}: {e}")
        except OSError as e:
            raise FabricIOError(f"Failed to read {self._path}: {e}")

        self._lock = LockFile.from_dict(data)
        return self._lock

    def save(self) -> None:
        lock = self._current()
        lock.last_updated = utc_now()
        content = json.dumps(lock.to_dict(), indent=2, default=str) + "\n"
        atomic_write_text(self._path, content)

    def _current(self) -> LockFile:
        if self._lock is None:
            return self.load()
        return self._lock

    # --- Resources ---

    def add_resource(self, entry: LockEntry) -> LockEntry:
        """Record an installation, keeping identity across re-installs.

        A re-add preserves ``installed_at`` and pushes the previous state onto
        ``history`` (newest first, trimmed to the configured limit).
        """
        lock = self._current()
        now = utc_now()
        previous = lock.resources.get(entry.key)
        if previous is not None:
            entry.installed_at = previous.installed_at or now
            limit = lock.config.history_limit
            entry.history = ([previous.snapshot()] + previous.history)[:limit]
        else:
            entry.installed_at = entry.installed_at or now
        entry.updated_at = now
        if not entry.handler:
            entry.handler = entry.type
        lock.resources[entry.key] = entry
        self.save()
        return entry

    def remove_resource(self, resource_type: str, name: str) -> LockEntry:
        """Drop a resource from the ledger.

        Raises:
            NotFoundError: If the resource is not tracked
        """
        lock = self._current()
        entry = lock.resources.pop(resource_key(resource_type, name), None)
        if entry is None:
            raise NotFoundError(f"{resource_type} '{name}' is not tracked in {self._path}")
        self.save()
        return entry

    def update_installations(
        self, resource_type: str, name: str, installed_for: list[Installation]
    ) -> LockEntry | None:
        """Replace an entry's install set; an empty set removes the entry."""
        lock = self._current()
        key = resource_key(resource_type, name)
        entry = lock.resources.get(key)
        if entry is None:
            raise NotFoundError(f"{resource_type} '{name}' is not tracked in {self._path}")
        if not installed_for:
            del lock.resources[key]
            self.save()
            return None
        entry.installed_for = list(installed_for)
        entry.updated_at = utc_now()
        self.save()
        return entry

    def rollback_resource(self, resource_type: str, name: str) -> LockEntry:
        """Restore the most recent history snapshot of an entry.

        Raises:
            NotFoundError: If the resource is not tracked or has no history
        """
        lock = self._current()
        key = resource_key(resource_type, name)
        entry = lock.resources.get(key)
        if entry is None:
            raise NotFoundError(f"{resource_type} '{name}' is not tracked in {self._path}")
        if not entry.history:
            raise NotFoundError(f"{resource_type} '{name}' has no history to roll back to")

        restored = LockEntry.from_dict(entry.history[0])
        restored.history = entry.history[1:]
        restored.updated_at = utc_now()
        lock.resources[key] = restored
        self.save()
        return restored

    def get_resource(self, resource_type: str, name: str) -> LockEntry | None:
        return self._current().resources.get(resource_key(resource_type, name))

    def get_all(self) -> list[LockEntry]:
        return list(self._current().resources.values())

    def get_by_type(self, resource_type: str) -> list[LockEntry]:
        return [e for e in self.get_all() if e.type == resource_type]

    def get_by_handler(self, handler: str) -> list[LockEntry]:
        return [e for e in self.get_all() if e.handler == handler]

    def get_for_agent(self, agent: str, scope: Scope | None = None) -> list[LockEntry]:
        return [e for e in self.get_all() if e.installations_for(agent, scope)]

    # --- Plugins ---

    def add_plugin(self, entry: PluginEntry) -> None:
        entry.installed_at = entry.installed_at or utc_now()
        self._current().plugins[entry.id] = entry
        self.save()

    def remove_plugin(self, plugin_id: str) -> PluginEntry:
        lock = self._current()
        entry = lock.plugins.pop(plugin_id, None)
        if entry is None:
            raise NotFoundError(f"Plugin '{plugin_id}' is not tracked in {self._path}")
        self.save()
        return entry

    def get_plugin(self, plugin_id: str) -> PluginEntry | None:
        return self._current().plugins.get(plugin_id)

    def get_plugins(self) -> list[PluginEntry]:
        return list(self._current().plugins.values())

    # --- Config ---

    def get_config(self) -> LockConfig:
        return self._current().config

    def update_config(self, **changes: Any) -> LockConfig:
        """Update ledger settings by attribute name (e.g., ``history_limit=5``)."""
        config = self._current().config
        for name, value in changes.items():
            if not hasattr(config, name):
                raise ValueError(f"Unknown lock config field: {name}")
            setattr(config, name, value)
        self.save()
        return config
