"""Orchestrates the add, list, remove, update, rollback and check flows.

A command resolves its source, asks the matching handler to discover
resources, installs the selected ones target by target and records each
completed installation in the ledger of the target's scope. Targets are
processed strictly in order; the first failure stops the command and
whatever was already written is recorded and reported, not rolled back.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from caf.audit import AuditSink
from caf.config import FabricConfig, load_config
from caf.constants import RULES, SKILLS, SUBAGENTS
from caf.env import Environment
from caf.exceptions import FabricError, NotFoundError
from caf.handlers.base import HandlerContext, ResourceHandler
from caf.lock import LockEntry, LockManager
from caf.models import (
    DiscoverOptions,
    Installation,
    InstalledResource,
    InstallMode,
    InstallOptions,
    InstallTarget,
    ListResult,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Resource,
    Scope,
    SourceType,
)
from caf.plugins import PluginManager, create_registry
from caf.sources import SourceFetcher, resolve_source

logger = logging.getLogger(__name__)

Selector = Callable[[list[Resource]], list[Resource]]

# Metadata persisted next to the shared ledger fields, per resource type.
# Types not listed here keep their whole metadata map under "metadata".
LEDGER_FIELDS: dict[str, tuple[str, ...]] = {
    SKILLS: ("skillFolderHash", "categories", "namingStrategy", "originalName", "sourcePath"),
    RULES: ("configHash", "categories", "namingStrategy", "originalName", "sourcePath", "globs"),
    SUBAGENTS: ("model", "format", "configHash"),
}


def ledger_extensions(resource: Resource) -> dict[str, Any]:
    fields = LEDGER_FIELDS.get(resource.type)
    if fields is None:
        return {"metadata": dict(resource.metadata)} if resource.metadata else {}
    extra = {key: resource.metadata[key] for key in fields if resource.metadata.get(key) is not None}
    if resource.type == SKILLS:
        extra["installedName"] = resource.name
    return extra


@dataclass
class AddResult:
    """What an add or update managed to do before finishing or failing."""

    source: str
    resource_type: str
    discovered: int = 0
    installed: list[tuple[str, list[InstallTarget]]] = field(default_factory=list)
    failed: str | None = None
    error: FabricError | None = None

    @property
    def partial(self) -> bool:
        return self.error is not None and bool(self.installed)

    def raise_for_error(self) -> None:
        """Re-raise the error that stopped the operation, if any."""
        if self.error is not None:
            raise self.error


@dataclass(frozen=True)
class Drift:
    """A mismatch between the ledger and what is on disk."""

    resource_type: str
    name: str
    agent: str
    scope: Scope
    problem: str  # "missing" | "untracked"
    path: str = ""


class FabricService:
    """Entry point used by the CLI; every dependency is injectable for tests."""

    def __init__(
        self,
        env: Environment,
        config: FabricConfig | None = None,
        sink: AuditSink | None = None,
        fetcher: SourceFetcher | None = None,
        load_plugins: bool = True,
    ) -> None:
        self.env = env
        self.config = config if config is not None else load_config(env)
        self.ctx = HandlerContext.create(env, sink)
        self.registry = create_registry(self.ctx)
        self.plugins = PluginManager(self.ctx, self.registry, self.config.plugin_paths)
        self.fetcher = fetcher
        self.plugin_failures: list[tuple[Path, str]] = []
        if load_plugins:
            _, self.plugin_failures = self.plugins.load_all()

    def lock(self, scope: Scope) -> LockManager:
        """A fresh ledger view for a scope, re-read from disk."""
        manager = LockManager(self.env, scope)
        manager.get_config().history_limit = self.config.history_limit
        return manager

    def handler(self, resource_type: str) -> ResourceHandler:
        return self.registry.get(resource_type)

    def resolve_agents(self, handler: ResourceHandler, agents: list[str] | None = None) -> list[str]:
        """Pick target agents.

        Explicit agents win, then the configured preferred agents, then the
        agents detected in this environment; with none of those every
        supported agent is targeted.
        """
        supported = handler.get_supported_agents()
        if agents:
            for agent in agents:
                self.ctx.agents.get(agent)
                handler.get_install_path(agent, Scope.PROJECT)
            return list(dict.fromkeys(agents))

        preferred = [a for a in self.config.preferred_agents if a in supported]
        if preferred:
            return preferred
        detected = [a for a in self.ctx.agents.detect() if a in supported]
        if detected:
            return detected
        return supported

    # --- add ---

    def discover(self, resource_type: str, parsed: ParsedSource) -> list[Resource]:
        handler = self.handler(resource_type)
        return handler.discover(parsed, DiscoverOptions(naming_strategy=self.config.naming_strategy))

    def add(
        self,
        source: str,
        resource_type: str,
        agents: list[str] | None = None,
        scope: Scope | None = None,
        mode: InstallMode | None = None,
        force: bool = False,
        yes: bool = False,
        names: list[str] | None = None,
        select: Selector | None = None,
    ) -> AddResult:
        """Resolve a source and install the resources it holds.

        Raises:
            SourceResolutionError: If the source cannot be resolved
            UnsupportedAgentError: If an explicit agent is not supported
            NotFoundError: If a requested name is not in the source

        Install failures do not raise; they stop the command and are returned
        in ``AddResult.error`` together with what was already installed.
        """
        handler = self.handler(resource_type)
        scope = scope or self.config.default_scope
        mode = mode or self.config.default_mode
        target_agents = self.resolve_agents(handler, agents)
        result = AddResult(source=source, resource_type=resource_type)

        with resolve_source(source, self.env, self.fetcher) as parsed:
            if mode is InstallMode.SYMLINK and parsed.type is not SourceType.LOCAL:
                logger.warning("Symlink mode needs a local source, copying %s instead", source)
                mode = InstallMode.COPY

            resources = self.discover(resource_type, parsed)
            result.discovered = len(resources)
            if names:
                by_name = {r.name: r for r in resources}
                missing = [n for n in names if n not in by_name]
                if missing:
                    raise NotFoundError(
                        f"No {resource_type} named {', '.join(missing)} in {source}"
                    )
                resources = [by_name[n] for n in names]
            if select is not None and resources:
                resources = select(resources)
            if not resources:
                logger.warning("No %s found in %s", resource_type, source)
                return result

            targets = [InstallTarget(agent=a, scope=scope, mode=mode) for a in target_agents]
            self._install_all(handler, resources, targets, parsed, source, force, yes, result)
        return result

    def _install_all(
        self,
        handler: ResourceHandler,
        resources: list[Resource],
        targets: list[InstallTarget],
        parsed: ParsedSource,
        source: str,
        force: bool,
        yes: bool,
        result: AddResult,
        record: bool = True,
    ) -> None:
        options = InstallOptions(force=force, yes=yes)
        for resource in resources:
            done: list[InstallTarget] = []
            try:
                for target in targets:
                    handler.install(resource, [target], options)
                    done.append(target)
            except FabricError as e:
                result.error = e
                result.failed = resource.name
                logger.error("Stopped installing %s '%s': %s", resource.type, resource.name, e)
            if done:
                if record:
                    self._record(handler, resource, parsed, source, done)
                result.installed.append((resource.name, done))
            if result.error is not None:
                return

    def _locate(
        self, handler: ResourceHandler, name: str, targets: list[InstallTarget]
    ) -> list[Installation]:
        """Find where the handler actually put a resource for each target."""
        listings: dict[Scope, ListResult] = {}
        installations = []
        for target in targets:
            if target.scope not in listings:
                listings[target.scope] = handler.list(ListScope(target.scope.value))
            found = listings[target.scope].find(name)
            matches = [i for i in found.installed_for if i.agent == target.agent] if found else []
            if matches:
                installations.extend(matches)
            else:
                path = handler.get_install_path(target.agent, target.scope)
                installations.append(Installation(target.agent, target.scope, str(path)))
        return installations

    def _record(
        self,
        handler: ResourceHandler,
        resource: Resource,
        parsed: ParsedSource,
        source: str,
        targets: list[InstallTarget],
    ) -> None:
        for scope in dict.fromkeys(t.scope for t in targets):
            scoped = [t for t in targets if t.scope is scope]
            lock = self.lock(scope)
            new = self._locate(handler, resource.name, scoped)
            replaced = {(i.agent, i.scope) for i in new}
            previous = lock.get_resource(resource.type, resource.name)
            kept = [
                i for i in (previous.installed_for if previous else [])
                if (i.agent, i.scope) not in replaced
            ]
            lock.add_resource(
                LockEntry(
                    type=resource.type,
                    name=resource.name,
                    version=resource.version,
                    handler=handler.type,
                    source=source,
                    source_type=parsed.type,
                    source_url=parsed.url,
                    installed_for=kept + new,
                    extra=ledger_extensions(resource),
                )
            )

    # --- list ---

    def list_resources(self, resource_type: str, scope: ListScope = ListScope.BOTH) -> ListResult:
        """Installed resources from disk, with provenance filled in from the ledger."""
        result = self.handler(resource_type).list(scope)
        for resource in result.resources:
            self._annotate(resource, scope)
        return result

    def _annotate(self, resource: InstalledResource, scope: ListScope) -> None:
        for s in scope.scopes():
            entry = self.lock(s).get_resource(resource.type, resource.name)
            if entry is None:
                continue
            resource.source = entry.source
            resource.source_type = entry.source_type
            resource.source_url = entry.source_url
            resource.installed_at = entry.installed_at
            resource.updated_at = entry.updated_at
            if resource.version is None:
                resource.version = entry.version
            return

    # --- remove ---

    def remove(
        self,
        resource_type: str,
        name: str,
        scope: ListScope = ListScope.BOTH,
        agents: list[str] | None = None,
        force: bool = False,
    ) -> list[Installation]:
        """Remove a resource using the ledger, falling back to a disk scan.

        Returns:
            Installations that were removed (or given up on under force)

        Raises:
            NotFoundError: If the resource is installed nowhere in the scope
        """
        handler = self.handler(resource_type)
        plan: list[tuple[Scope, LockEntry | None, list[Installation]]] = []
        listing: ListResult | None = None
        for s in scope.scopes():
            entry = self.lock(s).get_resource(resource_type, name)
            if entry is not None:
                installations = [i for i in entry.installed_for if i.scope is s]
            else:
                if listing is None:
                    listing = handler.list(scope)
                found = listing.find(name)
                installations = [i for i in found.installed_for if i.scope is s] if found else []
            if agents:
                installations = [i for i in installations if i.agent in agents]
            if installations:
                plan.append((s, entry, installations))

        if not plan:
            raise NotFoundError(f"{resource_type} '{name}' is not installed")

        removed: list[Installation] = []
        options = RemoveOptions(force=force)
        for s, entry, installations in plan:
            resource = Resource(type=resource_type, name=name)
            done: list[Installation] = []
            try:
                for installation in installations:
                    target = InstallTarget(agent=installation.agent, scope=installation.scope)
                    handler.remove(resource, [target], options)
                    done.append(installation)
            finally:
                if entry is not None and done:
                    remaining = [i for i in entry.installed_for if i not in done]
                    self.lock(s).update_installations(resource_type, name, remaining)
                removed.extend(done)
        return removed

    # --- update / rollback ---

    def _reinstall(
        self, handler: ResourceHandler, entry: LockEntry, result: AddResult, record: bool = True
    ) -> None:
        """Re-resolve an entry's source and force-install it to its recorded targets."""
        source = entry.source_url if entry.source_type is SourceType.LOCAL else entry.source
        with resolve_source(source, self.env, self.fetcher) as parsed:
            resources = self.discover(entry.type, parsed)
            result.discovered = len(resources)
            resource = next((r for r in resources if r.name == entry.name), None)
            if resource is None:
                raise NotFoundError(f"{entry.type} '{entry.name}' no longer exists in {source}")

            targets = [
                InstallTarget(
                    agent=i.agent,
                    scope=i.scope,
                    mode=InstallMode.SYMLINK if Path(i.path).is_symlink() else InstallMode.COPY,
                )
                for i in entry.installed_for
            ]
            self._install_all(
                handler, [resource], targets, parsed, entry.source, True, True, result, record
            )

    def update(
        self, resource_type: str, name: str | None = None, scope: Scope = Scope.PROJECT
    ) -> list[AddResult]:
        """Re-install tracked resources from their recorded sources.

        Each resource gets its own result; one failing does not stop the rest.

        Raises:
            NotFoundError: If a named resource is not tracked
        """
        handler = self.handler(resource_type)
        lock = self.lock(scope)
        if name is not None:
            entry = lock.get_resource(resource_type, name)
            if entry is None:
                raise NotFoundError(f"{resource_type} '{name}' is not tracked")
            entries = [entry]
        else:
            entries = lock.get_by_type(resource_type)

        results = []
        for entry in entries:
            result = AddResult(source=entry.source, resource_type=resource_type)
            try:
                self._reinstall(handler, entry, result)
            except FabricError as e:
                result.error = e
                result.failed = entry.name
            results.append(result)
        return results

    def rollback(self, resource_type: str, name: str, scope: Scope = Scope.PROJECT) -> AddResult:
        """Restore the previous ledger state of a resource and re-install it.

        Raises:
            NotFoundError: If the resource is not tracked or has no history
        """
        handler = self.handler(resource_type)
        restored = self.lock(scope).rollback_resource(resource_type, name)
        result = AddResult(source=restored.source, resource_type=resource_type)
        try:
            self._reinstall(handler, restored, result, record=False)
        except FabricError as e:
            result.error = e
            result.failed = name
        return result

    # --- check ---

    def check(self, scope: ListScope = ListScope.BOTH) -> list[Drift]:
        """Compare every ledger with the disk; report drift without repairing it."""
        drift: list[Drift] = []
        for resource_type in self.registry.types():
            handler = self.handler(resource_type)
            listing = handler.list(scope)
            on_disk = {
                (r.name, i.agent, i.scope): i for r in listing.resources for i in r.installed_for
            }
            tracked = set()
            for s in scope.scopes():
                for entry in self.lock(s).get_by_type(resource_type):
                    for i in entry.installed_for:
                        tracked.add((entry.name, i.agent, i.scope))
                        if (entry.name, i.agent, i.scope) not in on_disk:
                            drift.append(
                                Drift(resource_type, entry.name, i.agent, i.scope, "missing", i.path)
                            )
            for key, installation in on_disk.items():
                if key not in tracked:
                    drift.append(
                        Drift(resource_type, key[0], key[1], key[2], "untracked", installation.path)
                    )
        return drift
