"""Core data model shared by handlers, the lock manager and the CLI.

Resources are produced transiently by a handler's ``discover`` and become
``InstalledResource`` values once they are written to one or more targets.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Scope(str, Enum):
    """Install scope: project (invocation directory) or global (home)."""

    PROJECT = "project"
    GLOBAL = "global"


class ListScope(str, Enum):
    """Scope filter accepted by ``list``."""

    PROJECT = "project"
    GLOBAL = "global"
    BOTH = "both"

    def scopes(self) -> list[Scope]:
        if self is ListScope.BOTH:
            return [Scope.PROJECT, Scope.GLOBAL]
        return [Scope(self.value)]


class InstallMode(str, Enum):
    """How a resource lands at its destination."""

    COPY = "copy"
    SYMLINK = "symlink"


class SourceType(str, Enum):
    """Classification of a user-supplied source string."""

    LOCAL = "local"
    GIT = "git"
    SHORTHAND = "shorthand"
    URL = "url"


@dataclass
class ResourceFile:
    """One file belonging to a resource, path relative to the resource root."""

    path: str
    content: str = ""


@dataclass
class Resource:
    """A named, typed unit of agent configuration produced by discovery."""

    type: str
    name: str
    description: str = ""
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    files: list[ResourceFile] = field(default_factory=list)


@dataclass(frozen=True)
class InstallTarget:
    """One deployment destination for a resource."""

    agent: str
    scope: Scope = Scope.PROJECT
    mode: InstallMode = InstallMode.COPY


@dataclass(frozen=True)
class Installation:
    """Where a resource currently lives for one (agent, scope) pair."""

    agent: str
    scope: Scope
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"agent": self.agent, "scope": self.scope.value, "path": self.path}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Installation":
        return cls(agent=data["agent"], scope=Scope(data["scope"]), path=data["path"])


@dataclass
class InstalledResource(Resource):
    """A resource together with its provenance and install locations."""

    source: str = ""
    source_type: SourceType | None = None
    source_url: str = ""
    installed_at: str = ""
    updated_at: str = ""
    installed_for: list[Installation] = field(default_factory=list)

    def add_installation(self, installation: Installation) -> None:
        """Record an installation unless the same one is already present."""
        if installation not in self.installed_for:
            self.installed_for.append(installation)


@dataclass(frozen=True)
class ListError:
    """A genuine access failure hit while listing one (agent, scope) pair."""

    agent: str
    scope: Scope
    error: str


@dataclass
class ListResult:
    """Installed resources plus the access failures met while scanning."""

    resources: list[InstalledResource] = field(default_factory=list)
    errors: list[ListError] = field(default_factory=list)

    def find(self, name: str) -> InstalledResource | None:
        for resource in self.resources:
            if resource.name == name:
                return resource
        return None


@dataclass
class ValidationResult:
    """Outcome of validating a resource's shape."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class ParsedSource:
    """Normalized classification of a source string.

    ``local_path`` is filled in once the source is materialized on disk.
    """

    type: SourceType
    url: str
    local_path: Path | None = None
    ref: str | None = None
    subpath: str | None = None
    owner: str | None = None
    repo: str | None = None


@dataclass(frozen=True)
class DiscoverOptions:
    naming_strategy: str | None = None
    categories: tuple[str, ...] | None = None


@dataclass(frozen=True)
class InstallOptions:
    force: bool = False
    yes: bool = False
    skip_validation: bool = False


@dataclass(frozen=True)
class RemoveOptions:
    force: bool = False
    yes: bool = False
