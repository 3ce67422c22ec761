"""Explicit process environment passed to every component."""

from dataclasses import dataclass
from pathlib import Path

from caf.constants import STATE_DIR_NAME
from caf.models import Scope


@dataclass(frozen=True)
class Environment:
    """Filesystem roots for the two install scopes.

    Attributes:
        cwd: Invocation directory, root of project scope
        home: User home directory, root of global scope
    """

    cwd: Path
    home: Path

    @classmethod
    def from_process(cls) -> "Environment":
        """Capture the current working directory and home directory."""
        return cls(cwd=Path.cwd(), home=Path.home())

    @property
    def project_state_dir(self) -> Path:
        return self.cwd / STATE_DIR_NAME

    @property
    def global_state_dir(self) -> Path:
        return self.home / STATE_DIR_NAME

    def root_for(self, scope: Scope | str) -> Path:
        """Return the filesystem root for a scope."""
        return self.home if Scope(scope) is Scope.GLOBAL else self.cwd

    def state_dir_for(self, scope: Scope | str) -> Path:
        return self.root_for(scope) / STATE_DIR_NAME
