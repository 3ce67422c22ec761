"""Configuration management for config.toml.

Settings are read from ``~/.coding-agent-fabric/config.toml`` and then
overlaid by ``<project>/.coding-agent-fabric/config.toml``.

Example:
    preferred_agents = ["claude-code", "cursor"]
    default_scope = "project"
    default_mode = "copy"
    naming_strategy = "smart-disambiguation"
    history_limit = 10
    plugin_paths = ["~/my-caf-plugins"]
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli
import tomli_w

from caf.constants import (
    CONFIG_FILE_NAME,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_NAMING_STRATEGY,
    NAMING_STRATEGIES,
)
from caf.env import Environment
from caf.exceptions import ConfigNotFoundError, ConfigParseError, ConfigValidationError
from caf.models import InstallMode, Scope


@dataclass
class FabricConfig:
    """Configuration from config.toml."""

    preferred_agents: list[str] = field(default_factory=list)
    default_scope: Scope = Scope.PROJECT
    default_mode: InstallMode = InstallMode.COPY
    naming_strategy: str = DEFAULT_NAMING_STRATEGY
    history_limit: int = DEFAULT_HISTORY_LIMIT
    plugin_paths: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "FabricConfig":
        """Load configuration from a config.toml file.

        Raises:
            ConfigNotFoundError: If the file doesn't exist
            ConfigParseError: If the file cannot be parsed
            ConfigValidationError: If the configuration is invalid
        """
        if not path.exists():
            raise ConfigNotFoundError(f"Config file not found: {path}")
        return cls.from_dict(_read_toml(path))

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: "FabricConfig | None" = None) -> "FabricConfig":
        """Create a config from parsed TOML, starting from ``base`` when given."""
        config = cls() if base is None else cls(**{f.name: getattr(base, f.name) for f in fields(base)})

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigValidationError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        if "preferred_agents" in data:
            config.preferred_agents = _string_list(data, "preferred_agents")
        if "plugin_paths" in data:
            config.plugin_paths = _string_list(data, "plugin_paths")
        if "default_scope" in data:
            try:
                config.default_scope = Scope(data["default_scope"])
            except ValueError:
                raise ConfigValidationError(
                    f"Invalid default_scope '{data['default_scope']}'. Must be 'project' or 'global'"
                )
        if "default_mode" in data:
            try:
                config.default_mode = InstallMode(data["default_mode"])
            except ValueError:
                raise ConfigValidationError(
                    f"Invalid default_mode '{data['default_mode']}'. Must be 'copy' or 'symlink'"
                )
        if "naming_strategy" in data:
            if data["naming_strategy"] not in NAMING_STRATEGIES:
                raise ConfigValidationError(
                    f"Invalid naming_strategy '{data['naming_strategy']}'. "
                    f"Must be one of: {', '.join(NAMING_STRATEGIES)}"
                )
            config.naming_strategy = data["naming_strategy"]
        if "history_limit" in data:
            limit = data["history_limit"]
            if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
                raise ConfigValidationError("history_limit must be a non-negative integer")
            config.history_limit = limit

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to a TOML-serializable dict."""
        data: dict[str, Any] = {
            "default_scope": self.default_scope.value,
            "default_mode": self.default_mode.value,
            "naming_strategy": self.naming_strategy,
            "history_limit": self.history_limit,
        }
        if self.preferred_agents:
            data["preferred_agents"] = list(self.preferred_agents)
        if self.plugin_paths:
            data["plugin_paths"] = list(self.plugin_paths)
        return data

    def save(self, path: Path) -> None:
        """Save configuration to a config.toml file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(self.to_dict(), f)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ConfigParseError(f"Failed to parse {path}: {e}")


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigValidationError(f"{key} must be a list of strings")
    return list(value)


def config_path(env: Environment, scope: Scope) -> Path:
    return env.state_dir_for(scope) / CONFIG_FILE_NAME


def load_config(env: Environment) -> FabricConfig:
    """Load the effective config: global settings overlaid by project settings.

    Missing files are skipped; the result falls back to defaults.
    """
    config = FabricConfig()
    for scope in (Scope.GLOBAL, Scope.PROJECT):
        path = config_path(env, scope)
        if path.exists():
            config = FabricConfig.from_dict(_read_toml(path), base=config)
    return config
