"""Plugin descriptors (plugin.json).

Example:
    {
        "id": "acme-prompts",
        "name": "Acme Prompts",
        "version": "1.0.0",
        "resourceType": "prompts",
        "supportedAgents": ["claude-code"],
        "entry": "handler.py"
    }
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from caf.constants import PLUGIN_MANIFEST_NAME
from caf.exceptions import PluginError

REQUIRED_FIELDS = ("id", "name", "version", "resourceType", "supportedAgents", "entry")

_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


@dataclass(frozen=True)
class PluginManifest:
    """Parsed plugin.json.

    Attributes:
        id: Unique plugin identifier (lowercase, e.g., "acme-prompts")
        name: Human-readable plugin name
        version: Plugin version string
        resource_type: Resource type tag the plugin's handler serves
        supported_agents: Agents the handler installs to
        entry: Python file, relative to the plugin directory, exposing create_handler
        plugin_dir: Directory holding plugin.json
    """

    id: str
    name: str
    version: str
    resource_type: str
    supported_agents: tuple[str, ...]
    entry: str
    plugin_dir: Path
    description: str = ""
    author: str = ""
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any], plugin_dir: Path) -> "PluginManifest":
        """Create a manifest from plugin.json data.

        Raises:
            PluginError: If required fields are missing or malformed
        """
        problems = validate_manifest(data)
        if problems:
            raise PluginError(f"Invalid plugin manifest in {plugin_dir}: {'; '.join(problems)}")
        known = set(REQUIRED_FIELDS) | {"description", "author"}
        return cls(
            id=data["id"],
            name=data["name"],
            version=data["version"],
            resource_type=data["resourceType"],
            supported_agents=tuple(data["supportedAgents"]),
            entry=data["entry"],
            plugin_dir=plugin_dir,
            description=data.get("description", ""),
            author=data.get("author", ""),
            extra={k: v for k, v in data.items() if k not in known},
        )


def validate_manifest(data: Any) -> list[str]:
    """Return a list of problems with a manifest; empty when it is valid."""
    if not isinstance(data, dict):
        return ["manifest must be a JSON object"]

    problems = [f"missing required field '{name}'" for name in REQUIRED_FIELDS if name not in data]
    for name in ("id", "name", "version", "resourceType", "entry"):
        if name in data and (not isinstance(data[name], str) or not data[name]):
            problems.append(f"'{name}' must be a non-empty string")
    if isinstance(data.get("id"), str) and data["id"] and not _ID_PATTERN.match(data["id"]):
        problems.append(f"'id' must match {_ID_PATTERN.pattern}")
    agents = data.get("supportedAgents")
    if "supportedAgents" in data and (
        not isinstance(agents, list) or not all(isinstance(a, str) for a in agents)
    ):
        problems.append("'supportedAgents' must be a list of strings")
    entry = data.get("entry")
    if isinstance(entry, str) and entry and not entry.endswith(".py"):
        problems.append("'entry' must be a .py file")
    return problems


def load_manifest(plugin_dir: Path) -> PluginManifest:
    """Read and validate ``plugin_dir/plugin.json``.

    Raises:
        PluginError: If the file is missing, unreadable or invalid
    """
    path = plugin_dir / PLUGIN_MANIFEST_NAME
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise PluginError(f"No {PLUGIN_MANIFEST_NAME} found in {plugin_dir}")
    except json.JSONDecodeError as e:
        raise PluginError(f"Failed to parse {path}: {e}")
    except OSError as e:
        raise PluginError(f"Failed to read {path}: {e}")
    return PluginManifest.from_dict(data, plugin_dir)
