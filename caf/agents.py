"""Agent registry: where each coding agent keeps each kind of resource.

Every supported agent is described by an ``AgentSpec`` holding directory
names relative to the agent's config directory. Paths are resolved against
an ``Environment`` so project scope lands under the invocation directory and
global scope under the home directory.
"""

from dataclasses import dataclass
from pathlib import Path

from caf.env import Environment
from caf.exceptions import UnsupportedAgentError
from caf.models import Scope

# Resource kinds with an on-disk location per agent
KIND_SKILLS = "skills"
KIND_RULES = "rules"
KIND_HOOKS = "hooks"
KIND_SUBAGENTS = "subagents"
KIND_MCP = "mcp"

RESOURCE_KINDS = (KIND_SKILLS, KIND_RULES, KIND_HOOKS, KIND_SUBAGENTS, KIND_MCP)


@dataclass(frozen=True)
class AgentSpec:
    """Directory layout of one coding agent.

    Attributes:
        name: Identifier used on the command line (e.g., "claude-code")
        display_name: Human-readable name (e.g., "Claude Code")
        config_dir: Config directory name under the scope root (e.g., ".claude")
        skills_dir: Skills subdirectory, None if unsupported
        rules_dir: Rules subdirectory, None if unsupported
        hooks_dir: Hooks subdirectory, None if unsupported
        subagents_dir: Subagent definitions subdirectory, None if unsupported
        mcp_file: Shared MCP document name, None if unsupported
    """

    name: str
    display_name: str
    config_dir: str
    skills_dir: str | None = "skills"
    rules_dir: str | None = "rules"
    hooks_dir: str | None = None
    subagents_dir: str | None = "agents"
    mcp_file: str | None = None

    def subpath(self, kind: str) -> str | None:
        """Return the relative location for a resource kind."""
        return {
            KIND_SKILLS: self.skills_dir,
            KIND_RULES: self.rules_dir,
            KIND_HOOKS: self.hooks_dir,
            KIND_SUBAGENTS: self.subagents_dir,
            KIND_MCP: self.mcp_file,
        }.get(kind)

    def supports(self, kind: str) -> bool:
        return self.subpath(kind) is not None


CLAUDE_CODE = AgentSpec(
    name="claude-code",
    display_name="Claude Code",
    config_dir=".claude",
    hooks_dir="hooks",
    mcp_file="settings.json",
)

CURSOR = AgentSpec(
    name="cursor",
    display_name="Cursor",
    config_dir=".cursor",
    skills_dir="fabric-skills",
    hooks_dir="hooks",
    mcp_file="mcp.json",
)

CODEX = AgentSpec(
    name="codex",
    display_name="Codex",
    config_dir=".codex",
    mcp_file="mcp.json",
)

WINDSURF = AgentSpec(
    name="windsurf",
    display_name="Windsurf",
    config_dir=".windsurf",
    skills_dir="fabric-skills",
)

AIDER = AgentSpec(name="aider", display_name="Aider", config_dir=".aider")

CONTINUE = AgentSpec(name="continue", display_name="Continue", config_dir=".continue")

BUILTIN_AGENTS: tuple[AgentSpec, ...] = (CLAUDE_CODE, CURSOR, CODEX, WINDSURF, AIDER, CONTINUE)


class AgentRegistry:
    """Lookup of agent layouts bound to one environment.

    Usage:
        agents = AgentRegistry(env)
        agents.resource_path("claude-code", "hooks", Scope.PROJECT)
        # -> <cwd>/.claude/hooks
    """

    def __init__(self, env: Environment, specs: tuple[AgentSpec, ...] = BUILTIN_AGENTS) -> None:
        self.env = env
        self._specs: dict[str, AgentSpec] = {spec.name: spec for spec in specs}

    def get(self, name: str) -> AgentSpec:
        """Get an agent spec by name.

        Raises:
            UnsupportedAgentError: If the agent is unknown
        """
        if name not in self._specs:
            available = ", ".join(self._specs) if self._specs else "none"
            raise UnsupportedAgentError(f"Unknown agent '{name}'. Available: {available}")
        return self._specs[name]

    def has(self, name: str) -> bool:
        return name in self._specs

    def all_names(self) -> list[str]:
        return list(self._specs)

    def supporting(self, kind: str) -> list[str]:
        """Names of agents that have a location for a resource kind."""
        return [spec.name for spec in self._specs.values() if spec.supports(kind)]

    def config_dir(self, agent: str, scope: Scope | str) -> Path:
        return self.env.root_for(scope) / self.get(agent).config_dir

    def resource_path(self, agent: str, kind: str, scope: Scope | str) -> Path:
        """Resolve where an agent keeps a resource kind for a scope.

        Raises:
            UnsupportedAgentError: If the agent is unknown or lacks the kind
        """
        spec = self.get(agent)
        subpath = spec.subpath(kind)
        if subpath is None:
            raise UnsupportedAgentError(f"Agent '{agent}' does not support {kind}")
        return self.env.root_for(scope) / spec.config_dir / subpath

    def is_detected(self, agent: str) -> bool:
        """An agent counts as present when its project or global config dir exists."""
        return (
            self.config_dir(agent, Scope.PROJECT).is_dir()
            or self.config_dir(agent, Scope.GLOBAL).is_dir()
        )

    def detect(self) -> list[str]:
        """Return detected agents in table order."""
        return [name for name in self._specs if self.is_detected(name)]
