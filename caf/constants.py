"""Centralized constants for the caf package."""

# State directory holding the lock file, config and plugins
STATE_DIR_NAME = ".coding-agent-fabric"
LOCK_FILE_NAME = "lock.json"
CONFIG_FILE_NAME = "config.toml"
PLUGINS_SUBDIR = "plugins"
PLUGIN_MANIFEST_NAME = "plugin.json"

LOCK_VERSION = 2
DEFAULT_HISTORY_LIMIT = 10

# Built-in resource type tags
SKILLS = "skills"
SUBAGENTS = "subagents"
RULES = "rules"
CLAUDE_CODE_HOOKS = "claude-code-hooks"
CURSOR_HOOKS = "cursor-hooks"
MCP = "mcp"

SKILL_MARKER = "SKILL.md"
SUBAGENT_CONFIG_FILES = ("subagent.json", "subagent.yaml", "subagent.yml")
RULE_FILE_EXTENSIONS = (".md", ".mdc")

# Directory entries skipped while walking a source tree
EXCLUDE_PATTERNS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    ".DS_Store",
    "*.log",
    ".env",
)

NAMING_STRATEGIES = (
    "smart-disambiguation",
    "full-path-prefix",
    "category-prefix",
    "original-name",
)
DEFAULT_NAMING_STRATEGY = "smart-disambiguation"

# Process exit codes used by the CLI
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 3
EXIT_CONFLICT = 4
EXIT_UNSUPPORTED_AGENT = 5
EXIT_SOURCE = 6
EXIT_VALIDATION = 7
