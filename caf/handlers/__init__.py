"""Built-in resource handlers."""

from typing import Callable

from caf.constants import CLAUDE_CODE_HOOKS, CURSOR_HOOKS, MCP, RULES, SKILLS, SUBAGENTS
from caf.handlers.base import HandlerContext, ResourceHandler
from caf.handlers.hooks import HooksHandler, claude_code_hooks, cursor_hooks
from caf.handlers.mcp import McpHandler
from caf.handlers.rules import RulesHandler
from caf.handlers.skills import SkillsHandler
from caf.handlers.subagents import SubagentsHandler

HandlerFactory = Callable[[HandlerContext], ResourceHandler]

BUILTIN_HANDLERS: dict[str, HandlerFactory] = {
    SKILLS: SkillsHandler,
    SUBAGENTS: SubagentsHandler,
    RULES: RulesHandler,
    CLAUDE_CODE_HOOKS: claude_code_hooks,
    CURSOR_HOOKS: cursor_hooks,
    MCP: McpHandler,
}

__all__ = [
    "BUILTIN_HANDLERS",
    "HandlerContext",
    "HandlerFactory",
    "HooksHandler",
    "McpHandler",
    "ResourceHandler",
    "RulesHandler",
    "SkillsHandler",
    "SubagentsHandler",
]
