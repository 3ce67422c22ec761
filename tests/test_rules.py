"""Tests for the rules handler."""

from pathlib import Path

import pytest

from caf.exceptions import ConflictError
from caf.handlers.base import HandlerContext
from caf.handlers.rules import RulesHandler, parse_rule
from caf.models import (
    InstallMode,
    InstallOptions,
    InstallTarget,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Scope,
    SourceType,
)

RULE = "---\ndescription: Prefer pathlib\nglobs: '*.py'\n---\n\nUse pathlib for paths.\n"


def _discover(ctx: HandlerContext, root: Path):
    return RulesHandler(ctx).discover(ParsedSource(type=SourceType.LOCAL, url=str(root), local_path=root))


class TestParseRule:
    """Tests for reading rule frontmatter."""

    def test_frontmatter_fields(self):
        info = parse_rule(RULE)

        assert info["description"] == "Prefer pathlib"
        assert info["globs"] == "*.py"
        assert info["name"] is None

    def test_paragraph_description(self):
        assert parse_rule("# Style\n\nKeep it short.\n")["description"] == "Keep it short."


class TestRulesDiscover:
    """Tests for discovering rule documents."""

    def test_discovers_markdown_rules(self, ctx: HandlerContext, source_dir: Path):
        (source_dir / "rules" / "python").mkdir(parents=True)
        (source_dir / "rules" / "python" / "pathlib.md").write_text(RULE)
        (source_dir / "cursor.mdc").write_text("Always test.\n")

        resources = {r.name: r for r in _discover(ctx, source_dir)}

        assert set(resources) == {"pathlib", "cursor"}
        assert resources["pathlib"].metadata["categories"] == ["python"]
        assert resources["pathlib"].metadata["globs"] == "*.py"

    def test_skill_documents_are_not_rules(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review", extra_files={"notes.md": "Notes."})

        assert _discover(ctx, source_dir) == []


class TestRulesInstall:
    """Tests for installing rules per agent."""

    def test_cursor_gets_mdc(self, ctx: HandlerContext, source_dir: Path):
        (source_dir / "pathlib.md").write_text(RULE)
        rule = _discover(ctx, source_dir)[0]
        handler = RulesHandler(ctx)

        handler.install(rule, [InstallTarget("cursor"), InstallTarget("claude-code")], InstallOptions())

        assert (ctx.env.cwd / ".cursor" / "rules" / "pathlib.mdc").read_text() == RULE
        assert (ctx.env.cwd / ".claude" / "rules" / "pathlib.md").read_text() == RULE
        listed = handler.list(ListScope.PROJECT)
        assert [r.name for r in listed.resources] == ["pathlib"]
        assert len(listed.resources[0].installed_for) == 2

    def test_conflict_and_force(self, ctx: HandlerContext, source_dir: Path):
        (source_dir / "pathlib.md").write_text(RULE)
        rule = _discover(ctx, source_dir)[0]
        handler = RulesHandler(ctx)
        target = [InstallTarget("windsurf", Scope.GLOBAL)]
        handler.install(rule, target, InstallOptions())

        with pytest.raises(ConflictError, match="Rule 'pathlib' already exists"):
            handler.install(rule, target, InstallOptions())
        handler.install(rule, target, InstallOptions(force=True))

    def test_symlink_mode(self, ctx: HandlerContext, source_dir: Path):
        (source_dir / "pathlib.md").write_text(RULE)
        rule = _discover(ctx, source_dir)[0]

        RulesHandler(ctx).install(rule, [InstallTarget("codex", Scope.PROJECT, InstallMode.SYMLINK)], InstallOptions())

        dest = ctx.env.cwd / ".codex" / "rules" / "pathlib.md"
        assert dest.is_symlink()
        assert dest.resolve() == (source_dir / "pathlib.md").resolve()

    def test_remove(self, ctx: HandlerContext, source_dir: Path):
        (source_dir / "pathlib.md").write_text(RULE)
        rule = _discover(ctx, source_dir)[0]
        handler = RulesHandler(ctx)
        handler.install(rule, [InstallTarget("cursor")], InstallOptions())

        handler.remove(rule, [InstallTarget("cursor")], RemoveOptions())

        assert not (ctx.env.cwd / ".cursor" / "rules" / "pathlib.mdc").exists()
