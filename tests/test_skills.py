"""Tests for the skills handler."""

from pathlib import Path

import pytest

from caf.exceptions import ConflictError, NotFoundError, ValidationError
from caf.handlers.base import HandlerContext
from caf.handlers.skills import SkillsHandler, parse_skill_md
from caf.models import (
    DiscoverOptions,
    InstallMode,
    InstallOptions,
    InstallTarget,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Resource,
    ResourceFile,
    Scope,
    SourceType,
)

PROJECT = InstallTarget("claude-code", Scope.PROJECT)


def _local(path: Path) -> ParsedSource:
    return ParsedSource(type=SourceType.LOCAL, url=str(path), local_path=path)


class TestParseSkillMd:
    """Tests for reading SKILL.md metadata."""

    def test_frontmatter(self):
        info = parse_skill_md("---\nname: review\nversion: 1.2\ndescription: Reviews code\n---\n\n# Ignored\n")

        assert info == {"name": "review", "version": "1.2", "description": "Reviews code"}

    def test_heading_and_paragraph_fallback(self):
        info = parse_skill_md("# Review\n\nReviews code\ncarefully.\n\nMore text.\n")

        assert info["name"] == "Review"
        assert info["description"] == "Reviews code carefully."
        assert info["version"] is None


class TestSkillsDiscover:
    """Tests for discovering skills in a source tree."""

    def test_nested_skills_use_smart_names(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "frontend/react/patterns")
        make_skill(source_dir, "backend/patterns")
        make_skill(source_dir, "tools/review", extra_files={"scripts/run.sh": "echo run"})

        resources = SkillsHandler(ctx).discover(_local(source_dir))

        by_name = {r.name: r for r in resources}
        assert set(by_name) == {"frontend-react-patterns", "backend-patterns", "review"}
        review = by_name["review"]
        assert review.metadata["categories"] == ["tools"]
        assert review.metadata["originalName"] == "review"
        assert sorted(f.path for f in review.files) == ["SKILL.md", "scripts/run.sh"]
        assert len(review.metadata["skillFolderHash"]) == 64

    def test_frontmatter_name_wins(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "dir-name", name="real-name")

        resources = SkillsHandler(ctx).discover(_local(source_dir))

        assert [r.name for r in resources] == ["real-name"]

    def test_root_skill(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, ".", name="solo")

        resources = SkillsHandler(ctx).discover(_local(source_dir))

        assert resources[0].metadata["sourcePath"] == "."
        assert resources[0].metadata["categories"] == []

    def test_explicit_categories_and_strategy(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "a/b/review")

        resources = SkillsHandler(ctx).discover(
            _local(source_dir),
            DiscoverOptions(naming_strategy="full-path-prefix", categories=("team",)),
        )

        assert resources[0].name == "team-review"

    def test_excluded_directories_skipped(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "node_modules/pkg/skill")

        assert SkillsHandler(ctx).discover(_local(source_dir)) == []

    def test_hash_is_stable(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review")
        handler = SkillsHandler(ctx)

        first = handler.discover(_local(source_dir))[0].metadata["skillFolderHash"]
        second = handler.discover(_local(source_dir))[0].metadata["skillFolderHash"]

        assert first == second


class TestSkillsInstall:
    """Tests for installing, listing and removing skills."""

    def test_copy_install(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review", extra_files={"scripts/run.sh": "echo run"})
        handler = SkillsHandler(ctx)
        skill = handler.discover(_local(source_dir))[0]

        handler.install(skill, [PROJECT], InstallOptions())

        dest = ctx.env.cwd / ".claude" / "skills" / "review"
        assert (dest / "SKILL.md").exists()
        assert (dest / "scripts" / "run.sh").read_text() == "echo run"
        assert not dest.is_symlink()

        listed = handler.list(ListScope.PROJECT)
        assert [r.name for r in listed.resources] == ["review"]
        assert listed.resources[0].metadata["linked"] is False

    def test_symlink_install(self, ctx: HandlerContext, source_dir: Path, make_skill):
        skill_dir = make_skill(source_dir, "review")
        handler = SkillsHandler(ctx)
        skill = handler.discover(_local(source_dir))[0]

        handler.install(skill, [InstallTarget("claude-code", Scope.PROJECT, InstallMode.SYMLINK)], InstallOptions())

        dest = ctx.env.cwd / ".claude" / "skills" / "review"
        assert dest.is_symlink()
        assert dest.resolve() == skill_dir.resolve()
        assert handler.list(ListScope.PROJECT).resources[0].metadata["linked"] is True

    def test_conflict_leaves_existing_content(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review", body="First.")
        handler = SkillsHandler(ctx)
        handler.install(handler.discover(_local(source_dir))[0], [PROJECT], InstallOptions())
        make_skill(source_dir, "review", body="Second.")

        with pytest.raises(ConflictError, match="Skill 'review' already exists"):
            handler.install(handler.discover(_local(source_dir))[0], [PROJECT], InstallOptions())

        content = (ctx.env.cwd / ".claude" / "skills" / "review" / "SKILL.md").read_text()
        assert "First." in content

    def test_force_replaces_directory(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review", extra_files={"old.txt": "old"})
        handler = SkillsHandler(ctx)
        handler.install(handler.discover(_local(source_dir))[0], [PROJECT], InstallOptions())
        (source_dir / "review" / "old.txt").unlink()

        handler.install(handler.discover(_local(source_dir))[0], [PROJECT], InstallOptions(force=True))

        assert not (ctx.env.cwd / ".claude" / "skills" / "review" / "old.txt").exists()

    def test_path_traversal_rejected(self, ctx: HandlerContext):
        resource = Resource(
            type="skills",
            name="evil",
            description="x",
            files=[ResourceFile(path="SKILL.md", content="# Evil\n"), ResourceFile(path="../escape.txt", content="x")],
        )

        with pytest.raises(ValidationError):
            SkillsHandler(ctx).install(resource, [PROJECT], InstallOptions())

        assert not (ctx.env.cwd / ".claude" / "skills" / "escape.txt").exists()
        assert not (ctx.env.cwd / ".claude" / "skills" / "evil").exists()

    def test_malformed_frontmatter_rejected(self, ctx: HandlerContext):
        resource = Resource(
            type="skills",
            name="bad",
            files=[ResourceFile(path="SKILL.md", content="---\nname: [unclosed\n---\n")],
        )

        with pytest.raises(ValidationError, match="invalid YAML frontmatter"):
            SkillsHandler(ctx).install(resource, [PROJECT], InstallOptions())

    def test_remove(self, ctx: HandlerContext, source_dir: Path, make_skill):
        make_skill(source_dir, "review")
        handler = SkillsHandler(ctx)
        skill = handler.discover(_local(source_dir))[0]
        handler.install(skill, [PROJECT], InstallOptions())

        handler.remove(skill, [PROJECT], RemoveOptions())

        assert not (ctx.env.cwd / ".claude" / "skills" / "review").exists()
        with pytest.raises(NotFoundError):
            handler.remove(skill, [PROJECT], RemoveOptions())

    def test_symlink_removal_keeps_source(self, ctx: HandlerContext, source_dir: Path, make_skill):
        skill_dir = make_skill(source_dir, "review")
        handler = SkillsHandler(ctx)
        skill = handler.discover(_local(source_dir))[0]
        target = InstallTarget("claude-code", Scope.PROJECT, InstallMode.SYMLINK)
        handler.install(skill, [target], InstallOptions())

        handler.remove(skill, [target], RemoveOptions())

        assert (skill_dir / "SKILL.md").exists()
