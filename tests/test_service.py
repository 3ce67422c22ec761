"""Tests for the add/list/remove/update/rollback/check flows."""

import json
from pathlib import Path

import pytest

from caf.config import FabricConfig
from caf.env import Environment
from caf.exceptions import ConflictError, NotFoundError, UnsupportedAgentError
from caf.models import InstallMode, ListScope, ParsedSource, Resource, Scope, SourceType
from caf.service import FabricService, ledger_extensions

HOOKS = "claude-code-hooks"


class SkillRepoFetcher:
    """Materializes a repository with one skill instead of cloning."""

    def __init__(self):
        self.roots: list[Path] = []

    def fetch(self, source: ParsedSource, dest: Path) -> Path:
        root = dest / "repo"
        (root / "review").mkdir(parents=True)
        (root / "review" / "SKILL.md").write_text("---\ndescription: Reviews code\n---\n\nReview it.\n")
        self.roots.append(root)
        return root


@pytest.fixture
def service(env: Environment, events) -> FabricService:
    return FabricService(env, config=FabricConfig(), sink=events.append)


@pytest.fixture
def hooks_source(source_dir: Path, make_hook) -> Path:
    make_hook(source_dir, "fmt")
    make_hook(source_dir, "lint", hook_type="PostToolUse", command="ruff check")
    return source_dir


class TestAdd:
    """Tests for FabricService.add."""

    def test_installs_and_records(self, service: FabricService, env: Environment, hooks_source: Path):
        result = service.add(str(hooks_source), HOOKS)

        assert result.error is None
        assert result.discovered == 2
        assert sorted(name for name, _ in result.installed) == ["fmt", "lint"]
        assert (env.cwd / ".claude" / "hooks" / "fmt.json").exists()

        entry = service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt")
        assert entry.source_type is SourceType.LOCAL
        assert entry.source_url == str(hooks_source)
        assert entry.handler == HOOKS
        assert entry.installed_for[0].path == str(env.cwd / ".claude" / "hooks" / "fmt.json")

    def test_named_selection(self, service: FabricService, hooks_source: Path):
        result = service.add(str(hooks_source), HOOKS, names=["lint"])

        assert [name for name, _ in result.installed] == ["lint"]

    def test_unknown_name(self, service: FabricService, hooks_source: Path):
        with pytest.raises(NotFoundError, match="named ghost"):
            service.add(str(hooks_source), HOOKS, names=["ghost"])

    def test_selector_applied(self, service: FabricService, hooks_source: Path):
        result = service.add(str(hooks_source), HOOKS, select=lambda found: found[:1])

        assert len(result.installed) == 1

    def test_empty_source(self, service: FabricService, source_dir: Path):
        result = service.add(str(source_dir), HOOKS)

        assert result.discovered == 0
        assert result.installed == []
        assert result.error is None

    def test_unsupported_explicit_agent(self, service: FabricService, hooks_source: Path):
        with pytest.raises(UnsupportedAgentError):
            service.add(str(hooks_source), HOOKS, agents=["cursor"])

    def test_readd_with_force_keeps_one_entry(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])

        result = service.add(str(hooks_source), HOOKS, names=["fmt"], force=True)

        assert result.error is None
        entries = service.lock(Scope.PROJECT).get_by_type(HOOKS)
        assert len(entries) == 1
        assert len(entries[0].history) == 1
        assert len(entries[0].installed_for) == 1

    def test_conflict_reported_not_raised(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])

        result = service.add(str(hooks_source), HOOKS, names=["fmt"])

        assert isinstance(result.error, ConflictError)
        assert result.failed == "fmt"
        assert not result.partial
        with pytest.raises(ConflictError):
            result.raise_for_error()

    def test_partial_completion_recorded(self, service: FabricService, env: Environment, source_dir: Path):
        (source_dir / "servers.json").write_text(json.dumps({"mcpServers": {"alpha": {"command": "npx"}}}))
        cursor_doc = env.cwd / ".cursor" / "mcp.json"
        cursor_doc.parent.mkdir(parents=True)
        cursor_doc.write_text(json.dumps({"mcpServers": {"alpha": {"command": "other"}}}))

        result = service.add(str(source_dir), "mcp", agents=["claude-code", "cursor"])

        assert result.partial
        assert isinstance(result.error, ConflictError)
        [(name, done)] = result.installed
        assert name == "alpha"
        assert [t.agent for t in done] == ["claude-code"]
        entry = service.lock(Scope.PROJECT).get_resource("mcp", "alpha")
        assert [i.agent for i in entry.installed_for] == ["claude-code"]
        assert json.loads(cursor_doc.read_text())["mcpServers"]["alpha"] == {"command": "other"}

    def test_scopes_have_separate_ledgers(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"], scope=Scope.GLOBAL)

        assert service.lock(Scope.GLOBAL).get_resource(HOOKS, "fmt") is not None
        assert service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt") is None

    def test_remote_symlink_falls_back_to_copy(self, service: FabricService, env: Environment):
        fetcher = SkillRepoFetcher()
        service.fetcher = fetcher

        result = service.add("acme/skills", "skills", agents=["claude-code"], mode=InstallMode.SYMLINK)

        dest = env.cwd / ".claude" / "skills" / "review"
        assert result.error is None
        assert (dest / "SKILL.md").exists()
        assert not dest.is_symlink()
        assert not fetcher.roots[0].exists()
        entry = service.lock(Scope.PROJECT).get_resource("skills", "review")
        assert entry.source_type is SourceType.SHORTHAND
        assert entry.extra["installedName"] == "review"
        assert len(entry.extra["skillFolderHash"]) == 64

    def test_agent_preference_order(self, env: Environment, hooks_source: Path):
        (env.cwd / ".cursor").mkdir()
        detected = FabricService(env, config=FabricConfig())
        preferred = FabricService(env, config=FabricConfig(preferred_agents=["codex"]))

        assert detected.resolve_agents(detected.handler("mcp")) == ["cursor"]
        assert preferred.resolve_agents(preferred.handler("mcp")) == ["codex"]
        assert detected.resolve_agents(detected.handler("skills"), ["windsurf"]) == ["windsurf"]


class TestLedgerExtensions:
    """Tests for the kind-specific ledger fields."""

    def test_subagent_fields(self):
        resource = Resource(
            type="subagents",
            name="reviewer",
            metadata={"model": "sonnet", "format": "claude-code-yaml", "configHash": "abc", "sourcePath": "x"},
        )

        assert ledger_extensions(resource) == {
            "model": "sonnet",
            "format": "claude-code-yaml",
            "configHash": "abc",
        }

    def test_other_types_keep_metadata(self):
        resource = Resource(type="mcp", name="alpha", metadata={"serverType": "stdio"})

        assert ledger_extensions(resource) == {"metadata": {"serverType": "stdio"}}


class TestListAndRemove:
    """Tests for list provenance and removal."""

    def test_list_adds_provenance(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])

        result = service.list_resources(HOOKS)

        [fmt] = result.resources
        assert fmt.source == str(hooks_source)
        assert fmt.installed_at

    def test_remove_tracked(self, service: FabricService, env: Environment, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])

        removed = service.remove(HOOKS, "fmt")

        assert [i.agent for i in removed] == ["claude-code"]
        assert not (env.cwd / ".claude" / "hooks" / "fmt.json").exists()
        assert service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt") is None

    def test_remove_untracked_falls_back_to_disk(self, service: FabricService, env: Environment, make_hook):
        path = make_hook(env.cwd / ".claude" / "hooks", "manual")

        removed = service.remove(HOOKS, "manual")

        assert [i.path for i in removed] == [str(path)]
        assert not path.exists()

    def test_remove_unknown(self, service: FabricService):
        with pytest.raises(NotFoundError, match="is not installed"):
            service.remove(HOOKS, "ghost")

    def test_remove_scope_filter(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"], scope=Scope.GLOBAL)

        with pytest.raises(NotFoundError):
            service.remove(HOOKS, "fmt", scope=ListScope.PROJECT)

    def test_failed_remove_keeps_ledger(self, service: FabricService, env: Environment, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])
        (env.cwd / ".claude" / "hooks" / "fmt.json").unlink()

        with pytest.raises(NotFoundError):
            service.remove(HOOKS, "fmt")
        assert service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt") is not None

        service.remove(HOOKS, "fmt", force=True)
        assert service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt") is None


class TestUpdateAndRollback:
    """Tests for re-installing from recorded sources."""

    def test_update_picks_up_source_changes(
        self, service: FabricService, env: Environment, hooks_source: Path, make_hook
    ):
        service.add(str(hooks_source), HOOKS, names=["fmt"])
        make_hook(hooks_source, "fmt", command="ruff format")

        [result] = service.update(HOOKS, "fmt")

        assert result.error is None
        data = json.loads((env.cwd / ".claude" / "hooks" / "fmt.json").read_text())
        assert data["command"] == "ruff format"
        assert len(service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt").history) == 1

    def test_update_all_tracked(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS)

        results = service.update(HOOKS)

        assert len(results) == 2
        assert all(r.error is None for r in results)

    def test_update_untracked(self, service: FabricService):
        with pytest.raises(NotFoundError, match="is not tracked"):
            service.update(HOOKS, "ghost")

    def test_update_reports_vanished_resource(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])
        (hooks_source / "fmt.json").unlink()

        [result] = service.update(HOOKS, "fmt")

        assert isinstance(result.error, NotFoundError)
        assert result.failed == "fmt"

    def test_rollback_reinstalls_previous_source(
        self, service: FabricService, env: Environment, tmp_path: Path, hooks_source: Path, make_hook
    ):
        other = tmp_path / "other"
        make_hook(other, "fmt", command="black .")
        service.add(str(hooks_source), HOOKS, names=["fmt"])
        service.add(str(other), HOOKS, names=["fmt"], force=True)

        result = service.rollback(HOOKS, "fmt")

        assert result.error is None
        entry = service.lock(Scope.PROJECT).get_resource(HOOKS, "fmt")
        assert entry.source == str(hooks_source)
        assert entry.history == []
        data = json.loads((env.cwd / ".claude" / "hooks" / "fmt.json").read_text())
        assert data["command"] == "echo hi"

    def test_rollback_without_history(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS, names=["fmt"])

        with pytest.raises(NotFoundError, match="no history"):
            service.rollback(HOOKS, "fmt")


class TestCheck:
    """Tests for ledger/disk drift detection."""

    def test_in_sync(self, service: FabricService, hooks_source: Path):
        service.add(str(hooks_source), HOOKS)

        assert service.check() == []

    def test_in_sync_after_adding_names_that_need_sanitizing(
        self, service: FabricService, env: Environment, source_dir: Path, make_hook
    ):
        make_hook(source_dir, "my hook")
        (source_dir / "subagent.json").write_text(json.dumps({"name": "Code Reviewer", "description": "x"}))

        service.add(str(source_dir), HOOKS).raise_for_error()
        service.add(str(source_dir), "subagents", agents=["claude-code"]).raise_for_error()

        assert service.check() == []
        entry = service.lock(Scope.PROJECT).get_resource("subagents", "Code-Reviewer")
        assert entry.installed_for[0].path == str(env.cwd / ".claude" / "agents" / "Code-Reviewer.yaml")
        [listed] = service.list_resources("subagents").resources
        assert listed.source == str(source_dir)

        service.remove(HOOKS, "my-hook")
        service.remove("subagents", "Code-Reviewer")
        assert service.check() == []
        assert list((env.cwd / ".claude" / "hooks").iterdir()) == []

    def test_missing_and_untracked(
        self, service: FabricService, env: Environment, hooks_source: Path, make_hook
    ):
        service.add(str(hooks_source), HOOKS, names=["fmt"])
        (env.cwd / ".claude" / "hooks" / "fmt.json").unlink()
        make_hook(env.cwd / ".claude" / "hooks", "manual")

        drift = {(d.name, d.problem) for d in service.check()}

        assert drift == {("fmt", "missing"), ("manual", "untracked")}
