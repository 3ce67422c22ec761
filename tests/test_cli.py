"""Tests for the caf command line."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from caf import __version__
from caf.cli.main import app
from caf.env import Environment

runner = CliRunner()


@pytest.fixture
def hooks_source(source_dir: Path, make_hook) -> Path:
    make_hook(source_dir, "fmt")
    return source_dir


class TestMain:
    """Tests for top-level options and commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"caf {__version__}" in result.output

    def test_doctor(self, cli_env: Environment):
        result = runner.invoke(app, ["doctor"])

        assert result.exit_code == 0
        assert "Handlers: skills, subagents, rules" in result.output

    def test_invalid_config_exits_with_validation_code(self, cli_env: Environment):
        path = cli_env.cwd / ".coding-agent-fabric" / "config.toml"
        path.parent.mkdir(parents=True)
        path.write_text('colour = "blue"\n')

        result = runner.invoke(app, ["hooks", "list"])

        assert result.exit_code == 7
        assert "Unknown config keys: colour" in result.output


class TestHooksCommands:
    """Tests for caf hooks."""

    def test_add_list_remove(self, cli_env: Environment, hooks_source: Path):
        added = runner.invoke(app, ["hooks", "add", str(hooks_source)])
        assert added.exit_code == 0, added.output
        assert "Installed claude-code-hooks 'fmt'" in added.output
        assert (cli_env.cwd / ".claude" / "hooks" / "fmt.json").exists()

        listed = runner.invoke(app, ["hooks", "list"])
        assert listed.exit_code == 0
        assert "fmt" in listed.output

        removed = runner.invoke(app, ["hooks", "remove", "fmt"])
        assert removed.exit_code == 0
        assert "Removed claude-code-hooks 'fmt'" in removed.output
        assert not (cli_env.cwd / ".claude" / "hooks" / "fmt.json").exists()

    def test_conflict_exit_code(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        result = runner.invoke(app, ["hooks", "add", str(hooks_source)])

        assert result.exit_code == 4
        assert "Error: Hook 'fmt' already exists" in result.output

    def test_force_overwrites(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        result = runner.invoke(app, ["hooks", "add", str(hooks_source), "--force"])

        assert result.exit_code == 0

    def test_remove_unknown(self, cli_env: Environment):
        result = runner.invoke(app, ["hooks", "remove", "ghost"])

        assert result.exit_code == 3
        assert "is not installed" in result.output

    def test_unknown_kind(self, cli_env: Environment, hooks_source: Path):
        result = runner.invoke(app, ["hooks", "add", str(hooks_source), "--kind", "emacs"])

        assert result.exit_code == 2

    def test_cursor_kind(self, cli_env: Environment, source_dir: Path, make_hook):
        make_hook(source_dir, "save", hook_type="onSave", command="prettier")

        result = runner.invoke(app, ["hooks", "add", str(source_dir), "--kind", "cursor", "--global"])

        assert result.exit_code == 0, result.output
        assert (cli_env.home / ".cursor" / "hooks" / "save.json").exists()

    def test_nothing_found(self, cli_env: Environment, source_dir: Path):
        result = runner.invoke(app, ["hooks", "add", str(source_dir)])

        assert result.exit_code == 0
        assert "No claude-code-hooks found" in result.output

    def test_update_and_rollback(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        updated = runner.invoke(app, ["hooks", "update", "fmt"])
        assert updated.exit_code == 0
        assert "Updated claude-code-hooks 'fmt'" in updated.output

        rolled = runner.invoke(app, ["hooks", "rollback", "fmt"])
        assert rolled.exit_code == 0
        assert "Rolled back claude-code-hooks 'fmt'" in rolled.output

    def test_rollback_without_history(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        result = runner.invoke(app, ["hooks", "rollback", "fmt"])

        assert result.exit_code == 3


class TestResourceCommands:
    """Tests for the generic resource command groups."""

    def test_unknown_agent(self, cli_env: Environment, source_dir: Path, make_skill):
        make_skill(source_dir, "review")

        result = runner.invoke(app, ["skills", "add", str(source_dir), "--agent", "emacs"])

        assert result.exit_code == 5
        assert "Unknown agent 'emacs'" in result.output

    def test_bad_source(self, cli_env: Environment):
        result = runner.invoke(app, ["skills", "add", "not a source"])

        assert result.exit_code == 6

    def test_bad_mode(self, cli_env: Environment, source_dir: Path):
        result = runner.invoke(app, ["skills", "add", str(source_dir), "--mode", "hardlink"])

        assert result.exit_code == 2

    def test_skill_symlink(self, cli_env: Environment, source_dir: Path, make_skill):
        make_skill(source_dir, "review")

        result = runner.invoke(
            app, ["skills", "add", str(source_dir), "-a", "claude-code", "--mode", "symlink"]
        )

        assert result.exit_code == 0, result.output
        assert (cli_env.cwd / ".claude" / "skills" / "review").is_symlink()

    def test_mcp_global(self, cli_env: Environment, source_dir: Path):
        (source_dir / "servers.json").write_text(
            json.dumps({"mcpServers": {"alpha": {"command": "npx"}, "beta": {"command": "uvx"}}})
        )

        result = runner.invoke(app, ["mcp", "add", str(source_dir), "-a", "cursor", "-g"])

        assert result.exit_code == 0, result.output
        document = json.loads((cli_env.home / ".cursor" / "mcp.json").read_text())
        assert set(document["mcpServers"]) == {"alpha", "beta"}

        listed = runner.invoke(app, ["mcp", "list", "--global"])
        assert "alpha" in listed.output
        assert "beta" in listed.output

    def test_partial_add_reports_partially_installed_resource(self, cli_env: Environment, source_dir: Path):
        (source_dir / "servers.json").write_text(
            json.dumps({"mcpServers": {"alpha": {"command": "npx"}, "beta": {"command": "uvx"}}})
        )
        cursor_doc = cli_env.cwd / ".cursor" / "mcp.json"
        cursor_doc.parent.mkdir(parents=True)
        cursor_doc.write_text(json.dumps({"mcpServers": {"beta": {"command": "other"}}}))

        result = runner.invoke(
            app, ["mcp", "add", str(source_dir), "-a", "claude-code", "-a", "cursor"]
        )

        assert result.exit_code == 4
        assert "1 of 2 resources fully installed" in result.output
        assert "'beta' partially installed" in result.output

    def test_empty_list(self, cli_env: Environment):
        result = runner.invoke(app, ["rules", "list"])

        assert result.exit_code == 0
        assert "No rules installed" in result.output


class TestStatusCommands:
    """Tests for check, update and plugins."""

    def test_check(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        clean = runner.invoke(app, ["check"])
        assert clean.exit_code == 0
        assert "Ledger and disk agree" in clean.output

        (cli_env.cwd / ".claude" / "hooks" / "fmt.json").unlink()
        drifted = runner.invoke(app, ["check"])
        assert drifted.exit_code == 1
        assert "missing" in drifted.output

    def test_update_all(self, cli_env: Environment, hooks_source: Path):
        runner.invoke(app, ["hooks", "add", str(hooks_source)])

        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0
        assert "Updated claude-code-hooks 'fmt'" in result.output

    def test_update_all_nothing_tracked(self, cli_env: Environment):
        result = runner.invoke(app, ["update"])

        assert result.exit_code == 0
        assert "Nothing tracked" in result.output

    def test_plugins_empty(self, cli_env: Environment):
        result = runner.invoke(app, ["plugins", "list"])

        assert result.exit_code == 0
        assert "No plugins loaded" in result.output
