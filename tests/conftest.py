"""Test configuration and fixtures."""

import json
from pathlib import Path

import pytest

from caf.audit import AuditEvent
from caf.env import Environment
from caf.handlers.base import HandlerContext


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "network: tests that make real network requests")


@pytest.fixture
def env(tmp_path: Path) -> Environment:
    """Isolated project and home roots that do not overlap."""
    project = tmp_path / "project"
    home = tmp_path / "home"
    project.mkdir()
    home.mkdir()
    return Environment(cwd=project, home=home)


@pytest.fixture
def events() -> list[AuditEvent]:
    return []


@pytest.fixture
def ctx(env: Environment, events: list[AuditEvent]) -> HandlerContext:
    """Handler context whose audit events are collected in ``events``."""
    return HandlerContext.create(env, sink=events.append)


@pytest.fixture
def cli_env(env: Environment, monkeypatch) -> Environment:
    """Point the process cwd and HOME at the isolated roots for CLI tests."""
    monkeypatch.chdir(env.cwd)
    monkeypatch.setenv("HOME", str(env.home))
    return env


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """An empty local source directory outside both scope roots."""
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def make_skill():
    """Create a skill directory with a SKILL.md beneath a root."""
    def _make(root: Path, relative: str, name: str | None = None, description: str = "Does things",
              body: str = "Instructions.", extra_files: dict[str, str] | None = None) -> Path:
        skill_dir = root / relative
        skill_dir.mkdir(parents=True, exist_ok=True)
        frontmatter = [f"description: {description}"]
        if name:
            frontmatter.insert(0, f"name: {name}")
        (skill_dir / "SKILL.md").write_text("---\n" + "\n".join(frontmatter) + f"\n---\n\n{body}\n")
        for path, content in (extra_files or {}).items():
            target = skill_dir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return skill_dir
    return _make


@pytest.fixture
def make_hook():
    """Write a hook JSON file beneath a root."""
    def _make(root: Path, name: str, hook_type: str = "PreToolUse", command: str = "echo hi",
              **extra) -> Path:
        path = root / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"hookType": hook_type, "command": command, **extra}, indent=2))
        return path
    return _make
