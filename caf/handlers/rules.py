"""Rules: single markdown documents with optional frontmatter.

Cursor reads ``.mdc`` rule files; every other agent gets ``.md``.
"""

import logging
from pathlib import Path
from typing import Any

from caf.agents import KIND_RULES
from caf.constants import DEFAULT_NAMING_STRATEGY, RULE_FILE_EXTENSIONS, RULES, SKILL_MARKER
from caf.exceptions import ConflictError, FabricIOError, ValidationError
from caf.handlers.base import (
    HandlerContext,
    ensure_supported,
    installed_file,
    is_not_found,
    list_error,
    list_targets,
    make_dirs,
    remove_from_target,
    source_dir,
    write_text,
)
from caf.models import (
    DiscoverOptions,
    InstalledResource,
    Installation,
    InstallMode,
    InstallOptions,
    InstallTarget,
    ListResult,
    ListScope,
    ParsedSource,
    RemoveOptions,
    Resource,
    ResourceFile,
    Scope,
    ValidationResult,
)
from caf.naming import assign_names
from caf.paths import safe_join, sanitize_file_name
from caf.utils import describe_markdown, frontmatter_error, hash_config, split_frontmatter, walk_files

logger = logging.getLogger(__name__)


def rule_extension(agent: str) -> str:
    return ".mdc" if agent == "cursor" else ".md"


def _inside_skill(path: Path, root: Path) -> bool:
    """Markdown inside a skill directory belongs to the skill."""
    for parent in path.parents:
        if (parent / SKILL_MARKER).exists():
            return True
        if parent == root:
            break
    return False


def parse_rule(content: str) -> dict[str, Any]:
    frontmatter, body = split_frontmatter(content)
    heading, paragraph = describe_markdown(body)
    version = frontmatter.get("version")
    return {
        "name": frontmatter.get("name"),
        "version": str(version) if version is not None else None,
        "description": str(frontmatter.get("description") or paragraph or heading or ""),
        "globs": frontmatter.get("globs"),
    }


class RulesHandler:
    """Installs rule documents into each agent's rules directory."""

    type = RULES
    display_name = "Rules"
    description = "Project and global rules for coding agents"

    def __init__(self, ctx: HandlerContext) -> None:
        self.ctx = ctx

    def get_supported_agents(self) -> list[str]:
        return self.ctx.agents.supporting(KIND_RULES)

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        ensure_supported(self, agent)
        return self.ctx.agents.resource_path(agent, KIND_RULES, scope)

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        root = source_dir(source, self.type)
        if root is None:
            return []
        options = options or DiscoverOptions()
        strategy = options.naming_strategy or DEFAULT_NAMING_STRATEGY
        skipped_dirs = {RULES} | {
            self.ctx.agents.get(name).config_dir for name in self.ctx.agents.all_names()
        }

        found = []
        for path in walk_files(root):
            if path.suffix not in RULE_FILE_EXTENSIONS or path.name == SKILL_MARKER:
                continue
            if _inside_skill(path, root):
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Skipping %s: %s", path, e)
                continue
            info = parse_rule(content)
            if options.categories is not None:
                categories = list(options.categories)
            else:
                categories = [p for p in path.parent.relative_to(root).parts if p not in skipped_dirs]
            original = str(info["name"] or path.stem)
            found.append((path, content, info, original, categories))

        names = assign_names([(original, cats) for _, _, _, original, cats in found], strategy)

        resources = []
        for (path, content, info, original, categories), name in zip(found, names):
            resources.append(
                Resource(
                    type=self.type,
                    name=name,
                    description=info["description"],
                    version=info["version"],
                    metadata={
                        "originalName": original,
                        "categories": categories,
                        "namingStrategy": strategy,
                        "globs": info["globs"],
                        "sourcePath": path.relative_to(root).as_posix(),
                        "sourceDir": str(path.parent),
                        "configHash": hash_config({"content": content}),
                    },
                    files=[ResourceFile(path=path.name, content=content)],
                )
            )
        return resources

    def _target_file(self, resource: Resource, target: InstallTarget) -> Path:
        install_path = self.get_install_path(target.agent, target.scope)
        return safe_join(install_path, f"{sanitize_file_name(resource.name)}{rule_extension(target.agent)}")

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        if not options.skip_validation:
            result = self.validate(resource)
            if not result.valid:
                raise ValidationError(
                    f"Rule '{resource.name}' validation failed: {', '.join(result.errors)}"
                )

        plan = [(target, self._target_file(resource, target)) for target in targets]
        source_file = None
        if resource.metadata.get("sourceDir") and resource.files:
            source_file = Path(resource.metadata["sourceDir"]) / resource.files[0].path

        for target, dest in plan:
            make_dirs(dest.parent)
            if dest.exists() or dest.is_symlink():
                if not options.force:
                    raise ConflictError(f"Rule '{resource.name}' already exists at {dest}")
                try:
                    dest.unlink()
                except OSError as e:
                    raise FabricIOError(f"Failed to replace {dest}: {e}")

            linked = target.mode is InstallMode.SYMLINK and source_file is not None and source_file.is_file()
            if linked:
                try:
                    dest.symlink_to(source_file)
                except OSError as e:
                    raise FabricIOError(f"Failed to link {dest}: {e}")
            else:
                write_text(dest, resource.files[0].content)

            self.ctx.audit.success(
                "install-rule",
                resource.name,
                self.type,
                dest,
                {
                    "agent": target.agent,
                    "scope": target.scope.value,
                    "mode": InstallMode.SYMLINK.value if linked else InstallMode.COPY.value,
                },
            )

    def remove(self, resource: Resource, targets: list[InstallTarget], options: RemoveOptions) -> None:
        for target in targets:
            install_path = self.get_install_path(target.agent, target.scope)
            dest = installed_file(install_path, resource.name, rule_extension(target.agent))
            remove_from_target(self.ctx, resource, target, dest, "remove-rule", options, dest.unlink)

    def list(self, scope: ListScope) -> ListResult:
        result = ListResult()
        by_name: dict[str, InstalledResource] = {}
        scanned: set[Path] = set()

        for agent, s in list_targets(self, scope):
            install_path = self.get_install_path(agent, s)
            if install_path in scanned:
                continue
            scanned.add(install_path)
            try:
                paths = sorted(p for p in install_path.iterdir() if p.suffix in RULE_FILE_EXTENSIONS)
            except OSError as e:
                if is_not_found(e):
                    logger.debug("No rules directory at %s", install_path)
                    continue
                result.errors.append(list_error(self.ctx, self.type, agent, s, install_path, e))
                continue

            for path in paths:
                try:
                    content = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    result.errors.append(list_error(self.ctx, self.type, agent, s, path, e))
                    continue
                info = parse_rule(content)
                installed = by_name.get(path.stem)
                if installed is None:
                    installed = InstalledResource(
                        type=self.type,
                        name=path.stem,
                        description=info["description"],
                        version=info["version"],
                        metadata={"originalName": info["name"] or path.stem, "globs": info["globs"]},
                        files=[ResourceFile(path=path.name, content=content)],
                    )
                    by_name[path.stem] = installed
                    result.resources.append(installed)
                installed.add_installation(Installation(agent=agent, scope=s, path=str(path)))
        return result

    def validate(self, resource: Resource) -> ValidationResult:
        result = ValidationResult()
        if not resource.name:
            result.errors.append("Rule name is required")
        if not resource.files:
            result.errors.append("Rule must have a file")
            return result
        if len(resource.files) > 1:
            result.warnings.append("Rule has more than one file, only the first is installed")
        if not resource.description:
            result.warnings.append("Rule description is missing")
        problem = frontmatter_error(resource.files[0].content)
        if problem:
            result.errors.append(f"{resource.files[0].path}: {problem}")
        return result
