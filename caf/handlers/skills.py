"""Skills: directories holding a SKILL.md and any supporting files."""

import logging
import shutil
from pathlib import Path
from typing import Any

from caf.agents import KIND_SKILLS
from caf.constants import DEFAULT_NAMING_STRATEGY, SKILL_MARKER, SKILLS
from caf.exceptions import ConflictError, FabricIOError, ValidationError
from caf.handlers.base import (
    HandlerContext,
    ensure_supported,
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
from caf.utils import describe_markdown, frontmatter_error, hash_files, split_frontmatter, walk_files

logger = logging.getLogger(__name__)


def parse_skill_md(content: str) -> dict[str, Any]:
    """Extract name, version and description from a SKILL.md document.

    Frontmatter wins; otherwise the first heading names the skill and the
    first paragraph describes it.
    """
    frontmatter, body = split_frontmatter(content)
    heading, paragraph = describe_markdown(body)
    version = frontmatter.get("version")
    return {
        "name": str(frontmatter.get("name") or heading or "") or None,
        "version": str(version) if version is not None else None,
        "description": str(frontmatter.get("description") or paragraph or ""),
    }


def _read_skill_files(skill_dir: Path) -> tuple[list[ResourceFile], list[str]]:
    """Text files as resource files, plus relative paths of undecodable ones."""
    files = []
    binary = []
    for path in walk_files(skill_dir):
        relative = path.relative_to(skill_dir).as_posix()
        try:
            files.append(ResourceFile(path=relative, content=path.read_text(encoding="utf-8")))
        except UnicodeDecodeError:
            binary.append(relative)
    return files, binary


def _clear(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        raise FileNotFoundError(path)


class SkillsHandler:
    """Installs skill directories into each agent's skills directory."""

    type = SKILLS
    display_name = "Skills"
    description = "Reusable skill bundles defined by a SKILL.md file"

    def __init__(self, ctx: HandlerContext) -> None:
        self.ctx = ctx

    def get_supported_agents(self) -> list[str]:
        return self.ctx.agents.supporting(KIND_SKILLS)

    def get_install_path(self, agent: str, scope: Scope) -> Path:
        ensure_supported(self, agent)
        return self.ctx.agents.resource_path(agent, KIND_SKILLS, scope)

    def discover(self, source: ParsedSource, options: DiscoverOptions | None = None) -> list[Resource]:
        root = source_dir(source, self.type)
        if root is None:
            return []
        options = options or DiscoverOptions()
        strategy = options.naming_strategy or DEFAULT_NAMING_STRATEGY

        found = []
        for marker in walk_files(root):
            if marker.name != SKILL_MARKER:
                continue
            skill_dir = marker.parent
            try:
                content = marker.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable %s: %s", marker, e)
                continue
            info = parse_skill_md(content)
            parts = list(skill_dir.relative_to(root).parts)
            categories = list(options.categories) if options.categories is not None else parts[:-1]
            original = info["name"] or skill_dir.name
            found.append((skill_dir, info, original, categories))

        names = assign_names([(original, categories) for _, _, original, categories in found], strategy)

        resources = []
        for (skill_dir, info, original, categories), name in zip(found, names):
            files, binary = _read_skill_files(skill_dir)
            metadata: dict[str, Any] = {
                "originalName": original,
                "categories": categories,
                "namingStrategy": strategy,
                "sourcePath": skill_dir.relative_to(root).as_posix() or ".",
                "sourceDir": str(skill_dir),
                "skillFolderHash": hash_files({f.path: f.content for f in files}),
            }
            if binary:
                metadata["binaryFiles"] = binary
            resources.append(
                Resource(
                    type=self.type,
                    name=name,
                    description=info["description"],
                    version=info["version"],
                    metadata=metadata,
                    files=files,
                )
            )
        return resources

    def install(self, resource: Resource, targets: list[InstallTarget], options: InstallOptions) -> None:
        if not options.skip_validation:
            result = self.validate(resource)
            if not result.valid:
                raise ValidationError(
                    f"Skill '{resource.name}' validation failed: {', '.join(result.errors)}"
                )

        source_dir_path = resource.metadata.get("sourceDir")
        plan = []
        for target in targets:
            install_path = self.get_install_path(target.agent, target.scope)
            dest = safe_join(install_path, sanitize_file_name(resource.name))
            files = [(safe_join(dest, f.path), f) for f in resource.files]
            binary = [safe_join(dest, p) for p in resource.metadata.get("binaryFiles", [])]
            plan.append((target, install_path, dest, files, binary))

        for target, install_path, dest, files, binary in plan:
            make_dirs(install_path)
            if dest.exists() or dest.is_symlink():
                if not options.force:
                    raise ConflictError(f"Skill '{resource.name}' already exists at {dest}")
                try:
                    _clear(dest)
                except OSError as e:
                    raise FabricIOError(f"Failed to replace {dest}: {e}")

            linked = target.mode is InstallMode.SYMLINK and source_dir_path and Path(source_dir_path).is_dir()
            try:
                if linked:
                    dest.symlink_to(Path(source_dir_path), target_is_directory=True)
                else:
                    for path, file in files:
                        make_dirs(path.parent)
                        write_text(path, file.content)
                    for path in binary:
                        make_dirs(path.parent)
                        shutil.copy2(Path(source_dir_path) / path.relative_to(dest), path)
            except OSError as e:
                raise FabricIOError(f"Failed to install skill '{resource.name}' at {dest}: {e}")

            self.ctx.audit.success(
                "install-skill",
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
            dest = self.get_install_path(target.agent, target.scope) / sanitize_file_name(resource.name)
            remove_from_target(
                self.ctx, resource, target, dest, "remove-skill", options, lambda dest=dest: _clear(dest)
            )

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
                entries = sorted(install_path.iterdir())
            except OSError as e:
                if is_not_found(e):
                    logger.debug("No skills directory at %s", install_path)
                    continue
                result.errors.append(list_error(self.ctx, self.type, agent, s, install_path, e))
                continue

            for skill_dir in entries:
                marker = skill_dir / SKILL_MARKER
                if not marker.is_file():
                    continue
                try:
                    content = marker.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    result.errors.append(list_error(self.ctx, self.type, agent, s, marker, e))
                    continue

                info = parse_skill_md(content)
                installed = by_name.get(skill_dir.name)
                if installed is None:
                    installed = InstalledResource(
                        type=self.type,
                        name=skill_dir.name,
                        description=info["description"],
                        version=info["version"],
                        metadata={
                            "originalName": info["name"] or skill_dir.name,
                            "linked": skill_dir.is_symlink(),
                        },
                        files=[ResourceFile(path=SKILL_MARKER, content=content)],
                    )
                    by_name[skill_dir.name] = installed
                    result.resources.append(installed)
                installed.add_installation(Installation(agent=agent, scope=s, path=str(skill_dir)))
        return result

    def validate(self, resource: Resource) -> ValidationResult:
        result = ValidationResult()
        if not resource.name:
            result.errors.append("Skill name is required")
        if not resource.description:
            result.warnings.append("Skill description is missing")
        if not resource.files:
            result.errors.append("Skill must have at least one file")
        elif not any(f.path == SKILL_MARKER for f in resource.files):
            result.warnings.append(f"Skill has no {SKILL_MARKER} file")

        for file in resource.files:
            if file.path.endswith(".md"):
                problem = frontmatter_error(file.content)
                if problem:
                    result.errors.append(f"{file.path}: {problem}")
        return result
