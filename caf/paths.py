"""Path helpers that keep resource writes inside their install root."""

import re
from pathlib import Path, PurePosixPath

from caf.exceptions import ValidationError

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_HYPHEN_RUNS = re.compile(r"-{2,}")


def sanitize_file_name(name: str) -> str:
    """Turn an arbitrary resource name into a single safe path segment.

    Examples:
        "my/skill" -> "my-skill"
        "..hidden" -> "hidden"
        "a  b!!c" -> "a-b-c"
    """
    cleaned = name.replace("/", "-").replace("\\", "-")
    cleaned = _UNSAFE_CHARS.sub("-", cleaned)
    cleaned = cleaned.lstrip(".")
    cleaned = _HYPHEN_RUNS.sub("-", cleaned).strip("-")
    return cleaned or "unnamed"


def safe_join(root: Path, relative: str) -> Path:
    """Join a declared file path onto root, refusing anything that escapes it.

    Args:
        root: Install root directory
        relative: File path declared by a resource

    Returns:
        The resolved destination path

    Raises:
        ValidationError: If the path is absolute or resolves outside root
    """
    if not relative:
        raise ValidationError("Empty file path")

    pure = PurePosixPath(relative.replace("\\", "/"))
    if pure.is_absolute() or Path(relative).is_absolute():
        raise ValidationError(f"Absolute file path not allowed: {relative}")
    if ".." in pure.parts:
        raise ValidationError(f"Path traversal detected: {relative}")

    candidate = root / Path(*pure.parts)
    if not is_within(candidate, root):
        raise ValidationError(f"Path traversal detected: {relative} escapes {root}")
    return candidate


def is_within(path: Path, root: Path) -> bool:
    """Check whether path lies at or beneath root."""
    resolved = path.resolve()
    resolved_root = root.resolve()
    return resolved == resolved_root or resolved_root in resolved.parents
