"""Shared helpers for parsing and hashing resource files."""

import fnmatch
import hashlib
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import yaml

from caf.constants import EXCLUDE_PATTERNS
from caf.exceptions import FabricIOError


def utc_now() -> str:
    """Current time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def is_excluded(name: str) -> bool:
    """Check whether a directory entry should be skipped while walking sources."""
    return any(fnmatch.fnmatch(name, pattern) for pattern in EXCLUDE_PATTERNS)


def walk_files(root: Path) -> Iterator[Path]:
    """Yield files beneath root in sorted order, skipping excluded entries."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not is_excluded(d))
        for filename in sorted(filenames):
            if not is_excluded(filename):
                yield Path(dirpath) / filename


def split_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split a markdown document into its YAML frontmatter and body.

    Documents without frontmatter, or with malformed YAML, yield an empty
    mapping and the full content as body.
    """
    if not content.startswith("---"):
        return {}, content

    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}, content

    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError:
        return {}, content
    if not isinstance(data, dict):
        return {}, parts[2]
    return data, parts[2]


def describe_markdown(body: str) -> tuple[str | None, str | None]:
    """Return the first heading and first paragraph of a markdown body."""
    heading = None
    paragraph: list[str] = []
    for raw in body.splitlines():
        line = raw.strip()
        if line.startswith("#"):
            if heading is None:
                heading = line.lstrip("#").strip() or None
            if paragraph:
                break
            continue
        if not line:
            if paragraph:
                break
            continue
        paragraph.append(line)
    return heading, " ".join(paragraph) or None


def hash_config(data: Any) -> str:
    """sha256 over canonical JSON (sorted keys, compact separators)."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_files(files: dict[str, str]) -> str:
    """sha256 over relative paths and contents, independent of input order."""
    digest = hashlib.sha256()
    for path in sorted(files):
        digest.update(path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(files[path].encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def frontmatter_error(content: str) -> str | None:
    """Describe why a document's frontmatter is malformed, or None if it is fine."""
    if not content.startswith("---"):
        return None
    parts = content.split("---", 2)
    if len(parts) < 3:
        return "frontmatter is missing its closing ---"
    try:
        data = yaml.safe_load(parts[1])
    except yaml.YAMLError as e:
        return f"invalid YAML frontmatter: {e}"
    if data is not None and not isinstance(data, dict):
        return "frontmatter must be a mapping"
    return None


def atomic_write_text(path: Path, content: str) -> None:
    """Write a file through a sibling temp file and ``os.replace``.

    Readers see either the old content or the new content, never a
    truncated file.

    Raises:
        FabricIOError: If the directory cannot be created or the write fails
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise FabricIOError(f"Failed to write {path}: {e}")
