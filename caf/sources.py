"""Source resolution: classify a source string and materialize it on disk.

Supported forms:
    ./skills, ../shared, /abs/path, ~/dir, .   -> local
    git@host:owner/repo.git, https://host/x.git -> git
    https://github.com/owner/repo/tree/ref/sub  -> url
    owner/repo[/subpath][#ref]                  -> shorthand (GitHub)

Remote sources are fetched into a temporary directory that is removed when
the ``resolve_source`` context exits, whether it exits normally or not.
"""

import logging
import re
import shutil
import subprocess
import tarfile
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Protocol, runtime_checkable

import httpx

from caf.env import Environment
from caf.exceptions import SourceResolutionError
from caf.models import ParsedSource, SourceType
from caf.paths import is_within

logger = logging.getLogger(__name__)

_LOCAL_PREFIXES = ("./", "../", "/", "~/", ".\\", "..\\")
_SHORTHAND = re.compile(
    r"^(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+)(?:/(?P<subpath>[^#]+?))?/?(?:#(?P<ref>[^#]+))?$"
)
_GITHUB_URL = re.compile(
    r"^https?://(?:www\.)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/#?]+?)(?:\.git)?"
    r"(?:/tree/(?P<ref>[^/]+)(?:/(?P<subpath>.+?))?)?/?$"
)
_GITLAB_URL = re.compile(
    r"^https?://(?:www\.)?gitlab\.com/(?P<owner>[^/]+)/(?P<repo>[^/#?]+?)(?:\.git)?"
    r"(?:/-/tree/(?P<ref>[^/]+)(?:/(?P<subpath>.+?))?)?/?$"
)


def _is_local(source: str, env: Environment) -> bool:
    if source in (".", "..", "~") or source.startswith(_LOCAL_PREFIXES):
        return True
    return (env.cwd / source).exists()


def _local_path(source: str, env: Environment) -> Path:
    if source == "~" or source.startswith("~/"):
        return env.home / source[2:] if len(source) > 1 else env.home
    path = Path(source)
    if not path.is_absolute():
        path = env.cwd / path
    return path


def parse_source(source: str, env: Environment) -> ParsedSource:
    """Classify a user-supplied source string.

    Raises:
        SourceResolutionError: If the string matches no supported form
    """
    text = source.strip()
    if not text:
        raise SourceResolutionError("Source cannot be empty")

    if _is_local(text, env):
        path = _local_path(text, env)
        return ParsedSource(type=SourceType.LOCAL, url=str(path), local_path=path)

    if text.startswith("git@"):
        return ParsedSource(type=SourceType.GIT, url=text)

    if text.startswith(("http://", "https://")):
        for pattern, host in ((_GITHUB_URL, "github.com"), (_GITLAB_URL, "gitlab.com")):
            match = pattern.match(text)
            if match:
                owner, repo = match["owner"], match["repo"]
                return ParsedSource(
                    type=SourceType.URL,
                    url=f"https://{host}/{owner}/{repo}.git",
                    ref=match["ref"],
                    subpath=match["subpath"],
                    owner=owner,
                    repo=repo,
                )
        if text.endswith(".git"):
            return ParsedSource(type=SourceType.GIT, url=text)
        return ParsedSource(type=SourceType.URL, url=text)

    if text.endswith(".git"):
        return ParsedSource(type=SourceType.GIT, url=text)

    match = _SHORTHAND.match(text)
    if match:
        owner = match["owner"]
        repo = match["repo"].removesuffix(".git")
        return ParsedSource(
            type=SourceType.SHORTHAND,
            url=f"https://github.com/{owner}/{repo}.git",
            ref=match["ref"],
            subpath=match["subpath"],
            owner=owner,
            repo=repo,
        )

    raise SourceResolutionError(
        f"Cannot resolve source '{source}'. "
        "Expected a local path, a git URL, a GitHub/GitLab URL or owner/repo"
    )


@runtime_checkable
class SourceFetcher(Protocol):
    """Materializes a remote source into a directory it is handed."""

    def fetch(self, source: ParsedSource, dest: Path) -> Path:
        """Fetch source beneath dest and return the repository root."""
        ...


class GitFetcher:
    """Shallow-clones a repository with the git CLI."""

    def __init__(self, timeout: int = 120) -> None:
        self.timeout = timeout

    def fetch(self, source: ParsedSource, dest: Path) -> Path:
        repo_dir = dest / "repo"
        cmd = ["git", "clone", "--depth", "1"]
        if source.ref:
            cmd += ["--branch", source.ref]
        cmd += [source.url, str(repo_dir)]

        logger.info("Cloning %s", source.url)
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self.timeout)
        except FileNotFoundError:
            raise SourceResolutionError("git is not installed or not on PATH")
        except subprocess.TimeoutExpired:
            raise SourceResolutionError(f"Timed out cloning {source.url}")
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
            raise SourceResolutionError(f"Failed to clone {source.url}: {detail}")
        return repo_dir


class TarballFetcher:
    """Downloads a GitHub archive tarball over HTTPS."""

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    def archive_url(self, source: ParsedSource) -> str:
        if not source.owner or not source.repo or "github.com" not in source.url:
            raise SourceResolutionError(
                f"Tarball download only supports GitHub sources, got {source.url}"
            )
        ref = source.ref or "HEAD"
        return f"https://github.com/{source.owner}/{source.repo}/archive/{ref}.tar.gz"

    def fetch(self, source: ParsedSource, dest: Path) -> Path:
        url = self.archive_url(source)
        tarball_path = dest / "repo.tar.gz"

        logger.info("Downloading %s", url)
        try:
            with httpx.Client(follow_redirects=True, timeout=self.timeout) as client:
                response = client.get(url)
                if response.status_code == 404:
                    raise SourceResolutionError(
                        f"Repository '{source.owner}/{source.repo}' not found on GitHub."
                    )
                response.raise_for_status()
                tarball_path.write_bytes(response.content)
        except httpx.HTTPStatusError as e:
            raise SourceResolutionError(f"Failed to download repository: {e}")
        except httpx.RequestError as e:
            raise SourceResolutionError(f"Network error: {e}")

        extract_path = dest / "extracted"
        try:
            with tarfile.open(tarball_path, "r:gz") as tar:
                tar.extractall(extract_path, members=_safe_members(tar, extract_path))
        except tarfile.TarError as e:
            raise SourceResolutionError(f"Failed to extract {url}: {e}")

        roots = [p for p in extract_path.iterdir() if p.is_dir()] if extract_path.exists() else []
        if len(roots) != 1:
            raise SourceResolutionError(f"Unexpected archive layout in {url}")
        return roots[0]


def _safe_members(tar: tarfile.TarFile, dest: Path) -> list[tarfile.TarInfo]:
    """Regular files and directories that stay inside dest."""
    members = []
    for member in tar.getmembers():
        if not (member.isfile() or member.isdir()):
            logger.debug("Skipping archive member %s (not a regular file)", member.name)
            continue
        if not is_within(dest / member.name, dest):
            raise SourceResolutionError(f"Archive member escapes destination: {member.name}")
        members.append(member)
    return members


def default_fetcher() -> SourceFetcher:
    """Prefer git when it is on PATH, otherwise download tarballs."""
    if shutil.which("git"):
        return GitFetcher()
    return TarballFetcher()


@contextmanager
def resolve_source(
    source: str,
    env: Environment,
    fetcher: SourceFetcher | None = None,
) -> Generator[ParsedSource, None, None]:
    """Resolve a source string to a local directory for the duration of a block.

    Local sources are used in place. Remote sources are fetched into a
    temporary directory owned by this context and removed on exit.

    Yields:
        ParsedSource with ``local_path`` set

    Raises:
        SourceResolutionError: If the source cannot be classified or fetched
    """
    parsed = parse_source(source, env)
    if parsed.type is SourceType.LOCAL:
        yield parsed
        return

    fetcher = fetcher or default_fetcher()
    with tempfile.TemporaryDirectory(prefix="caf-source-") as tmp_dir:
        root = fetcher.fetch(parsed, Path(tmp_dir))
        local_path = root
        if parsed.subpath:
            local_path = root / parsed.subpath
            if not is_within(local_path, root):
                raise SourceResolutionError(f"Subpath escapes repository: {parsed.subpath}")
            if not local_path.exists():
                raise SourceResolutionError(
                    f"Path '{parsed.subpath}' not found in {parsed.url}"
                )
        parsed.local_path = local_path
        yield parsed
