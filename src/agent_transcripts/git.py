"""Resolve the git context of a transcript's working directory."""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from .models import GitContext
from .paths import normalize_relative_cwd

logger = logging.getLogger("agent_transcripts.git")

# git@host:owner/repo(.git)
SSH_REMOTE_PATTERN = re.compile(r"git@([^:]+):(.+?)(?:\.git)?$")
# https://host/owner/repo(.git)
HTTPS_REMOTE_PATTERN = re.compile(r"https?://([^/]+)/(.+?)(?:\.git)?$")
ORIGIN_URL_PATTERN = re.compile(r'\[remote "origin"\]\s+url\s*=\s*(.+)', re.IGNORECASE)

# Hosting keyword found in a checkout path mapped to its canonical host
KNOWN_HOSTS: dict[str, str] = {
    "gitlab": "gitlab.com",
    "bitbucket": "bitbucket.org",
    "github": "github.com",
}


def parse_git_remote_url(url: str) -> Optional[str]:
    """Return ``host/owner/repo`` for an SSH or HTTPS remote URL."""
    match = SSH_REMOTE_PATTERN.search(url) or HTTPS_REMOTE_PATTERN.search(url)
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def locate_git_root(start: str | Path) -> Optional[Path]:
    """Walk up from ``start`` to the first directory holding ``.git``."""
    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        git_path = candidate / ".git"
        if git_path.is_dir() or git_path.is_file():
            return candidate
    return None


def read_git_remote_url(repo_root: Path) -> Optional[str]:
    try:
        content = (repo_root / ".git" / "config").read_text(encoding="utf-8")
    except OSError:
        return None
    match = ORIGIN_URL_PATTERN.search(content)
    if not match:
        return None
    return match.group(1).strip() or None


def get_repo_id(repo_root: Path) -> Optional[str]:
    url = read_git_remote_url(repo_root)
    if not url:
        return None
    return parse_git_remote_url(url)


def read_git_branch(repo_root: Path) -> Optional[str]:
    """Read the checked-out branch name from ``.git/HEAD``."""
    try:
        head = (repo_root / ".git" / "HEAD").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if head.startswith("ref:"):
        ref = head[4:].strip()
        return ref.split("/")[-1] or None
    return head or None


def resolve_git_context(
    cwd: Optional[str], git_branch: Optional[str] = None
) -> Optional[GitContext]:
    """Derive the git context of ``cwd`` from the filesystem.

    Returns None when there is no cwd at all. A cwd that is missing on disk
    or outside any repository still keeps the recorded branch.
    """
    if not cwd:
        return None

    if not os.path.isdir(cwd):
        logger.debug("cwd %s is not a directory; skipping git lookup", cwd)
        return GitContext(branch=git_branch)

    repo_root = locate_git_root(cwd)
    if repo_root is None:
        return GitContext(branch=git_branch)

    relative_cwd = os.path.relpath(Path(cwd).resolve(), repo_root) or "."
    return GitContext(
        relative_cwd=normalize_relative_cwd(relative_cwd.replace("\\", "/")),
        branch=git_branch or read_git_branch(repo_root),
        repo=get_repo_id(repo_root),
    )


def infer_git_context(cwd: Optional[str], git_branch: Optional[str] = None) -> GitContext:
    """Infer repository and relative cwd from a hosting segment in the path.

    ``/src/github.com/org/repo/pkg`` yields repo ``github.com/org/repo`` and
    relative cwd ``pkg``. No filesystem access.
    """
    if not cwd:
        return GitContext(branch=git_branch)

    parts = [part for part in re.split(r"[\\/]+", cwd) if part]
    for index, part in enumerate(parts):
        lowered = part.lower()
        host = next((h for key, h in KNOWN_HOSTS.items() if key in lowered), None)
        if host is None:
            continue
        if index + 2 >= len(parts):
            break
        org = parts[index + 1]
        repo_name = re.sub(r"\.git$", "", parts[index + 2], flags=re.IGNORECASE)
        if not org or not repo_name:
            break
        relative = "/".join(parts[index + 3:]) or "."
        return GitContext(
            relative_cwd=normalize_relative_cwd(relative),
            branch=git_branch,
            repo=f"{host}/{org}/{repo_name}",
        )

    return GitContext(branch=git_branch)


def derive_relative_cwd(cwd: Optional[str], repo_name: Optional[str]) -> Optional[str]:
    """Path of ``cwd`` below the last segment named ``repo_name``."""
    if not cwd or not repo_name:
        return None
    segments = [s for s in cwd.replace("\\", "/").split("/") if s]
    if repo_name not in segments:
        return None
    index = len(segments) - 1 - segments[::-1].index(repo_name)
    return "/".join(segments[index + 1:]) or "."
