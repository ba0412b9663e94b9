"""Path rewriting for transcript content."""

import os
import re
from pathlib import Path
from typing import Any, Optional

HOME_DIR_PATTERN = re.compile(r"^(/Users/[^/]+|/home/[^/]+)")


def to_relative(path: str, cwd: Optional[str]) -> str:
    """Rewrite ``path`` as ``./...`` when it sits under ``cwd``."""
    if not cwd:
        return path
    prefix = cwd if cwd.endswith("/") else f"{cwd}/"
    if path.startswith(prefix):
        return f"./{path[len(prefix):]}"
    return path


def relativize_paths(value: Any, cwd: Optional[str]) -> Any:
    """Recursively replace the cwd prefix inside strings, lists and dicts.

    Every ``<cwd>/`` occurrence becomes ``./``, then any remaining bare
    ``<cwd>`` becomes ``.``, but only where the cwd ends at a path boundary,
    so ``/a/bc`` is left alone for cwd ``/a/b``.
    """
    if not cwd:
        return value

    prefix = cwd if cwd.endswith("/") else f"{cwd}/"
    bare = prefix[:-1]
    bare_pattern = re.compile(re.escape(bare) + r"(?![\w.\-])") if bare else None

    def process(v: Any) -> Any:
        if isinstance(v, str):
            if prefix in v:
                v = v.replace(prefix, "./")
            if bare_pattern is not None and bare in v:
                v = bare_pattern.sub(".", v)
            return v
        if isinstance(v, list):
            return [process(item) for item in v]
        if isinstance(v, dict):
            return {k: process(item) for k, item in v.items()}
        return v

    return process(value)


def relativize_path(target: str, cwd: str) -> str:
    """Express ``target`` relative to ``cwd`` with a leading ``./``.

    Relative targets are only prefixed; absolute targets outside ``cwd`` are
    returned unchanged.
    """
    if not target:
        return target
    normalized = target.replace("\\", "/")
    if not os.path.isabs(target):
        if normalized in (".", "./"):
            return "."
        if normalized.startswith("./") or normalized.startswith("../"):
            return normalized
        return f"./{normalized}"

    try:
        relative = os.path.relpath(target, cwd).replace("\\", "/")
    except ValueError:
        return target
    if relative.startswith("..") or os.path.isabs(relative):
        return target
    if relative in ("", "."):
        return "."
    return f"./{relative}"


def format_cwd_with_tilde(absolute_path: str) -> str:
    """Replace the home directory prefix with ``~``."""
    home = str(Path.home())
    if home and home != "/" and (absolute_path == home or absolute_path.startswith(f"{home}/")):
        return "~" + absolute_path[len(home):]
    return HOME_DIR_PATTERN.sub("~", absolute_path, count=1)


def normalize_relative_cwd(relative_cwd: Optional[str]) -> str:
    """Represent the repository root as an empty string."""
    if relative_cwd is None or relative_cwd == ".":
        return ""
    return relative_cwd
