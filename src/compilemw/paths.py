"""Path helpers for request normalization and log formatting."""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from urllib.parse import unquote, urlsplit


def expand(*parts: str | os.PathLike[str]) -> Path:
    """Join, expand ``~`` and resolve path parts into an absolute path."""
    joined = os.path.join(*[os.fspath(part) for part in parts])
    return Path(os.path.normpath(joined)).expanduser().resolve()


def request_path(url: str) -> str:
    """Return the decoded path component of a request URL."""
    return unquote(urlsplit(url).path) or "/"


def normalize_request_path(
    path: str,
    *,
    mount: str = "",
    resolve_index: str | None = None,
) -> str:
    """Strip the mount prefix and resolve trailing-slash index files."""
    if mount and path.startswith(mount):
        path = path[len(mount):]
    if not path.startswith("/"):
        path = f"/{path}"
    if resolve_index and path.endswith("/"):
        path = posixpath.join(path, resolve_index)
    return path


def escapes_root(path: str) -> bool:
    """Return True when a request path climbs above its root."""
    depth = 0
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            depth -= 1
            if depth < 0:
                return True
        else:
            depth += 1
    return False


def join_below(root: Path, path: str) -> Path:
    """Join a request path beneath a root directory."""
    return root / posixpath.normpath(path.lstrip("/"))


def common_path(*paths: str | os.PathLike[str]) -> str:
    """Return the shared directory prefix of paths, with a trailing separator."""
    if not paths:
        return ""
    values = [os.fspath(path) for path in paths]
    if len(values) == 1:
        return values[0]
    try:
        prefix = os.path.commonpath(values)
    except ValueError:
        return ""
    if not prefix or prefix == os.sep:
        return prefix
    return prefix + os.sep


def describe_write(source: Path, dest: Path, *, cwd: Path | None = None) -> str:
    """Format a ``src --> dest`` summary factoring out the common prefix."""
    prefix = common_path(source, dest)
    if not prefix or prefix == os.sep:
        return f"{source} --> {dest}"
    shown = prefix
    if cwd is None:
        try:
            cwd = Path.cwd()
        except OSError:
            cwd = None
    if cwd is not None:
        base = str(cwd) + os.sep
        if shown.startswith(base):
            shown = shown[len(base):]
    return f"{shown}{{ {str(source)[len(prefix):]} --> {str(dest)[len(prefix):]} }}"
