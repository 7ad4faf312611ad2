"""Shared backend types and protocol for compilers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Protocol

from compilemw.fileops import FileMeta

#: Matches ``name.js``, ``name.min.js`` and ``name.mod.js`` requests.
DEFAULT_MATCH = r"(?:\.mod)?(\.min)?\.js$"

CompileFunction = Callable[[str, Mapping[str, Any]], "str | Awaitable[str]"]


def compile_pattern(pattern: str | re.Pattern[str]) -> re.Pattern[str]:
    """Compile a filename match rule (case-insensitive)."""
    if isinstance(pattern, re.Pattern):
        return pattern
    return re.compile(pattern, re.IGNORECASE)


@dataclass(frozen=True)
class BackendSpec:
    """Describe how a backend maps request paths onto source files."""

    id: str
    ext: str
    match: re.Pattern[str] = field(default_factory=lambda: compile_pattern(DEFAULT_MATCH))
    dest_ext: str | None = None
    wraps: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Artifact:
    """Source/destination pair resolved for one backend attempt."""

    request_path: str
    source_path: Path | None = None
    destination_root: Path | None = None
    destination_path: Path | None = None
    source_meta: FileMeta | None = None
    dest_meta: FileMeta | None = None
    stale: bool | None = None


class Backend(Protocol):
    """Protocol implemented by compiler backends.

    A backend also provides exactly one compile capability: a synchronous
    ``compile_sync(text, options) -> str`` or a coroutine
    ``compile(text, options) -> str``. It may define
    ``resolve_options(options, artifact, settings) -> dict`` to compute options from
    the merged layers and the resolved artifact.
    """

    def spec(self) -> BackendSpec:
        ...


def compile_capability(backend: object) -> CompileFunction | None:
    """Return the backend's compile callable, preferring ``compile``."""
    for name in ("compile", "compile_sync"):
        function = getattr(backend, name, None)
        if callable(function):
            return function
    return None
