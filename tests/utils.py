from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from compilemw.backends.base import BackendSpec, compile_pattern
from compilemw.backends.registry import BackendRegistry
from compilemw.settings import CompilerSettings, normalize_settings


@dataclass(frozen=True)
class UpperBackend:
    """Synchronous backend that upper-cases its input."""

    backend_id: str = "upper"
    ext: str = ".src"
    match: str = r"\.out$"
    dest_ext: str | None = None
    wraps: str | None = None

    def spec(self) -> BackendSpec:
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            dest_ext=self.dest_ext,
            wraps=self.wraps,
        )

    def compile_sync(self, text: str, options: Mapping[str, Any]) -> str:
        return text.upper()


@dataclass(frozen=True)
class SuffixBackend:
    """Asynchronous backend that appends its ``suffix`` option."""

    backend_id: str = "suffix"
    ext: str = ".src"
    match: str = r"\.out$"
    wraps: str | None = None

    def spec(self) -> BackendSpec:
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            wraps=self.wraps,
            options={"suffix": "!"},
        )

    async def compile(self, text: str, options: Mapping[str, Any]) -> str:
        await asyncio.sleep(0)
        return f"{text}{options['suffix']}"


@dataclass(frozen=True)
class FailingBackend:
    """Backend whose compile step always raises."""

    backend_id: str = "failing"
    ext: str = ".src"
    match: str = r"\.out$"

    def spec(self) -> BackendSpec:
        return BackendSpec(id=self.backend_id, ext=self.ext, match=compile_pattern(self.match))

    def compile_sync(self, text: str, options: Mapping[str, Any]) -> str:
        raise RuntimeError("syntax error on line 1")


class RecordingBackend:
    """Backend that records the options of every compile call."""

    def __init__(self, backend_id: str = "recording", ext: str = ".src", match: str = r"\.out$"):
        self.backend_id = backend_id
        self.ext = ext
        self.match = match
        self.calls: list[dict[str, Any]] = []

    def spec(self) -> BackendSpec:
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            options={"level": "default"},
        )

    def compile_sync(self, text: str, options: Mapping[str, Any]) -> str:
        self.calls.append(dict(options))
        return text


def make_settings(
    roots: list[tuple[Path, Path]] | Path,
    enabled: list[str],
    **overrides: Any,
) -> CompilerSettings:
    """Build settings for test roots (a single directory serves as src and dest)."""
    if isinstance(roots, Path):
        roots = [(roots, roots)]
    payload: dict[str, Any] = {
        "enabled": enabled,
        "roots": [[str(src), str(dest)] for src, dest in roots],
    }
    payload.update(overrides)
    return normalize_settings(payload)


def make_registry(*backends: Any) -> BackendRegistry:
    return BackendRegistry(backends)


def write_file(path: Path, text: str, *, age: float = 0.0) -> Path:
    """Write ``text`` and backdate its mtime by ``age`` seconds."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if age:
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))
    return path


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
