"""Environment and dependency checks for compilemw."""

from __future__ import annotations

import shutil
import subprocess
import sys
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import Iterable

from compilemw.backends.external import ExternalBackend
from compilemw.backends.registry import BackendRegistry

MIN_PYTHON = (3, 11)
PYTHON_DEPENDENCIES = ("aiofiles", "jsonschema", "jinja2", "markdown", "starlette")


@dataclass(frozen=True)
class CheckResult:
    """Result of a single doctor check."""

    name: str
    status: str
    detail: str


def _status(name: str, status: str, detail: str) -> CheckResult:
    """Helper to build a CheckResult."""
    return CheckResult(name=name, status=status, detail=detail)


def check_python_version() -> CheckResult:
    """Verify the running Python meets the minimum version."""
    if sys.version_info < MIN_PYTHON:
        return _status(
            "python",
            "error",
            f"Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ required",
        )
    return _status("python", "ok", f"{sys.version_info.major}.{sys.version_info.minor}")


def check_python_deps(names: Iterable[str] = PYTHON_DEPENDENCIES) -> list[CheckResult]:
    """Verify that key Python dependencies are installed."""
    results = []
    for name in names:
        try:
            results.append(_status(name, "ok", metadata.version(name)))
        except metadata.PackageNotFoundError:
            results.append(_status(name, "error", "not installed"))
    return results


def check_command(name: str, command: list[str] | None, *, probe: str = "--version") -> CheckResult:
    """Probe an external command for availability and basic responsiveness."""
    if not command:
        return _status(name, "warn", "not configured")
    binary = command[0]
    if Path(binary).exists() or shutil.which(binary):
        try:
            result = subprocess.run(
                [binary, probe],
                capture_output=True,
                text=True,
                check=False,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            return _status(name, "error", str(exc))
        if result.returncode == 0:
            first_line = (result.stdout or result.stderr).strip().splitlines()
            return _status(name, "ok", first_line[0] if first_line else f"responded to {probe}")
        return _status(name, "warn", f"non-zero exit: {result.returncode}")
    return _status(name, "error", "command not found")


def run_doctor(registry: BackendRegistry, enabled: Iterable[str] | None = None) -> list[CheckResult]:
    """Run environment checks for the enabled (or all) backends."""
    results = [check_python_version(), *check_python_deps()]
    backend_ids = list(enabled) if enabled is not None else registry.ids()
    seen: set[str] = set()
    pending = list(backend_ids)
    while pending:
        backend_id = pending.pop(0)
        if backend_id in seen:
            continue
        seen.add(backend_id)
        backend = registry.lookup(backend_id)
        if backend is None:
            results.append(_status(backend_id, "error", "backend not registered"))
            continue
        wrapped = backend.spec().wraps
        if wrapped:
            pending.append(wrapped)
        if isinstance(backend, ExternalBackend):
            results.append(check_command(backend_id, list(backend.command)))
        else:
            results.append(_status(backend_id, "ok", "built-in"))
    return results
