"""Backend adapter that pipes source text through an external compiler."""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

from jsonschema import ValidationError

from compilemw.backends.base import DEFAULT_MATCH, Artifact, BackendSpec, compile_pattern
from compilemw.contracts import validate_backend_declaration
from compilemw.errors import BackendExecutionError, ConfigurationError
from compilemw.subprocess_utils import run_command

if TYPE_CHECKING:
    from compilemw.settings import CompilerSettings

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 3000.0

Preprocess = Callable[[list[str], str, Mapping[str, Any]], Sequence[str]]


@dataclass(frozen=True)
class ExternalBackend:
    """Compile by running ``command`` with the source on stdin.

    Timeouts are in milliseconds. ``preprocess`` may rewrite the command
    line per request, e.g. to add include paths next to the source file.
    """

    backend_id: str
    command: tuple[str, ...]
    ext: str
    match: str | re.Pattern[str] = DEFAULT_MATCH
    dest_ext: str | None = None
    wraps: str | None = None
    timeout: float | None = None
    cwd: str | None = None
    env: Mapping[str, str] | None = None
    defaults: Mapping[str, Any] = field(default_factory=dict)
    preprocess: Preprocess | None = None

    def spec(self) -> BackendSpec:
        """Return backend matching metadata."""
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            dest_ext=self.dest_ext,
            wraps=self.wraps,
            options=self.defaults,
        )

    def resolve_options(
        self,
        options: Mapping[str, Any],
        artifact: Artifact,
        settings: "CompilerSettings",
    ) -> dict[str, Any]:
        """Fill in the timeout, working directory and source filename."""
        resolved = dict(options)
        timeout = resolved.pop("external_timeout", None)
        if timeout is None:
            timeout = resolved.get("timeout")
        if timeout is None:
            timeout = (settings.options.get(self.backend_id) or {}).get("external_timeout")
        if timeout is None:
            timeout = self.timeout
        if timeout is None:
            timeout = settings.external_timeout
        resolved["timeout"] = float(timeout)
        resolved.setdefault("cwd", self.cwd)
        resolved.setdefault("env", dict(self.env) if self.env else None)
        if artifact.source_path is not None:
            resolved.setdefault("filename", str(artifact.source_path))
        return resolved

    async def compile(self, text: str, options: Mapping[str, Any]) -> str:
        """Run the external command and return its standard output."""
        command = list(self.command)
        if self.preprocess is not None:
            command = list(self.preprocess(command, text, options))
        timeout_ms = options.get("timeout")
        if timeout_ms is None:
            timeout_ms = self.timeout if self.timeout is not None else DEFAULT_TIMEOUT_MS
        cwd = options.get("cwd")
        LOGGER.debug("%s", shlex.join(command), extra={"backend": self.backend_id})
        try:
            result = await run_command(
                command,
                input_text=text,
                cwd=Path(cwd) if cwd else None,
                env=options.get("env"),
                timeout=float(timeout_ms) / 1000.0,
            )
        except OSError as exc:
            raise BackendExecutionError(
                f"{self.backend_id} error: unable to run {command[0]}: {exc}",
                backend=self.backend_id,
            ) from exc
        if result.stderr.strip():
            LOGGER.warning("\n%s", result.stderr.rstrip(), extra={"backend": self.backend_id})
        if result.timed_out:
            raise BackendExecutionError(
                f"{self.backend_id} error: timed out after {timeout_ms:g} ms",
                backend=self.backend_id,
                returncode=result.returncode,
                stderr=result.stderr,
                timed_out=True,
            )
        if result.returncode != 0:
            raise BackendExecutionError(
                f"{self.backend_id} error: exited with status {result.returncode}\n"
                f"{result.stderr.strip()}",
                backend=self.backend_id,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout


def normalize_command(value: object) -> tuple[str, ...]:
    """Normalize a command string or argument list into a tuple."""
    if isinstance(value, (list, tuple)):
        command = tuple(str(item) for item in value)
    elif isinstance(value, str):
        command = tuple(shlex.split(value))
    else:
        raise ConfigurationError("Command must be a string or list of strings.")
    if not command:
        raise ConfigurationError("Command is empty.")
    return command


def external_backend_from_config(backend_id: str, entry: Mapping[str, Any]) -> ExternalBackend:
    """Build an ExternalBackend from a ``backends`` settings entry."""
    try:
        validate_backend_declaration(entry)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid backend '{backend_id}': {exc.message}") from exc
    defaults = entry.get("options") or {}
    if not isinstance(defaults, Mapping):
        raise ConfigurationError(f"Options for backend '{backend_id}' must be a mapping.")
    try:
        match = compile_pattern(str(entry.get("match") or DEFAULT_MATCH))
    except re.error as exc:
        raise ConfigurationError(f"Invalid match pattern for backend '{backend_id}': {exc}") from exc
    timeout = entry.get("timeout")
    return ExternalBackend(
        backend_id=backend_id,
        command=normalize_command(entry.get("command")),
        ext=str(entry["ext"]),
        match=match,
        dest_ext=entry.get("dest_ext"),
        wraps=entry.get("wraps"),
        timeout=float(timeout) if timeout is not None else None,
        cwd=entry.get("cwd"),
        env=dict(entry.get("env") or {}) or None,
        defaults=dict(defaults),
    )
