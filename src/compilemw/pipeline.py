"""Per-backend compile lifecycle for one request."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from compilemw import fileops, resolver
from compilemw.backends.base import Artifact, Backend, compile_capability
from compilemw.backends.registry import BackendRegistry
from compilemw.errors import (
    BackendCompileError,
    CompileMiddlewareError,
    NoMatch,
    SourceNotFound,
    SourceReadError,
    StalenessCheckError,
    WriteError,
)
from compilemw.paths import describe_write
from compilemw.settings import CompilerSettings
from compilemw.staleness import is_stale

LOGGER = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Stages of a compile run, entered strictly in this order."""

    MATCHING = "matching"
    VALIDATING_SOURCE = "validating_source"
    RESOLVING_DEST = "resolving_dest"
    ENSURING_DEST_DIR = "ensuring_dest_dir"
    STATTING_DEST = "statting_dest"
    DECIDING_STALENESS = "deciding_staleness"
    READING_SOURCE = "reading_source"
    COMPILING = "compiling"
    WRITING = "writing"
    DONE = "done"


class Outcome(str, Enum):
    """Terminal outcome of a compile run."""

    COMPILED = "compiled"
    SKIPPED = "skipped"
    NO_MATCH = "no_match"
    NO_SOURCE = "no_source"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    """Result of one backend's attempt at a request."""

    backend_id: str
    outcome: Outcome
    state: PipelineState
    artifact: Artifact
    error: CompileMiddlewareError | None = None

    @property
    def produced(self) -> bool:
        """True when the backend wrote a fresh artifact."""
        return self.outcome is Outcome.COMPILED

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED


def _extra(backend_id: str, path: str) -> dict[str, str]:
    return {"backend": backend_id, "path": path}


class _Run:
    """Mutable state of a single pipeline run."""

    def __init__(self, backend_id: str, request_path: str) -> None:
        self.backend_id = backend_id
        self.artifact = Artifact(request_path=request_path)
        self.state = PipelineState.MATCHING

    def enter(self, state: PipelineState) -> None:
        self.state = state
        LOGGER.debug("-> %s", state.value, extra=_extra(self.backend_id, self.artifact.request_path))

    def result(self, outcome: Outcome, error: CompileMiddlewareError | None = None) -> PipelineResult:
        return PipelineResult(
            backend_id=self.backend_id,
            outcome=outcome,
            state=self.state,
            artifact=self.artifact,
            error=error,
        )


class CompilePipeline:
    """Run match -> resolve -> stat -> stale? -> read -> compile -> write."""

    def __init__(self, registry: BackendRegistry, settings: CompilerSettings) -> None:
        self.registry = registry
        self.settings = settings

    def effective_options(
        self,
        backend: Backend,
        artifact: Artifact,
        overrides: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge defaults < ``all`` < per-backend < per-call options (shallow)."""
        spec = backend.spec()
        options: dict[str, Any] = dict(spec.options)
        options.update(self.settings.backend_options(spec.id))
        if overrides:
            options.update(overrides)
        hook = getattr(backend, "resolve_options", None)
        if callable(hook):
            options = dict(hook(options, artifact, self.settings.for_backend(spec.id)))
        return options

    async def compile_text(
        self,
        backend: Backend,
        text: str,
        artifact: Artifact,
        overrides: Mapping[str, Any] | None = None,
        *,
        chain: tuple[str, ...] = (),
    ) -> str:
        """Compile text through the backend, running any wrapped backend first."""
        spec = backend.spec()
        chain = (*chain, spec.id)
        if spec.wraps:
            if spec.wraps in chain:
                raise BackendCompileError(
                    f"Backend wrap cycle: {' -> '.join((*chain, spec.wraps))}",
                    backend=spec.id,
                    path=artifact.request_path,
                )
            wrapped = self.registry.lookup(spec.wraps)
            if wrapped is None:
                raise BackendCompileError(
                    f"Wrapped backend {spec.wraps!r} is not registered",
                    backend=spec.id,
                    path=artifact.request_path,
                )
            LOGGER.debug(
                "compiling through wrapped backend %s",
                spec.wraps,
                extra=_extra(spec.id, artifact.request_path),
            )
            text = await self.compile_text(wrapped, text, artifact, chain=chain)

        function = compile_capability(backend)
        if function is None:
            raise BackendCompileError(
                "No compile function defined!?", backend=spec.id, path=artifact.request_path
            )
        options = self.effective_options(backend, artifact, overrides)
        try:
            result = function(text, options)
            if inspect.isawaitable(result):
                result = await result
        except BackendCompileError as exc:
            exc.backend = exc.backend or spec.id
            exc.path = exc.path or artifact.request_path
            raise
        except Exception as exc:
            raise BackendCompileError(
                f"{spec.id} error: {exc}", backend=spec.id, path=artifact.request_path
            ) from exc
        if isinstance(result, bytes):
            result = result.decode("utf-8")
        if not isinstance(result, str):
            raise BackendCompileError(
                f"{spec.id} returned {type(result).__name__}, expected text",
                backend=spec.id,
                path=artifact.request_path,
            )
        return result

    async def run(
        self,
        backend: Backend,
        request_path: str,
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> PipelineResult:
        """Run the full lifecycle for one backend and return its outcome."""
        spec = backend.spec()
        run = _Run(spec.id, request_path)
        extra = _extra(spec.id, request_path)
        try:
            return await self._advance(run, backend, overrides)
        except CompileMiddlewareError as exc:
            exc.backend = exc.backend or spec.id
            exc.path = exc.path or request_path
            if isinstance(exc, NoMatch):
                LOGGER.debug("%s", exc.message, extra=extra)
                return run.result(Outcome.NO_MATCH, exc)
            if isinstance(exc, SourceNotFound):
                LOGGER.debug("%s", exc.message, extra=extra)
                return run.result(Outcome.NO_SOURCE, exc)
            LOGGER.error("Error: %s", exc.message, extra=extra)
            return run.result(Outcome.FAILED, exc)

    async def _advance(
        self,
        run: _Run,
        backend: Backend,
        overrides: Mapping[str, Any] | None,
    ) -> PipelineResult:
        spec = backend.spec()
        settings = self.settings.for_backend(spec.id)
        artifact = run.artifact
        request_path = artifact.request_path

        run.enter(PipelineState.MATCHING)
        candidates = resolver.resolve_across_roots(spec, settings.roots, request_path)
        if not candidates:
            raise NoMatch("Request path does not match backend.")

        run.enter(PipelineState.VALIDATING_SOURCE)
        source_path, destination_root, source_meta = await resolver.validate(candidates)
        artifact.source_path = source_path
        artifact.destination_root = destination_root
        artifact.source_meta = source_meta

        run.enter(PipelineState.RESOLVING_DEST)
        dest_path = resolver.lookup_destination(spec, destination_root, request_path)
        artifact.destination_path = dest_path

        if settings.create_dirs:
            run.enter(PipelineState.ENSURING_DEST_DIR)
            try:
                await fileops.ensure_dir(dest_path.parent)
            except OSError as exc:
                raise WriteError(f"Unable to create {dest_path.parent}: {exc}") from exc

        run.enter(PipelineState.STATTING_DEST)
        try:
            artifact.dest_meta = await fileops.stat_or_none(dest_path)
        except OSError as exc:
            raise StalenessCheckError(f"Unable to stat destination {dest_path}: {exc}") from exc

        run.enter(PipelineState.DECIDING_STALENESS)
        artifact.stale = await is_stale(
            artifact.source_meta,
            artifact.dest_meta,
            dest_path,
            delta=settings.delta,
            expires=settings.expires,
        )
        if not artifact.stale:
            LOGGER.debug("Source not out of date.", extra=_extra(spec.id, request_path))
            return run.result(Outcome.SKIPPED)

        run.enter(PipelineState.READING_SOURCE)
        try:
            text = await fileops.read_text(source_path)
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceReadError(f"Unable to read {source_path}: {exc}") from exc

        run.enter(PipelineState.COMPILING)
        data = await self.compile_text(backend, text, artifact, overrides)

        run.enter(PipelineState.WRITING)
        if LOGGER.isEnabledFor(logging.INFO):
            LOGGER.info(
                "writing %s",
                describe_write(source_path, dest_path),
                extra=_extra(spec.id, request_path),
            )
        try:
            await fileops.write_text(dest_path, data)
        except OSError as exc:
            raise WriteError(f"Unable to write {dest_path}: {exc}") from exc

        run.enter(PipelineState.DONE)
        LOGGER.debug("Success!", extra=_extra(spec.id, request_path))
        return run.result(Outcome.COMPILED)
