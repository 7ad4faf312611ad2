"""Run enabled backends, in order, against one incoming request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from compilemw.backends.base import Artifact
from compilemw.backends.registry import BackendRegistry
from compilemw.errors import BackendCompileError
from compilemw.paths import normalize_request_path, request_path
from compilemw.pipeline import CompilePipeline, Outcome, PipelineResult, PipelineState
from compilemw.settings import CompilerSettings

LOGGER = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Per-request state; never shared between requests."""

    method: str
    url: str
    path: str
    settings: CompilerSettings
    matches: int = 0
    backend_id: str | None = None


@dataclass
class DispatchResult:
    """Summary of a dispatch over the enabled backends."""

    path: str | None
    passthrough: bool = False
    results: list[PipelineResult] = field(default_factory=list)

    @property
    def matches(self) -> int:
        """Number of backends that produced output."""
        return sum(1 for result in self.results if result.produced)

    @property
    def success(self) -> bool:
        return self.matches > 0

    @property
    def errors(self) -> list[PipelineResult]:
        return [result for result in self.results if result.failed]


class RequestDispatcher:
    """Try each enabled backend; stop after the first success unless cascading."""

    def __init__(self, settings: CompilerSettings, registry: BackendRegistry) -> None:
        self.settings = settings
        self.registry = registry
        registry.check_wraps(settings.enabled)
        self.pipeline = CompilePipeline(registry, settings)

    def eligible(self, method: str, url: str) -> bool:
        """Return True when the method is allowed and the URL is not ignored."""
        if method.upper() not in self.settings.allowed_methods:
            return False
        ignore = self.settings.ignore
        return ignore is None or ignore.search(url) is None

    def context_for(self, method: str, url: str) -> RequestContext:
        path = normalize_request_path(
            request_path(url),
            mount=self.settings.mount,
            resolve_index=self.settings.resolve_index,
        )
        return RequestContext(method=method.upper(), url=url, path=path, settings=self.settings)

    async def handle(
        self,
        method: str,
        url: str,
        *,
        options: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> DispatchResult:
        """Run the enabled backends for a request; never raises backend errors.

        ``options`` maps backend ids to per-call option overrides.
        """
        if not self.eligible(method, url):
            return DispatchResult(path=None, passthrough=True)
        context = self.context_for(method, url)
        outcome = DispatchResult(path=context.path)
        LOGGER.debug("Looking up compilers for '%s'...", context.path)
        for index, backend_id in enumerate(self.settings.enabled):
            if context.matches and not self.settings.cascade:
                break
            backend = self.registry.lookup(backend_id)
            if backend is None:
                LOGGER.debug("(%d) Unknown backend '%s'; skipping", index, backend_id)
                continue
            context.backend_id = backend_id
            LOGGER.debug("(%d) Checking '%s'...", index, backend_id)
            overrides = (options or {}).get(backend_id)
            result = await self._run_backend(backend_id, backend, context, overrides)
            outcome.results.append(result)
            if result.produced:
                context.matches += 1
            LOGGER.debug(
                "Completed '%s'! (outcome=%s) --> matches=%d",
                backend_id,
                result.outcome.value,
                context.matches,
            )
        context.backend_id = None
        LOGGER.debug("Done! (success=%s)", bool(context.matches))
        return outcome

    async def _run_backend(
        self,
        backend_id: str,
        backend: Any,
        context: RequestContext,
        overrides: Mapping[str, Any] | None,
    ) -> PipelineResult:
        try:
            return await self.pipeline.run(backend, context.path, overrides=overrides)
        except Exception as exc:
            LOGGER.exception(
                "Caught error from backend",
                extra={"backend": backend_id, "path": context.path},
            )
            error = BackendCompileError(str(exc), backend=backend_id, path=context.path)
            return PipelineResult(
                backend_id=backend_id,
                outcome=Outcome.FAILED,
                state=PipelineState.MATCHING,
                artifact=Artifact(request_path=context.path),
                error=error,
            )
