"""Host entry points: a continuation-style responder and Starlette middleware."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Iterable, Mapping

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from compilemw.backends.base import Backend
from compilemw.backends.registry import BackendRegistry, default_registry
from compilemw.dispatcher import DispatchResult, RequestDispatcher
from compilemw.logging_utils import apply_log_level
from compilemw.settings import CompilerSettings, normalize_settings

LOGGER = logging.getLogger(__name__)

Continuation = Callable[[], Any]


def _request_url(request: Any) -> str:
    url = getattr(request, "url", None)
    if url is None:
        url = getattr(request, "path", "/")
    return str(url)


class Responder:
    """Run the dispatcher for a request, then always invoke the continuation."""

    def __init__(self, dispatcher: RequestDispatcher) -> None:
        self.dispatcher = dispatcher

    @property
    def settings(self) -> CompilerSettings:
        return self.dispatcher.settings

    async def compile(self, method: str, url: str) -> DispatchResult | None:
        """Dispatch a request, logging instead of raising unexpected errors."""
        try:
            return await self.dispatcher.handle(method, url)
        except Exception:
            LOGGER.exception("Caught error while compiling %s", url)
            return None

    async def __call__(self, request: Any, response: Any, call_next: Continuation) -> Any:
        try:
            await self.compile(str(getattr(request, "method", "GET")), _request_url(request))
        finally:
            result = call_next()
        if inspect.isawaitable(result):
            return await result
        return result


def build_responder(
    settings: CompilerSettings | Mapping[str, Any] | None = None,
    *,
    registry: BackendRegistry | None = None,
    custom: Iterable[Backend] = (),
) -> Responder:
    """Normalize settings, build the registry and dispatcher, return a responder."""
    if not isinstance(settings, CompilerSettings):
        settings = normalize_settings(settings)
    apply_log_level(settings.log_level)
    if registry is None:
        registry = default_registry(settings, custom)
    else:
        for backend in custom:
            registry.register(backend)
    LOGGER.debug("compiler.setup() %s", settings.as_dict())
    return Responder(RequestDispatcher(settings, registry))


def setup(
    settings: CompilerSettings | Mapping[str, Any] | None = None,
    *custom: Backend,
) -> Responder:
    """Return a responder for ``settings`` with optional custom backends."""
    return build_responder(settings, custom=custom)


class CompilerMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that compiles stale artifacts before serving."""

    def __init__(
        self,
        app: ASGIApp,
        settings: CompilerSettings | Mapping[str, Any] | None = None,
        *,
        registry: BackendRegistry | None = None,
        custom: Iterable[Backend] = (),
        responder: Responder | None = None,
    ) -> None:
        super().__init__(app)
        self.responder = responder or build_responder(settings, registry=registry, custom=custom)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        await self.responder.compile(request.method, str(request.url))
        return await call_next(request)
