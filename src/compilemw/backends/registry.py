"""Backend registry for named compilers."""

from __future__ import annotations

import logging
from importlib import metadata
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, cast

from compilemw.backends.base import Backend, compile_capability
from compilemw.backends.builtin import builtin_backends
from compilemw.backends.external import external_backend_from_config
from compilemw.errors import ConfigurationError

if TYPE_CHECKING:
    from compilemw.settings import CompilerSettings

BackendFactory = Callable[[], Backend]
BACKEND_ENTRYPOINT_GROUP = "compilemw.backends"

LOGGER = logging.getLogger(__name__)


def _backend_name(backend: object) -> str:
    return type(backend).__name__


class BackendRegistry:
    """Table of backends keyed by id; populated once, then read-only."""

    def __init__(self, backends: Iterable[Backend] = ()) -> None:
        self._backends: dict[str, Backend] = {}
        for backend in backends:
            self.register(backend)

    def register(self, backend: Backend) -> Backend:
        """Register a backend, rejecting conflicting ids."""
        spec_method = getattr(backend, "spec", None)
        spec = spec_method() if callable(spec_method) else None
        backend_id = getattr(spec, "id", None)
        name = _backend_name(backend)
        if not backend_id:
            raise ConfigurationError(f"Backend {name} must have a valid id (not {backend_id!r})!")
        existing = self._backends.get(backend_id)
        if existing is not None:
            if existing is backend or existing == backend:
                return existing
            raise ConfigurationError(
                f"Backend id collision ({backend_id!r}): new={name} is not "
                f"old={_backend_name(existing)}!"
            )
        if compile_capability(backend) is None:
            raise ConfigurationError(f"Backend {name} missing a compile/compile_sync method!")
        self._backends[backend_id] = backend
        return backend

    def lookup(self, backend_id: str) -> Backend | None:
        """Return the backend registered under ``backend_id``."""
        return self._backends.get(backend_id)

    def ids(self) -> list[str]:
        return list(self._backends)

    def __contains__(self, backend_id: object) -> bool:
        return backend_id in self._backends

    def __iter__(self) -> Iterator[Backend]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def check_wraps(self, enabled: Iterable[str]) -> None:
        """Reject wrap chains that are cyclic or reference unknown ids."""
        for backend_id in enabled:
            seen = [backend_id]
            backend = self.lookup(backend_id)
            while backend is not None:
                wrapped = backend.spec().wraps
                if not wrapped:
                    break
                if wrapped in seen:
                    chain = " -> ".join([*seen, wrapped])
                    raise ConfigurationError(f"Backend wrap cycle: {chain}")
                if wrapped not in self._backends:
                    raise ConfigurationError(
                        f"Backend {backend.spec().id!r} wraps unknown backend {wrapped!r}"
                    )
                seen.append(wrapped)
                backend = self.lookup(wrapped)


def _load_backend_entrypoints() -> dict[str, BackendFactory]:
    """Load backend factories from package entrypoints."""
    factories: dict[str, BackendFactory] = {}
    try:
        entry_points = metadata.entry_points(group=BACKEND_ENTRYPOINT_GROUP)
    except Exception as exc:  # pragma: no cover - entrypoint discovery failures are rare
        LOGGER.warning("Failed to read backend entrypoints: %s", exc)
        return factories
    for entry_point in entry_points:
        try:
            candidate = entry_point.load()
        except Exception as exc:
            LOGGER.warning("Failed to load backend entrypoint '%s': %s", entry_point.name, exc)
            continue
        if not callable(candidate):
            LOGGER.warning("Backend entrypoint '%s' is not callable.", entry_point.name)
            continue
        factories[entry_point.name] = cast(BackendFactory, candidate)
    return factories


def default_registry(
    settings: "CompilerSettings | None" = None,
    custom: Iterable[Backend] = (),
) -> BackendRegistry:
    """Build a registry of built-in, entrypoint, configured and custom backends."""
    registry = BackendRegistry(builtin_backends())
    for name, factory in _load_backend_entrypoints().items():
        if name in registry:
            LOGGER.warning("Backend '%s' already registered; skipping entrypoint.", name)
            continue
        try:
            backend = factory()
        except Exception as exc:
            LOGGER.warning("Skipping backend '%s' because it failed to initialize: %s", name, exc)
            continue
        registry.register(backend)
    if settings is not None:
        for backend_id, entry in settings.backends.items():
            registry.register(external_backend_from_config(backend_id, entry))
    for backend in custom:
        registry.register(backend)
    return registry
