"""On-demand, cache-aware source compilation middleware."""

from __future__ import annotations

__version__ = "0.1.0"

from compilemw.backends import BackendRegistry, BackendSpec, ExternalBackend, default_registry  # noqa: E402
from compilemw.dispatcher import RequestDispatcher  # noqa: E402
from compilemw.middleware import CompilerMiddleware, Responder, setup  # noqa: E402
from compilemw.settings import CompilerSettings, load_settings, normalize_settings  # noqa: E402

__all__ = [
    "BackendRegistry",
    "BackendSpec",
    "CompilerMiddleware",
    "CompilerSettings",
    "ExternalBackend",
    "RequestDispatcher",
    "Responder",
    "default_registry",
    "load_settings",
    "normalize_settings",
    "setup",
]
