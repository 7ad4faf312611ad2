"""Backend package exports."""

from compilemw.backends.base import Artifact, Backend, BackendSpec
from compilemw.backends.external import ExternalBackend
from compilemw.backends.registry import BackendRegistry, default_registry

__all__ = [
    "Artifact",
    "Backend",
    "BackendRegistry",
    "BackendSpec",
    "ExternalBackend",
    "default_registry",
]
