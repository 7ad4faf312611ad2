"""Error taxonomy for the compile middleware."""

from __future__ import annotations


class CompileMiddlewareError(Exception):
    """Base class for compile middleware errors."""

    #: Soft errors end a backend's attempt without counting as a failure.
    soft = False

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend
        self.path = path

    def __str__(self) -> str:
        context = [item for item in (self.backend, self.path) if item]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigurationError(CompileMiddlewareError):
    """Raised for invalid settings or backend registrations."""


class NoMatch(CompileMiddlewareError):
    """Raised when a request is not eligible for any backend."""

    soft = True


class SourceNotFound(CompileMiddlewareError):
    """Raised when no source exists across the configured roots."""

    soft = True


class StalenessCheckError(CompileMiddlewareError):
    """Raised when file metadata cannot be read or an expired artifact removed."""


class SourceVanished(StalenessCheckError):
    """Raised when a validated source has no metadata at staleness time."""


class SourceReadError(CompileMiddlewareError):
    """Raised when a source file cannot be read."""


class BackendCompileError(CompileMiddlewareError):
    """Raised when a backend reports a compile failure."""


class BackendExecutionError(BackendCompileError):
    """Raised when an external compiler exits non-zero or times out."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        path: str | None = None,
        returncode: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message, backend=backend, path=path)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out


class WriteError(CompileMiddlewareError):
    """Raised when the destination directory or artifact cannot be written."""
