"""Map request paths onto source files across configured roots."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from compilemw.backends.base import BackendSpec
from compilemw.errors import SourceNotFound, StalenessCheckError
from compilemw.fileops import FileMeta, stat_or_none
from compilemw.paths import escapes_root, join_below

LOGGER = logging.getLogger(__name__)

Candidate = tuple[Path, Path]


def matches(spec: BackendSpec, source_root: Path, request_path: str) -> Path | None:
    """Return the candidate source path for a request, or None.

    The first match of the backend's rule is replaced by its source
    extension; the result is placed below ``source_root``.
    """
    if escapes_root(request_path) or not spec.match.search(request_path):
        return None
    return join_below(source_root, spec.match.sub(spec.ext, request_path, count=1))


def resolve_across_roots(
    spec: BackendSpec,
    roots: Sequence[tuple[Path, Path]],
    request_path: str,
) -> list[Candidate]:
    """Return ``(candidate_source, destination_root)`` pairs in root order."""
    candidates: list[Candidate] = []
    for source_root, destination_root in roots:
        candidate = matches(spec, source_root, request_path)
        if candidate is not None:
            candidates.append((candidate, destination_root))
    return candidates


async def validate(candidates: Sequence[Candidate]) -> tuple[Path, Path, FileMeta]:
    """Return the first candidate whose source file exists."""
    for source_path, destination_root in candidates:
        try:
            meta = await stat_or_none(source_path)
        except OSError as exc:
            raise StalenessCheckError(f"Unable to stat source {source_path}: {exc}") from exc
        if meta is not None and meta.is_file:
            return source_path, destination_root, meta
        LOGGER.debug("No source at %s", source_path)
    raise SourceNotFound("No matching sources.")


def lookup_destination(spec: BackendSpec, destination_root: Path, request_path: str) -> Path:
    """Return the destination path for a request below ``destination_root``."""
    if spec.dest_ext is not None:
        request_path = spec.match.sub(spec.dest_ext, request_path, count=1)
    return join_below(destination_root, request_path)
