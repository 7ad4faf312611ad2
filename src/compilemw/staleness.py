"""Decide whether a destination artifact must be regenerated."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from compilemw.errors import SourceVanished, StalenessCheckError
from compilemw.fileops import FileMeta, remove

LOGGER = logging.getLogger(__name__)


async def is_stale(
    source_meta: FileMeta | None,
    dest_meta: FileMeta | None,
    dest_path: Path,
    *,
    delta: float = 0.0,
    expires: float | None = None,
    now: float | None = None,
) -> bool:
    """Return True when the destination must be (re)built.

    ``delta`` is a tolerance in seconds added to the destination mtime.
    ``expires`` is a window in milliseconds after the destination's ctime;
    once elapsed, the destination is deleted and rebuilt.
    """
    if source_meta is None:
        raise SourceVanished("Source does not exist?!")
    if dest_meta is None:
        return True
    if expires is not None:
        current = time.time() if now is None else now
        if dest_meta.ctime + expires / 1000.0 <= current:
            LOGGER.debug("Destination %s expired; removing", dest_path)
            try:
                await remove(dest_path)
            except OSError as exc:
                raise StalenessCheckError(
                    f"Unable to remove expired destination {dest_path}: {exc}"
                ) from exc
            return True
    return source_meta.mtime > dest_meta.mtime + delta
