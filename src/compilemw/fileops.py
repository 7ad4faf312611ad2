"""Non-blocking filesystem helpers used by the compile pipeline."""

from __future__ import annotations

import errno
import os
import stat
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os

DIR_MODE = 0o755


@dataclass(frozen=True)
class FileMeta:
    """Filesystem metadata captured for one side of an artifact."""

    path: Path
    size: int
    mtime: float
    ctime: float
    is_file: bool = True

    @classmethod
    def from_stat(cls, path: Path, result: os.stat_result) -> "FileMeta":
        return cls(
            path=path,
            size=result.st_size,
            mtime=result.st_mtime,
            ctime=result.st_ctime,
            is_file=stat.S_ISREG(result.st_mode),
        )


async def stat_or_none(path: Path) -> FileMeta | None:
    """Return metadata for a path, or None when it does not exist.

    Paths the OS cannot represent (e.g. embedded NUL bytes) do not exist.
    """
    try:
        result = await aiofiles.os.stat(path)
    except (FileNotFoundError, NotADirectoryError, ValueError):
        return None
    return FileMeta.from_stat(path, result)


async def ensure_dir(path: Path, mode: int = DIR_MODE) -> None:
    """Create a directory and all missing ancestors, idempotently."""
    try:
        await aiofiles.os.makedirs(path, mode=mode, exist_ok=True)
    except FileExistsError:
        if not await aiofiles.os.path.isdir(path):
            raise


async def read_text(path: Path) -> str:
    """Read a UTF-8 text file."""
    async with aiofiles.open(path, "r", encoding="utf-8") as handle:
        return await handle.read()


async def write_text(path: Path, data: str) -> None:
    """Write a UTF-8 text file, replacing any existing content."""
    async with aiofiles.open(path, "w", encoding="utf-8") as handle:
        await handle.write(data)


async def remove(path: Path) -> None:
    """Delete a file, tolerating a concurrent removal."""
    try:
        await aiofiles.os.remove(path)
    except OSError as exc:
        if exc.errno != errno.ENOENT:
            raise
