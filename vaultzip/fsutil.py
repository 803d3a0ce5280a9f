from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class FileStat:
    is_dir: bool
    is_file: bool
    mode: int
    size: int = 0
    mtime: Optional[float] = None


class LocalFS:
    """The filesystem operations the archiver and extractor rely on.

    Everything raises :class:`OSError` on failure. Any object with the same
    methods can stand in for it (tests use an in-memory tree).
    """

    def stat(self, path: str) -> FileStat:
        # Follows symlinks: a link is archived as whatever it points to
        st = os.stat(path)
        return FileStat(
            is_dir=stat.S_ISDIR(st.st_mode),
            is_file=stat.S_ISREG(st.st_mode),
            mode=st.st_mode & 0o7777,
            size=st.st_size,
            mtime=st.st_mtime,
        )

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def listdir(self, path: str) -> List[str]:
        return os.listdir(path)

    def realpath(self, path: str) -> str:
        return os.path.realpath(path)

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as fh:
            return fh.read()

    def makedirs(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def chmod(self, path: str, mode: int) -> None:
        os.chmod(path, mode)

    def write_bytes(self, path: str, data: bytes, mode: int) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        # Explicit chmod so the umask does not alter restored bits
        os.chmod(path, mode)

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    def basename(self, path: str) -> str:
        return os.path.basename(os.path.normpath(path))

    def dirname(self, path: str) -> str:
        return os.path.dirname(path)
