from __future__ import annotations

"""Thin adapter over the standard ZIP format.

The core only needs: create a container, add directory and file entries with
permission bits, close; open a container, iterate its entries in stored
order, read an entry's bytes, close. Everything else (central directory,
CRCs, ZIP64) is left to :mod:`zipfile`.
"""

import json
import stat
import time
import zipfile
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, Optional, Sequence, Tuple

from .constants import (
    CONTAINER_FORMAT,
    CONTAINER_VERSION,
    DEFAULT_CIPHER,
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
)
from .errors import ContainerOpenError, EntryCorruptError
from .pathutil import join_segments, split_segments


_UNIX_SYSTEM = 3
_MSDOS_DIR_ATTR = 0x10
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def _date_time(mtime: Optional[float]) -> Tuple[int, int, int, int, int, int]:
    t = time.localtime(mtime if mtime is not None else time.time())[:6]
    # ZIP timestamps cannot predate 1980
    return max(t, _ZIP_EPOCH)


def build_marker(cipher: str) -> bytes:
    return json.dumps(
        {"format": CONTAINER_FORMAT, "version": CONTAINER_VERSION, "cipher": cipher},
        sort_keys=True,
    ).encode("utf-8")


def parse_marker(comment: bytes) -> Dict[str, object]:
    """Decode the container comment; foreign or absent comments give ``{}``."""
    if not comment:
        return {}
    try:
        data = json.loads(comment.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return {}
    if not isinstance(data, dict) or data.get("format") != CONTAINER_FORMAT:
        return {}
    return data


@dataclass
class ContainerEntry:
    name: str
    path: Tuple[str, ...]
    is_dir: bool
    mode: int
    size: int
    date_time: Tuple[int, int, int, int, int, int]
    _zf: zipfile.ZipFile
    _info: zipfile.ZipInfo

    def open(self) -> BinaryIO:
        try:
            return self._zf.open(self._info, "r")
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as exc:
            raise EntryCorruptError(f"Cannot read entry '{self.name}': {exc}") from exc

    def read(self) -> bytes:
        # CRC is checked when the stream is exhausted
        try:
            with self.open() as fh:
                return fh.read()
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise EntryCorruptError(f"Cannot read entry '{self.name}': {exc}") from exc


class ContainerWriter:
    """Writes a ZIP container; one entry stream may be open at a time."""

    def __init__(self, path: str, cipher: str = DEFAULT_CIPHER):
        self.path = path
        self.cipher = cipher
        self.zf: Optional[zipfile.ZipFile] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.zf is not None:
            return
        try:
            self.zf = zipfile.ZipFile(self.path, "w", compression=zipfile.ZIP_STORED)
        except OSError as exc:
            raise ContainerOpenError(f"Cannot create container '{self.path}': {exc}") from exc
        self.zf.comment = build_marker(self.cipher)

    def close(self):
        if self.zf is not None:
            try:
                self.zf.close()
            finally:
                self.zf = None

    def _info(self, name: str, mode: int, file_type: int, mtime: Optional[float]) -> zipfile.ZipInfo:
        zi = zipfile.ZipInfo(name, date_time=_date_time(mtime))
        zi.create_system = _UNIX_SYSTEM
        zi.compress_type = zipfile.ZIP_STORED
        zi.external_attr = (file_type | (mode & 0o7777)) << 16
        return zi

    def add_directory(self, segments: Sequence[str], mode: int, *, mtime: Optional[float] = None) -> None:
        """Record a directory entry so empty directories survive a round trip."""
        if self.zf is None:
            raise RuntimeError("Container not open")
        zi = self._info(join_segments(segments, is_dir=True), mode, stat.S_IFDIR, mtime)
        zi.external_attr |= _MSDOS_DIR_ATTR
        self.zf.writestr(zi, b"")

    def new_entry(
        self,
        segments: Sequence[str],
        mode: int,
        *,
        mtime: Optional[float] = None,
        size_hint: int = 0,
    ) -> BinaryIO:
        """Return a byte sink for a new file entry; close it before the next entry."""
        if self.zf is None:
            raise RuntimeError("Container not open")
        zi = self._info(join_segments(segments), mode, stat.S_IFREG, mtime)
        zi.file_size = size_hint
        return self.zf.open(zi, "w", force_zip64=size_hint > zipfile.ZIP64_LIMIT)


class ContainerReader:
    def __init__(self, path: str):
        self.path = path
        self.zf: Optional[zipfile.ZipFile] = None
        self.metadata: Dict[str, object] = {}

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.zf is not None:
            return
        try:
            self.zf = zipfile.ZipFile(self.path, "r")
        except (zipfile.BadZipFile, OSError, EOFError, ValueError) as exc:
            raise ContainerOpenError(f"Cannot open container '{self.path}': {exc}") from exc
        self.metadata = parse_marker(self.zf.comment)

    def close(self):
        if self.zf is not None:
            self.zf.close()
            self.zf = None

    @property
    def cipher(self) -> Optional[str]:
        value = self.metadata.get("cipher")
        return value if isinstance(value, str) else None

    def entries(self) -> Iterator[ContainerEntry]:
        """Yield entries in stored (central directory) order."""
        if self.zf is None:
            raise RuntimeError("Container not open")
        for zi in self.zf.infolist():
            is_dir = zi.is_dir()
            mode = (zi.external_attr >> 16) & 0o7777
            if not mode:
                mode = DEFAULT_DIR_MODE if is_dir else DEFAULT_FILE_MODE
            yield ContainerEntry(
                name=zi.filename,
                path=split_segments(zi.filename, posix=zi.create_system == _UNIX_SYSTEM),
                is_dir=is_dir,
                mode=mode,
                size=zi.file_size,
                date_time=zi.date_time,
                _zf=self.zf,
                _info=zi,
            )


def create_container(path: str, cipher: str = DEFAULT_CIPHER) -> ContainerWriter:
    w = ContainerWriter(path, cipher=cipher)
    w.open()
    return w


def open_container(path: str) -> ContainerReader:
    r = ContainerReader(path)
    r.open()
    return r
