from __future__ import annotations

import os
import tempfile
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Deque, Iterator, List, Optional, Tuple

from .constants import DEFAULT_CIPHER
from .container import ContainerWriter, create_container
from .envelope import KeyLike, encrypt, nonce_size_for
from .errors import ContainerOpenError, SourceNotFoundError, SourceUnreadableError
from .fsutil import LocalFS
from .pathutil import join_segments


ProgressFn = Callable[[str, str], None]


@dataclass
class PlannedEntry:
    segments: Tuple[str, ...]
    fs_path: str
    is_dir: bool
    mode: int
    size: int = 0
    mtime: Optional[float] = None

    @property
    def name(self) -> str:
        return join_segments(self.segments)


@dataclass
class ArchiveReport:
    destination: str
    files: int = 0
    directories: int = 0
    plaintext_bytes: int = 0


def root_name(source: str, fs=None) -> str:
    fs = fs or LocalFS()
    name = fs.basename(source)
    if name in ("", ".", ".."):
        name = fs.basename(fs.realpath(source))
    if not name or name in (".", ".."):
        raise SourceUnreadableError(f"Cannot derive an entry name for '{source}'")
    return name


def walk_source(source: str, fs=None) -> List[PlannedEntry]:
    """Map the subtree at ``source`` onto container entries, in write order.

    The first segment of every entry is the base name of ``source``. Children
    are visited in lexicographic order so the same tree always produces the
    same entry list. Symlinks are followed; a link back to an ancestor
    directory is an error rather than an endless walk.

    Raises:
        SourceNotFoundError: If ``source`` does not exist.
        SourceUnreadableError: If any path cannot be stat'ed or listed, or is
            neither a regular file nor a directory.
    """
    fs = fs or LocalFS()
    if not fs.exists(source):
        raise SourceNotFoundError(f"Source path does not exist: '{source}'")

    plan: List[PlannedEntry] = []
    stack = [(source, (root_name(source, fs),), frozenset())]
    while stack:
        path, segments, ancestors = stack.pop()
        try:
            st = fs.stat(path)
        except OSError as exc:
            raise SourceUnreadableError(f"Cannot access '{path}': {exc}") from exc

        if st.is_dir:
            real = fs.realpath(path)
            if real in ancestors:
                raise SourceUnreadableError(f"Directory cycle through symlink at '{path}'")
            plan.append(PlannedEntry(segments, path, True, st.mode, mtime=st.mtime))
            try:
                names = sorted(fs.listdir(path))
            except OSError as exc:
                raise SourceUnreadableError(f"Cannot list directory '{path}': {exc}") from exc
            inner = ancestors | {real}
            # Reversed so the stack pops children in sorted order
            for name in reversed(names):
                stack.append((fs.join(path, name), segments + (name,), inner))
        elif st.is_file:
            plan.append(PlannedEntry(segments, path, False, st.mode, size=st.size, mtime=st.mtime))
        else:
            raise SourceUnreadableError(f"Not a regular file or directory: '{path}'")
    return plan


class ArchiveSession:
    """Owns the open container writer and the key for one archive run."""

    def __init__(self, writer: ContainerWriter, key: KeyLike, cipher: str, fs, progress: Optional[ProgressFn] = None):
        self.writer = writer
        self.key = key
        self.cipher = cipher
        self.fs = fs
        self.progress = progress
        self.report = ArchiveReport(destination=writer.path)

    def seal_file(self, entry: PlannedEntry) -> Tuple[int, bytes]:
        try:
            data = self.fs.read_bytes(entry.fs_path)
        except OSError as exc:
            raise SourceUnreadableError(f"Cannot read '{entry.fs_path}': {exc}") from exc
        return len(data), encrypt(data, self.key, self.cipher)

    def write(self, entry: PlannedEntry, sealed: Optional[Tuple[int, bytes]]) -> None:
        if entry.is_dir:
            self.writer.add_directory(entry.segments, entry.mode, mtime=entry.mtime)
            self.report.directories += 1
            if self.progress:
                self.progress("dir", entry.name)
            return
        plain_len, payload = sealed
        with self.writer.new_entry(entry.segments, entry.mode, mtime=entry.mtime, size_hint=len(payload)) as sink:
            sink.write(payload)
        self.report.files += 1
        self.report.plaintext_bytes += plain_len
        if self.progress:
            self.progress("file", entry.name)

    def iter_sealed(self, plan: List[PlannedEntry], jobs: int) -> Iterator[Tuple[PlannedEntry, Optional[Tuple[int, bytes]]]]:
        """Yield plan entries with their sealed payloads, in plan order.

        With ``jobs > 1`` files are encrypted on a thread pool, at most
        ``2 * jobs`` ahead of the writer, which bounds buffered plaintext.
        """
        if jobs <= 1:
            for entry in plan:
                yield entry, (None if entry.is_dir else self.seal_file(entry))
            return
        pending: Deque[Tuple[PlannedEntry, Optional[Future]]] = deque()
        it = iter(plan)
        with ThreadPoolExecutor(max_workers=jobs) as ex:
            while True:
                while len(pending) < 2 * jobs:
                    entry = next(it, None)
                    if entry is None:
                        break
                    pending.append((entry, None if entry.is_dir else ex.submit(self.seal_file, entry)))
                if not pending:
                    return
                entry, fut = pending.popleft()
                try:
                    sealed = fut.result() if fut is not None else None
                except BaseException:
                    for _, other in pending:
                        if other is not None:
                            other.cancel()
                    raise
                yield entry, sealed


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def archive(
    source: str,
    destination: str,
    key: KeyLike,
    *,
    cipher: str = DEFAULT_CIPHER,
    jobs: int = 1,
    fs=None,
    progress: Optional[ProgressFn] = None,
) -> ArchiveReport:
    """Encrypt every file under ``source`` into a new container at ``destination``.

    The container is assembled in a temporary file next to ``destination``
    and renamed into place only when complete. On any error the temporary
    file is removed and the exception propagates, so ``destination`` never
    holds a partial container.

    Args:
        source: File or directory to store.
        destination: Output container path (overwritten on success).
        key: 32-byte key from :func:`vaultzip.kdf.derive_key`.
        cipher: AEAD cipher name.
        jobs: Worker threads used to encrypt files.
        fs: Filesystem object for reading ``source``; defaults to :class:`LocalFS`.
        progress: Optional ``progress(kind, entry_name)`` callback.

    Raises:
        SourceNotFoundError, SourceUnreadableError, CipherInitError,
        ContainerOpenError, OSError
    """
    fs = fs or LocalFS()
    nonce_size_for(cipher)  # reject an unknown cipher before touching the disk
    plan = walk_source(source, fs)

    dest_dir = os.path.dirname(os.path.abspath(destination))
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".vaultzip-", suffix=".partial", dir=dest_dir)
    except OSError as exc:
        raise ContainerOpenError(f"Cannot create container in '{dest_dir}': {exc}") from exc
    os.close(fd)

    committed = False
    try:
        with create_container(tmp_path, cipher=cipher) as writer:
            session = ArchiveSession(writer, key, cipher, fs, progress)
            for entry, sealed in session.iter_sealed(plan, jobs):
                session.write(entry, sealed)
        os.replace(tmp_path, destination)
        committed = True
    finally:
        if not committed:
            _discard(tmp_path)
    session.report.destination = destination
    return session.report


__all__ = [
    "PlannedEntry",
    "ArchiveReport",
    "ArchiveSession",
    "walk_source",
    "root_name",
    "archive",
]
