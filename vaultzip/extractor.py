from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .constants import DEFAULT_CIPHER
from .container import ContainerEntry, open_container
from .envelope import KeyLike, decrypt, nonce_size_for
from .errors import AuthenticationFailedError, EntryCorruptError, PathCreationError, PayloadTooShortError, VaultZipError
from .fsutil import LocalFS


ProgressFn = Callable[[str, str], None]


@dataclass
class ExtractReport:
    destination: str
    files: int = 0
    directories: int = 0
    plaintext_bytes: int = 0
    failed: Dict[str, VaultZipError] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


class ExtractSession:
    """Holds the key and destination state for one extract run."""

    def __init__(self, key: KeyLike, cipher: str, root: str, fs, progress: Optional[ProgressFn] = None):
        self.key = key
        self.cipher = cipher
        self.root = root
        self.fs = fs
        self.progress = progress
        self.report = ExtractReport(destination=root)
        # (depth, path, mode) for directories whose bits are applied at the end
        self._dir_modes: List[Tuple[int, str, int]] = []

    def makedirs(self, path: str) -> None:
        try:
            self.fs.makedirs(path)
        except OSError as exc:
            raise PathCreationError(f"Cannot create directory '{path}': {exc}") from exc

    def target(self, entry: ContainerEntry) -> str:
        return self.fs.join(self.root, *entry.path)

    def restore_directory(self, entry: ContainerEntry) -> None:
        dst = self.target(entry)
        self.makedirs(dst)
        self._dir_modes.append((len(entry.path), dst, entry.mode))
        self.report.directories += 1
        if self.progress:
            self.progress("dir", entry.name)

    def restore_file(self, entry: ContainerEntry) -> None:
        dst = self.target(entry)
        self.makedirs(self.fs.dirname(dst))
        plaintext = decrypt(entry.read(), self.key, self.cipher)
        try:
            self.fs.write_bytes(dst, plaintext, entry.mode)
        except OSError as exc:
            raise PathCreationError(f"Cannot write '{dst}': {exc}") from exc
        self.report.files += 1
        self.report.plaintext_bytes += len(plaintext)
        if self.progress:
            self.progress("file", entry.name)

    def apply_directory_modes(self, *, strict: bool) -> None:
        # Deepest first, so a read-only parent is locked only after its children
        for _depth, path, mode in sorted(self._dir_modes, key=lambda d: d[0], reverse=True):
            try:
                self.fs.chmod(path, mode)
            except OSError as exc:
                if strict:
                    raise PathCreationError(f"Cannot set mode on '{path}': {exc}") from exc
        self._dir_modes.clear()


def extract(
    container: str,
    destination_root: str,
    key: KeyLike,
    *,
    cipher: Optional[str] = None,
    keep_going: bool = False,
    fs=None,
    progress: Optional[ProgressFn] = None,
) -> ExtractReport:
    """Decrypt every entry of ``container`` into ``destination_root``.

    Entries are processed in stored order. Extraction is NOT atomic: when an
    entry fails, the entries written before it remain on disk.

    Args:
        container: Path of the container to read.
        destination_root: Directory the stored paths are recreated under.
        key: Key the container was sealed with.
        cipher: AEAD cipher; defaults to the one recorded in the container,
            then to AES-256-GCM.
        keep_going: Record per-entry decryption and integrity failures in
            ``ExtractReport.failed`` and continue instead of aborting.
        fs: Filesystem object for writing; defaults to :class:`LocalFS`.
        progress: Optional ``progress(kind, entry_name)`` callback; kind is
            ``"dir"``, ``"file"`` or ``"failed"``.

    Raises:
        ContainerOpenError: Unreadable or malformed container, or an entry
            path that would escape ``destination_root``.
        PathCreationError: A directory or file could not be created.
        PayloadTooShortError, AuthenticationFailedError, EntryCorruptError: A
            file entry did not decrypt or failed its integrity check (only
            when ``keep_going`` is false).
    """
    fs = fs or LocalFS()
    with open_container(container) as reader:
        chosen = cipher or reader.cipher or DEFAULT_CIPHER
        nonce_size_for(chosen)
        session = ExtractSession(key, chosen, destination_root, fs, progress)
        try:
            session.makedirs(destination_root)
            for entry in reader.entries():
                if entry.is_dir:
                    session.restore_directory(entry)
                    continue
                try:
                    session.restore_file(entry)
                except (PayloadTooShortError, AuthenticationFailedError, EntryCorruptError) as exc:
                    if not keep_going:
                        raise
                    session.report.failed[entry.name] = exc
                    if progress:
                        progress("failed", entry.name)
        except BaseException:
            # Must not replace the error already propagating
            session.apply_directory_modes(strict=False)
            raise
        session.apply_directory_modes(strict=True)
    return session.report


__all__ = [
    "ExtractReport",
    "ExtractSession",
    "extract",
]
