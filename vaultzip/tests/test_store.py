from __future__ import annotations

import os
import stat
import tempfile
import unittest
import zipfile
from pathlib import Path
from typing import Dict, Tuple

from vaultzip.archiver import archive, walk_source
from vaultzip.constants import CIPHER_XCHACHA, TAG_SIZE
from vaultzip.container import ContainerReader
from vaultzip.errors import (
    AuthenticationFailedError,
    CipherInitError,
    ContainerOpenError,
    EntryCorruptError,
    PathCreationError,
    SourceNotFoundError,
    SourceUnreadableError,
    UnsafePathError,
)
from vaultzip.extractor import extract
from vaultzip.kdf import KdfParams, derive_key
from vaultzip.tests.memfs import MemoryFS


def _key(pw: str = "secret"):
    return derive_key(pw, KdfParams(iterations=1000))


def _create_sample_tree(base: Path) -> Path:
    root = base / "project"
    (root / "docs" / "notes").mkdir(parents=True)
    (root / "empty_dir").mkdir()
    (root / "docs" / "readme.txt").write_bytes(b"hello world\n" * 20)
    os.chmod(root / "docs" / "readme.txt", 0o644)
    (root / "docs" / "notes" / "binary.bin").write_bytes(os.urandom(2048))
    os.chmod(root / "docs" / "notes" / "binary.bin", 0o600)
    (root / "docs" / "notes" / "empty.txt").write_bytes(b"")
    (root / "run.sh").write_bytes(b"#!/bin/sh\necho hi\n")
    os.chmod(root / "run.sh", 0o755)
    os.chmod(root / "docs" / "notes", 0o750)
    return root


def _snapshot(root: Path) -> Dict[str, Tuple]:
    """Relative path -> (kind, mode[, content]) for every node under ``root``."""
    snap: Dict[str, Tuple] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for d in dirnames:
            p = Path(dirpath) / d
            snap[str(p.relative_to(root))] = ("dir", stat.S_IMODE(p.stat().st_mode))
        for f in filenames:
            p = Path(dirpath) / f
            snap[str(p.relative_to(root))] = ("file", stat.S_IMODE(p.stat().st_mode), p.read_bytes())
    return snap


def _tamper_entry(src: Path, dst: Path, name: str) -> None:
    """Copy a container, flipping the last stored byte of entry ``name``."""
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dst, "w") as zout:
        zout.comment = zin.comment
        for info in zin.infolist():
            data = zin.read(info.filename)
            if info.filename == name:
                data = data[:-1] + bytes([data[-1] ^ 0x01])
            zout.writestr(info, data)


def _flip_stored_byte(path: Path, name: str, offset: int) -> None:
    """Flip one stored byte of entry ``name`` in place, leaving its CRC stale."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, "rb+") as fh:
        fh.seek(info.header_offset + 26)
        name_len = int.from_bytes(fh.read(2), "little")
        extra_len = int.from_bytes(fh.read(2), "little")
        data_start = info.header_offset + 30 + name_len + extra_len
        pos = data_start + (offset % info.compress_size)
        fh.seek(pos)
        b = fh.read(1)
        fh.seek(pos)
        fh.write(bytes([b[0] ^ 0xFF]))


class ArchiveExtractTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_tree_fidelity(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            out = tmp / "project.zip"
            key = _key()
            report = archive(str(src), str(out), key)
            self.assertEqual(report.files, 4)
            self.assertEqual(report.directories, 4)  # project, docs, docs/notes, empty_dir

            dest = tmp / "restore"
            ex = extract(str(out), str(dest), key)
            self.assertTrue(ex.complete)
            self.assertEqual(ex.files, 4)
            self.assertEqual(_snapshot(dest / "project"), _snapshot(src))
            self.assertEqual(
                stat.S_IMODE((dest / "project" / "docs" / "notes").stat().st_mode), 0o750
            )

        self.run_with_tmpdir(scenario)

    def test_two_file_tree(self):
        def scenario(tmp: Path):
            src = tmp / "data"
            (src / "sub").mkdir(parents=True)
            (src / "a.txt").write_text("x")
            (src / "sub" / "b.txt").write_text("y")
            key = _key()
            archive(str(src), str(tmp / "data.zip"), key)
            extract(str(tmp / "data.zip"), str(tmp / "out"), key)
            self.assertEqual((tmp / "out" / "data" / "a.txt").read_text(), "x")
            self.assertEqual((tmp / "out" / "data" / "sub" / "b.txt").read_text(), "y")

        self.run_with_tmpdir(scenario)

    def test_empty_file(self):
        def scenario(tmp: Path):
            src = tmp / "empty.bin"
            src.write_bytes(b"")
            key = _key()
            archive(str(src), str(tmp / "e.zip"), key)
            with ContainerReader(str(tmp / "e.zip")) as r:
                entries = list(r.entries())
            self.assertEqual([e.name for e in entries], ["empty.bin"])
            self.assertEqual(entries[0].size, 12 + TAG_SIZE)
            extract(str(tmp / "e.zip"), str(tmp / "out"), key)
            restored = tmp / "out" / "empty.bin"
            self.assertTrue(restored.is_file())
            self.assertEqual(restored.stat().st_size, 0)

        self.run_with_tmpdir(scenario)

    def test_entry_order_is_lexicographic_and_stable(self):
        def scenario(tmp: Path):
            src = tmp / "root"
            src.mkdir()
            for name in ("b", "a", "C", "a0"):
                (src / name).write_text(name)
            (src / "d").mkdir()
            (src / "d" / "z").write_text("z")
            key = _key()
            names = []
            for i in range(2):
                out = tmp / f"r{i}.zip"
                archive(str(src), str(out), key)
                with zipfile.ZipFile(out) as zf:
                    names.append(zf.namelist())
            self.assertEqual(names[0], names[1])
            self.assertEqual(names[0], ["root/", "root/C", "root/a", "root/a0", "root/b", "root/d/", "root/d/z"])

        self.run_with_tmpdir(scenario)

    def test_generic_reader_sees_only_ciphertext(self):
        def scenario(tmp: Path):
            src = tmp / "plain.txt"
            src.write_bytes(b"attack at dawn")
            archive(str(src), str(tmp / "p.zip"), _key())
            with zipfile.ZipFile(tmp / "p.zip") as zf:
                self.assertIsNone(zf.testzip())
                stored = zf.read("plain.txt")
                info = zf.getinfo("plain.txt")
            self.assertNotIn(b"attack", stored)
            self.assertEqual(len(stored), 12 + len(b"attack at dawn") + TAG_SIZE)
            self.assertEqual(info.compress_type, zipfile.ZIP_STORED)

        self.run_with_tmpdir(scenario)

    def test_wrong_key_rejected_for_every_file(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            archive(str(src), str(tmp / "a.zip"), _key("right"))
            with self.assertRaises(AuthenticationFailedError):
                extract(str(tmp / "a.zip"), str(tmp / "out1"), _key("wrong"))
            report = extract(str(tmp / "a.zip"), str(tmp / "out2"), _key("wrong"), keep_going=True)
            self.assertEqual(report.files, 0)
            self.assertEqual(len(report.failed), 4)
            for exc in report.failed.values():
                self.assertIsInstance(exc, AuthenticationFailedError)

        self.run_with_tmpdir(scenario)

    def test_corrupted_entry_aborts_or_continues(self):
        def scenario(tmp: Path):
            src = tmp / "t"
            src.mkdir()
            for name in ("a.txt", "b.txt", "c.txt"):
                (src / name).write_text(name * 3)
            key = _key()
            archive(str(src), str(tmp / "good.zip"), key)
            _tamper_entry(tmp / "good.zip", tmp / "bad.zip", "t/b.txt")

            # Default: abort at the bad entry; earlier entries stay on disk
            with self.assertRaises(AuthenticationFailedError):
                extract(str(tmp / "bad.zip"), str(tmp / "abort"), key)
            self.assertEqual((tmp / "abort" / "t" / "a.txt").read_text(), "a.txta.txta.txt")
            self.assertFalse((tmp / "abort" / "t" / "b.txt").exists())
            self.assertFalse((tmp / "abort" / "t" / "c.txt").exists())

            report = extract(str(tmp / "bad.zip"), str(tmp / "cont"), key, keep_going=True)
            self.assertEqual(list(report.failed), ["t/b.txt"])
            self.assertIsInstance(report.failed["t/b.txt"], AuthenticationFailedError)
            self.assertEqual((tmp / "cont" / "t" / "a.txt").read_text(), "a.txta.txta.txt")
            self.assertEqual((tmp / "cont" / "t" / "c.txt").read_text(), "c.txtc.txtc.txt")
            self.assertFalse((tmp / "cont" / "t" / "b.txt").exists())

        self.run_with_tmpdir(scenario)

    def test_raw_corruption_is_a_container_error(self):
        def scenario(tmp: Path):
            src = tmp / "f.bin"
            src.write_bytes(os.urandom(256))
            key = _key()
            out = tmp / "f.zip"
            archive(str(src), str(out), key)
            _flip_stored_byte(out, "f.bin", 40)
            with self.assertRaises(ContainerOpenError) as ctx:
                extract(str(out), str(tmp / "out"), key)
            self.assertIsInstance(ctx.exception, EntryCorruptError)

        self.run_with_tmpdir(scenario)

    def test_keep_going_past_entry_with_bad_crc(self):
        def scenario(tmp: Path):
            src = tmp / "s"
            src.mkdir()
            for name in ("a.txt", "b.txt", "c.txt"):
                (src / name).write_text(name * 3)
            key = _key()
            out = tmp / "s.zip"
            archive(str(src), str(out), key)
            _flip_stored_byte(out, "s/b.txt", -1)

            report = extract(str(out), str(tmp / "out"), key, keep_going=True)
            self.assertEqual(list(report.failed), ["s/b.txt"])
            self.assertIsInstance(report.failed["s/b.txt"], EntryCorruptError)
            self.assertEqual(report.files, 2)
            self.assertEqual((tmp / "out" / "s" / "a.txt").read_text(), "a.txta.txta.txt")
            self.assertEqual((tmp / "out" / "s" / "c.txt").read_text(), "c.txtc.txtc.txt")
            self.assertFalse((tmp / "out" / "s" / "b.txt").exists())

        self.run_with_tmpdir(scenario)

    @unittest.skipUnless(os.sep == "/" and not os.altsep, "needs POSIX file names")
    def test_backslash_and_colon_names_round_trip(self):
        def scenario(tmp: Path):
            src = tmp / "d"
            (src / "x:notes").mkdir(parents=True)
            (src / "x:notes" / "todo.txt").write_text("colon")
            (src / "a\\b.txt").write_text("backslash")
            key = _key()
            archive(str(src), str(tmp / "d.zip"), key)
            with zipfile.ZipFile(tmp / "d.zip") as zf:
                self.assertIn("d/a\\b.txt", zf.namelist())
            report = extract(str(tmp / "d.zip"), str(tmp / "out"), key)
            self.assertTrue(report.complete)
            self.assertEqual(sorted(os.listdir(tmp / "out" / "d")), ["a\\b.txt", "x:notes"])
            self.assertEqual((tmp / "out" / "d" / "a\\b.txt").read_text(), "backslash")
            self.assertEqual((tmp / "out" / "d" / "x:notes" / "todo.txt").read_text(), "colon")
            self.assertFalse((tmp / "out" / "d" / "a").exists())

        self.run_with_tmpdir(scenario)

    def test_xchacha_cipher_is_recorded_and_used(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            key = _key()
            archive(str(src), str(tmp / "x.zip"), key, cipher=CIPHER_XCHACHA)
            with ContainerReader(str(tmp / "x.zip")) as r:
                self.assertEqual(r.cipher, CIPHER_XCHACHA)
            extract(str(tmp / "x.zip"), str(tmp / "out"), key)
            self.assertEqual(_snapshot(tmp / "out" / "project"), _snapshot(src))

        self.run_with_tmpdir(scenario)

    def test_parallel_encryption_keeps_order(self):
        def scenario(tmp: Path):
            src = tmp / "many"
            src.mkdir()
            for i in range(40):
                (src / f"f{i:02d}.bin").write_bytes(os.urandom(i * 97))
            key = _key()
            archive(str(src), str(tmp / "seq.zip"), key, jobs=1)
            archive(str(src), str(tmp / "par.zip"), key, jobs=4)
            with zipfile.ZipFile(tmp / "seq.zip") as a, zipfile.ZipFile(tmp / "par.zip") as b:
                self.assertEqual(a.namelist(), b.namelist())
            extract(str(tmp / "par.zip"), str(tmp / "out"), key)
            self.assertEqual(_snapshot(tmp / "out" / "many"), _snapshot(src))

        self.run_with_tmpdir(scenario)

    def test_read_only_directory_round_trips(self):
        with tempfile.TemporaryDirectory() as tmp_name:
            tmp = Path(tmp_name)
            src = tmp / "ro"
            locked_src = src / "locked"
            locked = tmp / "out" / "ro" / "locked"
            locked_src.mkdir(parents=True)
            (locked_src / "inside.txt").write_text("data")
            os.chmod(locked_src, 0o555)
            try:
                key = _key()
                archive(str(src), str(tmp / "ro.zip"), key)
                extract(str(tmp / "ro.zip"), str(tmp / "out"), key)
                self.assertEqual(stat.S_IMODE(locked.stat().st_mode), 0o555)
                self.assertEqual((locked / "inside.txt").read_text(), "data")
            finally:
                os.chmod(locked_src, 0o755)
                if locked.exists():
                    os.chmod(locked, 0o755)

    def test_extract_is_idempotent_for_existing_directories(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            key = _key()
            archive(str(src), str(tmp / "a.zip"), key)
            extract(str(tmp / "a.zip"), str(tmp / "out"), key)
            (tmp / "out" / "project" / "run.sh").write_text("changed")
            extract(str(tmp / "a.zip"), str(tmp / "out"), key)
            self.assertEqual(_snapshot(tmp / "out" / "project"), _snapshot(src))

        self.run_with_tmpdir(scenario)


class FailureTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_missing_source(self):
        def scenario(tmp: Path):
            with self.assertRaises(SourceNotFoundError):
                archive(str(tmp / "nope"), str(tmp / "nope.zip"), _key())
            self.assertEqual(list(tmp.iterdir()), [])

        self.run_with_tmpdir(scenario)

    def test_bad_key_leaves_no_container(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            out = tmp / "out.zip"
            with self.assertRaises(CipherInitError):
                archive(str(src), str(out), os.urandom(16))
            self.assertFalse(out.exists())
            self.assertEqual([p.name for p in tmp.iterdir()], ["project"])

        self.run_with_tmpdir(scenario)

    def test_failure_keeps_previous_container_intact(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            out = tmp / "out.zip"
            key = _key()
            archive(str(src), str(out), key)
            before = out.read_bytes()
            with self.assertRaises(CipherInitError):
                archive(str(src), str(out), b"short")
            self.assertEqual(out.read_bytes(), before)

        self.run_with_tmpdir(scenario)

    def test_unreadable_file_aborts_without_output(self):
        def scenario(tmp: Path):
            fs = MemoryFS()
            fs.add_file("/src/a.txt", b"a")
            fs.add_file("/src/b.txt", b"b")
            fs.unreadable.add("/src/b.txt")
            out = tmp / "src.zip"
            with self.assertRaises(SourceUnreadableError):
                archive("/src", str(out), _key(), fs=fs)
            self.assertEqual(list(tmp.iterdir()), [])

        self.run_with_tmpdir(scenario)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlink_cycle_is_reported(self):
        def scenario(tmp: Path):
            src = tmp / "loop"
            (src / "inner").mkdir(parents=True)
            try:
                os.symlink("..", src / "inner" / "back")
            except OSError:
                self.skipTest("cannot create symlinks")
            with self.assertRaises(SourceUnreadableError):
                archive(str(src), str(tmp / "loop.zip"), _key())
            self.assertFalse((tmp / "loop.zip").exists())

        self.run_with_tmpdir(scenario)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_file_symlink_is_followed(self):
        def scenario(tmp: Path):
            src = tmp / "s"
            src.mkdir()
            (tmp / "target.txt").write_text("through the link")
            try:
                os.symlink(tmp / "target.txt", src / "link.txt")
            except OSError:
                self.skipTest("cannot create symlinks")
            key = _key()
            archive(str(src), str(tmp / "s.zip"), key)
            extract(str(tmp / "s.zip"), str(tmp / "out"), key)
            restored = tmp / "out" / "s" / "link.txt"
            self.assertFalse(restored.is_symlink())
            self.assertEqual(restored.read_text(), "through the link")

        self.run_with_tmpdir(scenario)

    def test_not_a_container(self):
        def scenario(tmp: Path):
            bogus = tmp / "bogus.zip"
            bogus.write_bytes(b"definitely not a zip file")
            with self.assertRaises(ContainerOpenError):
                extract(str(bogus), str(tmp / "out"), _key())
            with self.assertRaises(ContainerOpenError):
                extract(str(tmp / "missing.zip"), str(tmp / "out"), _key())

        self.run_with_tmpdir(scenario)

    def test_entry_escaping_root_is_rejected(self):
        def scenario(tmp: Path):
            evil = tmp / "evil.zip"
            with zipfile.ZipFile(evil, "w") as zf:
                zf.writestr("../escaped.txt", b"\x00" * 40)
            with self.assertRaises(UnsafePathError):
                extract(str(evil), str(tmp / "out"), _key())
            self.assertFalse((tmp / "escaped.txt").exists())

        self.run_with_tmpdir(scenario)

    def test_file_in_place_of_directory(self):
        def scenario(tmp: Path):
            src = _create_sample_tree(tmp)
            key = _key()
            archive(str(src), str(tmp / "a.zip"), key)
            dest = tmp / "out"
            (dest / "project").mkdir(parents=True)
            (dest / "project" / "docs").write_text("in the way")
            with self.assertRaises(PathCreationError):
                extract(str(tmp / "a.zip"), str(dest), key)

        self.run_with_tmpdir(scenario)


class MemoryFSTests(unittest.TestCase):
    def _tree(self) -> MemoryFS:
        fs = MemoryFS()
        fs.add_dir("/src", 0o750)
        fs.add_dir("/src/empty", 0o700)
        fs.add_file("/src/a.txt", b"x", 0o640)
        fs.add_file("/src/sub/b.txt", b"y")
        fs.add_file("/src/sub/zero", b"", 0o600)
        return fs

    def test_walk_plan(self):
        plan = walk_source("/src", self._tree())
        self.assertEqual(
            [(p.name, p.is_dir) for p in plan],
            [
                ("src", True),
                ("src/a.txt", False),
                ("src/empty", True),
                ("src/sub", True),
                ("src/sub/b.txt", False),
                ("src/sub/zero", False),
            ],
        )
        self.assertEqual(plan[0].mode, 0o750)

    def test_roundtrip_through_memory(self):
        def scenario(tmp: Path):
            src_fs = self._tree()
            key = _key()
            archive("/src", str(tmp / "m.zip"), key, fs=src_fs)
            dst_fs = MemoryFS()
            report = extract(str(tmp / "m.zip"), "/restore", key, fs=dst_fs)
            self.assertEqual(report.files, 3)
            self.assertEqual(report.directories, 3)
            self.assertEqual(dst_fs.files["/restore/src/a.txt"], (b"x", 0o640))
            self.assertEqual(dst_fs.files["/restore/src/sub/b.txt"], (b"y", 0o644))
            self.assertEqual(dst_fs.files["/restore/src/sub/zero"], (b"", 0o600))
            self.assertEqual(dst_fs.dirs["/restore/src"], 0o750)
            self.assertEqual(dst_fs.dirs["/restore/src/empty"], 0o700)

        with tempfile.TemporaryDirectory() as tmp:
            scenario(Path(tmp))

    def test_progress_callback(self):
        def scenario(tmp: Path):
            seen = []
            key = _key()
            archive("/src", str(tmp / "m.zip"), key, fs=self._tree(), progress=lambda k, n: seen.append((k, n)))
            self.assertEqual(seen[0], ("dir", "src"))
            self.assertIn(("file", "src/sub/zero"), seen)
            self.assertEqual(len(seen), 6)

        with tempfile.TemporaryDirectory() as tmp:
            scenario(Path(tmp))


if __name__ == "__main__":
    unittest.main()
