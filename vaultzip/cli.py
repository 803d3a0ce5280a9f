from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from vaultzip.archiver import archive, root_name
from vaultzip.config import VaultConfig, resolve_password
from vaultzip.constants import ARCHIVE_SUFFIX, DEFAULT_CIPHER, KDF_ARGON2ID, KDF_PBKDF2_SHA256, NONCE_SIZES
from vaultzip.container import ContainerReader
from vaultzip.envelope import overhead
from vaultzip.errors import (
    AuthenticationFailedError,
    ContainerOpenError,
    EntryCorruptError,
    VaultZipError,
)
from vaultzip.extractor import extract
from vaultzip.kdf import Key, derive_key


def _printer(quiet: bool):
    """Per-entry progress lines, or None when quiet."""
    if quiet:
        return None
    labels = {"dir": "  creating", "file": "    adding", "failed": "    FAILED"}

    def _progress(kind: str, name: str) -> None:
        suffix = "/" if kind == "dir" else ""
        print(f"{labels.get(kind, kind):>10}: {name}{suffix}")

    return _progress


def _extract_printer(quiet: bool):
    if quiet:
        return None
    labels = {"dir": "  creating", "file": "extracting", "failed": "    FAILED"}

    def _progress(kind: str, name: str) -> None:
        suffix = "/" if kind == "dir" else ""
        stream = sys.stderr if kind == "failed" else sys.stdout
        print(f"{labels.get(kind, kind):>10}: {name}{suffix}", file=stream)

    return _progress


def _default_output(source: str) -> str:
    return root_name(source) + ARCHIVE_SUFFIX


def _zip_with_key(source: str, output: str, key: Key, config: VaultConfig, quiet: bool) -> bool:
    t0 = time.time()
    report = archive(
        source,
        output,
        key,
        cipher=config.cipher or DEFAULT_CIPHER,
        jobs=config.jobs,
        progress=_printer(quiet),
    )
    dt = max(0.000001, time.time() - t0)
    mib = report.plaintext_bytes / (1024.0 * 1024.0)
    print(
        f"Done: {report.files} files, {report.directories} dirs; "
        f"{mib:.2f} MiB in {dt:.1f}s; every file entry of '{output}' is encrypted "
        f"({config.cipher or DEFAULT_CIPHER})"
    )
    return True


def _unzip_with_key(archive_path: str, outdir: str, key: Key, config: VaultConfig, *, keep_going: bool, remove: bool, quiet: bool) -> bool:
    t0 = time.time()
    try:
        report = extract(
            archive_path,
            outdir,
            key,
            cipher=config.cipher,
            keep_going=keep_going,
            progress=_extract_printer(quiet),
        )
    except AuthenticationFailedError:
        print(
            "Warning: extraction stopped at an entry that failed authentication (wrong passphrase "
            f"or corrupted data). Files already written under '{outdir}' were left in place.",
            file=sys.stderr,
        )
        raise
    except VaultZipError as exc:
        if isinstance(exc, EntryCorruptError) or not isinstance(exc, ContainerOpenError):
            print(f"Warning: extraction aborted; files already written under '{outdir}' were left in place.", file=sys.stderr)
        raise
    dt = max(0.000001, time.time() - t0)
    mib = report.plaintext_bytes / (1024.0 * 1024.0)
    print(
        f"Done: extracted {report.files} files, {report.directories} dirs ({mib:.2f} MiB) in {dt:.1f}s; "
        f"failed={len(report.failed)}"
    )
    if report.failed:
        for name, exc in report.failed.items():
            print(f"  {name}: {exc}", file=sys.stderr)
        return False
    if remove:
        try:
            os.remove(archive_path)
            print(f"Removed '{archive_path}'")
        except OSError as exc:
            print(f"Warning: could not remove '{archive_path}': {exc}", file=sys.stderr)
    return True


def cmd_zip(source: str, output: Optional[str] = None, *, password: Optional[str] = None, config: Optional[VaultConfig] = None, quiet: bool = False) -> bool:
    """Create a container from a file or directory; every file entry is encrypted.

    Args:
        source: File or directory to store.
        output: Container path; defaults to ``<source name>.zip`` in the
            current directory.
        password: Passphrase; falls back to VAULTZIP_PASSWORD, then a prompt.
        config: KDF/cipher/jobs settings.
        quiet: Suppress per-entry lines.
    """
    config = config or VaultConfig()
    output = output or _default_output(source)
    pw = resolve_password(password, confirm=True)
    with derive_key(pw, config.kdf) as key:
        return _zip_with_key(source, output, key, config, quiet)


def cmd_unzip(
    archive_path: str,
    *,
    outdir: str = ".",
    password: Optional[str] = None,
    config: Optional[VaultConfig] = None,
    keep_going: bool = False,
    remove: bool = False,
    quiet: bool = False,
) -> bool:
    """Decrypt and extract a container into ``outdir``.

    Extraction is not atomic: on failure the files already written stay.

    Returns:
        True when every entry was extracted, False when ``keep_going``
        recorded failures.
    """
    config = config or VaultConfig()
    pw = resolve_password(password)
    with derive_key(pw, config.kdf) as key:
        return _unzip_with_key(archive_path, outdir, key, config, keep_going=keep_going, remove=remove, quiet=quiet)


def cmd_list(archive_path: str) -> bool:
    """List container entries. Names and modes are stored in clear text, so no key is needed."""
    with ContainerReader(archive_path) as r:
        cipher = r.cipher or DEFAULT_CIPHER
        for e in r.entries():
            if e.is_dir:
                print(f"dir\t{e.mode:04o}\t-\t{e.name}")
            else:
                plain = max(0, e.size - overhead(cipher))
                print(f"file\t{e.mode:04o}\t{plain}\t{e.name}")
    return True


def cmd_info(archive_path: str) -> bool:
    """Show container information."""
    with ContainerReader(archive_path) as r:
        entries = list(r.entries())
        print(f"Container: {archive_path}")
        if r.metadata:
            print(f"  Format: {r.metadata.get('format')} v{r.metadata.get('version')}")
            print(f"  Cipher: {r.cipher or 'N/A'}")
        else:
            print(f"  Format: no vaultzip marker (assuming {DEFAULT_CIPHER})")
        print(f"  Entries: {len(entries)}")
        print(f"    Files: {len([e for e in entries if not e.is_dir])}")
        print(f"    Directories: {len([e for e in entries if e.is_dir])}")
        print(f"  Stored bytes: {sum(e.size for e in entries)}")
    return True


def _ask(prompt: str) -> Optional[str]:
    print(prompt, flush=True)
    try:
        return input().strip()
    except EOFError:
        return None


def cmd_shell(*, password: Optional[str] = None, config: Optional[VaultConfig] = None, remove: bool = False, quiet: bool = False) -> bool:
    """Interactive loop: ask zip/unzip, ask for a path, run, offer to repeat.

    The key is derived once and reused for every operation in the loop.
    End of input exits cleanly.
    """
    config = config or VaultConfig()
    pw = resolve_password(password)
    with derive_key(pw, config.kdf) as key:
        while True:
            command = None
            while command not in ("zip", "unzip"):
                if command is not None:
                    print("Invalid command. Type 'zip' or 'unzip'.")
                answer = _ask("\nCommand: zip/unzip")
                if answer is None:
                    print("Exiting.")
                    return True
                command = answer.lower()

            prompt = (
                "Path of the file or directory to store (each file is encrypted):"
                if command == "zip"
                else "Container to extract:"
            )
            while True:
                path = _ask(prompt)
                if path is None:
                    print("Exiting.")
                    return True
                if os.path.exists(path):
                    break
                print(f"The path '{path}' does not exist.")

            try:
                if command == "zip":
                    _zip_with_key(path, _default_output(path), key, config, quiet)
                else:
                    _unzip_with_key(path, ".", key, config, keep_going=False, remove=remove, quiet=quiet)
            except (VaultZipError, OSError) as exc:
                print(f"Error: {exc}", file=sys.stderr)

            while True:
                answer = _ask("\nRun another operation? (y/n)")
                if answer is None:
                    print("Exiting.")
                    return True
                answer = answer.lower()
                if answer in ("y", "yes"):
                    break
                if answer in ("n", "no"):
                    print("Exiting.")
                    return True
                print("Invalid answer. Type 'y' or 'n'.")


def _add_key_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--password", help="Passphrase (default: $VAULTZIP_PASSWORD, else prompt)")
    p.add_argument("--kdf", choices=[KDF_PBKDF2_SHA256, KDF_ARGON2ID], help="Key derivation function")
    p.add_argument("--salt", help="KDF salt as text (default: built-in salt shared by all containers)")
    p.add_argument("--iterations", type=int, help="PBKDF2 iteration count (default 500000)")
    p.add_argument("--cipher", choices=sorted(NONCE_SIZES), help="AEAD cipher (unzip default: the one recorded in the container)")
    p.add_argument("--jobs", "-j", type=int, help="Encryption worker threads (default 1)")
    p.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="vaultzip",
        description="ZIP containers with individually encrypted file entries",
        epilog=(
            "Entry names, directory layout and permission bits are NOT encrypted; "
            "only file contents are."
        ),
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_zip = sub.add_parser("zip", help="Create an encrypted-entry container")
    ap_zip.add_argument("source", help="File or directory to store")
    ap_zip.add_argument("-o", "--output", help="Output container path (default: <source name>.zip)")
    _add_key_options(ap_zip)

    ap_unzip = sub.add_parser("unzip", help="Decrypt and extract a container")
    ap_unzip.add_argument("archive", help="Container path")
    ap_unzip.add_argument("--outdir", default=".", help="Output directory")
    ap_unzip.add_argument(
        "--keep-going",
        action="store_true",
        help="Continue past entries that fail to decrypt; exit status 1 if any did",
    )
    ap_unzip.add_argument("--remove", action="store_true", help="Delete the container after a fully successful extraction")
    _add_key_options(ap_unzip)

    ap_list = sub.add_parser("list", help="List container entries (no passphrase needed)")
    ap_list.add_argument("archive", help="Container path")

    ap_info = sub.add_parser("info", help="Show container information")
    ap_info.add_argument("archive", help="Container path")

    ap_shell = sub.add_parser("shell", help="Interactive zip/unzip loop")
    ap_shell.add_argument("--remove", action="store_true", help="Delete containers after successful extraction")
    _add_key_options(ap_shell)

    args = ap.parse_args(argv)
    try:
        config = None
        if args.cmd in ("zip", "unzip", "shell"):
            config = VaultConfig.from_env().override(
                kdf=args.kdf,
                salt=args.salt,
                iterations=args.iterations,
                cipher=args.cipher,
                jobs=args.jobs,
            )
        if args.cmd == "zip":
            cmd_zip(args.source, args.output, password=args.password, config=config, quiet=args.quiet)
        elif args.cmd == "unzip":
            ok = cmd_unzip(
                args.archive,
                outdir=args.outdir,
                password=args.password,
                config=config,
                keep_going=args.keep_going,
                remove=args.remove,
                quiet=args.quiet,
            )
            if not ok:
                sys.exit(1)
        elif args.cmd == "list":
            cmd_list(args.archive)
        elif args.cmd == "info":
            cmd_info(args.archive)
        elif args.cmd == "shell":
            cmd_shell(password=args.password, config=config, remove=args.remove, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
    except ContainerOpenError as e:
        print(f"Error: not a valid container or it is corrupted: {e}", file=sys.stderr)
        sys.exit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (VaultZipError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
