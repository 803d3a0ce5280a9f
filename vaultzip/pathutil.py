from __future__ import annotations

import os
from typing import Sequence, Tuple

from .errors import UnsafePathError


def split_segments(name: str, *, posix: bool = False) -> Tuple[str, ...]:
    """Split a container entry name into path segments.

    Rules:
    - Convert backslashes to slashes (not for names written by a Unix host,
      where a backslash is an ordinary file name character)
    - Strip a trailing slash (directory marker)
    - Remove empty and '.' segments
    - Reject absolute names and '..' segments; drive letters too unless
      ``posix``
    - Reject segments holding a separator of the local platform
    """
    p = name if posix else name.replace("\\", "/")
    if p.startswith("/") or (not posix and len(p) >= 2 and p[1] == ":"):
        raise UnsafePathError(f"Absolute entry path not allowed: {name!r}")
    parts = tuple(q for q in p.split("/") if q not in ("", "."))
    for q in parts:
        if q == "..":
            raise UnsafePathError(f"Entry path may not contain '..': {name!r}")
        if os.sep in q or (os.altsep and os.altsep in q):
            raise UnsafePathError(f"Entry segment {q!r} is a path on this platform: {name!r}")
    if not parts:
        raise UnsafePathError(f"Empty entry path: {name!r}")
    return parts


def join_segments(segments: Sequence[str], *, is_dir: bool = False) -> str:
    name = "/".join(segments)
    return name + "/" if is_dir else name
