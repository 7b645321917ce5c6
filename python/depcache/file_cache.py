"""Simple in-process digest cache keyed by (path, mtime_ns, size).

This is NOT persistent across invocations. It only deduplicates hashing
within one process, e.g. when the same artifact tree is digested on
store and again on a conflicting store.
"""

from __future__ import annotations

import hashlib
import os

_CHUNK = 1024 * 1024


class FileDigestCache:
    """In-process dict cache of file SHA-256 digests."""

    def __init__(self):
        self._cache: dict[tuple[str, int, int], str] = {}

    def get(self, path: str, mtime_ns: int, size: int) -> str | None:
        """Return cached digest if path+mtime+size match, else None."""
        return self._cache.get((path, mtime_ns, size))

    def put(self, path: str, mtime_ns: int, size: int, digest: str) -> None:
        self._cache[(path, mtime_ns, size)] = digest

    def digest(self, path: str | os.PathLike[str]) -> str:
        """Hash a file, reusing a cached digest when its stat is unchanged."""
        path = os.fspath(path)
        st = os.stat(path)
        cached = self.get(path, st.st_mtime_ns, st.st_size)
        if cached is not None:
            return cached
        value = sha256_file(path)
        self.put(path, st.st_mtime_ns, st.st_size, value)
        return value


def sha256_file(path: str | os.PathLike[str]) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()
