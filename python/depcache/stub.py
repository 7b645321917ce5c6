"""Placeholder source synthesis for dependency-only compiles.

The stub is the smallest set of source files that lets the compiler build
and link the whole dependency graph while referencing none of the
application's own symbols.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from .protocols import Manifest, StubSource

RUST_MAIN_STUB = b"fn main() {}\n"
RUST_LIB_STUB = b""


def synthesize(manifest: Manifest) -> StubSource:
    """Build the Cargo stub for a manifest.

    Every binary target and a declared build script get an empty main;
    a declared library gets an empty crate root. Same manifest, same bytes.
    """
    files: dict[str, bytes] = {}
    for target in manifest.bins:
        files[_normalize(target.path)] = RUST_MAIN_STUB
    if manifest.lib_path:
        files[_normalize(manifest.lib_path)] = RUST_LIB_STUB
    if manifest.build_script:
        files[_normalize(manifest.build_script)] = RUST_MAIN_STUB

    ordered = tuple(sorted(files.items()))
    return StubSource(files=ordered, digest=stub_digest(ordered))


def stub_digest(files: tuple[tuple[str, bytes], ...]) -> str:
    h = hashlib.sha256()
    for path, content in files:
        h.update(path.encode("utf-8"))
        h.update(b"\0")
        h.update(hashlib.sha256(content).digest())
    return h.hexdigest()


def write_stub(stub: StubSource, root: str | Path) -> list[Path]:
    """Write the stub files under root, creating parent directories."""
    written = []
    root_path = Path(root)
    for rel, content in stub.files:
        target = root_path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        written.append(target)
    return written


def remove_stub(stub: StubSource, root: str | Path) -> None:
    """Delete stub files so the overlay cannot leave any of them behind."""
    root_path = Path(root)
    for rel, _ in stub.files:
        (root_path / rel).unlink(missing_ok=True)


def _normalize(path: str) -> str:
    normalized = os.path.normpath(path.replace("\\", "/")).replace(os.sep, "/")
    if normalized.startswith("../") or os.path.isabs(normalized):
        raise ValueError(f"Target path escapes the project: {path}")
    return normalized
