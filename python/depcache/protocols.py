"""Data model and toolchain protocol for depcache.

Defines the immutable records passed between the fingerprinter, the
dependency cache, the stub synthesizer and the orchestrator, plus the
Toolchain protocol that decouples them from a specific compiler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

# Lowercase hex SHA-256 of the canonical resolved dependency set.
Fingerprint = str


@dataclass(frozen=True)
class Dependency:
    """A declared dependency: (name, version constraint) plus build options."""
    name: str
    constraint: str = "*"
    features: tuple[str, ...] = ()
    package: str = ""
    kind: str = "normal"

    @property
    def locked_name(self) -> str:
        """Name the dependency resolves to in the lock (handles renames)."""
        return self.package or self.name


@dataclass(frozen=True)
class LockedPackage:
    """One resolved entry of the lock: exact version plus its edges."""
    name: str
    version: str
    source: str = ""
    checksum: str = ""
    dependencies: tuple[str, ...] = ()


@dataclass(frozen=True)
class BinTarget:
    name: str
    path: str


@dataclass(frozen=True)
class Manifest:
    """Declared dependencies plus the resolved lock for one package."""
    package: str
    version: str
    declared: tuple[Dependency, ...] = ()
    locked: tuple[LockedPackage, ...] = ()
    bins: tuple[BinTarget, ...] = ()
    lib_path: str | None = None
    build_script: str | None = None

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "version": self.version,
            "declared": [
                {"name": d.name, "constraint": d.constraint, "kind": d.kind,
                 "features": list(d.features)}
                for d in self.declared
            ],
            "locked": [
                {"name": p.name, "version": p.version, "source": p.source}
                for p in self.locked
            ],
            "bins": [{"name": b.name, "path": b.path} for b in self.bins],
            "lib": self.lib_path,
            "build": self.build_script,
        }


@dataclass(frozen=True)
class StubSource:
    """Placeholder source files, relative path -> content."""
    files: tuple[tuple[str, bytes], ...]
    digest: str

    def paths(self) -> list[str]:
        return [path for path, _ in self.files]

    def content_for(self, path: str) -> bytes | None:
        for rel, content in self.files:
            if rel == path:
                return content
        return None


@dataclass(frozen=True)
class CacheEntry:
    """A stored dependency-artifact tree.

    fingerprint is the cache key: the manifest fingerprint scoped to the
    toolchain settings that produced the artifacts.
    """
    fingerprint: Fingerprint
    artifacts: Path
    digest: str
    created_at: float
    file_count: int = 0

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "artifacts": str(self.artifacts),
            "digest": self.digest,
            "created_at": self.created_at,
            "file_count": self.file_count,
        }


@dataclass(frozen=True)
class CompileResult:
    """Outcome of one compiler invocation."""
    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class BuildState(str, Enum):
    INIT = "INIT"
    STUB_COMPILED = "STUB_COMPILED"
    SOURCE_OVERLAID = "SOURCE_OVERLAID"
    FINAL_COMPILED = "FINAL_COMPILED"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class BuildResult:
    """Final product of a build: the binary and how it was produced."""
    binary: Path
    binary_sha256: str
    fingerprint: Fingerprint
    cache_hit: bool
    cache_key: str = ""
    states: list[BuildState] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "binary": str(self.binary),
            "binary_sha256": self.binary_sha256,
            "fingerprint": self.fingerprint,
            "cache_key": self.cache_key,
            "cache_hit": self.cache_hit,
            "states": [s.value for s in self.states],
        }


class Toolchain(Protocol):
    """Protocol for a compiler treated as an opaque whole-project command."""

    name: str
    manifest_files: tuple[str, ...]
    target_dir_name: str
    volatile_patterns: tuple[str, ...]

    def load_manifest(self, project_dir: Path) -> Manifest:
        """Read the dependency manifest and lock from a project directory."""
        ...

    def synthesize_stub(self, manifest: Manifest) -> StubSource:
        ...

    def application_units(self, manifest: Manifest) -> list[str]:
        """Relative paths of the source files that root the application unit."""
        ...

    def build_command(self) -> list[str]:
        ...

    def cache_key_parts(self) -> dict:
        """Settings that change the compiled artifacts, e.g. profile and compiler version."""
        ...

    def compile(self, source_root: Path, cache_dir: Path) -> CompileResult:
        """Compile the project at source_root with build output in cache_dir."""
        ...

    def binary_path(self, manifest: Manifest, cache_dir: Path) -> Path:
        ...

    def invalidate_application(self, manifest: Manifest, cache_dir: Path) -> list[Path]:
        """Drop incremental metadata of the application unit.

        Returns:
            Paths that were removed.
        """
        ...
