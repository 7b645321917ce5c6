"""Shared fixtures: synthetic Cargo projects and an in-process fake compiler."""

import hashlib
import time
from pathlib import Path

import pytest

from depcache.config import BuildConfig
from depcache.dep_cache import DependencyCache
from depcache.manifest import load_cargo_manifest
from depcache.protocols import CompileResult
from depcache.stub import synthesize

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"


def cargo_toml(package="backend", deps=None, extra=""):
    deps = deps if deps is not None else {"libA": "1.0", "libB": "2.1"}
    lines = ["[package]", f'name = "{package}"', 'version = "0.1.0"', 'edition = "2018"', ""]
    lines.append("[dependencies]")
    for name, constraint in deps.items():
        lines.append(f'{name} = "{constraint}"')
    return "\n".join(lines) + "\n" + extra


def cargo_lock(package="backend", locked=None):
    """Lock text with every locked package a direct dependency of the root."""
    locked = locked if locked is not None else {"libA": "1.0.0", "libB": "2.1.0"}
    blocks = ["version = 3", ""]
    blocks.append("[[package]]")
    blocks.append(f'name = "{package}"')
    blocks.append('version = "0.1.0"')
    blocks.append("dependencies = [")
    for name in sorted(locked):
        blocks.append(f' "{name}",')
    blocks.append("]")
    for name, version in sorted(locked.items()):
        checksum = hashlib.sha256(f"{name}-{version}".encode()).hexdigest()
        blocks.extend([
            "",
            "[[package]]",
            f'name = "{name}"',
            f'version = "{version}"',
            f'source = "{REGISTRY}"',
            f'checksum = "{checksum}"',
        ])
    return "\n".join(blocks) + "\n"


class FakeToolchain:
    """Mimics an mtime-tracking compiler without needing Cargo.

    Dependencies compile to deps/<name>-<version>.rlib once and are reused
    while present. The application unit is rebuilt only when src/main.rs
    is newer than the mtime recorded at its last compile, which is exactly
    the behavior that makes the staleness reconciler necessary.
    """

    name = "fake"
    manifest_files = ("Cargo.toml", "Cargo.lock")
    target_dir_name = "target"
    volatile_patterns = (".fingerprint/",)

    def __init__(self, profile="release", delay=0.0):
        self.profile = profile
        self.delay = delay
        self.dependency_units_built = 0
        self.application_units_built = 0
        self.compile_calls = 0
        self.last_sources: list[str] = []

    def load_manifest(self, project_dir):
        return load_cargo_manifest(project_dir)

    def synthesize_stub(self, manifest):
        return synthesize(manifest)

    def application_units(self, manifest):
        return synthesize(manifest).paths()

    def build_command(self):
        return ["fake-build", f"--profile={self.profile}"]

    def cache_key_parts(self):
        return {"toolchain": self.name, "profile": self.profile, "compiler": "fake 1.0"}

    def binary_path(self, manifest, cache_dir):
        return Path(cache_dir) / "release" / manifest.bins[0].name

    def _stamp(self, cache_dir):
        return Path(cache_dir) / ".fingerprint" / "app.stamp"

    def compile(self, source_root, cache_dir):
        self.compile_calls += 1
        source_root = Path(source_root)
        cache_dir = Path(cache_dir)
        if self.delay:
            time.sleep(self.delay)
        self.last_sources = sorted(
            p.relative_to(source_root).as_posix()
            for p in source_root.rglob("*")
            if p.is_file() and self.target_dir_name not in p.relative_to(source_root).parts
        )
        manifest = load_cargo_manifest(source_root)

        deps_dir = cache_dir / "deps"
        deps_dir.mkdir(parents=True, exist_ok=True)
        artifacts = []
        for pkg in sorted(manifest.locked, key=lambda p: (p.name, p.version)):
            if not pkg.source:
                continue
            if pkg.name == "broken":
                return CompileResult(
                    returncode=101,
                    stderr=(
                        "error[E0433]: failed to resolve: use of undeclared crate\n"
                        f" --> /registry/{pkg.name}-{pkg.version}/src/lib.rs:3:5\n"
                        f"error: could not compile `{pkg.name}`\n"
                    ),
                )
            artifact = deps_dir / f"{pkg.name}-{pkg.version}.rlib"
            if not artifact.exists():
                artifact.write_text(f"compiled {pkg.name} {pkg.version}\n")
                self.dependency_units_built += 1
            artifacts.append(artifact.name)

        main = source_root / manifest.bins[0].path
        if not main.is_file():
            return CompileResult(returncode=101, stderr=f"error: couldn't read {main}\n")
        binary = self.binary_path(manifest, cache_dir)
        stamp = self._stamp(cache_dir)
        current = main.stat().st_mtime_ns
        if binary.exists() and stamp.exists() and current <= int(stamp.read_text()):
            return CompileResult(returncode=0, stderr="Finished (fresh)\n")

        source = main.read_text()
        if "compile_error!" in source:
            return CompileResult(
                returncode=101,
                stderr=(
                    "error: application does not compile\n"
                    f" --> {manifest.bins[0].path}:1:13\n"
                    f"error: could not compile `{manifest.package}`\n"
                ),
            )
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text("linked: " + ",".join(artifacts) + "\n---\n" + source)
        stamp.parent.mkdir(parents=True, exist_ok=True)
        stamp.write_text(str(current))
        self.application_units_built += 1
        return CompileResult(returncode=0)

    def invalidate_application(self, manifest, cache_dir):
        removed = []
        for path in (self._stamp(cache_dir), self.binary_path(manifest, cache_dir)):
            if path.exists():
                path.unlink()
                removed.append(path)
        return removed


@pytest.fixture
def toolchain():
    return FakeToolchain()


@pytest.fixture
def config(tmp_path):
    return BuildConfig(cache_dir=tmp_path / "cache", work_dir=tmp_path / "work")


@pytest.fixture
def dep_cache(config, toolchain):
    return DependencyCache(config.cache_dir, volatile_patterns=toolchain.volatile_patterns)


@pytest.fixture
def make_project(tmp_path):
    """Factory writing a Cargo project; returns its directory."""

    def _make(
        name="project",
        locked=None,
        main='fn main() { println!("v1"); }\n',
        deps=None,
    ):
        locked = locked if locked is not None else {"libA": "1.0.0", "libB": "2.1.0"}
        if deps is None:
            deps = {n: v.rsplit(".", 1)[0] for n, v in locked.items()}
        root = tmp_path / name
        (root / "src").mkdir(parents=True, exist_ok=True)
        (root / "Cargo.toml").write_text(cargo_toml(deps=deps))
        (root / "Cargo.lock").write_text(cargo_lock(locked=locked))
        (root / "src" / "main.rs").write_text(main)
        return root

    return _make
