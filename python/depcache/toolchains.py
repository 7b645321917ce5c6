"""Toolchain adapters: the compiler as an opaque whole-project command.

Only Cargo ships here. Other compilers plug in by implementing the
Toolchain protocol from protocols.py.
"""

import logging
import os
import re
import shutil
import subprocess
from pathlib import Path

from . import manifest as cargo_manifest
from . import stub as stub_synth
from .protocols import CompileResult, Manifest, StubSource

logger = logging.getLogger(__name__)


class CargoToolchain:
    """Builds Rust packages with `cargo build`, target dir = cache dir."""

    name = "cargo"
    manifest_files = (cargo_manifest.MANIFEST_FILE, cargo_manifest.LOCK_FILE)
    target_dir_name = "target"
    # Bookkeeping that differs between equivalent builds.
    volatile_patterns = (
        ".rustc_info.json",
        ".cargo-lock",
        "*.d",
        ".fingerprint/",
        "incremental/",
        "build/*/output",
        "build/*/stderr",
        "build/*/root-output",
    )

    def __init__(
        self,
        profile: str = "release",
        offline: bool = False,
        locked: bool = True,
        cargo: str = "cargo",
        extra_args: tuple[str, ...] = (),
        rustc: str | None = None,
    ):
        self.profile = profile
        self.offline = offline
        self.locked = locked
        self.cargo = cargo
        self.extra_args = tuple(extra_args)
        self.rustc = rustc or os.environ.get("RUSTC", "rustc")
        self._compiler_version: str | None = None

    def load_manifest(self, project_dir: Path) -> Manifest:
        return cargo_manifest.load_cargo_manifest(project_dir)

    def synthesize_stub(self, manifest: Manifest) -> StubSource:
        return stub_synth.synthesize(manifest)

    def application_units(self, manifest: Manifest) -> list[str]:
        return self.synthesize_stub(manifest).paths()

    def build_command(self) -> list[str]:
        cmd = [self.cargo, "build"]
        if self.profile == "release":
            cmd.append("--release")
        elif self.profile not in ("dev", "debug"):
            cmd.extend(["--profile", self.profile])
        if self.locked:
            cmd.append("--locked")
        if self.offline:
            cmd.append("--offline")
        cmd.extend(self.extra_args)
        return cmd

    def cache_key_parts(self) -> dict:
        # --locked/--offline only affect resolution, not the artifacts.
        return {
            "toolchain": self.name,
            "profile": self.profile,
            "extra_args": list(self.extra_args),
            "compiler": self.compiler_version(),
        }

    def compiler_version(self) -> str:
        """`rustc -vV` output, read once per toolchain instance."""
        if self._compiler_version is None:
            try:
                result = subprocess.run(
                    [self.rustc, "-vV"], capture_output=True, text=True, timeout=30,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning(
                    "toolchain.compiler_version_unavailable",
                    extra={"rustc": self.rustc, "error_message": str(e)},
                )
                self._compiler_version = "unknown"
            else:
                self._compiler_version = (
                    result.stdout.strip() if result.returncode == 0 else "unknown"
                )
        return self._compiler_version

    def compile(self, source_root: Path, cache_dir: Path) -> CompileResult:
        cmd = self.build_command()
        env = {**os.environ, "CARGO_TARGET_DIR": str(cache_dir)}
        logger.debug(
            "toolchain.compile",
            extra={"command": cmd, "source_root": str(source_root), "cache_dir": str(cache_dir)},
        )
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, cwd=str(source_root), env=env,
            )
        except FileNotFoundError as e:
            return CompileResult(returncode=127, stderr=str(e), command=tuple(cmd))
        return CompileResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            command=tuple(cmd),
        )

    def profile_dir(self, cache_dir: Path) -> Path:
        if self.profile in ("dev", "debug"):
            return Path(cache_dir) / "debug"
        return Path(cache_dir) / self.profile

    def binary_path(self, manifest: Manifest, cache_dir: Path) -> Path:
        return self.profile_dir(cache_dir) / manifest.bins[0].name

    def invalidate_application(self, manifest: Manifest, cache_dir: Path) -> list[Path]:
        profile_dir = self.profile_dir(cache_dir)
        crate = re.escape(manifest.package.replace("-", "_"))
        package = re.escape(manifest.package)
        # Cargo suffixes unit artifacts with a 16-hex-digit metadata hash.
        unit_patterns = {
            ".fingerprint": re.compile(rf"^{package}-[0-9a-f]{{16}}$"),
            "build": re.compile(rf"^{package}-[0-9a-f]{{16}}$"),
            "deps": re.compile(rf"^(lib)?{crate}-[0-9a-f]{{16}}(\..+)?$"),
            "incremental": re.compile(rf"^{crate}-\w+$"),
        }

        candidates = []
        for subdir, pattern in unit_patterns.items():
            parent = profile_dir / subdir
            if parent.is_dir():
                candidates.extend(p for p in sorted(parent.iterdir()) if pattern.match(p.name))
        for target in manifest.bins:
            candidates.append(profile_dir / target.name)

        removed = []
        for path in candidates:
            if not os.path.lexists(path):
                continue
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed.append(path)
        return removed


def get_toolchain(name: str, **options):
    """Look up a toolchain adapter by name."""
    if name == "cargo":
        return CargoToolchain(**options)
    raise ValueError(f"Unknown toolchain: {name}")
