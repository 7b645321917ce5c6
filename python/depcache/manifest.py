"""Cargo manifest and lock reading.

Turns Cargo.toml + Cargo.lock into a Manifest. Only reads what the
build cache needs: declared dependencies, the resolved lock and the
target layout used by the stub synthesizer.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from .errors import MalformedManifest
from .protocols import BinTarget, Dependency, LockedPackage, Manifest

MANIFEST_FILE = "Cargo.toml"
LOCK_FILE = "Cargo.lock"

_DEPENDENCY_TABLES = {
    "dependencies": "normal",
    "dev-dependencies": "dev",
    "build-dependencies": "build",
}


def load_cargo_manifest(project_dir: str | Path) -> Manifest:
    """Read Cargo.toml and Cargo.lock from a project directory."""
    project = Path(project_dir)
    toml_path = project / MANIFEST_FILE
    lock_path = project / LOCK_FILE
    for path in (toml_path, lock_path):
        if not path.is_file():
            raise MalformedManifest(f"{path.name} not found in {project}", phase="INIT")
    return parse_cargo_manifest(
        toml_path.read_text(encoding="utf-8"),
        lock_path.read_text(encoding="utf-8"),
    )


def parse_cargo_manifest(toml_text: str, lock_text: str) -> Manifest:
    """Parse manifest and lock text into a Manifest.

    Raises:
        MalformedManifest: on TOML syntax errors, a virtual manifest,
            or lock entries missing required fields.
    """
    manifest_data = _load_toml(toml_text, MANIFEST_FILE)
    lock_data = _load_toml(lock_text, LOCK_FILE)

    package = manifest_data.get("package")
    if not isinstance(package, dict) or not package.get("name"):
        raise MalformedManifest(
            "Cargo.toml has no [package] name (workspace-only manifests are not supported)",
            phase="INIT",
        )
    name = str(package["name"])
    version = package.get("version", "0.0.0")
    if not isinstance(version, str):
        version = "0.0.0"

    return Manifest(
        package=name,
        version=version,
        declared=tuple(_declared_dependencies(manifest_data)),
        locked=tuple(_locked_packages(lock_data)),
        bins=tuple(_bin_targets(manifest_data, name)),
        lib_path=_lib_path(manifest_data),
        build_script=_build_script(package),
    )


def _load_toml(text: str, label: str) -> dict:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise MalformedManifest(f"Failed to parse {label}: {e}", phase="INIT") from e


def _declared_dependencies(data: dict) -> list[Dependency]:
    tables: list[tuple[str, dict]] = []
    for table_name, kind in _DEPENDENCY_TABLES.items():
        tables.append((kind, data.get(table_name) or {}))
    # [target.'cfg(...)'.dependencies] sections
    for target_cfg in (data.get("target") or {}).values():
        if not isinstance(target_cfg, dict):
            continue
        for table_name, kind in _DEPENDENCY_TABLES.items():
            tables.append((kind, target_cfg.get(table_name) or {}))

    deps = []
    for kind, table in tables:
        for dep_name, spec in table.items():
            deps.append(_dependency_from_spec(dep_name, spec, kind))
    return deps


def _dependency_from_spec(name: str, spec, kind: str) -> Dependency:
    if isinstance(spec, str):
        return Dependency(name=name, constraint=spec, kind=kind)
    if not isinstance(spec, dict):
        raise MalformedManifest(f"Unsupported dependency spec for {name!r}", phase="INIT")

    if "version" in spec:
        constraint = str(spec["version"])
    elif "path" in spec:
        constraint = f"path:{spec['path']}"
    elif "git" in spec:
        constraint = f"git:{spec['git']}"
    else:
        constraint = "*"
    return Dependency(
        name=name,
        constraint=constraint,
        features=tuple(str(f) for f in spec.get("features", ())),
        package=str(spec.get("package", "")),
        kind=kind,
    )


def _locked_packages(data: dict) -> list[LockedPackage]:
    packages = data.get("package")
    if not isinstance(packages, list) or not packages:
        raise MalformedManifest("Cargo.lock has no [[package]] entries", phase="INIT")

    locked = []
    for entry in packages:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("version"):
            raise MalformedManifest(
                f"Cargo.lock entry missing name or version: {entry!r}", phase="INIT",
            )
        locked.append(LockedPackage(
            name=str(entry["name"]),
            version=str(entry["version"]),
            source=str(entry.get("source", "")),
            checksum=str(entry.get("checksum", "")),
            dependencies=tuple(str(d) for d in entry.get("dependencies", ())),
        ))
    return locked


def _bin_targets(data: dict, package_name: str) -> list[BinTarget]:
    declared = data.get("bin") or []
    if not declared:
        return [BinTarget(name=package_name, path="src/main.rs")]

    bins = []
    for entry in declared:
        bin_name = str(entry.get("name", package_name))
        path = entry.get("path")
        if not path:
            path = "src/main.rs" if bin_name == package_name else f"src/bin/{bin_name}.rs"
        bins.append(BinTarget(name=bin_name, path=str(path)))
    return bins


def _lib_path(data: dict) -> str | None:
    lib = data.get("lib")
    if lib is None:
        return None
    return str(lib.get("path", "src/lib.rs"))


def _build_script(package: dict) -> str | None:
    build = package.get("build")
    if build is True:
        return "build.rs"
    if isinstance(build, str):
        return build
    return None
