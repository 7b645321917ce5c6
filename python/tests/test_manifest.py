"""Tests for Cargo manifest and lock reading."""

import pytest

from depcache.errors import MalformedManifest
from depcache.manifest import load_cargo_manifest, parse_cargo_manifest

from conftest import cargo_lock, cargo_toml


def test_parse_basic_manifest():
    manifest = parse_cargo_manifest(cargo_toml(), cargo_lock())
    assert manifest.package == "backend"
    assert manifest.version == "0.1.0"
    assert [d.name for d in manifest.declared] == ["libA", "libB"]
    assert manifest.declared[0].constraint == "1.0"
    assert {p.name for p in manifest.locked} == {"backend", "libA", "libB"}
    assert manifest.bins[0].name == "backend"
    assert manifest.bins[0].path == "src/main.rs"
    assert manifest.lib_path is None
    assert manifest.build_script is None


def test_dependency_tables_and_options():
    toml_text = (
        '[package]\nname = "svc"\nversion = "0.2.0"\n\n'
        "[dependencies]\n"
        'serde = { version = "1.0", features = ["derive", "std"] }\n'
        'json = { package = "serde_json", version = "1" }\n'
        'local = { path = "../local" }\n\n'
        "[dev-dependencies]\n"
        'tempfile = "3"\n\n'
        "[build-dependencies]\n"
        'cc = "1"\n\n'
        "[target.'cfg(unix)'.dependencies]\n"
        'libc = "0.2"\n'
    )
    manifest = parse_cargo_manifest(toml_text, cargo_lock(package="svc"))
    by_name = {d.name: d for d in manifest.declared}

    assert by_name["serde"].features == ("derive", "std")
    assert by_name["json"].locked_name == "serde_json"
    assert by_name["local"].constraint == "path:../local"
    assert by_name["tempfile"].kind == "dev"
    assert by_name["cc"].kind == "build"
    assert by_name["libc"].kind == "normal"


def test_bin_lib_and_build_targets():
    toml_text = (
        '[package]\nname = "svc"\nversion = "0.1.0"\nbuild = true\n\n'
        "[lib]\n\n"
        "[[bin]]\nname = \"svc\"\n\n"
        "[[bin]]\nname = \"worker\"\n\n"
        "[[bin]]\nname = \"tool\"\npath = \"tools/main.rs\"\n"
    )
    manifest = parse_cargo_manifest(toml_text, cargo_lock(package="svc", locked={}))
    assert [(b.name, b.path) for b in manifest.bins] == [
        ("svc", "src/main.rs"),
        ("worker", "src/bin/worker.rs"),
        ("tool", "tools/main.rs"),
    ]
    assert manifest.lib_path == "src/lib.rs"
    assert manifest.build_script == "build.rs"


def test_virtual_manifest_rejected():
    toml_text = '[workspace]\nmembers = ["a", "b"]\n'
    with pytest.raises(MalformedManifest, match="workspace"):
        parse_cargo_manifest(toml_text, cargo_lock())


def test_invalid_toml_rejected():
    with pytest.raises(MalformedManifest, match="Cargo.lock"):
        parse_cargo_manifest(cargo_toml(), "[[package]\nname = ")


def test_lock_entry_without_version_rejected():
    lock_text = 'version = 3\n\n[[package]]\nname = "backend"\n'
    with pytest.raises(MalformedManifest, match="missing name or version"):
        parse_cargo_manifest(cargo_toml(), lock_text)


def test_empty_lock_rejected():
    with pytest.raises(MalformedManifest, match="no \\[\\[package\\]\\]"):
        parse_cargo_manifest(cargo_toml(), "version = 3\n")


def test_load_missing_lock(tmp_path):
    (tmp_path / "Cargo.toml").write_text(cargo_toml())
    with pytest.raises(MalformedManifest, match="Cargo.lock not found"):
        load_cargo_manifest(tmp_path)


def test_load_from_directory(make_project):
    project = make_project()
    manifest = load_cargo_manifest(project)
    assert manifest.package == "backend"
    assert len(manifest.locked) == 3
