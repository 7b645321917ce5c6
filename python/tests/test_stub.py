"""Tests for stub project synthesis."""

import pytest

from depcache.manifest import parse_cargo_manifest
from depcache.protocols import BinTarget, Manifest
from depcache.stub import remove_stub, synthesize, write_stub

from conftest import cargo_lock, cargo_toml


def test_default_binary_stub():
    stub = synthesize(parse_cargo_manifest(cargo_toml(), cargo_lock()))
    assert stub.files == (("src/main.rs", b"fn main() {}\n"),)
    assert len(stub.digest) == 64


def test_stub_is_deterministic():
    a = synthesize(parse_cargo_manifest(cargo_toml(), cargo_lock()))
    b = synthesize(parse_cargo_manifest(cargo_toml(), cargo_lock()))
    assert a == b


def test_stub_covers_lib_build_script_and_extra_bins():
    manifest = Manifest(
        package="svc",
        version="0.1.0",
        bins=(BinTarget("worker", "src/bin/worker.rs"), BinTarget("svc", "src/main.rs")),
        lib_path="src/lib.rs",
        build_script="build.rs",
    )
    stub = synthesize(manifest)
    assert stub.paths() == ["build.rs", "src/bin/worker.rs", "src/lib.rs", "src/main.rs"]
    assert stub.content_for("src/lib.rs") == b""
    assert stub.content_for("build.rs") == b"fn main() {}\n"


def test_stub_digest_tracks_layout():
    one = synthesize(Manifest(package="a", version="1", bins=(BinTarget("a", "src/main.rs"),)))
    two = synthesize(Manifest(package="a", version="1", bins=(BinTarget("a", "src/app.rs"),)))
    assert one.digest != two.digest


def test_write_and_remove_stub(tmp_path):
    manifest = Manifest(
        package="svc", version="0.1.0",
        bins=(BinTarget("svc", "src/main.rs"),), lib_path="src/lib.rs",
    )
    stub = synthesize(manifest)
    written = write_stub(stub, tmp_path)
    assert sorted(p.relative_to(tmp_path).as_posix() for p in written) == ["src/lib.rs", "src/main.rs"]
    assert (tmp_path / "src" / "main.rs").read_bytes() == b"fn main() {}\n"

    remove_stub(stub, tmp_path)
    assert not (tmp_path / "src" / "main.rs").exists()
    assert not (tmp_path / "src" / "lib.rs").exists()


def test_target_path_outside_project_rejected():
    manifest = Manifest(package="svc", version="0.1.0", bins=(BinTarget("svc", "../escape.rs"),))
    with pytest.raises(ValueError, match="escapes"):
        synthesize(manifest)
