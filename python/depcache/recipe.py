"""Two-phase container recipe rendering.

Emits a Dockerfile that performs the same split as BuildOrchestrator with
image layers as the dependency cache: the manifest-only layer compiles
the stub, the source layer recompiles the application unit.
"""

from __future__ import annotations

import posixpath

from .protocols import Manifest, Toolchain

DEFAULT_BASE_IMAGE = "rust:1.54.0"
DEFAULT_WORKDIR = "/app"


def render_dockerfile(
    manifest: Manifest,
    toolchain: Toolchain,
    base_image: str = DEFAULT_BASE_IMAGE,
    workdir: str = DEFAULT_WORKDIR,
) -> str:
    """Render the Dockerfile text for a project."""
    stub = toolchain.synthesize_stub(manifest)
    build_cmd = " ".join(toolchain.build_command())
    target_dir = posixpath.join(workdir, toolchain.target_dir_name)
    binary = toolchain.binary_path(manifest, target_dir)

    lines = [
        f"FROM {base_image}",
        f"WORKDIR {workdir}",
        f"COPY {' '.join(toolchain.manifest_files)} ./",
    ]
    stub_dirs = sorted({posixpath.dirname(path) for path in stub.paths()} - {""})
    if stub_dirs:
        lines.append(f"RUN mkdir -p {' '.join(stub_dirs)}")
    for path, content in stub.files:
        text = content.decode("utf-8").rstrip("\n")
        if text:
            lines.append(f'RUN echo "{text}" > ./{path}')
        else:
            lines.append(f"RUN touch ./{path}")
    lines.append(f"RUN {build_cmd}")
    lines.append("COPY . .")
    for unit in toolchain.application_units(manifest):
        lines.append(f"RUN touch -a -m ./{unit}")
    lines.append(f"RUN {build_cmd}")
    lines.append(f'ENTRYPOINT [ "{binary.as_posix()}" ]')
    return "\n".join(lines) + "\n"


def render_dockerignore(toolchain: Toolchain) -> str:
    """Keep the host's target directory out of the build context."""
    return f"{toolchain.target_dir_name}/\n.git/\n.depcache/\n"
