"""Ignore file handling (.depcacheignore).

Provides gitignore-style pattern matching for deciding which files of the
real source tree are overlaid into the build workspace, and which files of
an artifact tree are volatile bookkeeping excluded from its digest.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from pathlib import Path

import pathspec

IGNORE_FILE = ".depcacheignore"

# Default .depcacheignore template
DEFAULT_TEMPLATE = """\
# depcache ignore patterns (gitignore syntax)
.git/
.hg/
.svn/
.depcache/
target/
node_modules/
.idea/
.vscode/
*.swp
*.swo
*~
.DS_Store
Thumbs.db
"""

# Never overlaid, whatever the ignore file says.
_ALWAYS_IGNORED = (".git/", ".depcache/")


def build_spec(patterns: Iterable[str]) -> pathspec.PathSpec:
    """Compile gitignore-style lines into a matcher."""
    return pathspec.GitIgnoreSpec.from_lines(list(patterns))


def load_ignore_patterns(
    project_dir: str | Path,
    include_gitignore: bool = False,
    extra: Iterable[str] = (),
) -> pathspec.PathSpec:
    """Load overlay ignore patterns for a project.

    Uses .depcacheignore when present, otherwise DEFAULT_TEMPLATE. The
    top-level .gitignore is appended when include_gitignore is set.
    """
    project_path = Path(project_dir)
    ignore_path = project_path / IGNORE_FILE
    patterns: list[str] = []

    if ignore_path.exists():
        patterns.extend(ignore_path.read_text().splitlines())
    else:
        patterns.extend(DEFAULT_TEMPLATE.splitlines())

    if include_gitignore:
        gitignore = project_path / ".gitignore"
        if gitignore.is_file():
            patterns.extend(gitignore.read_text().splitlines())

    patterns.extend(extra)
    patterns.extend(_ALWAYS_IGNORED)
    return build_spec(patterns)


def iter_tree_files(
    root: str | Path,
    spec: pathspec.PathSpec | None = None,
) -> Iterator[str]:
    """Yield POSIX-style relative paths of files under root not matched by spec.

    Ignored directories are pruned rather than descended into. Output is
    sorted so callers get a deterministic order.
    """
    root_path = Path(root)
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root_path):
        rel_dir = os.path.relpath(dirpath, root_path)
        prefix = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"

        kept = []
        for name in dirnames:
            if spec is not None and spec.match_file(f"{prefix}{name}/"):
                continue
            kept.append(name)
        dirnames[:] = sorted(kept)

        for name in filenames:
            rel = f"{prefix}{name}"
            if spec is not None and spec.match_file(rel):
                continue
            found.append(rel)

    yield from sorted(found)

