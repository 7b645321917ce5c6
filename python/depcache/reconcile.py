"""Staleness reconciliation after the source overlay.

Compilers with mtime-based incremental tracking skip a unit whose source
looks no newer than what they recorded when building the stub. After the
real source replaces the stub, the reconciler makes sure the application
unit is rebuilt:

- "mtime": bump each unit's atime/mtime past the newest timestamp in the
  compiler's metadata directory (the `touch -a -m` of a container recipe).
- "hash": compare unit content against the stub and, when it differs,
  have the toolchain drop the application unit's incremental metadata.

File content is never modified.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from .errors import ReconciliationFailed
from .protocols import StubSource

logger = logging.getLogger(__name__)

# Filesystems with 1-second (or coarser) mtime resolution still order correctly.
GRANULARITY_NS = 1_000_000_000


def newest_mtime_ns(root: str | os.PathLike[str]) -> int:
    """Newest modification time of any file under root."""
    newest = 0
    root_path = Path(root)
    if not root_path.exists():
        return 0
    for dirpath, _dirnames, filenames in os.walk(root_path):
        for name in filenames:
            try:
                newest = max(newest, os.lstat(os.path.join(dirpath, name)).st_mtime_ns)
            except FileNotFoundError:
                continue
    return newest


def reconcile_mtime(
    source_root: str | os.PathLike[str],
    units: Iterable[str],
    metadata_dir: str | os.PathLike[str],
    clock: Callable[[], int] = time.time_ns,
) -> dict[str, int]:
    """Make every unit strictly newer than anything under metadata_dir.

    Returns:
        Mapping of unit path to the mtime_ns it now carries.

    Raises:
        ReconciliationFailed: a unit is missing, its timestamp cannot be
            changed, or the change did not take effect.
    """
    floor = newest_mtime_ns(metadata_dir)
    target = max(clock(), floor + GRANULARITY_NS)
    root = Path(source_root)
    stamped = {}
    for unit in units:
        path = root / unit
        if not path.is_file():
            raise ReconciliationFailed(
                f"Application unit {unit} does not exist after overlay",
                phase="SOURCE_OVERLAID",
            )
        try:
            os.utime(path, ns=(target, target))
            observed = path.stat().st_mtime_ns
        except OSError as e:
            raise ReconciliationFailed(
                f"Cannot update timestamp of {unit}: {e}", phase="SOURCE_OVERLAID",
            ) from e
        if observed <= floor:
            raise ReconciliationFailed(
                f"Timestamp of {unit} ({observed}) does not exceed build metadata ({floor})",
                phase="SOURCE_OVERLAID",
            )
        stamped[unit] = observed

    logger.debug(
        "reconcile.mtime",
        extra={"units": sorted(stamped), "floor_ns": floor, "target_ns": target},
    )
    return stamped


def reconcile_hash(
    source_root: str | os.PathLike[str],
    units: Iterable[str],
    stub: StubSource | None,
    invalidate: Callable[[], list[Path]],
) -> list[str]:
    """Drop application metadata when any unit differs from its stub.

    Without a stub (cache hit) the recorded application unit came from a
    stub this process never saw, so the metadata is always dropped.

    Returns:
        Units whose content differs from the stub.
    """
    root = Path(source_root)
    changed = []
    for unit in units:
        path = root / unit
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ReconciliationFailed(
                f"Cannot read application unit {unit}: {e}", phase="SOURCE_OVERLAID",
            ) from e
        previous = stub.content_for(unit) if stub is not None else None
        if previous != content:
            changed.append(unit)

    if changed:
        try:
            removed = invalidate()
        except OSError as e:
            raise ReconciliationFailed(
                f"Cannot drop application build metadata: {e}", phase="SOURCE_OVERLAID",
            ) from e
        leftovers = [str(p) for p in removed if os.path.lexists(p)]
        if leftovers:
            raise ReconciliationFailed(
                f"Application build metadata still present: {leftovers[:5]}",
                phase="SOURCE_OVERLAID",
            )
        logger.debug(
            "reconcile.hash",
            extra={"changed": changed, "removed": [str(p) for p in removed]},
        )
    return changed


def reconcile(
    mode: str,
    source_root: str | os.PathLike[str],
    units: Iterable[str],
    metadata_dir: str | os.PathLike[str],
    stub: StubSource | None = None,
    invalidate: Callable[[], list[Path]] | None = None,
) -> None:
    """Run the configured reconciliation strategy."""
    units = list(units)
    if mode == "mtime":
        reconcile_mtime(source_root, units, metadata_dir)
    elif mode == "hash":
        if invalidate is None:
            raise ReconciliationFailed(
                "Toolchain cannot invalidate application metadata", phase="SOURCE_OVERLAID",
            )
        reconcile_hash(source_root, units, stub, invalidate)
    else:
        raise ReconciliationFailed(f"Unknown reconcile mode: {mode}", phase="SOURCE_OVERLAID")
