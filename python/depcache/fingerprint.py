"""Manifest fingerprinting.

The fingerprint is a SHA-256 over the resolved lock closure, canonicalized
so that declaration order and file formatting never change it. Bump
FINGERPRINT_VERSION when the canonical payload changes shape.
"""

from __future__ import annotations

import hashlib
import json

from .errors import MalformedManifest
from .protocols import Fingerprint, LockedPackage, Manifest

FINGERPRINT_VERSION = "1"


def fingerprint(manifest: Manifest) -> Fingerprint:
    """Compute the cache key for a manifest's resolved dependency set.

    Raises:
        MalformedManifest: if the lock is inconsistent with the declared
            dependencies or with itself.
    """
    validate_lock(manifest)
    return _digest(_to_payload(manifest))


def cache_key(fp: Fingerprint, toolchain_parts: dict) -> str:
    """Key a dependency cache entry by fingerprint and toolchain identity.

    The same lock compiled with another profile or compiler version yields
    different artifacts, so those builds must not share an entry.
    """
    return _digest({"fingerprint": fp, "toolchain": toolchain_parts})


def _digest(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_payload(manifest: Manifest) -> dict:
    packages = sorted(
        [
            p.name,
            p.version,
            p.source,
            p.checksum,
            sorted(p.dependencies),
        ]
        for p in manifest.locked
    )
    # Feature selection changes what gets compiled for a locked package.
    features = sorted(
        [d.locked_name, d.kind, sorted(set(d.features))]
        for d in manifest.declared
        if d.features
    )
    return {
        "version": FINGERPRINT_VERSION,
        "packages": packages,
        "features": features,
    }


def validate_lock(manifest: Manifest) -> None:
    """Check that the lock is a consistent closure of the declared dependencies."""
    by_name: dict[str, list[LockedPackage]] = {}
    seen: set[tuple[str, str, str]] = set()
    for pkg in manifest.locked:
        key = (pkg.name, pkg.version, pkg.source)
        if key in seen:
            raise MalformedManifest(
                f"Duplicate lock entry {pkg.name}@{pkg.version}", phase="INIT",
            )
        seen.add(key)
        by_name.setdefault(pkg.name, []).append(pkg)

    roots = [p for p in by_name.get(manifest.package, []) if not p.source]
    if not roots:
        raise MalformedManifest(
            f"Root package {manifest.package!r} is missing from the lock", phase="INIT",
        )
    root = roots[0]

    root_edges = {_ref_name(ref) for ref in root.dependencies}
    for dep in manifest.declared:
        if dep.locked_name not in by_name or dep.locked_name not in root_edges:
            raise MalformedManifest(
                f"Declared dependency {dep.name!r} is absent from the lock", phase="INIT",
            )

    reachable: set[int] = set()
    stack = [root]
    while stack:
        pkg = stack.pop()
        if id(pkg) in reachable:
            continue
        reachable.add(id(pkg))
        for ref in pkg.dependencies:
            stack.append(_resolve_ref(ref, by_name, pkg))

    for pkg in manifest.locked:
        if id(pkg) not in reachable:
            raise MalformedManifest(
                f"Lock entry {pkg.name}@{pkg.version} is not required by any declared dependency",
                phase="INIT",
            )


def _ref_name(ref: str) -> str:
    return ref.split(" ", 1)[0]


def _resolve_ref(
    ref: str, by_name: dict[str, list[LockedPackage]], owner: LockedPackage,
) -> LockedPackage:
    # Lock references are "name", "name version" or "name version (source)".
    parts = ref.split(" ", 2)
    candidates = by_name.get(parts[0], [])
    if len(parts) > 1:
        candidates = [p for p in candidates if p.version == parts[1]]
    if len(parts) > 2:
        source = parts[2].strip("()")
        candidates = [p for p in candidates if p.source == source]
    if len(candidates) != 1:
        raise MalformedManifest(
            f"{owner.name}@{owner.version} depends on {ref!r}, "
            f"which matches {len(candidates)} lock entries",
            phase="INIT",
        )
    return candidates[0]
