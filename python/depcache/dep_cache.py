"""On-disk dependency compilation cache keyed by manifest fingerprint.

Layout under the cache root:

    entries/<fingerprint>/entry.json     metadata, written before publish
    entries/<fingerprint>/artifacts/     compiler target tree after the stub build
    tmp/                                 staging for stores and evictions
    locks/<fingerprint>.lock             per-fingerprint flock
    access/<fingerprint>                 last-use stamp (mtime)

An entry becomes visible only through a single os.rename of a fully
written staging directory, so lookups never take a lock and never see a
partial entry. Stores and evictions of one fingerprint serialize on its
lock file; different fingerprints never contend.
"""

from __future__ import annotations

import contextlib
import fcntl
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from .errors import CacheStoreConflict, FingerprintCollision
from .file_cache import FileDigestCache
from .ignore import build_spec, iter_tree_files
from .protocols import CacheEntry

logger = logging.getLogger(__name__)

ENTRY_FORMAT = 1
_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")
_STALE_STAGING_SECONDS = 3600


@dataclass(frozen=True)
class EntryStat:
    fingerprint: str
    created_at: float
    last_used: float


@dataclass(frozen=True)
class MaxEntries:
    """Keep the most recently used n entries."""
    limit: int

    def select(self, stats: list[EntryStat], now: float) -> set[str]:
        ordered = sorted(stats, key=lambda s: (s.last_used, s.fingerprint), reverse=True)
        return {s.fingerprint for s in ordered[self.limit:]}


@dataclass(frozen=True)
class MaxAge:
    """Drop entries unused for longer than max_age seconds."""
    seconds: float

    def select(self, stats: list[EntryStat], now: float) -> set[str]:
        return {s.fingerprint for s in stats if now - s.last_used > self.seconds}


@dataclass(frozen=True)
class Only:
    """Drop exactly the named fingerprints."""
    fingerprints: frozenset[str]

    def select(self, stats: list[EntryStat], now: float) -> set[str]:
        return {s.fingerprint for s in stats if s.fingerprint in self.fingerprints}


class DependencyCache:
    """Content-addressed store of compiled dependency artifact trees."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        volatile_patterns: Iterable[str] = (),
        digests: FileDigestCache | None = None,
    ):
        self.root = Path(root)
        self.entries_dir = self.root / "entries"
        self.tmp_dir = self.root / "tmp"
        self.locks_dir = self.root / "locks"
        self.access_dir = self.root / "access"
        patterns = list(volatile_patterns)
        self._volatile = build_spec(patterns) if patterns else None
        self._digests = digests or FileDigestCache()

    # -- public contract -------------------------------------------------

    def lookup(self, fingerprint: str) -> CacheEntry | None:
        """Return the entry for fingerprint, or None on a miss."""
        _check_fingerprint(fingerprint)
        entry = self._read_entry(fingerprint)
        if entry is None:
            logger.debug("dep_cache.miss", extra={"fingerprint": fingerprint})
            return None
        self._touch_access(fingerprint)
        logger.debug("dep_cache.hit", extra={"fingerprint": fingerprint})
        return entry

    def store(self, fingerprint: str, artifacts_dir: str | os.PathLike[str]) -> CacheEntry:
        """Publish a copy of artifacts_dir under fingerprint.

        Storing equivalent content twice is a no-op. A concurrent store of
        the same fingerprint that finishes first wins; ours is discarded.

        Raises:
            FingerprintCollision: an entry with different content already
                exists for this fingerprint.
        """
        _check_fingerprint(fingerprint)
        self._ensure_dirs()
        staging: Path | None = Path(
            tempfile.mkdtemp(prefix=f"store-{fingerprint[:16]}.", dir=self.tmp_dir)
        )
        try:
            artifacts = staging / "artifacts"
            shutil.copytree(artifacts_dir, artifacts, symlinks=True)
            digest, file_count = self.tree_digest(artifacts)
            meta = {
                "format": ENTRY_FORMAT,
                "fingerprint": fingerprint,
                "digest": digest,
                "file_count": file_count,
                "created_at": time.time(),
            }
            (staging / "entry.json").write_text(json.dumps(meta, indent=2) + "\n")
            entry = CacheEntry(
                fingerprint=fingerprint,
                artifacts=self._entry_dir(fingerprint) / "artifacts",
                digest=digest,
                created_at=meta["created_at"],
                file_count=file_count,
            )

            try:
                self._publish(fingerprint, staging)
                staging = None
            except CacheStoreConflict as conflict:
                existing = self._read_entry(fingerprint)
                if existing is None or existing.digest != digest:
                    raise FingerprintCollision(
                        f"Fingerprint {fingerprint} already holds different artifacts "
                        f"({existing.digest if existing else 'unreadable'} != {digest})",
                        phase="STUB_COMPILED",
                        fingerprint=fingerprint,
                    ) from conflict
                entry = existing
                logger.debug(
                    "dep_cache.store_conflict_resolved",
                    extra={"fingerprint": fingerprint, "digest": digest},
                )
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)

        # A concurrent evict may already have removed it; the metadata stays valid.
        self._touch_access(fingerprint)
        logger.info(
            "dep_cache.stored",
            extra={"fingerprint": fingerprint, "digest": entry.digest, "files": entry.file_count},
        )
        return entry

    def evict(self, policy) -> set[str]:
        """Remove the entries selected by policy; returns their fingerprints."""
        now = time.time()
        selected = policy.select(self.stats(), now)
        removed = set()
        for fingerprint in sorted(selected):
            if self._remove(fingerprint):
                removed.add(fingerprint)
        self._sweep_staging(now)
        if removed:
            logger.info("dep_cache.evicted", extra={"fingerprints": sorted(removed)})
        return removed

    # -- helpers used by the orchestrator and CLI ------------------------

    def restore(self, entry: CacheEntry, dest: str | os.PathLike[str]) -> bool:
        """Copy an entry's artifacts into dest.

        Returns False when the entry was evicted before it could be copied.
        """
        with self._lock(entry.fingerprint, exclusive=False):
            if not entry.artifacts.is_dir():
                return False
            shutil.copytree(entry.artifacts, dest, symlinks=True, dirs_exist_ok=True)
        return True

    def entries(self) -> list[CacheEntry]:
        result = []
        for fingerprint in self._fingerprints():
            entry = self._read_entry(fingerprint)
            if entry is not None:
                result.append(entry)
        return result

    def stats(self) -> list[EntryStat]:
        result = []
        for entry in self.entries():
            try:
                last_used = (self.access_dir / entry.fingerprint).stat().st_mtime
            except FileNotFoundError:
                last_used = entry.created_at
            result.append(EntryStat(entry.fingerprint, entry.created_at, last_used))
        return result

    def tree_digest(self, root: str | os.PathLike[str]) -> tuple[str, int]:
        """Digest of relative paths and contents, skipping volatile files."""
        h = hashlib.sha256()
        count = 0
        root_path = Path(root)
        for rel in iter_tree_files(root_path, self._volatile):
            full = root_path / rel
            h.update(rel.encode("utf-8"))
            h.update(b"\0")
            if full.is_symlink():
                h.update(b"link:" + os.readlink(full).encode("utf-8"))
            else:
                h.update(self._digests.digest(full).encode("ascii"))
            h.update(b"\n")
            count += 1
        return h.hexdigest(), count

    # -- internals -------------------------------------------------------

    def _ensure_dirs(self) -> None:
        for path in (self.entries_dir, self.tmp_dir, self.locks_dir, self.access_dir):
            path.mkdir(parents=True, exist_ok=True)

    def _entry_dir(self, fingerprint: str) -> Path:
        return self.entries_dir / fingerprint

    def _fingerprints(self) -> list[str]:
        try:
            names = sorted(os.listdir(self.entries_dir))
        except FileNotFoundError:
            return []
        return [n for n in names if _FINGERPRINT_RE.match(n)]

    def _read_entry(self, fingerprint: str) -> CacheEntry | None:
        entry_dir = self._entry_dir(fingerprint)
        try:
            meta = json.loads((entry_dir / "entry.json").read_text())
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(
                "dep_cache.unreadable_entry",
                extra={
                    "fingerprint": fingerprint,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
            )
            return None
        return CacheEntry(
            fingerprint=fingerprint,
            artifacts=entry_dir / "artifacts",
            digest=meta.get("digest", ""),
            created_at=float(meta.get("created_at", 0.0)),
            file_count=int(meta.get("file_count", 0)),
        )

    def _publish(self, fingerprint: str, staging: Path) -> None:
        entry_dir = self._entry_dir(fingerprint)
        with self._lock(fingerprint):
            if entry_dir.exists():
                if self._read_entry(fingerprint) is not None:
                    raise CacheStoreConflict(
                        f"Fingerprint {fingerprint} was stored concurrently",
                        phase="STUB_COMPILED",
                        fingerprint=fingerprint,
                    )
                # Unreadable leftovers are replaced, never merged.
                self._discard(entry_dir, fingerprint)
            os.rename(staging, entry_dir)

    def _remove(self, fingerprint: str) -> bool:
        entry_dir = self._entry_dir(fingerprint)
        with self._lock(fingerprint):
            if not entry_dir.exists():
                return False
            self._discard(entry_dir, fingerprint)
        with contextlib.suppress(FileNotFoundError):
            (self.access_dir / fingerprint).unlink()
        return True

    def _discard(self, entry_dir: Path, fingerprint: str) -> None:
        self._ensure_dirs()
        graveyard = Path(tempfile.mkdtemp(prefix=f"evict-{fingerprint[:16]}.", dir=self.tmp_dir))
        os.rename(entry_dir, graveyard / "entry")
        shutil.rmtree(graveyard, ignore_errors=True)

    def _sweep_staging(self, now: float) -> None:
        try:
            names = os.listdir(self.tmp_dir)
        except FileNotFoundError:
            return
        for name in names:
            path = self.tmp_dir / name
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            if age > _STALE_STAGING_SECONDS:
                shutil.rmtree(path, ignore_errors=True)

    def _touch_access(self, fingerprint: str) -> None:
        self.access_dir.mkdir(parents=True, exist_ok=True)
        (self.access_dir / fingerprint).touch()

    @contextlib.contextmanager
    def _lock(self, fingerprint: str, exclusive: bool = True) -> Iterator[None]:
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.locks_dir / f"{fingerprint}.lock"
        with lock_path.open("a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def _check_fingerprint(fingerprint: str) -> None:
    if not _FINGERPRINT_RE.match(fingerprint or ""):
        raise ValueError(f"Not a fingerprint: {fingerprint!r}")
