"""Configuration from DEPCACHE_* environment variables.

Invalid values are logged and replaced by their defaults rather than
failing the build.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

RECONCILE_MODES = {"mtime", "hash"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _default_cache_dir() -> Path:
    xdg = os.getenv("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "depcache"


@dataclass(frozen=True)
class BuildConfig:
    cache_dir: Path
    work_dir: Path
    reconcile_mode: str = "mtime"
    profile: str = "release"
    offline: bool = False
    max_entries: int | None = None
    max_age_seconds: float | None = None
    include_gitignore: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "BuildConfig":
        """Build a config from the process environment (or a given mapping)."""
        env = os.environ if environ is None else environ

        cache_raw = env.get("DEPCACHE_CACHE_DIR", "").strip()
        cache_dir = Path(cache_raw).expanduser() if cache_raw else _default_cache_dir()
        work_raw = env.get("DEPCACHE_WORK_DIR", "").strip()
        work_dir = Path(work_raw).expanduser() if work_raw else cache_dir / "work"

        mode = env.get("DEPCACHE_RECONCILE_MODE", "mtime").strip().lower()
        if mode not in RECONCILE_MODES:
            logger.warning(
                "config.invalid_reconcile_mode",
                extra={"mode": mode, "fallback_mode": "mtime"},
            )
            mode = "mtime"

        profile = env.get("DEPCACHE_PROFILE", "release").strip() or "release"

        max_age_days = _positive_number(env, "DEPCACHE_MAX_AGE_DAYS", float)
        return cls(
            cache_dir=cache_dir,
            work_dir=work_dir,
            reconcile_mode=mode,
            profile=profile,
            offline=_flag(env, "DEPCACHE_OFFLINE"),
            max_entries=_positive_number(env, "DEPCACHE_MAX_ENTRIES", int),
            max_age_seconds=max_age_days * 86400 if max_age_days is not None else None,
            include_gitignore=_flag(env, "DEPCACHE_INCLUDE_GITIGNORE"),
        )

    def to_dict(self) -> dict:
        return {
            "cache_dir": str(self.cache_dir),
            "work_dir": str(self.work_dir),
            "reconcile_mode": self.reconcile_mode,
            "profile": self.profile,
            "offline": self.offline,
            "max_entries": self.max_entries,
            "max_age_seconds": self.max_age_seconds,
            "include_gitignore": self.include_gitignore,
        }


def _flag(env, name: str) -> bool:
    raw = env.get(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw not in _FALSE_VALUES:
        logger.warning("config.invalid_flag", extra={"variable": name, "value": raw})
    return False


def _positive_number(env, name: str, kind):
    raw = env.get(name, "").strip()
    if not raw:
        return None
    try:
        value = kind(raw)
    except ValueError:
        value = None
    if value is None or value <= 0:
        logger.warning("config.invalid_number", extra={"variable": name, "value": raw})
        return None
    return value
