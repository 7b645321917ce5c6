"""Error taxonomy for depcache builds.

Every error carries the phase it was raised in, the manifest fingerprint
(when known) and any compiler diagnostics, so the caller can act on it.
"""

from __future__ import annotations


class DepcacheError(Exception):
    """Base class for all build and cache errors."""

    def __init__(
        self,
        message: str,
        *,
        phase: str = "",
        fingerprint: str | None = None,
        diagnostics: list[dict] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.fingerprint = fingerprint
        self.diagnostics = diagnostics or []

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "phase": self.phase,
            "fingerprint": self.fingerprint,
            "diagnostics": self.diagnostics,
        }


class MalformedManifest(DepcacheError):
    """The lock cannot be parsed or disagrees with the declared dependencies."""


class CompileError(DepcacheError):
    """A compiler invocation exited non-zero."""

    def __init__(self, message: str, *, returncode: int = 1, stderr: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["returncode"] = self.returncode
        data["stderr"] = self.stderr[-4000:]
        return data


class DependencyCompileError(CompileError):
    """The stub (dependency-only) compile failed. Nothing was cached."""


class ApplicationCompileError(CompileError):
    """The final compile failed. The dependency cache entry stays valid."""


class ReconciliationFailed(DepcacheError):
    """Application sources could not be marked newer than build metadata."""


class CacheStoreConflict(DepcacheError):
    """Another build stored the same fingerprint first."""


class FingerprintCollision(DepcacheError):
    """Two different artifact trees were stored under one fingerprint."""


class BuildIOError(DepcacheError):
    """A filesystem operation during the build failed."""
