"""Error taxonomy shared by the versioning and build layers."""

from __future__ import annotations


class EasyPaperError(Exception):
    """Base exception for all easypaper errors."""


# ── versioning ────────────────────────────────────────────────────────────────


class StoreIOError(EasyPaperError):
    """Raised when a disk read or write under ``.control/`` fails."""


class NotInitializedError(EasyPaperError):
    """Raised when versioning has not been set up for a project."""

    def __init__(self, project_dir: str) -> None:
        self.project_dir = project_dir
        super().__init__(f"Versioning is not initialized for {project_dir}")


class CommitNotFoundError(EasyPaperError):
    """Raised when a commit id cannot be resolved in the commit log."""

    def __init__(self, commit_id: str) -> None:
        self.commit_id = commit_id
        super().__init__(f"Commit not found: {commit_id}")


class BlobNotFoundError(EasyPaperError):
    """Raised when a content hash has no blob in the store."""

    def __init__(self, digest: str) -> None:
        self.digest = digest
        super().__init__(f"Blob not found: {digest}")


class HashMismatchError(EasyPaperError):
    """Raised when blob bytes do not match the hash they are stored under."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Blob integrity check failed: expected sha256={expected}, got {actual}")


class CorruptHistoryError(EasyPaperError):
    """Raised when a maintenance operation cannot trust the commit log."""


# ── build ─────────────────────────────────────────────────────────────────────


class BuildEngineNotFoundError(EasyPaperError):
    """Raised when the configured engine is unknown or not installed."""


class BuildTimeoutError(EasyPaperError):
    """Raised when the engine process exceeds its time budget."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Compilation timed out after {timeout_s:g}s")


class BuildCancelledError(EasyPaperError):
    """Raised when an in-flight compile is cancelled (e.g. project closed)."""


class AlreadyCompilingError(EasyPaperError):
    """Raised when a compile is requested while another one is running."""


class CompileThrottledError(EasyPaperError):
    """Raised when a compile request inside the minimum interval is dropped."""

    def __init__(self, retry_after_ms: int) -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(f"Compile throttled; retry in {retry_after_ms}ms")


class DiagnosticParseError(EasyPaperError):
    """Raised inside the diagnostic parser; never escapes ``parse_log``."""
