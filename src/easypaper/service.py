"""Operation surface for the editor application.

Every call returns an :class:`ApiResponse` instead of raising. Versioning is
an optional layer: when it is not set up for a project the response carries
``code="not_initialized"`` and the caller simply carries on without history.
Build failures are successful responses whose BuildResult has
``success=False``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Generic, List, Optional, TypeVar, Union

from easypaper.build.models import BuildResult
from easypaper.build.scheduler import BusyPolicy, CompileTrigger
from easypaper.config.loader import ConfigError
from easypaper.errors import (
    AlreadyCompilingError,
    BlobNotFoundError,
    BuildCancelledError,
    CommitNotFoundError,
    CompileThrottledError,
    CorruptHistoryError,
    HashMismatchError,
    NotInitializedError,
    StoreIOError,
)
from easypaper.session import ProjectSession
from easypaper.versioning.diffing import TreeDelta
from easypaper.versioning.models import GcReport, HistoryView

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_INITIALIZED = "not_initialized"

# Checked in order; subclasses must come before their bases.
_ERROR_CODES = (
    (NotInitializedError, NOT_INITIALIZED),
    (CommitNotFoundError, "commit_not_found"),
    (HashMismatchError, "hash_mismatch"),
    (BlobNotFoundError, "blob_not_found"),
    (CorruptHistoryError, "corrupt_history"),
    (StoreIOError, "io_error"),
    (ConfigError, "config_error"),
    (AlreadyCompilingError, "already_compiling"),
    (CompileThrottledError, "throttled"),
    (BuildCancelledError, "cancelled"),
    (ValueError, "invalid_argument"),
    (OSError, "io_error"),
)


@dataclass
class ApiResponse(Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @property
    def unavailable(self) -> bool:
        """True when versioning is simply not set up for the project."""
        return self.code == NOT_INITIALIZED

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: str, error: str) -> "ApiResponse[T]":
        return cls(ok=False, error=error, code=code)


class ProjectService:
    """Keeps one :class:`ProjectSession` per open project directory."""

    def __init__(self, *, auto_init: bool = False, config_override: Optional[str] = None) -> None:
        self._auto_init = auto_init
        self._config_override = config_override
        self._sessions: Dict[Path, ProjectSession] = {}
        self._lock = threading.Lock()

    # ---- sessions ----

    def open_project(self, project_dir: Union[str, Path]) -> ProjectSession:
        key = Path(project_dir).resolve()
        with self._lock:
            session = self._sessions.get(key)
            if session is None or session.closed:
                session = ProjectSession(
                    key, config_override=self._config_override, auto_init=self._auto_init
                )
                self._sessions[key] = session
            return session

    def close_project(self, project_dir: Union[str, Path]) -> bool:
        with self._lock:
            session = self._sessions.pop(Path(project_dir).resolve(), None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _call(self, project_dir: Union[str, Path], op: str, fn: Callable[[ProjectSession], T]) -> ApiResponse[T]:
        try:
            return ApiResponse.success(fn(self.open_project(project_dir)))
        except Exception as exc:
            for exc_type, code in _ERROR_CODES:
                if isinstance(exc, exc_type):
                    break
            else:
                raise
            if code == NOT_INITIALIZED:
                logger.info("%s skipped: %s", op, exc)
            else:
                logger.warning("%s failed: %s", op, exc)
            return ApiResponse.failure(code, str(exc))

    # ---- versioning ----

    def version_init(self, project_dir: Union[str, Path]) -> ApiResponse[Dict[str, object]]:
        return self._call(project_dir, "versionInit", lambda s: s.versions.init().to_dict())

    def version_save(
        self, project_dir: Union[str, Path], file_path: Union[str, Path], content: Union[str, bytes]
    ) -> ApiResponse[str]:
        return self._call(project_dir, "versionSave", lambda s: s.versions.save(file_path, content))

    def version_commit(
        self,
        project_dir: Union[str, Path],
        message: Optional[str] = None,
        build_success: Optional[bool] = None,
    ) -> ApiResponse[str]:
        return self._call(
            project_dir, "versionCommit", lambda s: s.versions.commit(message, build_success)
        )

    def version_history(self, project_dir: Union[str, Path]) -> ApiResponse[HistoryView]:
        return self._call(project_dir, "versionHistory", lambda s: s.versions.history())

    def version_resolve(self, project_dir: Union[str, Path], ref: str) -> ApiResponse[str]:
        return self._call(project_dir, "versionResolve", lambda s: s.versions.resolve_commit(ref))

    def version_restore(self, project_dir: Union[str, Path], commit_id: str) -> ApiResponse[List[str]]:
        return self._call(project_dir, "versionRestore", lambda s: s.versions.restore(commit_id))

    def version_diff(self, project_dir: Union[str, Path], commit_id: str) -> ApiResponse[str]:
        return self._call(project_dir, "versionDiff", lambda s: s.versions.diff(commit_id))

    def version_compare(self, project_dir: Union[str, Path], commit_id: str) -> ApiResponse[TreeDelta]:
        return self._call(project_dir, "versionCompare", lambda s: s.versions.compare(commit_id))

    def version_gc(
        self, project_dir: Union[str, Path], *, dry_run: bool = False, force: bool = False
    ) -> ApiResponse[GcReport]:
        return self._call(
            project_dir,
            "versionGc",
            lambda s: s.versions.collect_garbage(dry_run=dry_run, force=force),
        )

    # ---- build ----

    def build_compile(
        self,
        project_dir: Union[str, Path],
        trigger: CompileTrigger = CompileTrigger.INTERACTIVE,
        *,
        busy: Optional[BusyPolicy] = None,
    ) -> ApiResponse[BuildResult]:
        return self._call(project_dir, "buildCompile", lambda s: s.compile(trigger, busy=busy))

    def build_clean(self, project_dir: Union[str, Path]) -> ApiResponse[List[str]]:
        return self._call(project_dir, "buildClean", lambda s: s.clean())
