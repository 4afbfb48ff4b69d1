"""Per-project session — version manager, compile scheduler, background workers."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Union

from easypaper.build.engines import clean_outputs, compile_project
from easypaper.build.models import BuildResult
from easypaper.build.scheduler import BusyPolicy, CompileScheduler, CompileTrigger, ThrottlePolicy
from easypaper.config.loader import load_config
from easypaper.config.schema import ProjectConfig
from easypaper.versioning.manager import VersionManager

logger = logging.getLogger(__name__)


def build_message(result: BuildResult) -> str:
    """Commit message recorded for a finished build."""
    if result.success:
        return f"Build succeeded ({result.engine}, {result.duration_ms}ms)"
    return f"Build failed ({result.engine}, {len(result.errors)} error(s))"


class ProjectSession:
    """Everything one open project needs; independent of other sessions.

    Versioning writes run on a single worker thread so saves are appended in
    submission order. Compiles run on a separate pool so a second request
    can reach the scheduler while the first is still running.
    """

    def __init__(
        self,
        project_dir: Union[str, Path],
        *,
        config_override: Optional[str] = None,
        auto_init: bool = False,
    ) -> None:
        self.project_dir = Path(project_dir).resolve()
        self._config_override = config_override
        self._config_lock = threading.Lock()
        self.config: ProjectConfig = load_config(self.project_dir, config_override)
        self.versions = VersionManager(
            self.project_dir,
            track=self.config.versioning.track,
            exclude_dirs=[self.config.compile.outdir],
            auto_init=auto_init,
        )
        self.scheduler = CompileScheduler(
            self._run_compile,
            min_interval_ms=self.config.compile.min_interval_ms,
            on_complete=self._record_build,
        )
        self._version_worker = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="easypaper-vcs"
        )
        self._build_workers = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="easypaper-build"
        )
        self._closed = False

    # ---- config ----

    def reload_config(self) -> ProjectConfig:
        """Re-read the project config and push it to the scheduler and version manager."""
        with self._config_lock:
            self.config = load_config(self.project_dir, self._config_override)
            self.scheduler.min_interval_ms = self.config.compile.min_interval_ms
            self.versions.set_tracking(
                self.config.versioning.track, exclude_dirs=[self.config.compile.outdir]
            )
            return self.config

    # ---- build ----

    def _run_compile(self, cancel: threading.Event) -> BuildResult:
        return compile_project(self.project_dir, self.config, cancel=cancel)

    def _record_build(self, result: BuildResult) -> None:
        if not self.config.versioning.enabled:
            return
        if not self.versions.is_initialized:
            logger.info("Versioning not initialized for %s; build not recorded", self.project_dir)
            return
        commit_id = self.versions.commit(
            message=build_message(result), build_success=result.success
        )
        logger.debug("Recorded build outcome as %s", commit_id[:8])

    def compile(
        self,
        trigger: CompileTrigger = CompileTrigger.INTERACTIVE,
        *,
        busy: Optional[BusyPolicy] = None,
        throttle: ThrottlePolicy = ThrottlePolicy.DELAY,
    ) -> BuildResult:
        self.reload_config()
        return self.scheduler.request(trigger, busy=busy, throttle=throttle)

    def clean(self) -> List[str]:
        return clean_outputs(self.project_dir, self.config.compile.outdir)

    # ---- non-blocking entry points ----

    def submit_save(self, path: Union[str, Path], content: Union[str, bytes]) -> Future:
        return self._version_worker.submit(self.versions.save, path, content)

    def submit_commit(self, message: Optional[str] = None, build_success: Optional[bool] = None) -> Future:
        return self._version_worker.submit(self.versions.commit, message, build_success)

    def submit_compile(
        self,
        trigger: CompileTrigger = CompileTrigger.AUTOMATIC,
        *,
        busy: Optional[BusyPolicy] = None,
    ) -> Future:
        return self._build_workers.submit(self.compile, trigger, busy=busy)

    # ---- lifecycle ----

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Cancel in-flight compiles and stop the workers."""
        if self._closed:
            return
        self._closed = True
        self.scheduler.close()
        self._build_workers.shutdown(wait=False, cancel_futures=True)
        self._version_worker.shutdown(wait=True)
        logger.info("Closed project %s", self.project_dir)
