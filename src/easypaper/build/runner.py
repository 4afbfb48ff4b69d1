"""Engine subprocess wrapper — timeout, cancellation, output capture."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from easypaper.errors import BuildCancelledError, BuildEngineNotFoundError, BuildTimeoutError

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.05


@dataclass(frozen=True)
class ProcessOutcome:
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def combined(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


def _kill(proc: subprocess.Popen) -> None:
    # Engine children (pdflatex under latexmk) share the engine's process group.
    if os.name == "posix":
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()
    try:
        proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Engine process %s did not exit after kill", proc.pid)


def run_engine(
    args: List[str],
    cwd: Path,
    timeout_s: float,
    cancel: Optional[threading.Event] = None,
) -> ProcessOutcome:
    """Run *args* in *cwd* and return its captured output.

    Raises BuildEngineNotFoundError when the executable cannot be started,
    BuildTimeoutError after *timeout_s*, and BuildCancelledError when
    *cancel* is set. The engine and every process it started are killed in the last two cases.
    """
    start = time.perf_counter()
    logger.info("Running engine: %s (cwd=%s)", " ".join(args), cwd)
    try:
        proc = subprocess.Popen(
            args,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=os.name == "posix",
        )
    except FileNotFoundError as exc:
        raise BuildEngineNotFoundError(f"{args[0]} is not installed or not on PATH") from exc
    except PermissionError as exc:
        raise BuildEngineNotFoundError(f"{args[0]} is not executable") from exc

    deadline = start + timeout_s
    while True:
        if cancel is not None and cancel.is_set():
            _kill(proc)
            raise BuildCancelledError(f"Compilation cancelled: {args[0]}")
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            _kill(proc)
            raise BuildTimeoutError(timeout_s)
        try:
            stdout, stderr = proc.communicate(timeout=min(_POLL_INTERVAL_S, remaining))
            break
        except subprocess.TimeoutExpired:
            continue

    duration_ms = int((time.perf_counter() - start) * 1000)
    logger.debug("Engine exited with %s after %dms", proc.returncode, duration_ms)
    return ProcessOutcome(
        exit_code=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration_ms=duration_ms,
    )
