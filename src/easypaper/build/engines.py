"""Build engine adapters — one class per external typesetting engine.

The engine is picked from ``engine.type`` in the project config; nothing is
probed. ``compile_project`` never raises for build problems: a missing
engine, a timeout or a failed run all come back as a failed BuildResult.
Only cancellation propagates, so the caller can discard the run.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type, Union

from easypaper.build.diagnostics import parse_log
from easypaper.build.models import BuildResult, Diagnostic, finalize
from easypaper.build.runner import ProcessOutcome, run_engine
from easypaper.config.schema import CompileConfig, EngineConfig, ProjectConfig, normalize_engine_type
from easypaper.errors import BuildEngineNotFoundError, BuildTimeoutError

logger = logging.getLogger(__name__)

# Directories an output dir may never be or contain.
_PROTECTED_DIRS = (".control", ".easypaper", ".git")


def resolve_output_dir(project_dir: Union[str, Path], outdir: str) -> Path:
    """Resolve *outdir* and make sure it is a dedicated subdirectory of the project."""
    root = Path(project_dir).resolve()
    out = (root / outdir).resolve()
    try:
        rel = out.relative_to(root)
    except ValueError:
        raise ValueError(f"Output directory {outdir!r} is outside the project") from None
    if not rel.parts:
        raise ValueError("Output directory must not be the project root")
    if rel.parts[0] in _PROTECTED_DIRS:
        raise ValueError(f"Output directory {outdir!r} overlaps {rel.parts[0]}")
    return out


def clean_outputs(project_dir: Union[str, Path], outdir: str) -> List[str]:
    """Remove everything inside the output directory. Returns removed names."""
    out = resolve_output_dir(project_dir, outdir)
    if not out.is_dir():
        return []
    removed: List[str] = []
    for entry in sorted(out.iterdir()):
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed.append(entry.name)
    logger.info("Cleaned %d artifact(s) from %s", len(removed), out)
    return removed


class BuildEngine(ABC):
    """Common invocation logic; subclasses supply command line and log parsing."""

    name: str = ""
    executable: str = ""

    def __init__(self, engine_cfg: Optional[EngineConfig] = None) -> None:
        self._cfg = engine_cfg or EngineConfig()

    def resolve_executable(self) -> str:
        if self._cfg.path:
            path = Path(self._cfg.path).expanduser()
            if not path.is_file():
                raise BuildEngineNotFoundError(f"{self.executable} not found at {path}")
            return str(path)
        found = shutil.which(self.executable)
        if found is None:
            raise BuildEngineNotFoundError(
                f"{self.executable} is not installed or not on PATH"
            )
        return found

    @abstractmethod
    def command(self, executable: str, main_file: str, options: CompileConfig) -> List[str]:
        """Full argv for one compile."""

    @abstractmethod
    def diagnostics(
        self, outcome: ProcessOutcome, out_dir: Path, main_file: str
    ) -> Tuple[List[Diagnostic], List[Diagnostic], Optional[Path]]:
        """Return ``(errors, warnings, log_path)`` for a finished run."""

    def compile(
        self,
        project_dir: Union[str, Path],
        main_file: str,
        options: CompileConfig,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> BuildResult:
        """Run the engine once. Raises on missing engine, timeout, cancel."""
        root = Path(project_dir).resolve()
        out_dir = resolve_output_dir(root, options.outdir)
        source = (root / main_file).resolve()
        try:
            source.relative_to(root)
        except ValueError:
            raise ValueError(f"Main file {main_file!r} is outside the project") from None
        if not source.is_file():
            return BuildResult.failure(f"Main file not found: {main_file}", engine=self.name)

        executable = self.resolve_executable()
        out_dir.mkdir(parents=True, exist_ok=True)

        outcome = run_engine(
            self.command(executable, main_file, options),
            cwd=root,
            timeout_s=options.timeout_s,
            cancel=cancel,
        )
        errors, warnings, log_path = self.diagnostics(outcome, out_dir, main_file)
        pdf = out_dir / f"{Path(main_file).stem}.pdf"
        return finalize(
            exit_code=outcome.exit_code,
            pdf_path=str(pdf) if pdf.is_file() else None,
            errors=errors,
            warnings=warnings,
            log_path=str(log_path) if log_path else None,
            duration_ms=outcome.duration_ms,
            engine=self.name,
        )

    def clean(self, project_dir: Union[str, Path], options: CompileConfig) -> List[str]:
        return clean_outputs(project_dir, options.outdir)


class TectonicEngine(BuildEngine):
    """Primary engine: tectonic, diagnostics read from its console output."""

    name = "primary"
    executable = "tectonic"

    def command(self, executable: str, main_file: str, options: CompileConfig) -> List[str]:
        args = [executable, f"--outdir={options.outdir}"]
        if options.synctex:
            args.append("--synctex")
        if options.shell_escape:
            args.append("-Z")
            args.append("shell-escape")
        args.append(main_file)
        args.extend(self._cfg.args)
        return args

    def diagnostics(self, outcome, out_dir, main_file):
        errors, warnings = parse_log(outcome.combined, dialect="tectonic")
        return errors, warnings, None


class LatexmkEngine(BuildEngine):
    """Fallback engine: latexmk, diagnostics read from the ``.log`` file."""

    name = "fallback"
    executable = "latexmk"

    def command(self, executable: str, main_file: str, options: CompileConfig) -> List[str]:
        args = [executable, "-pdf", "-interaction=nonstopmode", "-file-line-error"]
        if options.synctex:
            args.append("-synctex=1")
        if options.shell_escape:
            args.append("-shell-escape")
        args.append(f"-outdir={options.outdir}")
        args.extend(self._cfg.args)
        args.append(main_file)
        return args

    def diagnostics(self, outcome, out_dir, main_file):
        log_path = out_dir / f"{Path(main_file).stem}.log"
        if log_path.is_file():
            text = log_path.read_text(encoding="utf-8", errors="replace")
            errors, warnings = parse_log(text, dialect="latex")
            return errors, warnings, log_path
        errors, warnings = parse_log(outcome.combined, dialect="latex")
        return errors, warnings, None


ENGINES: Dict[str, Type[BuildEngine]] = {
    "primary": TectonicEngine,
    "fallback": LatexmkEngine,
}


def select_engine(engine_cfg: EngineConfig) -> BuildEngine:
    """Instantiate the engine named by ``engine.type``."""
    variant = normalize_engine_type(engine_cfg.type)
    if variant is None:
        raise BuildEngineNotFoundError(f"Unknown engine type: {engine_cfg.type}")
    return ENGINES[variant](engine_cfg)


def compile_project(
    project_dir: Union[str, Path],
    config: ProjectConfig,
    *,
    cancel: Optional[threading.Event] = None,
) -> BuildResult:
    """Compile the project's main file; build problems become failed results."""
    start = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - start) * 1000)

    engine_name = normalize_engine_type(config.engine.type) or config.engine.type
    try:
        engine = select_engine(config.engine)
        result = engine.compile(project_dir, config.main, config.compile, cancel=cancel)
    except BuildEngineNotFoundError as exc:
        logger.warning("Build engine unavailable: %s", exc)
        return BuildResult.failure(str(exc), engine=engine_name, duration_ms=_elapsed())
    except BuildTimeoutError as exc:
        logger.warning("Build timed out in %s", project_dir)
        return BuildResult.failure(str(exc), engine=engine_name, duration_ms=_elapsed())
    except ValueError as exc:
        return BuildResult.failure(str(exc), engine=engine_name, duration_ms=_elapsed())
    except OSError as exc:
        return BuildResult.failure(f"Build failed: {exc}", engine=engine_name, duration_ms=_elapsed())

    result.duration_ms = _elapsed()
    return result
