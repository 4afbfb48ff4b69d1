"""Build — engine adapters, log diagnostics, compile scheduling."""

from easypaper.build.diagnostics import DiagnosticParser, parse_log
from easypaper.build.engines import (
    BuildEngine,
    LatexmkEngine,
    TectonicEngine,
    clean_outputs,
    compile_project,
    select_engine,
)
from easypaper.build.models import BuildResult, Diagnostic, DiagnosticKind
from easypaper.build.scheduler import (
    BusyPolicy,
    CompileScheduler,
    CompileTrigger,
    SchedulerState,
    ThrottlePolicy,
)

__all__ = [
    "BuildEngine",
    "BuildResult",
    "BusyPolicy",
    "CompileScheduler",
    "CompileTrigger",
    "Diagnostic",
    "DiagnosticKind",
    "DiagnosticParser",
    "LatexmkEngine",
    "SchedulerState",
    "TectonicEngine",
    "ThrottlePolicy",
    "clean_outputs",
    "compile_project",
    "parse_log",
    "select_engine",
]
