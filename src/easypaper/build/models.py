"""Build result and diagnostic models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DiagnosticKind(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One message extracted from engine output."""

    message: str
    kind: DiagnosticKind = DiagnosticKind.ERROR
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
        }


@dataclass
class BuildResult:
    """Outcome of one compile attempt.

    Use :func:`finalize` to build one from raw run facts; it keeps
    ``success`` consistent with ``errors`` and ``pdf_path``.
    """

    success: bool
    pdf_path: Optional[str] = None
    log_path: Optional[str] = None
    errors: List[Diagnostic] = field(default_factory=list)
    warnings: List[Diagnostic] = field(default_factory=list)
    duration_ms: int = 0
    engine: str = ""

    @classmethod
    def failure(cls, message: str, *, engine: str = "", duration_ms: int = 0) -> "BuildResult":
        """A failed result carrying one synthetic error."""
        return cls(
            success=False,
            errors=[Diagnostic(message=message, kind=DiagnosticKind.ERROR)],
            duration_ms=duration_ms,
            engine=engine,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "pdf_path": self.pdf_path,
            "log_path": self.log_path,
            "errors": [d.to_dict() for d in self.errors],
            "warnings": [d.to_dict() for d in self.warnings],
            "duration_ms": self.duration_ms,
            "engine": self.engine,
        }


def finalize(
    *,
    exit_code: int,
    pdf_path: Optional[str],
    errors: List[Diagnostic],
    warnings: List[Diagnostic],
    log_path: Optional[str] = None,
    duration_ms: int = 0,
    engine: str = "",
) -> BuildResult:
    """Combine exit status, artifacts and diagnostics into a BuildResult.

    Success requires a zero exit, a PDF and no errors. A failed run always
    carries at least one error.
    """
    success = exit_code == 0 and pdf_path is not None and not errors
    errors = list(errors)
    if not success and not errors:
        if exit_code != 0:
            errors.append(Diagnostic(message=f"{engine or 'Engine'} exited with status {exit_code}"))
        else:
            errors.append(Diagnostic(message="No PDF was produced"))
    return BuildResult(
        success=success,
        pdf_path=pdf_path,
        log_path=log_path,
        errors=errors,
        warnings=list(warnings),
        duration_ms=duration_ms,
        engine=engine,
    )
