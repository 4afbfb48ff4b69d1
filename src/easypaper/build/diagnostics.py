"""Engine log parser — turns raw TeX/tectonic output into Diagnostics.

Lines that match no known marker are ignored. Diagnostics come out in the
order they appear in the log. A log that cannot be parsed yields no
diagnostics rather than an error.
"""

from __future__ import annotations

import logging
import re
from typing import Generator, List, Optional, Tuple, Union

from easypaper.build.models import Diagnostic, DiagnosticKind
from easypaper.errors import DiagnosticParseError

logger = logging.getLogger(__name__)

# --- tectonic ---

_TECTONIC_RE = re.compile(
    r"^\s*(?P<kind>error|warning)\s*:\s*"
    r"(?:(?P<file>[^\s:][^:]*?\.[A-Za-z]+):(?P<line>\d+):\s*)?"
    r"(?P<msg>.*\S)\s*$",
    re.IGNORECASE,
)

# --- LaTeX / latexmk ---

_FILE_LINE_ERROR_RE = re.compile(
    r"^(?P<file>(?:\./)?[^\s:()][^:()]*?\.(?:tex|sty|cls|bib|ltx|dtx|def|bbl)):(?P<line>\d+):\s*(?P<msg>.+)$"
)
_TEX_ERROR_RE = re.compile(r"^! (?P<msg>.+)$")
_ERROR_LINE_RE = re.compile(r"^l\.(?P<line>\d+)")
_LATEX_WARNING_RE = re.compile(
    r"^(?P<source>LaTeX(?: \w+)?|Package \S+|Class \S+) Warning: (?P<msg>.*)$"
)
_INPUT_LINE_RE = re.compile(r"on input line (?P<line>\d+)")
_BADBOX_RE = re.compile(
    r"^(?P<msg>(?:Overfull|Underfull) \\[hv]box .*?)(?: (?:in paragraph |in alignment )?at lines? (?P<line>\d+)(?:--\d+)?)?$"
)
_FILE_OPEN_RE = re.compile(r"\((?P<file>\./[^\s()]+\.(?:tex|bbl))")

_ERROR_LOOKAHEAD = 12

DIALECTS = ("tectonic", "latex")


def _strip_file(name: str) -> str:
    return name[2:] if name.startswith("./") else name


class DiagnosticParser:
    """Parse engine output and yield Diagnostic objects.

    Usage::

        parser = DiagnosticParser(log_text, dialect="latex")
        for diag in parser.parse():
            ...
    """

    def __init__(self, text: Union[str, bytes], dialect: str = "latex") -> None:
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if not isinstance(text, str):
            raise DiagnosticParseError(f"Expected log text, got {type(text).__name__}")
        if dialect not in DIALECTS:
            raise DiagnosticParseError(f"Unknown log dialect: {dialect}")
        self._lines = [line.rstrip("\r") for line in text.splitlines()]
        self._dialect = dialect

    def parse(self) -> Generator[Diagnostic, None, None]:
        if self._dialect == "tectonic":
            yield from self._parse_tectonic()
        else:
            yield from self._parse_latex()

    # ---- tectonic ----

    def _parse_tectonic(self) -> Generator[Diagnostic, None, None]:
        for raw_line in self._lines:
            m = _TECTONIC_RE.match(raw_line)
            if not m:
                continue
            kind = (
                DiagnosticKind.ERROR
                if m.group("kind").lower() == "error"
                else DiagnosticKind.WARNING
            )
            file = m.group("file")
            line = m.group("line")
            yield Diagnostic(
                message=m.group("msg"),
                kind=kind,
                file=_strip_file(file) if file else None,
                line=int(line) if line else None,
            )

    # ---- LaTeX log ----

    def _parse_latex(self) -> Generator[Diagnostic, None, None]:
        idx = 0
        total = len(self._lines)
        current_file: Optional[str] = None

        while idx < total:
            raw_line = self._lines[idx]

            # --- ./main.tex:12: message (-file-line-error) ---
            m = _FILE_LINE_ERROR_RE.match(raw_line)
            if m:
                yield Diagnostic(
                    message=m.group("msg").strip(),
                    kind=DiagnosticKind.ERROR,
                    file=_strip_file(m.group("file")),
                    line=int(m.group("line")),
                )
                idx += 1
                continue

            # --- ! TeX error, with l.<n> context a few lines below ---
            m = _TEX_ERROR_RE.match(raw_line)
            if m:
                yield Diagnostic(
                    message=m.group("msg").strip(),
                    kind=DiagnosticKind.ERROR,
                    file=current_file,
                    line=self._error_line(idx + 1),
                )
                idx += 1
                continue

            # --- LaTeX / Package / Class warnings ---
            m = _LATEX_WARNING_RE.match(raw_line)
            if m:
                message, idx = self._collect_warning(m.group("msg"), idx + 1)
                lm = _INPUT_LINE_RE.search(message)
                yield Diagnostic(
                    message=f"{m.group('source')} Warning: {message}",
                    kind=DiagnosticKind.WARNING,
                    file=current_file,
                    line=int(lm.group("line")) if lm else None,
                )
                continue

            # --- Overfull / Underfull boxes ---
            m = _BADBOX_RE.match(raw_line)
            if m:
                line = m.group("line")
                yield Diagnostic(
                    message=m.group("msg").strip(),
                    kind=DiagnosticKind.WARNING,
                    file=current_file,
                    line=int(line) if line else None,
                )
                idx += 1
                continue

            # --- file-open markers keep track of the current source ---
            opened = _FILE_OPEN_RE.findall(raw_line)
            if opened:
                current_file = _strip_file(opened[-1])

            idx += 1

    def _error_line(self, start: int) -> Optional[int]:
        """Find the ``l.<n>`` context line that follows a ``!`` error."""
        for idx in range(start, min(start + _ERROR_LOOKAHEAD, len(self._lines))):
            line = self._lines[idx]
            m = _ERROR_LINE_RE.match(line)
            if m:
                return int(m.group("line"))
            if _TEX_ERROR_RE.match(line):
                break
        return None

    def _collect_warning(self, first: str, idx: int) -> Tuple[str, int]:
        """Join wrapped warning continuation lines up to a blank line."""
        parts = [first.strip()]
        while idx < len(self._lines):
            line = self._lines[idx]
            if not line.strip():
                break
            if not (line.startswith(" ") or line.startswith("(")):
                break
            parts.append(re.sub(r"^\([^)]*\)\s*", "", line).strip())
            idx += 1
        return " ".join(p for p in parts if p), idx


def parse_log(
    raw_log: Union[str, bytes], dialect: str = "latex"
) -> Tuple[List[Diagnostic], List[Diagnostic]]:
    """Return ``(errors, warnings)`` from *raw_log*, empty on parse failure."""
    try:
        diagnostics = list(DiagnosticParser(raw_log, dialect).parse())
    except DiagnosticParseError as exc:
        logger.warning("Could not parse engine log: %s", exc)
        return [], []
    errors = [d for d in diagnostics if d.kind is DiagnosticKind.ERROR]
    warnings = [d for d in diagnostics if d.kind is DiagnosticKind.WARNING]
    return errors, warnings
