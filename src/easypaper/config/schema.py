"""Project configuration schema — dataclasses for every config section."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

ENGINE_ALIASES: dict[str, str] = {
    "primary": "primary",
    "tectonic": "primary",
    "fallback": "fallback",
    "latexmk": "fallback",
}


def normalize_engine_type(value: str) -> Optional[str]:
    """Map ``tectonic``/``latexmk`` aliases to a variant name, None if unknown."""
    return ENGINE_ALIASES.get(str(value).strip().lower())


@dataclass
class EngineConfig:
    type: str = "tectonic"  # primary | tectonic | fallback | latexmk
    args: List[str] = field(default_factory=list)
    path: Optional[str] = None  # explicit executable, skips PATH lookup


@dataclass
class CompileConfig:
    synctex: bool = True
    shell_escape: bool = False
    outdir: str = "out"
    min_interval_ms: int = 600
    timeout_s: float = 120.0


@dataclass
class VersioningConfig:
    enabled: bool = True
    track: List[str] = field(
        default_factory=lambda: ["*.tex", "*.bib", "*.sty", "*.cls", "*.bst"]
    )


@dataclass
class ProjectConfig:
    version: int = 1
    name: str = "My Paper"
    main: str = "main.tex"
    engine: EngineConfig = field(default_factory=EngineConfig)
    compile: CompileConfig = field(default_factory=CompileConfig)
    versioning: VersioningConfig = field(default_factory=VersioningConfig)
