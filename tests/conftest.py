"""Shared test fixtures — sample engine logs, temp projects, fake engines."""

from __future__ import annotations

import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from easypaper.config.loader import save_config
from easypaper.config.schema import ProjectConfig
from easypaper.versioning.manager import VersionManager

_ENV_VARS = (
    "EASYPAPER_ENGINE",
    "EASYPAPER_MIN_INTERVAL_MS",
    "EASYPAPER_TIMEOUT_S",
    "EASYPAPER_OUTDIR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_tectonic_log() -> str:
    """Console output of a failed tectonic run."""
    return textwrap.dedent("""\
        note: Running TeX ...
        warning: main.tex:14: Overfull \\hbox (12.5pt too wide) in paragraph
        error: main.tex:3: Undefined control sequence.
        error: halted on potentially-recoverable error as specified
        note: Skipped writing 1 intermediate files (use --keep-intermediates to keep them)
    """)


@pytest.fixture
def sample_latex_log() -> str:
    """Excerpt of a pdflatex .log file written by latexmk."""
    return textwrap.dedent("""\
        This is pdfTeX, Version 3.141592653-2.6-1.40.25 (TeX Live 2023) (preloaded format=pdflatex)
        (./main.tex
        LaTeX2e <2022-11-01> patch level 1
        (/usr/share/texmf/tex/latex/base/article.cls
        Document Class: article 2022/07/02 v1.4n Standard LaTeX document class
        )
        ! Undefined control sequence.
        l.7 \\foo
                 {bar}
        Package natbib Warning: Citation `knuth84' on page 1 undefined on input line 9.

        LaTeX Warning: Reference `fig:plot' on page 1 undefined on input line 12.

        Overfull \\hbox (15.0pt too wide) in paragraph at lines 20--22
        [1] (./main.aux) )
    """)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small LaTeX project with no versioning set up."""
    root = tmp_path / "paper"
    root.mkdir()
    (root / "main.tex").write_text(
        "\\documentclass{article}\n\\begin{document}\nHello.\n\\end{document}\n",
        encoding="utf-8",
    )
    (root / "refs.bib").write_text("@book{knuth84, title={The TeXbook}}\n", encoding="utf-8")
    (root / "sections").mkdir()
    (root / "sections" / "intro.tex").write_text("\\section{Intro}\n", encoding="utf-8")
    return root


@pytest.fixture
def manager(project_dir: Path) -> VersionManager:
    """An initialized VersionManager over ``project_dir``."""
    vm = VersionManager(project_dir, exclude_dirs=["out"])
    vm.init()
    return vm


_FAKE_ENGINE = '''\
import pathlib
import sys
import time

MODE = {mode!r}
DELAY = {delay!r}

args = sys.argv[1:]
outdir = "out"
for arg in args:
    if arg.startswith(("--outdir=", "-outdir=")):
        outdir = arg.split("=", 1)[1]
main = [arg for arg in args if arg.endswith(".tex")][-1]
stem = pathlib.Path(main).stem

with open("engine-calls.txt", "a", encoding="utf-8") as fh:
    fh.write(" ".join(args) + "\\n")

time.sleep(DELAY)

if MODE == "fail":
    print("error: " + main + ":3: Undefined control sequence.")
    sys.exit(1)

out = pathlib.Path(outdir)
out.mkdir(parents=True, exist_ok=True)
(out / (stem + ".pdf")).write_bytes(b"%PDF-1.5\\n%fake\\n")
(out / (stem + ".synctex.gz")).write_bytes(b"sync")
print("warning: " + main + ":2: Citation undefined")
'''


@pytest.fixture
def fake_engine(tmp_path: Path) -> Callable[..., Path]:
    """Factory for an executable that imitates tectonic.

    ``fake_engine(mode="ok" | "fail", delay=0.0)`` returns the script path.
    The script appends its argv to ``engine-calls.txt`` in its cwd.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    counter = {"n": 0}

    def _make(mode: str = "ok", delay: float = 0.0) -> Path:
        counter["n"] += 1
        body = bin_dir / f"engine_{counter['n']}.py"
        body.write_text(_FAKE_ENGINE.format(mode=mode, delay=delay), encoding="utf-8")
        wrapper = bin_dir / f"engine_{counter['n']}"
        wrapper.write_text(
            f'#!/bin/sh\nexec "{sys.executable}" "{body}" "$@"\n', encoding="utf-8"
        )
        wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return wrapper

    return _make


@pytest.fixture
def configure(project_dir: Path) -> Callable[..., ProjectConfig]:
    """Write ``.easypaper/project.yml`` for ``project_dir`` and return the config."""

    def _write(engine_path: Path | None = None, **compile_overrides) -> ProjectConfig:
        cfg = ProjectConfig()
        if engine_path is not None:
            cfg.engine.path = os.fspath(engine_path)
        for key, value in compile_overrides.items():
            setattr(cfg.compile, key, value)
        save_config(cfg, project_dir)
        return cfg

    return _write
