"""Starter ``.easypaper/project.yml`` template."""

DEFAULT_YAML = """\
# EasyPaper project configuration
version: 1
name: My Paper
main: main.tex

engine:
  type: tectonic          # tectonic (primary) | latexmk (fallback)
  args: []
  # path: /opt/homebrew/bin/tectonic

compile:
  synctex: true
  shell_escape: false
  outdir: out
  min_interval_ms: 600    # minimum gap between compile starts
  timeout_s: 120

versioning:
  enabled: true
  track: ["*.tex", "*.bib", "*.sty", "*.cls", "*.bst"]
"""
