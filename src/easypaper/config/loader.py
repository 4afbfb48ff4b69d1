"""Load and merge project configuration from ``.easypaper/project.yml`` and env vars."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from easypaper.config.schema import (
    CompileConfig,
    EngineConfig,
    ProjectConfig,
    VersioningConfig,
)

CONFIG_DIR = ".easypaper"
CONFIG_NAME = "project.yml"


class ConfigError(Exception):
    """Raised when config is malformed or unreadable."""


def config_path(project_dir: Path) -> Path:
    return Path(project_dir) / CONFIG_DIR / CONFIG_NAME


def find_config_file(project_dir: Path, override: Optional[str] = None) -> Optional[Path]:
    """Locate the config file. *override* takes precedence."""
    if override:
        p = Path(override)
        if not p.is_file():
            raise ConfigError(f"Config file not found: {override}")
        return p
    candidate = config_path(project_dir)
    return candidate if candidate.is_file() else None


def _parse_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Failed to parse {path}: top level must be a mapping")
    return data


def _merge_env_overrides(cfg: ProjectConfig) -> None:
    """Apply EASYPAPER_* environment variable overrides."""
    if val := os.environ.get("EASYPAPER_ENGINE"):
        cfg.engine.type = val.strip()
    if val := os.environ.get("EASYPAPER_MIN_INTERVAL_MS"):
        try:
            cfg.compile.min_interval_ms = max(0, int(val))
        except ValueError:
            pass
    if val := os.environ.get("EASYPAPER_TIMEOUT_S"):
        try:
            cfg.compile.timeout_s = float(val)
        except ValueError:
            pass
    if val := os.environ.get("EASYPAPER_OUTDIR"):
        cfg.compile.outdir = val.strip()


def _build_section(data: Dict[str, Any], cls: type, section: str):
    """Build a dataclass from a YAML section dict, ignoring unknown keys."""
    raw = data.get(section) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _validate(cfg: ProjectConfig) -> None:
    if not isinstance(cfg.engine.args, list):
        raise ConfigError("engine.args must be a list")
    cfg.engine.args = [str(a) for a in cfg.engine.args]
    if not isinstance(cfg.versioning.track, list):
        raise ConfigError("versioning.track must be a list")
    try:
        cfg.compile.min_interval_ms = int(cfg.compile.min_interval_ms)
        cfg.compile.timeout_s = float(cfg.compile.timeout_s)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid compile settings: {exc}") from exc
    if cfg.compile.min_interval_ms < 0:
        raise ConfigError("compile.min_interval_ms must be >= 0")
    if cfg.compile.timeout_s <= 0:
        raise ConfigError("compile.timeout_s must be > 0")
    if not str(cfg.compile.outdir).strip():
        raise ConfigError("compile.outdir must not be empty")


def load_config(
    project_dir: Path,
    config_override: Optional[str] = None,
) -> ProjectConfig:
    """Load, validate, and return a ProjectConfig."""
    path = find_config_file(project_dir, config_override)

    if path is None:
        cfg = ProjectConfig()
    else:
        raw = _parse_yaml(path)
        try:
            cfg = ProjectConfig(
                version=raw.get("version", 1),
                name=raw.get("name", "My Paper"),
                main=raw.get("main", "main.tex"),
                engine=_build_section(raw, EngineConfig, "engine"),
                compile=_build_section(raw, CompileConfig, "compile"),
                versioning=_build_section(raw, VersioningConfig, "versioning"),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid config {path}: {exc}") from exc

    _merge_env_overrides(cfg)
    _validate(cfg)
    return cfg


def save_config(cfg: ProjectConfig, project_dir: Path) -> Path:
    """Write *cfg* to ``.easypaper/project.yml`` and return the path."""
    path = config_path(project_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(dataclasses.asdict(cfg), sort_keys=False),
            encoding="utf-8",
        )
    except OSError as exc:
        raise ConfigError(f"Failed to write {path}: {exc}") from exc
    return path
