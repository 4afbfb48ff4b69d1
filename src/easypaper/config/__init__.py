"""Configuration loading, schema, and defaults."""

from easypaper.config.loader import ConfigError, load_config, save_config
from easypaper.config.schema import CompileConfig, EngineConfig, ProjectConfig, VersioningConfig

__all__ = [
    "CompileConfig",
    "ConfigError",
    "EngineConfig",
    "ProjectConfig",
    "VersioningConfig",
    "load_config",
    "save_config",
]
