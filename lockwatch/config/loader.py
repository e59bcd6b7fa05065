"""YAML config loader with environment variable substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml

from lockwatch.config.models import LockwatchConfig
from lockwatch.core.exceptions import ConfigurationError

_ENV_PATTERN = re.compile(r"\$\{(\w+)(?::([^}]*))?\}")

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)
        return os.environ.get(var_name, default if default is not None else match.group(0))

    return _ENV_PATTERN.sub(replacer, value)


def _walk_and_substitute(obj):
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_substitute(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_substitute(item) for item in obj]
    return obj


def load_yaml(path: Path) -> dict:
    """Load a YAML file with env var substitution."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return _walk_and_substitute(raw)


def config_path() -> Path:
    """Path of the config file; LOCKWATCH_CONFIG overrides the bundled default."""
    override = os.environ.get("LOCKWATCH_CONFIG")
    if override:
        return Path(override)
    return CONFIG_DIR / "lockwatch.yaml"


def load_config(path: Path | None = None) -> LockwatchConfig:
    """Load the config file into a LockwatchConfig; defaults apply when it is absent."""
    path = path or config_path()
    data = load_yaml(path) if path.exists() else {}
    try:
        return LockwatchConfig(**data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e
