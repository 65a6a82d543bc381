"""YAML configuration loader for the warehouse pipeline.

Example YAML (warehouse.yaml):
    landing_path: ./landing
    checkpoint_dir: ./_checkpoints
    on_error: continue
    resolution_mode: current
    spark_master: local[2]

Relative paths starting with "./" or "../" are resolved against the
directory of the YAML file. ``${VAR}`` references are expanded from the
environment.
"""

import dataclasses
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

from .config import WarehouseConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

PATH_FIELDS = ("landing_path", "checkpoint_dir", "lock_dir", "warehouse_dir")


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        def replace(match):
            name = match.group(1)
            if name not in os.environ:
                raise ConfigurationError(f"Environment variable '{name}' is not set", name)
            return os.environ[name]
        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    return value


def _resolve_path(path: str, config_dir: Path) -> str:
    """Resolve "./" and "../" paths relative to the config file."""
    if not path:
        return path
    if path.startswith("./") or path.startswith("../"):
        return str((config_dir / path).resolve())
    return path


def load_yaml_document(path: str) -> Dict[str, Any]:
    """
    Read a YAML mapping from disk.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed mapping

    Raises:
        ConfigurationError: If the file is missing or not a mapping
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with open(config_path, encoding="utf-8") as fh:
        try:
            document = yaml.safe_load(fh) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(document, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {path}")
    return document


def build_warehouse_config(document: Dict[str, Any], config_dir: Path = Path(".")) -> WarehouseConfig:
    """
    Build a WarehouseConfig from a parsed mapping.

    Args:
        document: Configuration mapping
        config_dir: Base directory for relative paths

    Returns:
        WarehouseConfig

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    known_fields = {f.name for f in dataclasses.fields(WarehouseConfig)}
    unknown = sorted(set(document) - known_fields)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {unknown}", unknown[0])

    values = _expand_env(dict(document))
    for name in PATH_FIELDS:
        if values.get(name):
            values[name] = _resolve_path(str(values[name]), config_dir)

    if "spark_conf" in values:
        values["spark_conf"] = {str(k): str(v) for k, v in (values["spark_conf"] or {}).items()}

    try:
        return WarehouseConfig(**values)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid warehouse configuration: {e}")


def load_warehouse_config(path: str) -> WarehouseConfig:
    """
    Load a WarehouseConfig from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        WarehouseConfig
    """
    document = load_yaml_document(path)
    config = build_warehouse_config(document, Path(path).resolve().parent)
    logger.info(f"Loaded warehouse configuration from {path}")
    return config
