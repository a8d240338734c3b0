"""
Configuration Loader (``catalog_config.loader``).

Responsibility
--------------
Loads the engine YAML file, applies ``CATALOG_SYNC_*`` environment
overrides, and coerces the merged values into ``EngineSettings``.

Precedence
----------
defaults  <  YAML file  <  environment

Failure modes
-------------
* Missing explicit YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or uncoercible value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from catalog_config.settings import EngineSettings
from catalog_kernel.exceptions import ConfigurationError
from catalog_kernel.logging_config import get_logger

logger = get_logger("config.loader")

ENV_PREFIX = "CATALOG_SYNC_"
CONFIG_PATH_ENV = f"{ENV_PREFIX}CONFIG"

_FIELD_TYPES: dict[str, type] = {
    f.name: {"int": int, "float": float, "str": str}[f.type]
    for f in fields(EngineSettings)
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    The engine settings may live at the top level or under an ``engine:`` key.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level YAML value must be a mapping")
    engine_section = data.get("engine", data)
    if not isinstance(engine_section, dict):
        raise ConfigurationError("engine", "must be a mapping")
    return engine_section


def _coerce(key: str, value: Any) -> Any:
    target = _FIELD_TYPES[key]
    if isinstance(value, bool):
        raise ConfigurationError(key, f"expected {target.__name__}, got bool")
    try:
        return target(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(key, f"expected {target.__name__}, got {value!r}") from exc


def settings_from_dict(data: Mapping[str, Any]) -> EngineSettings:
    """Build settings from a plain mapping, rejecting unknown keys."""
    unknown = sorted(set(data) - set(_FIELD_TYPES))
    if unknown:
        raise ConfigurationError(unknown[0], f"unknown setting(s): {unknown}")
    return EngineSettings(**{k: _coerce(k, v) for k, v in data.items()})


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for name in _FIELD_TYPES:
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if env_key in environ and environ[env_key] != "":
            overrides[name] = environ[env_key]
    return overrides


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Resolve the effective engine settings.

    Args:
        path: YAML file to read.  Falls back to ``$CATALOG_SYNC_CONFIG``;
            when neither is given only defaults and environment apply.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    env = os.environ if environ is None else environ
    merged: dict[str, Any] = {}

    config_path = path or env.get(CONFIG_PATH_ENV)
    if config_path:
        merged.update(load_yaml_file(Path(config_path)))

    overrides = _env_overrides(env)
    merged.update(overrides)

    settings = settings_from_dict(merged)
    logger.debug(
        "settings_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            "env_overrides": sorted(overrides),
            "batch_size": settings.batch_size,
            "max_retries": settings.max_retries,
        },
    )
    return settings
