"""
catalog_config -- single public entrypoint for engine configuration.

Responsibility:
    ``load_settings()`` is the only way the scripts obtain configuration.
    Settings come from an optional YAML file, overridden by
    ``CATALOG_SYNC_*`` environment variables, and are returned as a frozen
    ``EngineSettings`` dataclass.

Architecture position:
    Configuration -- sits above ``catalog_kernel``.  Services never read
    configuration themselves; the scripts pass the individual values in.

Failure modes:
    - ``FileNotFoundError`` -- an explicit config path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ConfigurationError`` -- unknown keys or out-of-range values.
"""

from catalog_config.loader import load_settings, load_yaml_file, settings_from_dict
from catalog_config.settings import EngineSettings

__all__ = [
    "EngineSettings",
    "load_settings",
    "load_yaml_file",
    "settings_from_dict",
]
