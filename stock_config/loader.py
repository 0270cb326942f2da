"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Reads YAML configuration files and merges them over the packaged defaults.
This is plumbing for ``stock_config.get_active_config()``; services never
call it directly.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``InvalidConfigurationError`` (chained to the
  ``yaml.YAMLError``).
* A document that is not a mapping  -> ``InvalidConfigurationError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from stock_kernel.exceptions import InvalidConfigurationError

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML document is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        InvalidConfigurationError: if the YAML is invalid or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise InvalidConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(
            str(path),
            f"top-level document must be a mapping, got {type(data).__name__}",
        )
    return data


def load_config_data(path: Path | None = None) -> dict[str, Any]:
    """Packaged defaults, overlaid with *path* when given."""
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data.update(load_yaml_file(Path(path)))
    return data
