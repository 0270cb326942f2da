"""
Configuration Package (``stock_config``).

Responsibility
--------------
Single entrypoint for runtime configuration of the FIFO costing kernel.
``get_active_config()`` reads the packaged defaults, overlays an optional
YAML file and the ``STOCK_DATABASE_URL`` environment variable, validates
the result and returns a frozen ``CostingConfig``.

Architecture position
---------------------
**Config layer** -- consumed by ``stock_services`` and the admin scripts.
The kernel services take plain constructor arguments and never import
this package.

Invariants enforced
-------------------
* The returned ``CostingConfig`` is frozen and fully validated.
* The environment variable wins over every file.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError``.
* Invalid YAML or values  -> ``InvalidConfigurationError``.

Audit relevance
---------------
Every load emits a ``stock_config_loaded`` log line with the effective
settings (the database URL is reduced to its dialect).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import load_config_data
from stock_config.schema import CostingConfig

__all__ = ["CostingConfig", "get_active_config", "DATABASE_URL_ENV"]

_logger = logging.getLogger("stock_kernel.config")

DATABASE_URL_ENV = "STOCK_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> CostingConfig:
    """
    Load, validate and return the active costing configuration.

    Args:
        path: Optional YAML file whose keys override the packaged defaults.

    Returns:
        CostingConfig -- frozen and validated.

    Raises:
        FileNotFoundError: If *path* does not exist.
        InvalidConfigurationError: If any value is invalid.
    """
    data = load_config_data(Path(path) if path is not None else None)

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        data["database_url"] = env_url

    config = CostingConfig.from_dict(data)

    _logger.info(
        "stock_config_loaded",
        extra={
            "config_path": str(path) if path is not None else None,
            "database_dialect": config.database_url.split(":", 1)[0],
            "database_url_from_env": bool(env_url),
            "statement_timeout_seconds": config.statement_timeout_seconds,
            "currency_decimal_places": config.currency_decimal_places,
            "legacy_global_lots_visible": config.legacy_global_lots_visible,
            "update_default_cost_on_receipt": config.update_default_cost_on_receipt,
            "max_retry_attempts": config.max_retry_attempts,
        },
    )
    return config
