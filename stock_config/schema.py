"""
Configuration Schema (``stock_config.schema``).

Responsibility
--------------
Defines the frozen ``CostingConfig`` dataclass that every runtime setting of
the costing kernel is read from.  Validation happens in ``__post_init__`` so
an invalid configuration can never be constructed.

Architecture position
---------------------
**Config layer** -- no dependency on services or engines.  Only
``stock_kernel.exceptions`` is imported, for ``InvalidConfigurationError``.

Invariants enforced
-------------------
* Instances are immutable (``frozen=True``).
* ``statement_timeout_seconds`` and ``max_retry_attempts`` are positive.
* ``currency_decimal_places`` is between 0 and 9 (the scale of the
  ``Numeric(38, 9)`` money columns).
* ``log_level`` is a stdlib ``logging`` level name.

Failure modes
-------------
* Any invalid field  -> ``InvalidConfigurationError`` naming the field.
* Unknown keys in ``from_dict``  -> ``InvalidConfigurationError``.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any

from stock_kernel.exceptions import InvalidConfigurationError

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

MAX_DECIMAL_PLACES = 9


@dataclass(frozen=True)
class CostingConfig:
    """
    Runtime settings for FIFO costing.

    Field defaults match ``stock_config/defaults.yaml``:

        config = CostingConfig(
            database_url="postgresql://localhost/stock",
            legacy_global_lots_visible=False,
        )
    """

    database_url: str = "sqlite+pysqlite:///:memory:"
    statement_timeout_seconds: int = 60
    currency_decimal_places: int = 2

    # Warehouse fallback: scoped draws also see warehouse-less lots
    legacy_global_lots_visible: bool = True

    # Receipts
    update_default_cost_on_receipt: bool = True

    # Caller-side retry on lock conflicts
    max_retry_attempts: int = 3

    log_level: str = "INFO"

    def __post_init__(self):
        if not isinstance(self.database_url, str) or not self.database_url.strip():
            raise InvalidConfigurationError("database_url", "must be a non-empty string")

        for name in ("statement_timeout_seconds", "max_retry_attempts", "currency_decimal_places"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidConfigurationError(name, f"must be an integer, got {value!r}")

        if self.statement_timeout_seconds <= 0:
            raise InvalidConfigurationError(
                "statement_timeout_seconds",
                f"must be positive, got {self.statement_timeout_seconds}",
            )
        if self.max_retry_attempts < 1:
            raise InvalidConfigurationError(
                "max_retry_attempts",
                f"must be at least 1, got {self.max_retry_attempts}",
            )
        if not 0 <= self.currency_decimal_places <= MAX_DECIMAL_PLACES:
            raise InvalidConfigurationError(
                "currency_decimal_places",
                f"must be between 0 and {MAX_DECIMAL_PLACES}, "
                f"got {self.currency_decimal_places}",
            )

        for name in ("legacy_global_lots_visible", "update_default_cost_on_receipt"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidConfigurationError(name, "must be true or false")

        if self.log_level not in VALID_LOG_LEVELS:
            raise InvalidConfigurationError(
                "log_level",
                f"must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.log_level}'",
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CostingConfig:
        """Build a config from parsed YAML, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfigurationError(
                unknown[0],
                f"unknown configuration key(s): {', '.join(unknown)}",
            )
        values = dict(data)
        if isinstance(values.get("log_level"), str):
            values["log_level"] = values["log_level"].upper()
        return cls(**values)

    def with_overrides(self, **changes: Any) -> CostingConfig:
        """Return a copy with some fields replaced (validated again)."""
        return replace(self, **changes)
