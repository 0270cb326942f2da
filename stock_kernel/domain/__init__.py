"""Pure domain types for the stock costing kernel."""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    ConsumptionRecord,
    ConsumptionResult,
    DemandPosting,
    DemandRequest,
    LotView,
    RecalculationResult,
    RestorationResult,
    StockSnapshot,
)

__all__ = [
    "Clock",
    "ConsumptionRecord",
    "ConsumptionResult",
    "DemandPosting",
    "DemandRequest",
    "DeterministicClock",
    "LotView",
    "RecalculationResult",
    "RestorationResult",
    "StockSnapshot",
    "SystemClock",
]
