"""Read-only query selectors for the stock costing kernel."""

from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.stock_selector import (
    StockSelector,
    eligible_lot_conditions,
    warehouse_predicate,
)

__all__ = [
    "BaseSelector",
    "StockSelector",
    "eligible_lot_conditions",
    "warehouse_predicate",
]
