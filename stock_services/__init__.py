"""Inventory workflows orchestrating the FIFO costing kernel."""

from stock_services.inventory_service import (
    InventoryService,
    StockReceipt,
    recalculation_start_date,
)
from stock_services.retry import run_with_retry

__all__ = [
    "InventoryService",
    "StockReceipt",
    "recalculation_start_date",
    "run_with_retry",
]
