"""Persistent models for the stock costing kernel."""

from stock_kernel.models.demand_line import DemandKind, DemandLine
from stock_kernel.models.product import Product
from stock_kernel.models.recalculation_audit import ReasonCode, RecalculationAuditEntry
from stock_kernel.models.stock_lot import LotSourceType, StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption

__all__ = [
    "DemandKind",
    "DemandLine",
    "LotSourceType",
    "Product",
    "ReasonCode",
    "RecalculationAuditEntry",
    "StockLot",
    "StockLotConsumption",
]
