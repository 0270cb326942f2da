"""
Module: stock_engines
Responsibility:
    Pure calculation engines for stock costing.  No I/O, no sessions, no
    clocks: callers pass everything in and persist the result.

Usage:
    from stock_engines import LotSnapshot, plan_fifo_draw
"""

from stock_engines.fifo import (
    FIFOPlan,
    LotDraw,
    LotSnapshot,
    describe_plan,
    order_lots,
    plan_fifo_draw,
    shortfall_warning,
)

__all__ = [
    "FIFOPlan",
    "LotDraw",
    "LotSnapshot",
    "describe_plan",
    "order_lots",
    "plan_fifo_draw",
    "shortfall_warning",
]
