"""
Stock Kernel - FIFO inventory costing

A lot-tracking ledger with replay semantics:
- FIFO consumption with deterministic lot order
- Backdating detection
- Full reversal-and-replay recalculation
- Append-only recalculation audit trail
- Warehouse-scoped stock isolation
"""

__version__ = "0.1.0"
