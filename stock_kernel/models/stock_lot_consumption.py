"""
Module: stock_kernel.models.stock_lot_consumption
Responsibility: ORM persistence for a single draw against a single lot by a
    single demand line.  The unit cost is a snapshot copied from the lot at
    draw time, not a live reference.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0 (CHECK constraint).
    - total_cost == quantity * unit_cost, unrounded.
    - sum(quantity) over a lot <= lot.initial_quantity (maintained by the
      paired decrement of lot.remaining_quantity, itself CHECKed >= 0).
    - lot_id, demand_line_id and quantity are frozen after creation; only the
      cost snapshot may be rewritten when a lot is repriced.

Audit relevance:
    Consumptions are deleted only during reversal, in the same transaction
    that restores the lot's remaining_quantity.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, UUIDString


class StockLotConsumption(Base):
    """
    One draw of quantity from a lot.

    Contract:
        Created atomically with the decrement of lot.remaining_quantity.
        Deleted only by reversal, which restores the same quantity.
    """

    __tablename__ = "stock_lot_consumptions"

    __table_args__ = (
        Index("idx_consumption_lot", "lot_id"),
        Index("idx_consumption_demand_line", "demand_line_id"),
        CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_lots.id"),
        nullable=False,
    )

    demand_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("demand_lines.id"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    # Snapshot of lot.unit_cost at draw time
    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    lot: Mapped["StockLot"] = relationship()  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<StockLotConsumption lot={self.lot_id} line={self.demand_line_id} "
            f"{self.quantity} @ {self.unit_cost}>"
        )
