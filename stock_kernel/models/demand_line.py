"""
Module: stock_kernel.models.demand_line
Responsibility: ORM persistence for outbound lines that draw stock: sale
    invoice lines, purchase returns to a supplier, and write-offs.  A demand
    line owns its consumptions and carries the denormalized COGS.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0 (CHECK constraint).
    - cost_of_goods_sold == round_money(sum(consumption.total_cost)
      + shortfall_cost), or 0 while the line is unresolved (between reversal
      and replay).
    - (transaction_date, sequence) is the replay order; sequence comes from
      the locked "demand_line" counter.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class DemandKind(str, Enum):
    """Kind of outbound movement."""

    SALE = "sale"
    PURCHASE_RETURN = "purchase_return"
    WRITE_OFF = "write_off"


class DemandLine(Base):
    """
    One outbound line consuming stock of one product.

    Contract:
        Only the consumption engine writes cost_of_goods_sold and the
        shortfall fields; reversal zeroes them.
    """

    __tablename__ = "demand_lines"

    __table_args__ = (
        # Query: replay scope for a product
        Index("idx_demand_line_product_date_seq", "product_id", "transaction_date", "sequence"),
        CheckConstraint("quantity > 0", name="ck_demand_line_quantity_positive"),
        CheckConstraint("shortfall_quantity >= 0", name="ck_demand_line_shortfall_nonneg"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    warehouse_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    kind: Mapped[DemandKind] = mapped_column(
        String(20),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    # Free text: invoice number, debit note number...
    reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    cost_of_goods_sold: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    shortfall_quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    shortfall_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<DemandLine {self.kind} {self.id}: product={self.product_id} "
            f"date={self.transaction_date} qty={self.quantity} cogs={self.cost_of_goods_sold}>"
        )
