"""
Module: stock_kernel.models.stock_lot
Responsibility: ORM persistence for stock lots.  Each lot is one inbound batch
    of a product received at a single unit cost, optionally scoped to a
    warehouse.  FIFO consumption draws lots oldest-first and decrements
    remaining_quantity; reversal restores it.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - initial_quantity > 0, frozen after creation (CHECK + ORM listener).
    - 0 <= remaining_quantity <= initial_quantity (CHECK constraints).
    - unit_cost >= 0 (CHECK constraint).
    - (product_id, lot_date, sequence) orders the FIFO walk deterministically;
      sequence is allocated from the locked "stock_lot" counter, so two lots
      sharing a lot_date are drawn in insertion order.

Failure modes:
    - IntegrityError if a CHECK constraint is violated at flush time.
    - ImmutabilityViolationError if product, warehouse, source type or
      initial quantity is changed after creation.

Audit relevance:
    Lots are never deleted while consumptions reference them; a lot with
    remaining_quantity == 0 is retired logically and kept for history.
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, UUIDString


class LotSourceType(str, Enum):
    """What kind of inbound event created a lot."""

    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    TRANSFER_IN = "transfer_in"
    OPENING = "opening"


class StockLot(Base):
    """
    Persistent storage for one inbound batch.

    Contract:
        remaining_quantity is mutated ONLY by the FIFO consumption engine
        (decrement, paired with a consumption insert) and by reversal
        (increment, paired with a consumption delete).

    Guarantees:
        - warehouse_id NULL means global/unscoped legacy stock, visible to
          every warehouse-scoped query.
        - sequence is unique and strictly increasing in insertion order.

    Non-goals:
        - This model does NOT decide eligibility; see StockSelector.
    """

    __tablename__ = "stock_lots"

    __table_args__ = (
        # Query: FIFO walk for a product
        Index("idx_stock_lot_product_date_seq", "product_id", "lot_date", "sequence"),
        # Query: scoped availability
        Index("idx_stock_lot_product_warehouse", "product_id", "warehouse_id"),
        # Query: lot provenance (originating document line)
        Index("idx_stock_lot_source", "source_type", "source_reference"),
        CheckConstraint("initial_quantity > 0", name="ck_stock_lot_initial_positive"),
        CheckConstraint("remaining_quantity >= 0", name="ck_stock_lot_remaining_nonneg"),
        CheckConstraint(
            "remaining_quantity <= initial_quantity",
            name="ck_stock_lot_remaining_le_initial",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_stock_lot_cost_nonneg"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Lookup key only; NULL = legacy/global stock
    warehouse_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    source_type: Mapped[LotSourceType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Id of the originating document line (purchase line, credit note line...)
    source_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    lot_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    initial_quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    remaining_quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    # FIFO tie-break for lots sharing a lot_date
    sequence: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    product: Mapped["Product"] = relationship()  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<StockLot {self.id}: product={self.product_id} date={self.lot_date} "
            f"{self.remaining_quantity}/{self.initial_quantity} @ {self.unit_cost}>"
        )
