"""
Module: stock_kernel.models.recalculation_audit
Responsibility: Append-only audit trail of FIFO recalculations.  One entry per
    recalculation scope (product + from-date), never one per replayed line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Entries are never updated or deleted (ORM listeners in
      db/immutability.py raise ImmutabilityViolationError).

Audit relevance:
    cogs_before / cogs_after let an auditor see the cost delta a backdated
    entry caused without re-running the replay.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, Date, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class ReasonCode(str, Enum):
    """Why a recalculation ran."""

    BACKDATED_DEMAND = "backdated_demand"
    BACKDATED_LOT = "backdated_lot"
    DEMAND_EDITED = "demand_edited"
    DEMAND_DELETED = "demand_deleted"
    LOT_DELETED = "lot_deleted"
    LOT_REPRICED = "lot_repriced"
    ZERO_COGS_REPAIR = "zero_cogs_repair"
    MANUAL = "manual"


class RecalculationAuditEntry(Base):
    """
    Immutable record of one recalculation.

    Contract:
        Written once by AuditService.record_recalculation(); read-only after.
    """

    __tablename__ = "recalculation_audit_entries"

    __table_args__ = (
        Index("idx_recalc_audit_product_created", "product_id", "created_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    trigger_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    reason_code: Mapped[ReasonCode] = mapped_column(
        String(50),
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(
        String(4000),
        nullable=True,
    )

    lines_replayed: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    cogs_before: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    cogs_after: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<RecalculationAuditEntry product={self.product_id} from={self.trigger_date} "
            f"reason={self.reason_code} {self.cogs_before}->{self.cogs_after}>"
        )
