"""
AuditService -- append-only recalculation audit trail.

Responsibility:
    Writes exactly one RecalculationAuditEntry per recalculation scope and
    reads the trail back for reporting.  Entries are immutable once flushed
    (enforced by db/immutability.py).

Architecture position:
    Kernel > Services.  Called by RecalculationService and InventoryService.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.logging_config import get_logger
from stock_kernel.models.recalculation_audit import ReasonCode, RecalculationAuditEntry
from stock_kernel.services.base import BaseService

logger = get_logger("services.audit")


class AuditService(BaseService):
    """Writes and reads RecalculationAuditEntry rows."""

    def record_recalculation(
        self,
        product_id: UUID,
        trigger_date: date,
        reason_code: ReasonCode | str,
        note: str | None,
        lines_replayed: int,
        cogs_before: Decimal,
        cogs_after: Decimal,
    ) -> RecalculationAuditEntry:
        reason = ReasonCode(reason_code).value
        entry = RecalculationAuditEntry(
            product_id=product_id,
            trigger_date=trigger_date,
            reason_code=reason,
            note=note,
            lines_replayed=lines_replayed,
            cogs_before=cogs_before,
            cogs_after=cogs_after,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "recalculation_audited",
            extra={
                "audit_entry_id": str(entry.id),
                "product_id": str(product_id),
                "trigger_date": trigger_date.isoformat(),
                "reason_code": reason,
                "lines_replayed": lines_replayed,
                "cogs_before": str(cogs_before),
                "cogs_after": str(cogs_after),
            },
        )
        return entry

    def history(self, product_id: UUID) -> list[RecalculationAuditEntry]:
        """Audit entries of a product, oldest first."""
        return list(
            self.session.execute(
                select(RecalculationAuditEntry)
                .where(RecalculationAuditEntry.product_id == product_id)
                .order_by(RecalculationAuditEntry.created_at.asc())
            ).scalars().all()
        )
