"""
RecalculationService -- full reversal and chronological replay of FIFO history.

Responsibility:
    When a movement lands in the past (backdated demand, backdated lot, an
    edited or deleted line, a deleted lot), every draw made on or after the
    affected date may have come from the wrong lot.  This service reverses
    all of those draws, restores the lots, and replays every affected demand
    line oldest-first through the same FIFOConsumptionEngine that costed it
    the first time, then records ONE audit entry for the whole scope.

Architecture position:
    Kernel > Services.  Called by InventoryService and the admin CLI.

Invariants enforced:
    - Reversal restores exactly what each consumption drew, so lot
      remaining quantities return to their pre-from_date state.
    - Replay order is (transaction_date, sequence): the order the lines
      would have been processed had they arrived chronologically.
    - Idempotent: recalculating twice with no change in between yields the
      same lots, consumptions and COGS as recalculating once.
    - One RecalculationAuditEntry per recalculation, never per line.

Failure modes:
    - RecalculationError (chained to the cause) on any failure during
      reversal or replay.  The caller's transaction MUST be rolled back;
      lots and COGS are mutually inconsistent until it is.
    - ConcurrencyConflictError when the backend aborts on a lock conflict;
      callers retry from a clean transaction.

Audit relevance:
    cogs_before / cogs_after on the audit entry show the cost delta the
    triggering change caused.  Per-line changes are logged at INFO.
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.db.engine import translate_conflicts
from stock_kernel.db.types import ZERO
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ConsumptionResult, RecalculationResult
from stock_kernel.exceptions import (
    ConcurrencyConflictError,
    ProductNotFoundError,
    RecalculationError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.demand_line import DemandLine
from stock_kernel.models.product import Product
from stock_kernel.models.recalculation_audit import ReasonCode
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_service import AuditService
from stock_kernel.services.base import BaseService
from stock_kernel.services.consumption_service import FIFOConsumptionEngine

logger = get_logger("services.recalculation")


class RecalculationService(BaseService):
    """
    Reversal-and-replay engine.

    Contract:
        recalculate_from_date() runs entirely inside the caller's unit of
        work and either completes or raises; it never leaves a partially
        replayed history behind for the caller to commit by accident.

    Non-goals:
        - Does NOT decide WHEN to recalculate (InventoryService does).
        - Does NOT patch incrementally: FIFO draw order is global, so one
          inserted lot can change what every later line drew.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        consumption_engine: FIFOConsumptionEngine | None = None,
        audit_service: AuditService | None = None,
    ):
        super().__init__(session, clock)
        self._engine = consumption_engine or FIFOConsumptionEngine(session, self.clock)
        self._audit = audit_service or AuditService(session, self.clock)
        self._selector = StockSelector(session)

    def _affected_consumptions(
        self,
        product_id: UUID,
        from_date: date,
    ) -> list[StockLotConsumption]:
        return list(
            self.session.execute(
                select(StockLotConsumption)
                .join(DemandLine, DemandLine.id == StockLotConsumption.demand_line_id)
                .where(
                    DemandLine.product_id == product_id,
                    DemandLine.transaction_date >= from_date,
                )
                .order_by(
                    DemandLine.transaction_date.asc(),
                    DemandLine.sequence.asc(),
                    StockLotConsumption.created_at.asc(),
                )
            ).scalars().all()
        )

    def _lock_lots(self, product_id: UUID) -> None:
        self.session.execute(
            select(StockLot)
            .where(StockLot.product_id == product_id)
            .with_for_update()
        ).scalars().all()

    def reverse_from_date(self, product_id: UUID, from_date: date) -> tuple[int, list[DemandLine]]:
        """
        Reversal phase only: restore every draw of lines dated >= from_date.

        Returns:
            (consumptions reversed, affected lines in replay order)
        """
        self._lock_lots(product_id)
        lines = self._selector.demand_lines(product_id, from_date)
        consumptions = self._affected_consumptions(product_id, from_date)
        for consumption in consumptions:
            self._engine.reverse_consumption(consumption)
        for line in lines:
            FIFOConsumptionEngine.reset_line(line)
        self.session.flush()
        logger.debug(
            "recalculation_reversed",
            extra={
                "product_id": str(product_id),
                "from_date": from_date.isoformat(),
                "consumptions_reversed": len(consumptions),
                "lines_reset": len(lines),
            },
        )
        return len(consumptions), lines

    def replay(self, lines: list[DemandLine]) -> list[ConsumptionResult]:
        """Replay phase only: re-consume each line as if seen for the first time."""
        results: list[ConsumptionResult] = []
        for line in lines:
            result = self._engine.consume(
                line.product_id,
                line.quantity,
                line.id,
                line.transaction_date,
                line.warehouse_id,
            )
            results.append(result)
        return results

    def recalculate_from_date(
        self,
        product_id: UUID,
        from_date: date,
        reason_code: ReasonCode | str = ReasonCode.MANUAL,
        note: str | None = None,
        after_reversal: Callable[[], None] | None = None,
    ) -> RecalculationResult:
        """
        Reverse and replay every demand line of a product dated >= from_date.

        Args:
            product_id: Product whose history is rebuilt.
            from_date: Earliest transaction date affected.
            reason_code: Why the recalculation runs (stored on the audit entry).
            note: Free text for the audit entry.
            after_reversal: Optional hook run once lots are restored and
                before replay, e.g. to delete or correct a lot whose draws
                were just reversed.

        Returns:
            RecalculationResult summary.  With no demand dated >= from_date
            and no hook, nothing is replayed and no audit entry is written.

        Raises:
            ProductNotFoundError: Unknown product (nothing mutated).
            RecalculationError: Any failure during reversal or replay.
            ConcurrencyConflictError: Lock conflict reported by the backend.
        """
        reason = ReasonCode(reason_code).value
        if self.session.get(Product, product_id) is None:
            raise ProductNotFoundError(str(product_id))

        with LogContext.bind(product_id=str(product_id)):
            logger.info(
                "recalculation_started",
                extra={
                    "from_date": from_date.isoformat(),
                    "reason_code": reason,
                },
            )
            try:
                with translate_conflicts("recalculate_from_date"):
                    return self._recalculate(product_id, from_date, reason, note, after_reversal)
            except (ConcurrencyConflictError, RecalculationError):
                raise
            except Exception as exc:
                logger.error(
                    "recalculation_failed",
                    extra={
                        "from_date": from_date.isoformat(),
                        "reason_code": reason,
                    },
                    exc_info=True,
                )
                raise RecalculationError(
                    str(product_id),
                    from_date.isoformat(),
                    f"{type(exc).__name__}: {exc}",
                ) from exc

    def _recalculate(
        self,
        product_id: UUID,
        from_date: date,
        reason: str,
        note: str | None,
        after_reversal: Callable[[], None] | None,
    ) -> RecalculationResult:
        lines = self._selector.demand_lines(product_id, from_date)
        if not lines and after_reversal is None:
            logger.info(
                "recalculation_skipped_no_demand",
                extra={"from_date": from_date.isoformat()},
            )
            return RecalculationResult(
                product_id=product_id,
                from_date=from_date,
                reason_code=reason,
                consumptions_reversed=0,
                lines_replayed=0,
                cogs_before=ZERO,
                cogs_after=ZERO,
            )

        previous: dict[UUID, Decimal] = {line.id: line.cost_of_goods_sold for line in lines}
        cogs_before = sum(previous.values(), ZERO)

        reversed_count, lines = self.reverse_from_date(product_id, from_date)
        if after_reversal is not None:
            after_reversal()
            # The hook may have moved or deleted lines
            lines = self._selector.demand_lines(product_id, from_date)

        results = self.replay(lines)

        for line in lines:
            old = previous.get(line.id)
            if old is None or old != line.cost_of_goods_sold:
                logger.info(
                    "demand_cogs_changed",
                    extra={
                        "demand_line_id": str(line.id),
                        "old_cogs": str(old) if old is not None else None,
                        "new_cogs": str(line.cost_of_goods_sold),
                    },
                )

        cogs_after = sum((line.cost_of_goods_sold for line in lines), ZERO)
        warnings = tuple(w for r in results for w in r.warnings)

        entry = self._audit.record_recalculation(
            product_id=product_id,
            trigger_date=from_date,
            reason_code=reason,
            note=note,
            lines_replayed=len(lines),
            cogs_before=cogs_before,
            cogs_after=cogs_after,
        )

        logger.info(
            "recalculation_completed",
            extra={
                "from_date": from_date.isoformat(),
                "reason_code": reason,
                "consumptions_reversed": reversed_count,
                "lines_replayed": len(lines),
                "cogs_before": str(cogs_before),
                "cogs_after": str(cogs_after),
                "shortfall_warnings": len(warnings),
            },
        )

        return RecalculationResult(
            product_id=product_id,
            from_date=from_date,
            reason_code=reason,
            consumptions_reversed=reversed_count,
            lines_replayed=len(lines),
            cogs_before=cogs_before,
            cogs_after=cogs_after,
            warnings=warnings,
            audit_entry_id=entry.id,
            line_results=tuple(results),
        )
