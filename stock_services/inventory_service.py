"""
stock_services.inventory_service -- Inventory movement workflows over the FIFO kernel.

Responsibility:
    Turns business documents into kernel calls: sales, write-offs and
    supplier returns become demand lines that are costed by FIFO; receipts
    and customer returns become lots.  Decides, per product and BEFORE any consumption, whether a
    movement can be costed forward or needs a reversal-and-replay from the
    date it lands on.  Also hosts the correction workflows (edit or delete a
    line, delete or reprice a lot) and the admin recalculation entrypoints.

Architecture position:
    Services -- stateful orchestration over kernel services and selectors.
    Composes LotService, FIFOConsumptionEngine, BackdatingDetector,
    RecalculationService, AuditService, StockSelector and SequenceService,
    all bound to the caller's Session.

Invariants enforced:
    - Backdating is checked for every product of a document before any line
      of that document consumes stock.
    - A backdated product is never consumed forward: its lines are costed
      by one recalculation from the document date.
    - Every input is validated (quantity > 0, known product) before the
      first mutation.
    - Supplier returns are strict: they never draw more than is on hand.
    - Customer returns re-enter stock at the per-unit COGS of the line
      they reverse.

Failure modes:
    - InvalidQuantityError / InvalidCostError on bad input (nothing mutated).
    - ProductNotFoundError, LotNotFoundError, DemandLineNotFoundError.
    - InsufficientStockError from return_to_supplier only.
    - RecalculationError / ConcurrencyConflictError from any workflow that
      replays; the caller's transaction must be rolled back.

Audit relevance:
    Every replay leaves one RecalculationAuditEntry with the reason code of
    the workflow that caused it.  Lot repricing, which needs no replay,
    records its own LOT_REPRICED entry.

Usage:
    from stock_kernel.db.engine import session_scope
    from stock_services.inventory_service import InventoryService

    with session_scope() as session:
        inventory = InventoryService(session)
        inventory.receive_stock(product.id, Decimal("100"), Decimal("10"), date(2024, 1, 1))
        posting = inventory.record_sale(
            date(2024, 1, 3),
            [DemandRequest(product_id=product.id, quantity=Decimal("120"))],
            reference="INV-0001",
        )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_config.schema import CostingConfig
from stock_kernel.db.types import STORAGE_DECIMAL_PLACES, ZERO, round_money, to_decimal
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    ConsumptionResult,
    DemandPosting,
    DemandRequest,
    RecalculationResult,
)
from stock_kernel.exceptions import (
    DemandLineNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.demand_line import DemandKind, DemandLine
from stock_kernel.models.product import Product
from stock_kernel.models.recalculation_audit import ReasonCode
from stock_kernel.models.stock_lot import LotSourceType
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.audit_service import AuditService
from stock_kernel.services.backdating_service import BackdatingDetector
from stock_kernel.services.consumption_service import FIFOConsumptionEngine
from stock_kernel.services.lot_service import LotRepricing, LotService
from stock_kernel.services.recalculation_service import RecalculationService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.inventory")


def recalculation_start_date(old_date: date | None, new_date: date) -> date:
    """
    Earliest date a changed line can affect.

    Moving a line later frees stock at the old date; moving it earlier
    claims stock at the new one.  Either way replay starts at the earlier.
    """
    if old_date is None:
        return new_date
    return min(old_date, new_date)


@dataclass(frozen=True, slots=True)
class StockReceipt:
    """A lot intake and the recalculation it triggered, if any."""

    lot_id: UUID
    product_id: UUID
    lot_date: date
    recalculation: RecalculationResult | None = None


class InventoryService:
    """
    Inventory workflows for one unit of work.

    Contract:
        Receives the caller's Session; flushes, never commits.  Every public
        method is one logical operation the caller commits or rolls back.

    Non-goals:
        - Does NOT post journal entries; COGS is left on the demand lines.
        - Does NOT move stock between warehouses.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
    ):
        self._session = session
        self._config = config or CostingConfig()
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)
        self._lots = LotService(
            session,
            self._clock,
            sequence_service=self._sequences,
            update_default_cost_on_receipt=self._config.update_default_cost_on_receipt,
            currency_decimal_places=self._config.currency_decimal_places,
        )
        self._engine = FIFOConsumptionEngine(
            session,
            self._clock,
            legacy_global_lots_visible=self._config.legacy_global_lots_visible,
            currency_decimal_places=self._config.currency_decimal_places,
        )
        self._audit = AuditService(session, self._clock)
        self._recalculation = RecalculationService(
            session,
            self._clock,
            consumption_engine=self._engine,
            audit_service=self._audit,
        )
        self._detector = BackdatingDetector(session)
        self._selector = StockSelector(
            session,
            legacy_global_lots_visible=self._config.legacy_global_lots_visible,
        )

    @property
    def selector(self) -> StockSelector:
        return self._selector

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_product(self, product_id: UUID) -> Product:
        product = self._session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def _require_line(self, line_id: UUID) -> DemandLine:
        line = self._session.get(DemandLine, line_id)
        if line is None:
            raise DemandLineNotFoundError(str(line_id))
        return line

    @staticmethod
    def _positive_quantity(quantity, context: str) -> Decimal:
        value = to_decimal(quantity)
        if not value.is_finite() or value <= 0:
            logger.warning(
                "invalid_quantity_rejected",
                extra={"quantity": str(value), "context": context},
            )
            raise InvalidQuantityError(str(value), context)
        return value

    def _new_line(
        self,
        kind: DemandKind,
        product_id: UUID,
        quantity: Decimal,
        transaction_date: date,
        warehouse_id: str | None,
        reference: str | None,
    ) -> DemandLine:
        line = DemandLine(
            product_id=product_id,
            warehouse_id=warehouse_id,
            kind=kind.value,
            transaction_date=transaction_date,
            quantity=quantity,
            reference=reference,
            sequence=self._sequences.next_value(SequenceService.DEMAND_LINE),
            cost_of_goods_sold=ZERO,
            shortfall_quantity=ZERO,
            shortfall_cost=ZERO,
            created_at=self._clock.now(),
        )
        self._session.add(line)
        return line

    def _post_demand(
        self,
        kind: DemandKind,
        document_date: date,
        requests: Sequence[DemandRequest],
        reference: str | None,
    ) -> DemandPosting:
        """
        Persist and cost the lines of one outbound document.

        Backdated products are recalculated once from the document date;
        the rest are consumed forward in document order.
        """
        if not requests:
            return DemandPosting(lines=())

        quantities = [
            self._positive_quantity(request.quantity, f"{kind.value} line")
            for request in requests
        ]
        product_ids: list[UUID] = []
        for request in requests:
            if request.product_id not in product_ids:
                self._require_product(request.product_id)
                product_ids.append(request.product_id)

        # Decide for every product before the first consumption
        backdated = {
            product_id
            for product_id in product_ids
            if self._detector.is_backdated(product_id, document_date)
        }

        lines = [
            self._new_line(
                kind,
                request.product_id,
                quantity,
                document_date,
                request.warehouse_id,
                request.reference or reference,
            )
            for request, quantity in zip(requests, quantities)
        ]
        self._session.flush()

        logger.info(
            "demand_document_posted",
            extra={
                "kind": kind.value,
                "reference": reference,
                "document_date": document_date.isoformat(),
                "lines": len(lines),
                "backdated_products": sorted(str(p) for p in backdated),
            },
        )

        results: dict[UUID, ConsumptionResult] = {}
        for line in lines:
            if line.product_id in backdated:
                continue
            with LogContext.bind(product_id=str(line.product_id), demand_line_id=str(line.id)):
                results[line.id] = self._engine.consume(
                    line.product_id,
                    line.quantity,
                    line.id,
                    line.transaction_date,
                    line.warehouse_id,
                )

        recalculations: list[RecalculationResult] = []
        for product_id in product_ids:
            if product_id not in backdated:
                continue
            recalculation = self._recalculation.recalculate_from_date(
                product_id,
                document_date,
                reason_code=ReasonCode.BACKDATED_DEMAND,
                note=f"{kind.value} {reference}" if reference else kind.value,
            )
            recalculations.append(recalculation)
            for line_result in recalculation.line_results:
                results[line_result.demand_line_id] = line_result

        return DemandPosting(
            lines=tuple(results[line.id] for line in lines),
            recalculations=tuple(recalculations),
        )

    # =========================================================================
    # Outbound movements
    # =========================================================================

    def record_sale(
        self,
        document_date: date,
        requests: Sequence[DemandRequest],
        reference: str | None = None,
    ) -> DemandPosting:
        """
        Record a sales document and cost each line by FIFO.

        Stock-outs never block a sale: the unmet quantity is costed at the
        product's fallback cost and reported in the posting's warnings.

        Raises:
            InvalidQuantityError: Any line quantity <= 0 (nothing mutated).
            ProductNotFoundError: Any unknown product (nothing mutated).
        """
        return self._post_demand(DemandKind.SALE, document_date, requests, reference)

    def write_off(
        self,
        product_id: UUID,
        quantity: Decimal,
        transaction_date: date,
        warehouse_id: str | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        """Remove damaged or lost stock, costed like a sale."""
        posting = self._post_demand(
            DemandKind.WRITE_OFF,
            transaction_date,
            [DemandRequest(product_id=product_id, quantity=quantity, warehouse_id=warehouse_id)],
            reference,
        )
        return posting.lines[0]

    def return_to_supplier(
        self,
        product_id: UUID,
        quantity: Decimal,
        transaction_date: date,
        warehouse_id: str | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        """
        Send goods back to a supplier.

        Unlike a sale this is strict: goods that are not on hand cannot be
        returned.  Availability is the eligible stock as it stands, as of
        the return date.

        Raises:
            InsufficientStockError: quantity exceeds available stock
                (nothing mutated).
        """
        value = self._positive_quantity(quantity, "purchase return")
        self._require_product(product_id)
        available = self._selector.get_available_stock(
            product_id,
            warehouse_id=warehouse_id,
            as_of_date=transaction_date,
        )
        if value > available:
            logger.warning(
                "purchase_return_rejected",
                extra={
                    "product_id": str(product_id),
                    "requested_quantity": str(value),
                    "available_quantity": str(available),
                    "warehouse_id": warehouse_id,
                },
            )
            raise InsufficientStockError(str(product_id), str(value), str(available))

        posting = self._post_demand(
            DemandKind.PURCHASE_RETURN,
            transaction_date,
            [DemandRequest(product_id=product_id, quantity=value, warehouse_id=warehouse_id)],
            reference,
        )
        return posting.lines[0]

    # =========================================================================
    # Inbound movements
    # =========================================================================

    def receive_stock(
        self,
        product_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        lot_date: date,
        source_type: LotSourceType | str = LotSourceType.PURCHASE,
        warehouse_id: str | None = None,
        source_reference: str | None = None,
    ) -> StockReceipt:
        """
        Record a lot and repair any history it changes.

        If demand dated on or after the lot date exists, that demand may
        now draw from this lot: replay from the lot date.  Otherwise the
        receipt may still have set a fallback cost for lines that were
        costed at zero, so replay from the earliest of those.
        """
        affects_history = self._detector.lot_affects_history(product_id, lot_date)
        lot = self._lots.create_lot(
            product_id,
            quantity,
            unit_cost,
            lot_date,
            source_type=source_type,
            warehouse_id=warehouse_id,
            source_reference=source_reference,
        )

        recalculation = None
        if affects_history:
            recalculation = self._recalculation.recalculate_from_date(
                product_id,
                lot_date,
                reason_code=ReasonCode.BACKDATED_LOT,
                note=source_reference,
            )
        else:
            zero_cogs_date = self._selector.earliest_zero_cogs_date(product_id)
            if zero_cogs_date is not None:
                recalculation = self._recalculation.recalculate_from_date(
                    product_id,
                    zero_cogs_date,
                    reason_code=ReasonCode.ZERO_COGS_REPAIR,
                    note=source_reference,
                )

        return StockReceipt(
            lot_id=lot.id,
            product_id=product_id,
            lot_date=lot_date,
            recalculation=recalculation,
        )

    def receive_customer_return(
        self,
        demand_line_id: UUID,
        quantity: Decimal,
        lot_date: date,
        warehouse_id: str | None = None,
    ) -> StockReceipt:
        """
        Take goods back from a customer at the cost they left at.

        The returned lot is priced at the original line's COGS per unit.  A
        line costed at zero (sold before any stock existed) falls back to
        the product's default_cost.  The lot goes to the line's warehouse
        unless another is given, and is replayed like any other receipt.

        Raises:
            InvalidQuantityError: quantity <= 0 (nothing mutated).
            DemandLineNotFoundError: Unknown line.
        """
        value = self._positive_quantity(quantity, "customer return")
        line = self._require_line(demand_line_id)
        product = self._require_product(line.product_id)

        unit_cost = round_money(line.cost_of_goods_sold / line.quantity, STORAGE_DECIMAL_PLACES)
        cost_basis = "original_line"
        if unit_cost <= 0:
            unit_cost = product.default_cost or ZERO
            cost_basis = "default_cost"

        logger.info(
            "customer_return_costed",
            extra={
                "product_id": str(product.id),
                "demand_line_id": str(demand_line_id),
                "quantity": str(value),
                "unit_cost": str(unit_cost),
                "cost_basis": cost_basis,
            },
        )
        return self.receive_stock(
            product.id,
            value,
            unit_cost,
            lot_date,
            source_type=LotSourceType.RETURN,
            warehouse_id=warehouse_id if warehouse_id is not None else line.warehouse_id,
            source_reference=str(demand_line_id),
        )

    # =========================================================================
    # Corrections
    # =========================================================================

    def delete_demand_line(self, line_id: UUID) -> RecalculationResult | None:
        """
        Delete a demand line, give its stock back and re-cost what followed.

        Returns:
            The recalculation, or None when no demand remains on or after
            the line's date.
        """
        line = self._require_line(line_id)
        product_id = line.product_id
        line_date = line.transaction_date

        with LogContext.bind(product_id=str(product_id), demand_line_id=str(line_id)):
            self._engine.restore_line(line_id)
            self._session.delete(line)
            self._session.flush()
            logger.info(
                "demand_line_deleted",
                extra={"transaction_date": line_date.isoformat()},
            )

        if not self._detector.has_history_from(product_id, line_date):
            return None
        return self._recalculation.recalculate_from_date(
            product_id,
            line_date,
            reason_code=ReasonCode.DEMAND_DELETED,
            note=str(line_id),
        )

    def edit_demand_line(
        self,
        line_id: UUID,
        quantity: Decimal | None = None,
        transaction_date: date | None = None,
    ) -> RecalculationResult:
        """
        Change a line's quantity and/or date and re-cost from the earlier date.

        Raises:
            InvalidQuantityError: quantity <= 0 (nothing mutated).
            DemandLineNotFoundError: Unknown line.
        """
        new_quantity = (
            self._positive_quantity(quantity, "demand line edit")
            if quantity is not None
            else None
        )
        line = self._require_line(line_id)
        old_date = line.transaction_date
        new_date = transaction_date or old_date

        with LogContext.bind(product_id=str(line.product_id), demand_line_id=str(line_id)):
            self._engine.restore_line(line_id)
            if new_quantity is not None:
                line.quantity = new_quantity
            line.transaction_date = new_date
            self._session.flush()
            logger.info(
                "demand_line_edited",
                extra={
                    "old_date": old_date.isoformat(),
                    "new_date": new_date.isoformat(),
                    "quantity": str(line.quantity),
                },
            )

        return self._recalculation.recalculate_from_date(
            line.product_id,
            recalculation_start_date(old_date, new_date),
            reason_code=ReasonCode.DEMAND_EDITED,
            note=str(line_id),
        )

    def delete_lot(self, lot_id: UUID) -> RecalculationResult | None:
        """
        Delete a lot, re-costing every line that drew from it.

        An unconsumed lot is simply removed.  Otherwise every draw dated on
        or after the lot date is reversed, the lot is deleted, and those
        lines are replayed against the remaining lots.
        """
        lot = self._lots.get_lot(lot_id)
        if not self._lots.consumption_count(lot.id):
            self._lots.delete_lot(lot.id)
            return None

        return self._recalculation.recalculate_from_date(
            lot.product_id,
            lot.lot_date,
            reason_code=ReasonCode.LOT_DELETED,
            note=str(lot_id),
            after_reversal=lambda: self._lots.delete_lot(lot_id),
        )

    def reprice_lot(self, lot_id: UUID, new_unit_cost: Decimal) -> LotRepricing:
        """
        Correct a lot's unit cost and the COGS of the lines that drew from it.

        Draw quantities are unaffected, so nothing is replayed; an audit
        entry is still written when any line's COGS was touched.
        """
        repricing = self._lots.update_lot_cost(lot_id, new_unit_cost)
        if repricing.lines_affected:
            self._audit.record_recalculation(
                product_id=repricing.product_id,
                trigger_date=repricing.lot_date,
                reason_code=ReasonCode.LOT_REPRICED,
                note=f"{repricing.old_unit_cost} -> {repricing.new_unit_cost}",
                lines_replayed=0,
                cogs_before=repricing.cogs_before,
                cogs_after=repricing.cogs_after,
            )
        return repricing

    # =========================================================================
    # Admin recalculation
    # =========================================================================

    def recalculate_zero_cogs(self, product_id: UUID) -> RecalculationResult | None:
        """Replay from the earliest line still costed at zero, if any."""
        self._require_product(product_id)
        start = self._selector.earliest_zero_cogs_date(product_id)
        if start is None:
            return None
        return self._recalculation.recalculate_from_date(
            product_id,
            start,
            reason_code=ReasonCode.ZERO_COGS_REPAIR,
        )

    def recalculate_product(
        self,
        product_id: UUID,
        from_date: date | None = None,
        reason_code: ReasonCode | str = ReasonCode.MANUAL,
        note: str | None = None,
    ) -> RecalculationResult:
        """Replay one product from from_date (default: its earliest demand)."""
        self._require_product(product_id)
        start = (
            from_date
            or self._selector.earliest_demand_date(product_id)
            or self._clock.now().date()
        )
        return self._recalculation.recalculate_from_date(
            product_id,
            start,
            reason_code=reason_code,
            note=note,
        )

    def recalculate_all(
        self,
        from_date: date | None = None,
        reason_code: ReasonCode | str = ReasonCode.MANUAL,
        note: str | None = None,
    ) -> list[RecalculationResult]:
        """Replay every product that has demand, each from from_date or its earliest demand."""
        product_ids = list(self._selector.products_with_demand())
        logger.info(
            "bulk_recalculation_started",
            extra={
                "products": len(product_ids),
                "from_date": from_date.isoformat() if from_date else None,
            },
        )
        results = [
            self.recalculate_product(product_id, from_date, reason_code, note)
            for product_id in product_ids
        ]
        logger.info(
            "bulk_recalculation_completed",
            extra={
                "products": len(results),
                "lines_replayed": sum(r.lines_replayed for r in results),
            },
        )
        return results
