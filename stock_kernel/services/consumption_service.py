"""
FIFOConsumptionEngine -- applies FIFO draws to the stock ledger.

Responsibility:
    Locks a product's eligible lots, plans the draw with the pure planner
    (``stock_engines.fifo.plan_fifo_draw``), decrements lot remaining
    quantities, records one StockLotConsumption per lot touched, and writes
    COGS and shortfall onto the consuming demand line.  Also the only code
    path that reverses consumptions (lot restore + consumption delete).

Architecture position:
    Kernel > Services -- imperative shell around stock_engines.fifo.
    Called by RecalculationService (replay) and InventoryService.

Invariants enforced:
    - quantity_needed > 0, else InvalidQuantityError before any mutation.
    - Lots dated after the transaction date are never drawn.
    - Lot rows are selected FOR UPDATE before their remaining quantity is
      read, so concurrent consumers of a product serialize.
    - Every remaining_quantity change is paired with a consumption insert
      (draw) or delete (reversal), in the same flush.
    - line.cost_of_goods_sold == round_money(sum(consumption.total_cost)
      + shortfall_cost) after every consume and restore.

Failure modes:
    - InvalidQuantityError: quantity_needed <= 0.
    - ProductNotFoundError / DemandLineNotFoundError: unknown ids.
    - Stock-outs are NOT errors: the unmet quantity is costed at the
      product's default_cost and a warning is returned and logged.

Audit relevance:
    Consumptions carry a unit cost snapshot, so a line's COGS can always be
    explained lot by lot.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_engines.fifo import FIFOPlan, LotSnapshot, describe_plan, plan_fifo_draw
from stock_kernel.db.types import CURRENCY_DECIMAL_PLACES, ZERO, round_money, to_decimal
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ConsumptionRecord, ConsumptionResult, RestorationResult
from stock_kernel.exceptions import (
    DemandLineNotFoundError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.demand_line import DemandLine
from stock_kernel.models.product import Product
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption
from stock_kernel.selectors.stock_selector import FIFO_ORDER, eligible_lot_conditions
from stock_kernel.services.base import BaseService

logger = get_logger("services.consumption")


class FIFOConsumptionEngine(BaseService):
    """
    Stateful FIFO consumption against the caller's unit of work.

    Contract:
        consume() draws stock for one demand line; preview() plans the same
        draw without touching anything; restore_line() undoes every draw of
        one line.

    Guarantees:
        - Draw order is (lot_date, sequence) ascending.
        - A consume that runs short still succeeds, with warnings.

    Non-goals:
        - Does NOT detect backdating; callers check first.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        legacy_global_lots_visible: bool = True,
        currency_decimal_places: int = CURRENCY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self.legacy_global_lots_visible = legacy_global_lots_visible
        self.currency_decimal_places = currency_decimal_places

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def _eligible_lots(
        self,
        product_id: UUID,
        as_of_date: date,
        warehouse_id: str | None,
        lock: bool,
    ) -> list[StockLot]:
        stmt = (
            select(StockLot)
            .where(
                eligible_lot_conditions(
                    product_id,
                    as_of_date,
                    warehouse_id,
                    self.legacy_global_lots_visible,
                )
            )
            .order_by(*FIFO_ORDER)
        )
        if lock:
            stmt = stmt.with_for_update()
        return list(self.session.execute(stmt).scalars().all())

    def _plan(
        self,
        product: Product,
        lots: Iterable[StockLot],
        quantity: Decimal,
    ) -> FIFOPlan:
        snapshots = [
            LotSnapshot(
                lot_id=lot.id,
                lot_date=lot.lot_date,
                sequence=lot.sequence,
                remaining_quantity=lot.remaining_quantity,
                unit_cost=lot.unit_cost,
                warehouse_id=lot.warehouse_id,
            )
            for lot in lots
        ]
        return plan_fifo_draw(
            lots=snapshots,
            requested_quantity=quantity,
            fallback_unit_cost=product.default_cost or ZERO,
            product_label=product.name or str(product.id),
            decimal_places=self.currency_decimal_places,
        )

    @staticmethod
    def _validated_quantity(quantity, context: str) -> Decimal:
        value = to_decimal(quantity)
        if not value.is_finite() or value <= 0:
            logger.warning(
                "invalid_quantity_rejected",
                extra={"quantity": str(value), "context": context},
            )
            raise InvalidQuantityError(str(value), context)
        return value

    def _line_consumptions(self, demand_line_id: UUID) -> list[StockLotConsumption]:
        return list(
            self.session.execute(
                select(StockLotConsumption).where(
                    StockLotConsumption.demand_line_id == demand_line_id
                )
            ).scalars().all()
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def consume(
        self,
        product_id: UUID,
        quantity_needed: Decimal,
        consuming_line_id: UUID,
        transaction_date: date,
        warehouse_id: str | None = None,
    ) -> ConsumptionResult:
        """
        Draw ``quantity_needed`` of a product for one demand line, oldest lot first.

        Preconditions:
            - quantity_needed > 0.
            - The demand line exists.

        Postconditions:
            - Each eligible lot drawn has remaining_quantity decreased by
              exactly the quantity recorded on its new consumption.
            - The line's cost_of_goods_sold, shortfall_quantity and
              shortfall_cost include this draw.

        Raises:
            InvalidQuantityError: quantity_needed <= 0 (nothing mutated).
            ProductNotFoundError: Unknown product.
            DemandLineNotFoundError: Unknown demand line.
        """
        quantity = self._validated_quantity(quantity_needed, "consumption")
        product = self._get_product(product_id)
        line = self.session.get(DemandLine, consuming_line_id)
        if line is None:
            raise DemandLineNotFoundError(str(consuming_line_id))

        logger.info(
            "fifo_consumption_started",
            extra={
                "product_id": str(product_id),
                "demand_line_id": str(consuming_line_id),
                "quantity": str(quantity),
                "transaction_date": transaction_date.isoformat(),
                "warehouse_id": warehouse_id,
            },
        )

        lots = self._eligible_lots(product_id, transaction_date, warehouse_id, lock=True)
        plan = self._plan(product, lots, quantity)
        lots_by_id = {lot.id: lot for lot in lots}
        now = self.clock.now()

        # Lines normally start unresolved; fold in anything already drawn
        prior_cost = sum(
            (c.total_cost for c in self._line_consumptions(line.id)), ZERO
        )

        records: list[ConsumptionRecord] = []
        for draw in plan.draws:
            lot = lots_by_id[draw.lot_id]
            lot.remaining_quantity = lot.remaining_quantity - draw.quantity
            consumption = StockLotConsumption(
                id=uuid4(),
                lot_id=lot.id,
                demand_line_id=line.id,
                quantity=draw.quantity,
                unit_cost=draw.unit_cost,
                total_cost=draw.total_cost,
                created_at=now,
            )
            self.session.add(consumption)
            records.append(ConsumptionRecord.from_model(consumption))

        line.shortfall_quantity = (line.shortfall_quantity or ZERO) + plan.shortfall_quantity
        line.shortfall_cost = (line.shortfall_cost or ZERO) + plan.shortfall_cost
        line.cost_of_goods_sold = round_money(
            prior_cost + plan.drawn_cost + line.shortfall_cost,
            self.currency_decimal_places,
        )
        self.session.flush()

        if plan.has_shortfall:
            logger.warning(
                "stock_shortfall_fallback_cost",
                extra={
                    "product_id": str(product_id),
                    "demand_line_id": str(line.id),
                    "requested_quantity": str(quantity),
                    "available_quantity": str(plan.available_quantity),
                    "shortfall_quantity": str(plan.shortfall_quantity),
                    "fallback_unit_cost": str(plan.fallback_unit_cost),
                },
            )

        logger.info(
            "fifo_consumption_completed",
            extra={
                "product_id": str(product_id),
                "demand_line_id": str(line.id),
                "lots_drawn": len(records),
                "total_cost": str(plan.total_cost),
                "draws": describe_plan(plan),
            },
        )

        return ConsumptionResult(
            demand_line_id=line.id,
            product_id=product_id,
            total_cost=plan.total_cost,
            consumptions=tuple(records),
            warnings=plan.warnings,
            shortfall_quantity=plan.shortfall_quantity,
            shortfall_cost=plan.shortfall_cost,
            available_quantity=plan.available_quantity,
        )

    def preview(
        self,
        product_id: UUID,
        quantity: Decimal,
        as_of_date: date,
        warehouse_id: str | None = None,
    ) -> FIFOPlan:
        """
        Plan a draw without locking or mutating anything.

        Raises:
            InvalidQuantityError: quantity <= 0.
            ProductNotFoundError: Unknown product.
        """
        value = self._validated_quantity(quantity, "consumption preview")
        product = self._get_product(product_id)
        lots = self._eligible_lots(product_id, as_of_date, warehouse_id, lock=False)
        return self._plan(product, lots, value)

    def reverse_consumption(self, consumption: StockLotConsumption) -> Decimal:
        """
        Restore one consumption's quantity onto its lot and delete it.

        The owning line's COGS is NOT touched; callers reset it once all of
        the line's consumptions are gone.

        Returns:
            The quantity restored.
        """
        lot = consumption.lot
        restored = lot.remaining_quantity + consumption.quantity
        assert restored <= lot.initial_quantity, (
            f"restoring {consumption.quantity} onto lot {lot.id} would exceed "
            f"its initial quantity {lot.initial_quantity}"
        )
        lot.remaining_quantity = restored
        self.session.delete(consumption)
        logger.debug(
            "consumption_reversed",
            extra={
                "lot_id": str(lot.id),
                "demand_line_id": str(consumption.demand_line_id),
                "quantity": str(consumption.quantity),
            },
        )
        return consumption.quantity

    @staticmethod
    def reset_line(line: DemandLine) -> None:
        """Mark a line unresolved: no COGS, no shortfall."""
        line.cost_of_goods_sold = ZERO
        line.shortfall_quantity = ZERO
        line.shortfall_cost = ZERO

    def restore_line(self, demand_line_id: UUID) -> RestorationResult:
        """
        Restore every consumption of one demand line to its lots.

        Used when an outbound document line is deleted or edited.

        Postconditions:
            - The line has no consumptions and zero COGS and shortfall.

        Raises:
            DemandLineNotFoundError: Unknown demand line.
        """
        line = self.session.get(DemandLine, demand_line_id)
        if line is None:
            raise DemandLineNotFoundError(str(demand_line_id))

        # Lock the product's lots before touching remaining quantities
        self.session.execute(
            select(StockLot.id)
            .where(StockLot.product_id == line.product_id)
            .with_for_update()
        ).all()

        consumptions = self._line_consumptions(line.id)
        restored = ZERO
        lot_ids: list[UUID] = []
        for consumption in consumptions:
            restored += self.reverse_consumption(consumption)
            lot_ids.append(consumption.lot_id)
        self.reset_line(line)
        self.session.flush()

        logger.info(
            "demand_line_restored",
            extra={
                "demand_line_id": str(line.id),
                "product_id": str(line.product_id),
                "consumptions_reversed": len(consumptions),
                "quantity_restored": str(restored),
            },
        )

        return RestorationResult(
            demand_line_id=line.id,
            consumptions_reversed=len(consumptions),
            quantity_restored=restored,
            lot_ids=tuple(lot_ids),
        )
