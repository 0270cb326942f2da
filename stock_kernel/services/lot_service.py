"""
LotService -- the stock lot store.

Responsibility:
    Creates lots for every inbound source (purchase, adjustment, customer
    return, transfer in, opening balance), deletes unreferenced lots, and
    reprices lots together with the consumptions already drawn from them.
    Remaining quantities are NOT written here; only the consumption engine
    moves them.

Architecture position:
    Kernel > Services.  Called by InventoryService.

Invariants enforced:
    - initial_quantity > 0 and unit_cost >= 0, checked before insert.
    - remaining_quantity == initial_quantity at creation.
    - Lot sequences come from SequenceService, never max+1.
    - A lot referenced by consumptions is never deleted.
    - Repricing keeps consumption.total_cost == quantity * unit_cost and
      line COGS == round(sum(total_cost) + shortfall_cost).

Failure modes:
    - InvalidQuantityError / InvalidCostError on bad input.
    - ProductNotFoundError / LotNotFoundError on unknown ids.
    - ImmutabilityViolationError when deleting a referenced lot.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_kernel.db.types import CURRENCY_DECIMAL_PLACES, ZERO, round_money, to_decimal
from stock_kernel.domain.clock import Clock
from stock_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidCostError,
    InvalidQuantityError,
    LotNotFoundError,
    ProductNotFoundError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.demand_line import DemandLine
from stock_kernel.models.product import Product
from stock_kernel.models.stock_lot import LotSourceType, StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lot")

# Receipts whose cost becomes the product's fallback cost
_COST_SETTING_SOURCES = frozenset({LotSourceType.PURCHASE.value, LotSourceType.OPENING.value})


@dataclass(frozen=True, slots=True)
class LotDeletion:
    """What was removed, for the caller's recalculation decision."""

    lot_id: UUID
    product_id: UUID
    lot_date: date
    warehouse_id: str | None


@dataclass(frozen=True, slots=True)
class LotRepricing:
    """Effect of a lot cost change on the demand lines that drew from it."""

    lot_id: UUID
    product_id: UUID
    lot_date: date
    old_unit_cost: Decimal
    new_unit_cost: Decimal
    consumptions_repriced: int
    lines_affected: int
    cogs_before: Decimal
    cogs_after: Decimal


class LotService(BaseService):
    """
    Stock lot store.

    Guarantees:
        - Lots are flushed with a sequence allocated under a row lock.
        - Product default_cost follows the latest purchase or opening
          receipt when update_default_cost_on_receipt is set.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        update_default_cost_on_receipt: bool = True,
        currency_decimal_places: int = CURRENCY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._sequences = sequence_service or SequenceService(session)
        self.update_default_cost_on_receipt = update_default_cost_on_receipt
        self.currency_decimal_places = currency_decimal_places

    def get_lot(self, lot_id: UUID, lock: bool = False) -> StockLot:
        stmt = select(StockLot).where(StockLot.id == lot_id)
        if lock:
            stmt = stmt.with_for_update()
        lot = self.session.execute(stmt).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def consumption_count(self, lot_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(StockLotConsumption)
            .where(StockLotConsumption.lot_id == lot_id)
        ).scalar_one()

    def create_lot(
        self,
        product_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal,
        lot_date: date,
        source_type: LotSourceType | str = LotSourceType.PURCHASE,
        warehouse_id: str | None = None,
        source_reference: str | None = None,
    ) -> StockLot:
        """
        Record an inbound batch.

        Postconditions:
            - remaining_quantity == initial_quantity == quantity.
            - For PURCHASE and OPENING receipts, product.default_cost ==
              unit_cost (when enabled).

        Raises:
            InvalidQuantityError: quantity <= 0.
            InvalidCostError: unit_cost < 0.
            ProductNotFoundError: Unknown product.
        """
        qty = to_decimal(quantity)
        cost = to_decimal(unit_cost)
        source = LotSourceType(source_type).value
        if not qty.is_finite() or qty <= 0:
            raise InvalidQuantityError(str(qty), f"{source} lot")
        if not cost.is_finite() or cost < 0:
            raise InvalidCostError(str(cost), f"{source} lot")

        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))

        lot = StockLot(
            product_id=product_id,
            warehouse_id=warehouse_id,
            source_type=source,
            source_reference=source_reference,
            lot_date=lot_date,
            unit_cost=cost,
            initial_quantity=qty,
            remaining_quantity=qty,
            sequence=self._sequences.next_value(SequenceService.STOCK_LOT),
            created_at=self.clock.now(),
        )
        self.session.add(lot)

        if self.update_default_cost_on_receipt and source in _COST_SETTING_SOURCES:
            product.default_cost = cost

        self.session.flush()

        logger.info(
            "stock_lot_created",
            extra={
                "lot_id": str(lot.id),
                "product_id": str(product_id),
                "warehouse_id": warehouse_id,
                "source_type": source,
                "lot_date": lot_date.isoformat(),
                "quantity": str(qty),
                "unit_cost": str(cost),
                "sequence": lot.sequence,
            },
        )
        return lot

    def delete_lot(self, lot_id: UUID) -> LotDeletion:
        """
        Delete a lot no consumption references.

        Callers reverse the consumptions first (InventoryService.delete_lot
        does this inside a recalculation).

        Raises:
            LotNotFoundError: Unknown lot.
            ImmutabilityViolationError: The lot still has consumptions.
        """
        lot = self.get_lot(lot_id, lock=True)
        referenced = self.consumption_count(lot.id)
        if referenced:
            logger.error(
                "stock_lot_delete_blocked",
                extra={"lot_id": str(lot.id), "consumptions": referenced},
            )
            raise ImmutabilityViolationError(
                entity_type="StockLot",
                entity_id=str(lot.id),
                reason=f"Lot is referenced by {referenced} consumption(s); reverse them first",
            )

        deletion = LotDeletion(
            lot_id=lot.id,
            product_id=lot.product_id,
            lot_date=lot.lot_date,
            warehouse_id=lot.warehouse_id,
        )
        self.session.delete(lot)
        self.session.flush()

        logger.info(
            "stock_lot_deleted",
            extra={
                "lot_id": str(deletion.lot_id),
                "product_id": str(deletion.product_id),
                "lot_date": deletion.lot_date.isoformat(),
            },
        )
        return deletion

    def update_lot_cost(self, lot_id: UUID, new_unit_cost: Decimal) -> LotRepricing:
        """
        Change a lot's unit cost and carry it through to what was drawn.

        Draw quantities do not depend on cost, so no replay is needed: each
        consumption of the lot is repriced and each affected line's COGS is
        recomputed from its consumptions.

        Raises:
            InvalidCostError: new_unit_cost < 0.
            LotNotFoundError: Unknown lot.
        """
        cost = to_decimal(new_unit_cost)
        if not cost.is_finite() or cost < 0:
            raise InvalidCostError(str(cost), "lot repricing")

        lot = self.get_lot(lot_id, lock=True)
        old_cost = lot.unit_cost
        lot.unit_cost = cost

        consumptions = list(
            self.session.execute(
                select(StockLotConsumption).where(StockLotConsumption.lot_id == lot.id)
            ).scalars().all()
        )
        for consumption in consumptions:
            consumption.unit_cost = cost
            consumption.total_cost = consumption.quantity * cost

        line_ids = sorted({c.demand_line_id for c in consumptions}, key=str)
        cogs_before = ZERO
        cogs_after = ZERO
        for line_id in line_ids:
            line = self.session.get(DemandLine, line_id)
            cogs_before += line.cost_of_goods_sold
            drawn = sum(
                (
                    c.total_cost
                    for c in self.session.execute(
                        select(StockLotConsumption).where(
                            StockLotConsumption.demand_line_id == line_id
                        )
                    ).scalars()
                ),
                ZERO,
            )
            line.cost_of_goods_sold = round_money(
                drawn + line.shortfall_cost,
                self.currency_decimal_places,
            )
            cogs_after += line.cost_of_goods_sold
        self.session.flush()

        logger.info(
            "stock_lot_repriced",
            extra={
                "lot_id": str(lot.id),
                "product_id": str(lot.product_id),
                "old_unit_cost": str(old_cost),
                "new_unit_cost": str(cost),
                "consumptions_repriced": len(consumptions),
                "lines_affected": len(line_ids),
            },
        )

        return LotRepricing(
            lot_id=lot.id,
            product_id=lot.product_id,
            lot_date=lot.lot_date,
            old_unit_cost=old_cost,
            new_unit_cost=cost,
            consumptions_repriced=len(consumptions),
            lines_affected=len(line_ids),
            cogs_before=cogs_before,
            cogs_after=cogs_after,
        )
