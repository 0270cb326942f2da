"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Read-only stock queries: eligible lots, available quantity,
    on-hand snapshots, and the dates recalculation tooling starts from.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - The eligibility predicate here is the SAME one the consumption engine
      locks lots with (``eligible_lot_conditions``), so availability and
      consumption never disagree about which lots a scoped demand can see.
    - Quantities are summed in Python as Decimal, not by the database.

Audit relevance:
    earliest_zero_cogs_date() finds demand lines that were costed while no
    stock was on hand, which receipts use to repair COGS.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ColumnElement, and_, func, or_, select, true

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import ConsumptionRecord, LotView, StockSnapshot
from stock_kernel.models.demand_line import DemandLine
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption
from stock_kernel.selectors.base import BaseSelector


def warehouse_predicate(
    warehouse_id: str | None,
    legacy_global_lots_visible: bool = True,
) -> ColumnElement[bool]:
    """
    Warehouse filter for lot queries.

    Unscoped (warehouse_id None): every lot of the product.
    Scoped: the warehouse's own lots OR lots with no warehouse at all.
    """
    if warehouse_id is None:
        return true()
    if not legacy_global_lots_visible:
        return StockLot.warehouse_id == warehouse_id
    # Legacy compatibility, intentional: stock recorded before multi-warehouse
    # tracking carries no warehouse and stays visible to every warehouse.
    return or_(
        StockLot.warehouse_id == warehouse_id,
        StockLot.warehouse_id.is_(None),
    )


def eligible_lot_conditions(
    product_id: UUID,
    as_of_date: date | None = None,
    warehouse_id: str | None = None,
    legacy_global_lots_visible: bool = True,
) -> ColumnElement[bool]:
    """Product match, stock remaining, dated on or before as_of_date, warehouse rule."""
    conditions = [
        StockLot.product_id == product_id,
        StockLot.remaining_quantity > 0,
        warehouse_predicate(warehouse_id, legacy_global_lots_visible),
    ]
    if as_of_date is not None:
        conditions.append(StockLot.lot_date <= as_of_date)
    return and_(*conditions)


FIFO_ORDER = (StockLot.lot_date.asc(), StockLot.sequence.asc())


class StockSelector(BaseSelector):
    """
    Read-only stock queries.

    Contract:
        Every availability figure uses the same eligibility rule as
        FIFO consumption.
    """

    def __init__(self, session, legacy_global_lots_visible: bool = True):
        super().__init__(session)
        self.legacy_global_lots_visible = legacy_global_lots_visible

    def eligible_lots(
        self,
        product_id: UUID,
        as_of_date: date | None = None,
        warehouse_id: str | None = None,
    ) -> list[StockLot]:
        """Eligible lots in FIFO order, without locking."""
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
        return list(self.session.execute(stmt).scalars().all())

    def get_available_stock(
        self,
        product_id: UUID,
        warehouse_id: str | None = None,
        as_of_date: date | None = None,
    ) -> Decimal:
        """Sum of remaining quantity over eligible lots."""
        lots = self.eligible_lots(product_id, as_of_date, warehouse_id)
        return sum((lot.remaining_quantity for lot in lots), ZERO)

    def get_product_stock(
        self,
        product_id: UUID,
        warehouse_id: str | None = None,
    ) -> StockSnapshot:
        """On-hand quantity, value and average unit cost with per-lot detail."""
        views = tuple(
            LotView.from_model(lot)
            for lot in self.eligible_lots(product_id, warehouse_id=warehouse_id)
        )
        total_quantity = sum((v.remaining_quantity for v in views), ZERO)
        total_value = sum((v.remaining_value for v in views), ZERO)
        average = total_value / total_quantity if total_quantity > 0 else ZERO
        return StockSnapshot(
            product_id=product_id,
            warehouse_id=warehouse_id,
            total_quantity=total_quantity,
            total_value=total_value,
            average_unit_cost=average,
            lots=views,
        )

    def consumptions_for_line(self, demand_line_id: UUID) -> list[ConsumptionRecord]:
        stmt = (
            select(StockLotConsumption)
            .join(StockLot, StockLot.id == StockLotConsumption.lot_id)
            .where(StockLotConsumption.demand_line_id == demand_line_id)
            .order_by(*FIFO_ORDER)
        )
        return [
            ConsumptionRecord.from_model(c)
            for c in self.session.execute(stmt).scalars().all()
        ]

    def demand_lines(
        self,
        product_id: UUID,
        from_date: date | None = None,
    ) -> list[DemandLine]:
        """Demand lines of a product in replay order (transaction_date, sequence)."""
        stmt = select(DemandLine).where(DemandLine.product_id == product_id)
        if from_date is not None:
            stmt = stmt.where(DemandLine.transaction_date >= from_date)
        stmt = stmt.order_by(DemandLine.transaction_date.asc(), DemandLine.sequence.asc())
        return list(self.session.execute(stmt).scalars().all())

    def earliest_zero_cogs_date(self, product_id: UUID) -> date | None:
        """Earliest transaction date of a demand line still costed at zero."""
        return self.session.execute(
            select(func.min(DemandLine.transaction_date)).where(
                DemandLine.product_id == product_id,
                DemandLine.cost_of_goods_sold == 0,
            )
        ).scalar_one_or_none()

    def earliest_demand_date(self, product_id: UUID) -> date | None:
        return self.session.execute(
            select(func.min(DemandLine.transaction_date)).where(
                DemandLine.product_id == product_id,
            )
        ).scalar_one_or_none()

    def products_with_demand(self) -> Sequence[UUID]:
        """Ids of every product that has at least one demand line."""
        return self.session.execute(
            select(DemandLine.product_id).distinct().order_by(DemandLine.product_id)
        ).scalars().all()
