"""
BackdatingDetector -- decides whether a new movement rewrites FIFO history.

Responsibility:
    A demand dated D is backdated when the product already has a lot dated
    after D, or a consumed demand line dated after D: drawing it forward
    would see a different "oldest available lot" than a chronological
    replay.  A new lot dated D matters whenever a demand line dated on or
    after D exists, because the lot is eligible for that line.

Architecture position:
    Kernel > Services.  Read-only; runs per product BEFORE any consumption,
    since consuming first and detecting afterwards would corrupt lot state.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.demand_line import DemandLine
from stock_kernel.models.stock_lot import StockLot
from stock_kernel.models.stock_lot_consumption import StockLotConsumption

logger = get_logger("services.backdating")


class BackdatingDetector:
    """
    Backdating checks for one unit of work.

    Non-goals:
        - Does NOT trigger recalculation; InventoryService decides that.
    """

    def __init__(self, session: Session):
        self._session = session

    def is_backdated(self, product_id: UUID, candidate_date: date) -> bool:
        """
        True if any lot of the product is dated after candidate_date, or any
        consumption of the product belongs to a demand line dated after it.
        """
        later_lot = exists().where(
            StockLot.product_id == product_id,
            StockLot.lot_date > candidate_date,
        )
        later_consumption = exists().where(
            StockLotConsumption.demand_line_id == DemandLine.id,
            DemandLine.product_id == product_id,
            DemandLine.transaction_date > candidate_date,
        )
        backdated = bool(
            self._session.execute(select(or_(later_lot, later_consumption))).scalar()
        )
        if backdated:
            logger.info(
                "backdated_transaction_detected",
                extra={
                    "product_id": str(product_id),
                    "candidate_date": candidate_date.isoformat(),
                },
            )
        return backdated

    def lot_affects_history(self, product_id: UUID, lot_date: date) -> bool:
        """True if a demand line dated on or after lot_date already exists."""
        affected = self.has_history_from(product_id, lot_date)
        if affected:
            logger.info(
                "backdated_lot_detected",
                extra={
                    "product_id": str(product_id),
                    "lot_date": lot_date.isoformat(),
                },
            )
        return affected

    def has_history_from(self, product_id: UUID, candidate_date: date) -> bool:
        """True if any demand line of the product is dated on or after candidate_date."""
        return bool(
            self._session.execute(
                select(
                    exists().where(
                        DemandLine.product_id == product_id,
                        DemandLine.transaction_date >= candidate_date,
                    )
                )
            ).scalar()
        )
