"""
DTOs -- immutable results returned across the kernel boundary.

Responsibility:
    Frozen dataclasses handed back to callers by the consumption engine, the
    recalculation engine and the stock selector, so that callers never hold
    live ORM rows they could mutate outside the consume/reverse contract.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model`` converters are the
    only place ORM rows are read, and they are invoked from services and
    selectors only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from stock_kernel.models.stock_lot import StockLot
    from stock_kernel.models.stock_lot_consumption import StockLotConsumption


@dataclass(frozen=True, slots=True)
class ConsumptionRecord:
    """One persisted draw against one lot."""

    consumption_id: UUID
    lot_id: UUID
    demand_line_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal

    @classmethod
    def from_model(cls, model: StockLotConsumption) -> ConsumptionRecord:
        return cls(
            consumption_id=model.id,
            lot_id=model.lot_id,
            demand_line_id=model.demand_line_id,
            quantity=model.quantity,
            unit_cost=model.unit_cost,
            total_cost=model.total_cost,
        )


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """
    Result of consuming stock for one demand line.

    total_cost is rounded to currency precision and already includes
    shortfall_cost.  A non-empty ``warnings`` means the demand exceeded the
    eligible stock; the line was still recorded.
    """

    demand_line_id: UUID
    product_id: UUID
    total_cost: Decimal
    consumptions: tuple[ConsumptionRecord, ...]
    warnings: tuple[str, ...]
    shortfall_quantity: Decimal
    shortfall_cost: Decimal
    available_quantity: Decimal

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall_quantity > 0


@dataclass(frozen=True, slots=True)
class RestorationResult:
    """Result of restoring every consumption of one demand line to its lots."""

    demand_line_id: UUID
    consumptions_reversed: int
    quantity_restored: Decimal
    lot_ids: tuple[UUID, ...]


@dataclass(frozen=True, slots=True)
class RecalculationResult:
    """
    Summary of one reversal-and-replay.

    cogs_before / cogs_after are the summed COGS of the replayed lines
    before reversal and after replay.
    """

    product_id: UUID
    from_date: date
    reason_code: str
    consumptions_reversed: int
    lines_replayed: int
    cogs_before: Decimal
    cogs_after: Decimal
    warnings: tuple[str, ...] = ()
    audit_entry_id: UUID | None = None
    line_results: tuple[ConsumptionResult, ...] = ()

    @property
    def cogs_delta(self) -> Decimal:
        return self.cogs_after - self.cogs_before


@dataclass(frozen=True, slots=True)
class LotView:
    """Read-only view of a lot for stock reports."""

    lot_id: UUID
    warehouse_id: str | None
    source_type: str
    lot_date: date
    unit_cost: Decimal
    initial_quantity: Decimal
    remaining_quantity: Decimal

    @property
    def remaining_value(self) -> Decimal:
        return self.remaining_quantity * self.unit_cost

    @classmethod
    def from_model(cls, model: StockLot) -> LotView:
        return cls(
            lot_id=model.id,
            warehouse_id=model.warehouse_id,
            source_type=model.source_type,
            lot_date=model.lot_date,
            unit_cost=model.unit_cost,
            initial_quantity=model.initial_quantity,
            remaining_quantity=model.remaining_quantity,
        )


@dataclass(frozen=True, slots=True)
class StockSnapshot:
    """On-hand stock of a product: quantity, value and the lots behind them."""

    product_id: UUID
    warehouse_id: str | None
    total_quantity: Decimal
    total_value: Decimal
    average_unit_cost: Decimal
    lots: tuple[LotView, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class DemandRequest:
    """One line of an outbound document (invoice line, debit note line)."""

    product_id: UUID
    quantity: Decimal
    warehouse_id: str | None = None
    reference: str | None = None


@dataclass(frozen=True, slots=True)
class DemandPosting:
    """
    Outcome of recording a multi-line outbound document.

    ``lines`` are in request order.  ``recalculations`` holds one entry per
    product whose history was replayed because the document was backdated.
    """

    lines: tuple[ConsumptionResult, ...]
    recalculations: tuple[RecalculationResult, ...] = ()

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(w for line in self.lines for w in line.warnings)

    @property
    def total_cost(self) -> Decimal:
        return sum((line.total_cost for line in self.lines), Decimal("0"))
