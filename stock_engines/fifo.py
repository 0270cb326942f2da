"""
stock_engines.fifo -- Pure FIFO draw planner.

Responsibility:
    Given a product's eligible lots (already filtered by date, remaining
    quantity and warehouse) and a requested quantity, decide how much to draw
    from each lot and at what cost, and price any shortfall at a fallback
    unit cost.  The stateful FIFOConsumptionEngine applies the plan to the
    database; ``preview`` returns it untouched.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import stock_kernel.db.types (rounding) and the engine tracer only.

Invariants enforced:
    - FIFO order: lots are walked by (lot_date, sequence) ascending, so two
      lots sharing a date are drawn in insertion order.
    - No draw exceeds a lot's remaining quantity; exhausted lots are skipped.
    - sum(draw.quantity) + shortfall_quantity == requested_quantity.
    - Per-draw totals are unrounded; only total_cost is rounded, once.
    - Decimal-only arithmetic.

Failure modes:
    - ValueError if requested_quantity is not finite and positive, or
      fallback_unit_cost is not finite and non-negative.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from stock_engines.tracer import traced_engine
from stock_kernel.db.types import CURRENCY_DECIMAL_PLACES, ZERO, format_quantity, round_money


@dataclass(frozen=True, slots=True)
class LotSnapshot:
    """Read-only view of one eligible lot at planning time."""

    lot_id: UUID
    lot_date: date
    sequence: int
    remaining_quantity: Decimal
    unit_cost: Decimal
    warehouse_id: str | None = None


@dataclass(frozen=True, slots=True)
class LotDraw:
    """Quantity taken from one lot."""

    lot_id: UUID
    lot_date: date
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    remaining_after: Decimal


@dataclass(frozen=True, slots=True)
class FIFOPlan:
    """
    Outcome of planning one demand against the eligible lots.

    total_cost == round_money(sum(draw.total_cost) + shortfall_cost).
    """

    requested_quantity: Decimal
    draws: tuple[LotDraw, ...]
    available_quantity: Decimal
    shortfall_quantity: Decimal
    fallback_unit_cost: Decimal
    shortfall_cost: Decimal
    total_cost: Decimal
    warnings: tuple[str, ...]

    @property
    def drawn_quantity(self) -> Decimal:
        return sum((d.quantity for d in self.draws), ZERO)

    @property
    def drawn_cost(self) -> Decimal:
        """Unrounded cost of the lot draws, excluding the shortfall."""
        return sum((d.total_cost for d in self.draws), ZERO)

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall_quantity > 0


def fifo_sort_key(lot: LotSnapshot) -> tuple[date, int]:
    return (lot.lot_date, lot.sequence)


def order_lots(lots: Iterable[LotSnapshot]) -> list[LotSnapshot]:
    """Oldest first; insertion sequence breaks ties on equal dates."""
    return sorted(lots, key=fifo_sort_key)


def shortfall_warning(
    product_label: str,
    available_quantity: Decimal,
    requested_quantity: Decimal,
    shortfall_quantity: Decimal,
    fallback_unit_cost: Decimal,
) -> str:
    """Human-readable description of a stock-out, for display to the caller."""
    head = (
        f'Product "{product_label}" only has {format_quantity(available_quantity)} units in stock, '
        f"but {format_quantity(requested_quantity)} were requested. "
        f"Shortfall of {format_quantity(shortfall_quantity)} units costed at "
    )
    if fallback_unit_cost > 0:
        return head + f"fallback cost of {round_money(fallback_unit_cost)}/unit."
    return head + "0 (no fallback cost set)."


@traced_engine(
    "fifo",
    "1.0",
    fingerprint_fields=("requested_quantity", "fallback_unit_cost", "lots"),
)
def plan_fifo_draw(
    *,
    lots: Iterable[LotSnapshot],
    requested_quantity: Decimal,
    fallback_unit_cost: Decimal = ZERO,
    product_label: str = "",
    decimal_places: int = CURRENCY_DECIMAL_PLACES,
) -> FIFOPlan:
    """
    Plan a FIFO draw of ``requested_quantity`` across ``lots``.

    Preconditions:
        lots are already eligible for the demand (date, warehouse); lots with
        nothing remaining are tolerated and skipped.

    Postconditions:
        draws are in FIFO order and never exceed a lot's remaining quantity;
        any unmet quantity is reported as a shortfall priced at
        fallback_unit_cost, with one warning describing it.

        ValueError: If requested_quantity is not finite and positive, or
            fallback_unit_cost is not finite and non-negative.
        ValueError: If requested_quantity <= 0 or fallback_unit_cost < 0.
    """
    if not requested_quantity.is_finite() or requested_quantity <= 0:
        raise ValueError(f"Requested quantity must be positive, got {requested_quantity}")
    if not fallback_unit_cost.is_finite() or fallback_unit_cost < 0:
        raise ValueError(f"Fallback unit cost cannot be negative, got {fallback_unit_cost}")

    ordered = [lot for lot in order_lots(lots) if lot.remaining_quantity > 0]
    available = sum((lot.remaining_quantity for lot in ordered), ZERO)

    draws: list[LotDraw] = []
    needed = requested_quantity
    for lot in ordered:
        if needed <= 0:
            break
        take = min(needed, lot.remaining_quantity)
        draws.append(
            LotDraw(
                lot_id=lot.lot_id,
                lot_date=lot.lot_date,
                quantity=take,
                unit_cost=lot.unit_cost,
                total_cost=take * lot.unit_cost,
                remaining_after=lot.remaining_quantity - take,
            )
        )
        needed -= take

    shortfall_quantity = needed if needed > 0 else ZERO
    shortfall_cost = shortfall_quantity * fallback_unit_cost
    drawn_cost = sum((d.total_cost for d in draws), ZERO)

    warnings: tuple[str, ...] = ()
    if shortfall_quantity > 0:
        warnings = (
            shortfall_warning(
                product_label,
                available,
                requested_quantity,
                shortfall_quantity,
                fallback_unit_cost,
            ),
        )

    return FIFOPlan(
        requested_quantity=requested_quantity,
        draws=tuple(draws),
        available_quantity=available,
        shortfall_quantity=shortfall_quantity,
        fallback_unit_cost=fallback_unit_cost,
        shortfall_cost=shortfall_cost,
        total_cost=round_money(drawn_cost + shortfall_cost, decimal_places),
        warnings=warnings,
    )


def describe_plan(plan: FIFOPlan) -> str:
    """One-line summary used in log messages and the admin CLI."""
    parts = [
        f"{format_quantity(d.quantity)}@{format_quantity(d.unit_cost)}" for d in plan.draws
    ]
    if plan.has_shortfall:
        parts.append(
            f"{format_quantity(plan.shortfall_quantity)}@{format_quantity(plan.fallback_unit_cost)} (shortfall)"
        )
    return ", ".join(parts) + f" = {plan.total_cost}"
